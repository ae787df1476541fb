"""Bronze layer primitives: raw event storage, payload placement and cursors."""

from __future__ import annotations

from .cursors import GITHUB_EVENTS_ETAG_KEY, CursorPersistError, CursorStore
from .errors import (
    ObjectNotFoundError,
    PayloadInvariantError,
    PayloadStorageError,
    TimezoneAwareRequiredError,
)
from .objectstore import AzureBlobObjectStore, ObjectStorageConfig, ObjectStore
from .payloads import PayloadStore, RawEventPayloadReader, payload_key
from .storage import (
    PUSH_EVENT_TYPE,
    Base,
    Cursor,
    RawEvent,
    attach_payload,
    init_storage,
)

__all__ = [
    "GITHUB_EVENTS_ETAG_KEY",
    "PUSH_EVENT_TYPE",
    "AzureBlobObjectStore",
    "Base",
    "Cursor",
    "CursorPersistError",
    "CursorStore",
    "ObjectNotFoundError",
    "ObjectStorageConfig",
    "ObjectStore",
    "PayloadInvariantError",
    "PayloadStorageError",
    "PayloadStore",
    "RawEvent",
    "RawEventPayloadReader",
    "TimezoneAwareRequiredError",
    "attach_payload",
    "init_storage",
    "payload_key",
]
