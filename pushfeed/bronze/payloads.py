"""Payload placement for raw events: inline rows or object storage overflow."""

from __future__ import annotations

import datetime as dt
import logging
import typing as typ
import weakref

import msgspec

from pushfeed.common.time import utcnow

from .errors import ObjectNotFoundError, PayloadStorageError

if typ.TYPE_CHECKING:
    from .objectstore import ObjectStorageConfig, ObjectStore
    from .storage import RawEvent

type Payload = dict[str, typ.Any]

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"


def payload_key(event_id: str, at: dt.datetime) -> str:
    """Return the date-partitioned object key for ``event_id``."""
    day = at.astimezone(dt.UTC)
    return f"events/{day:%Y}/{day:%m}/{day:%d}/{event_id}.json"


class PayloadStore:
    """Store raw event bodies in object storage when overflow is enabled.

    With overflow disabled, :meth:`store` returns ``None`` and the caller
    persists the payload inline on the raw event row.
    """

    def __init__(
        self,
        config: ObjectStorageConfig,
        object_store: ObjectStore | None = None,
    ) -> None:
        """Bind the store to its configuration and object store backend."""
        if config.enabled and object_store is None:
            msg = "an object store is required when object storage is enabled"
            raise ValueError(msg)
        self._config = config
        self._object_store = object_store

    @property
    def enabled(self) -> bool:
        """Return True when payloads overflow into object storage."""
        return self._config.enabled

    async def store(
        self,
        event_id: str,
        payload: Payload,
        *,
        now: dt.datetime | None = None,
    ) -> str | None:
        """Write ``payload`` to object storage and return its key.

        Parameters
        ----------
        event_id : str
            Upstream event identifier used as the object name.
        payload : dict[str, Any]
            Raw event body to serialise as JSON.
        now : datetime, optional
            Timestamp used for the date partition; defaults to the current time.

        Returns
        -------
        str | None
            The object key, or ``None`` when overflow is disabled.

        Raises
        ------
        PayloadStorageError
            If the object store rejects the write.

        """
        if not self._config.enabled or self._object_store is None:
            return None
        key = payload_key(event_id, now or utcnow())
        body = msgspec.json.encode(payload)
        await self._object_store.put(
            self._config.bucket, key, body, JSON_CONTENT_TYPE
        )
        return key

    async def retrieve(self, key: str) -> Payload:
        """Load and decode the payload stored under ``key``."""
        if not self._config.enabled or self._object_store is None:
            raise PayloadStorageError.disabled()
        body = await self._object_store.get(self._config.bucket, key)
        try:
            decoded = msgspec.json.decode(body)
        except msgspec.DecodeError as exc:
            raise PayloadStorageError.invalid_json(key) from exc
        if not isinstance(decoded, dict):
            raise PayloadStorageError.invalid_json(key)
        return decoded

    async def delete(self, key: str) -> bool:
        """Delete ``key``; False when overflow is disabled or the key is absent."""
        if not self._config.enabled or self._object_store is None:
            return False
        return await self._object_store.delete(self._config.bucket, key)


class RawEventPayloadReader:
    """Read raw event payloads regardless of where they were placed.

    Each payload is fetched at most once per in-memory :class:`RawEvent`
    instance. When object storage cannot serve a key the inline payload is
    used instead, if the row still carries one.
    """

    def __init__(self, payload_store: PayloadStore | None = None) -> None:
        """Create a reader backed by ``payload_store`` for externalised rows."""
        self._payload_store = payload_store
        self._memo: weakref.WeakKeyDictionary[RawEvent, Payload] = (
            weakref.WeakKeyDictionary()
        )

    async def read(self, raw_event: RawEvent) -> Payload:
        """Return the payload for ``raw_event``."""
        cached = self._memo.get(raw_event)
        if cached is not None:
            return cached
        payload = await self._load(raw_event)
        self._memo[raw_event] = payload
        return payload

    async def _load(self, raw_event: RawEvent) -> Payload:
        inline = raw_event.payload or {}
        if not raw_event.object_key:
            return inline
        if self._payload_store is None:
            logger.warning(
                "No payload store configured for raw event %s; using inline payload",
                raw_event.event_id,
            )
            return inline
        try:
            return await self._payload_store.retrieve(raw_event.object_key)
        except ObjectNotFoundError:
            logger.warning(
                "Payload object %s missing for raw event %s; using inline payload",
                raw_event.object_key,
                raw_event.event_id,
            )
        except PayloadStorageError as exc:
            logger.warning(
                "Payload read failed for raw event %s (%s); using inline payload",
                raw_event.event_id,
                exc,
            )
        return inline
