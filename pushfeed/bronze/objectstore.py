"""Object storage backends used to overflow large raw event payloads.

The pipeline only relies on the small :class:`ObjectStore` protocol. The
production backend stores objects in Azure Blob Storage, mapping each bucket
onto a blob container.
"""

from __future__ import annotations

import dataclasses as dc
import logging
import os
import typing as typ

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.storage.blob import ContentSettings
from azure.storage.blob.aio import BlobServiceClient

from .errors import ObjectNotFoundError, PayloadStorageError

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "github-events"
_TRUTHY = {"1", "true", "yes", "on"}


class ObjectStore(typ.Protocol):
    """Minimal async object store used by the payload store."""

    async def put(
        self, bucket: str, key: str, body: bytes, content_type: str
    ) -> None:
        """Write ``body`` under ``key``, replacing any existing object."""
        ...

    async def get(self, bucket: str, key: str) -> bytes:
        """Return the object body or raise :class:`ObjectNotFoundError`."""
        ...

    async def delete(self, bucket: str, key: str) -> bool:
        """Delete ``key``; return False when it did not exist."""
        ...


@dc.dataclass(frozen=True, slots=True)
class ObjectStorageConfig:
    """Configuration for optional payload overflow into object storage."""

    enabled: bool = False
    bucket: str = DEFAULT_BUCKET
    connection_string: str | None = None

    @classmethod
    def from_env(cls) -> ObjectStorageConfig:
        """Build configuration from ``PUSHFEED_OBJECT_STORAGE_*`` variables.

        ``PUSHFEED_OBJECT_STORAGE_ENABLED`` toggles overflow (default off).
        When enabled, ``PUSHFEED_OBJECT_STORAGE_CONNECTION_STRING`` is
        required and ``PUSHFEED_OBJECT_STORAGE_BUCKET`` names the container.
        """
        enabled = (
            os.environ.get("PUSHFEED_OBJECT_STORAGE_ENABLED", "").strip().lower()
            in _TRUTHY
        )
        bucket = (
            os.environ.get("PUSHFEED_OBJECT_STORAGE_BUCKET", "").strip()
            or DEFAULT_BUCKET
        )
        connection_string = (
            os.environ.get("PUSHFEED_OBJECT_STORAGE_CONNECTION_STRING", "").strip()
            or None
        )
        if enabled and connection_string is None:
            msg = (
                "PUSHFEED_OBJECT_STORAGE_CONNECTION_STRING is required when "
                "object storage is enabled"
            )
            raise ValueError(msg)
        return cls(
            enabled=enabled, bucket=bucket, connection_string=connection_string
        )


class AzureBlobObjectStore:
    """:class:`ObjectStore` backed by Azure Blob Storage containers."""

    def __init__(
        self,
        connection_string: str | None = None,
        *,
        service_client: BlobServiceClient | None = None,
    ) -> None:
        """Create the store from a connection string or an existing client."""
        if service_client is None and not connection_string:
            msg = "connection_string or service_client is required"
            raise ValueError(msg)
        self._owns_client = service_client is None
        self._client = service_client or BlobServiceClient.from_connection_string(
            typ.cast("str", connection_string)
        )

    @classmethod
    def from_config(cls, config: ObjectStorageConfig) -> AzureBlobObjectStore:
        """Create a store for an enabled :class:`ObjectStorageConfig`."""
        return cls(config.connection_string)

    async def aclose(self) -> None:
        """Close the underlying service client when this store owns it."""
        if self._owns_client:
            await self._client.close()

    async def put(
        self, bucket: str, key: str, body: bytes, content_type: str
    ) -> None:
        """Upload ``body`` to ``bucket/key`` with overwrite semantics."""
        blob = self._client.get_blob_client(container=bucket, blob=key)
        try:
            await blob.upload_blob(
                body,
                overwrite=True,
                content_settings=ContentSettings(content_type=content_type),
            )
        except AzureError as exc:
            raise PayloadStorageError.store_failed(key, exc) from exc

    async def get(self, bucket: str, key: str) -> bytes:
        """Download ``bucket/key`` in full."""
        blob = self._client.get_blob_client(container=bucket, blob=key)
        try:
            download = await blob.download_blob()
            return await download.readall()
        except ResourceNotFoundError as exc:
            raise ObjectNotFoundError.for_key(key) from exc
        except AzureError as exc:
            raise PayloadStorageError.retrieve_failed(key, exc) from exc

    async def delete(self, bucket: str, key: str) -> bool:
        """Delete ``bucket/key``; a missing blob is not an error."""
        blob = self._client.get_blob_client(container=bucket, blob=key)
        try:
            await blob.delete_blob()
        except ResourceNotFoundError:
            logger.debug("Object %s already absent from %s", key, bucket)
            return False
        except AzureError as exc:
            raise PayloadStorageError.delete_failed(key, exc) from exc
        return True
