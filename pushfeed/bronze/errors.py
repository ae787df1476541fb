"""Shared Bronze-layer error types."""

from __future__ import annotations


class TimezoneAwareRequiredError(ValueError):
    """Raised when datetime inputs lack timezone information."""

    def __init__(self, context: str) -> None:
        """Attach a consistent message for the failing context."""
        super().__init__(f"{context} must be timezone aware")

    @classmethod
    def for_column(cls) -> TimezoneAwareRequiredError:
        """Return an error indicating a bound timestamp column was naive."""
        return cls("timestamp column values")


class PayloadInvariantError(ValueError):
    """Raised when a raw event would hold both or neither payload locations."""

    @classmethod
    def neither(cls, event_id: str) -> PayloadInvariantError:
        """Return an error for a raw event with no payload at all."""
        return cls(f"raw event {event_id} needs an inline payload or object key")

    @classmethod
    def both(cls, event_id: str) -> PayloadInvariantError:
        """Return an error for a raw event given two payload locations."""
        return cls(f"raw event {event_id} cannot hold inline payload and object key")


class PayloadStorageError(RuntimeError):
    """Raised when the external payload store cannot complete an operation."""

    def __init__(self, message: str, *, key: str | None = None) -> None:
        """Record the object key involved, when known."""
        self.key = key
        super().__init__(message)

    @classmethod
    def store_failed(cls, key: str, detail: object) -> PayloadStorageError:
        """Return an error for a failed upload."""
        return cls(f"object storage write failed for {key}: {detail}", key=key)

    @classmethod
    def retrieve_failed(cls, key: str, detail: object) -> PayloadStorageError:
        """Return an error for a failed download."""
        return cls(f"object storage read failed for {key}: {detail}", key=key)

    @classmethod
    def delete_failed(cls, key: str, detail: object) -> PayloadStorageError:
        """Return an error for a failed deletion."""
        return cls(f"object storage delete failed for {key}: {detail}", key=key)

    @classmethod
    def invalid_json(cls, key: str) -> PayloadStorageError:
        """Return an error for a stored object that is not a JSON object."""
        return cls(f"object {key} does not contain a JSON object", key=key)

    @classmethod
    def disabled(cls) -> PayloadStorageError:
        """Return an error when reads are attempted with storage disabled."""
        return cls("object storage is disabled")


class ObjectNotFoundError(PayloadStorageError):
    """Raised when a requested object key does not exist."""

    @classmethod
    def for_key(cls, key: str) -> ObjectNotFoundError:
        """Return an error naming the missing key."""
        return cls(f"object key not found: {key}", key=key)
