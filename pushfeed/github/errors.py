"""GitHub REST client errors.

Every failure is classified once into an :class:`ErrorKind` and raised as the
matching :class:`GitHubClientError` subclass, so callers and the job retry
table can branch on ``exc.kind`` without re-inspecting HTTP details.
"""

from __future__ import annotations

import enum
import typing as typ

if typ.TYPE_CHECKING:
    import datetime as dt


class ErrorKind(enum.StrEnum):
    """Tagged failure kinds for GitHub requests."""

    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    API = "api"


class GitHubClientError(RuntimeError):
    """Base class for classified GitHub request failures."""

    kind: typ.ClassVar[ErrorKind]


class NetworkError(GitHubClientError):
    """Raised when the request never produced an HTTP response."""

    kind = ErrorKind.NETWORK

    @classmethod
    def transport(cls, url: str, detail: object) -> NetworkError:
        """Return an error for a timeout or connection failure."""
        return cls(f"GitHub request to {url} failed: {detail}")


class RateLimitExceeded(GitHubClientError):  # noqa: N818
    """Raised when the GitHub quota is exhausted."""

    kind = ErrorKind.RATE_LIMIT

    def __init__(
        self,
        message: str,
        *,
        remaining: int | None = None,
        reset_at: dt.datetime | None = None,
    ) -> None:
        """Record the quota state reported alongside the refusal."""
        self.remaining = remaining
        self.reset_at = reset_at
        super().__init__(message)

    @classmethod
    def exhausted(
        cls, remaining: int | None, reset_at: dt.datetime | None
    ) -> RateLimitExceeded:
        """Return an error for a quota refusal reported by GitHub."""
        reset = reset_at.isoformat() if reset_at else "unknown"
        return cls(
            f"GitHub rate limit exceeded; resets at {reset}",
            remaining=remaining,
            reset_at=reset_at,
        )

    @classmethod
    def preflight(cls, reset_at: dt.datetime) -> RateLimitExceeded:
        """Return an error raised locally before spending a request."""
        return cls(
            f"GitHub quota exhausted until {reset_at.isoformat()}",
            remaining=0,
            reset_at=reset_at,
        )


class ApiError(GitHubClientError):
    """Raised for non-quota error responses and unreadable bodies."""

    kind = ErrorKind.API

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Initialise with a message and optional HTTP status code."""
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def http_error(cls, status_code: int, url: str) -> ApiError:
        """Return an error for a non-2xx HTTP response."""
        return cls(f"GitHub HTTP {status_code} for {url}", status_code=status_code)

    @classmethod
    def invalid_body(cls, url: str, detail: object) -> ApiError:
        """Return an error for a response body that is not valid JSON."""
        return cls(f"GitHub response from {url} is not valid JSON: {detail}")

    @classmethod
    def unexpected_shape(cls, url: str, expected: str) -> ApiError:
        """Return an error for a body with the wrong top-level type."""
        return cls(f"GitHub response from {url} is not a JSON {expected}")


class GitHubConfigError(RuntimeError):
    """Raised when GitHub client configuration is invalid."""

    @classmethod
    def empty_token(cls) -> GitHubConfigError:
        """Return an error when the provided token is empty."""
        return cls("GitHub token must be non-empty when given")

    @classmethod
    def invalid_setting(cls, name: str, raw: str) -> GitHubConfigError:
        """Return an error for an unparseable environment setting."""
        return cls(f"{name} has an invalid value: {raw!r}")
