"""Configuration for the GitHub REST client."""

from __future__ import annotations

import dataclasses as dc
import os

from .errors import GitHubConfigError

DEFAULT_API_URL = "https://api.github.com"


def _read_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise GitHubConfigError.invalid_setting(name, raw) from exc
    if value <= 0:
        raise GitHubConfigError.invalid_setting(name, raw)
    return value


def _read_non_negative_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise GitHubConfigError.invalid_setting(name, raw) from exc
    if value < 0:
        raise GitHubConfigError.invalid_setting(name, raw)
    return value


@dc.dataclass(frozen=True, slots=True)
class GitHubClientConfig:
    """Configuration for :class:`~pushfeed.github.client.GitHubEventsClient`.

    Attributes
    ----------
    token
        Optional personal access token. Anonymous requests share the much
        smaller unauthenticated quota.
    api_url
        Base URL of the REST API; the events feed is ``{api_url}/events``.
    timeout_s
        Per-request timeout in seconds.
    max_transport_retries
        Extra attempts made for timeouts, connection failures and transient
        5xx responses before the failure is surfaced.
    backoff_multiplier
        Multiplier for the randomized exponential backoff between those
        attempts, in seconds.
    backoff_max_s
        Upper bound on a single backoff wait.

    """

    token: str | None = None
    api_url: str = DEFAULT_API_URL
    timeout_s: float = 20.0
    user_agent: str = "pushfeed/0.1"
    max_transport_retries: int = 3
    backoff_multiplier: float = 0.5
    backoff_max_s: float = 8.0

    def __post_init__(self) -> None:
        """Reject empty tokens so misconfiguration fails loudly."""
        if self.token is not None and not self.token.strip():
            raise GitHubConfigError.empty_token()

    @property
    def events_url(self) -> str:
        """Return the URL of the public events feed."""
        return f"{self.api_url.rstrip('/')}/events"

    @classmethod
    def from_env(cls) -> GitHubClientConfig:
        """Build configuration from ``PUSHFEED_GITHUB_*`` environment variables."""
        token = os.environ.get("PUSHFEED_GITHUB_TOKEN", "").strip() or None
        api_url = (
            os.environ.get("PUSHFEED_GITHUB_API_URL", "").strip() or DEFAULT_API_URL
        )
        return cls(
            token=token,
            api_url=api_url,
            timeout_s=_read_float("PUSHFEED_GITHUB_TIMEOUT_S", 20.0),
            max_transport_retries=_read_non_negative_int(
                "PUSHFEED_GITHUB_TRANSPORT_RETRIES", 3
            ),
        )
