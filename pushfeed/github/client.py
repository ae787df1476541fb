"""Rate-limit aware GitHub REST client for the public events feed.

The client issues conditional ``GET`` requests, tracks the quota reported by
every response, and classifies failures into the error kinds defined in
:mod:`pushfeed.github.errors`. Timeouts, connection failures and transient
5xx responses are retried a few times with randomized exponential backoff
before surfacing; everything else fails fast so the caller's retry policy can
decide what to do.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import logging
import typing as typ

import httpx
import msgspec
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from .config import GitHubClientConfig
from .errors import ApiError, ErrorKind, NetworkError, RateLimitExceeded
from .quota import LIMIT_HEADER, REMAINING_HEADER, RESET_HEADER, QuotaSnapshot

logger = logging.getLogger(__name__)

_HTTP_NOT_MODIFIED = 304
_HTTP_FORBIDDEN = 403
_HTTP_TOO_MANY_REQUESTS = 429
_HTTP_ERROR_STATUS_THRESHOLD = 400
_TRANSIENT_STATUSES = frozenset({500, 502, 503, 504})
_RATE_LIMIT_HEADERS = (REMAINING_HEADER, RESET_HEADER, LIMIT_HEADER)

GITHUB_MEDIA_TYPE = "application/vnd.github+json"


@dc.dataclass(frozen=True, slots=True)
class EventsPage:
    """One response from the events feed."""

    items: list[typ.Any]
    etag: str | None
    quota: QuotaSnapshot
    not_modified: bool = False


@dc.dataclass(frozen=True, slots=True)
class ResourceResponse:
    """One response from a user or repository resource endpoint."""

    data: dict[str, typ.Any] | None
    etag: str | None
    quota: QuotaSnapshot
    not_modified: bool = False


class _TransientStatusError(Exception):
    """Internal signal that a response status is worth retrying."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        super().__init__(f"transient HTTP {response.status_code}")


def classify_response(
    status_code: int, headers: cabc.Mapping[str, str]
) -> ErrorKind | None:
    """Classify an HTTP response, returning None for usable responses.

    A 403 carrying ``x-ratelimit-remaining: 0`` and any 429 are quota
    refusals. Every other status outside 2xx and 304 is an API error.
    """
    if status_code == _HTTP_NOT_MODIFIED or 200 <= status_code < 300:  # noqa: PLR2004
        return None
    if status_code == _HTTP_TOO_MANY_REQUESTS:
        return ErrorKind.RATE_LIMIT
    if (
        status_code == _HTTP_FORBIDDEN
        and headers.get(REMAINING_HEADER, "").strip() == "0"
    ):
        return ErrorKind.RATE_LIMIT
    return ErrorKind.API


class GitHubEventsClient:
    """Fetch the GitHub events feed and related REST resources.

    Quota state is tracked per instance. Pass ``quota`` to seed a new client
    with the snapshot returned by a previous one.
    """

    def __init__(
        self,
        config: GitHubClientConfig | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        quota: QuotaSnapshot | None = None,
    ) -> None:
        """Initialise the client with configuration and an optional HTTP client."""
        self._config = config or GitHubClientConfig()
        headers = {
            "Accept": GITHUB_MEDIA_TYPE,
            "User-Agent": self._config.user_agent,
        }
        if self._config.token:
            headers["Authorization"] = f"Bearer {self._config.token}"
        self._headers = headers
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=self._config.timeout_s,
            follow_redirects=True,
        )
        self._quota = quota or QuotaSnapshot()

    @property
    def config(self) -> GitHubClientConfig:
        """Return the settings this client was built with."""
        return self._config

    @property
    def quota(self) -> QuotaSnapshot:
        """Return the quota reported by the most recent response."""
        return self._quota

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def fetch_events(self, etag: str | None = None) -> EventsPage:
        """Fetch the public events feed.

        Parameters
        ----------
        etag : str, optional
            ETag from the previous page; sent as ``If-None-Match``.

        Returns
        -------
        EventsPage
            The decoded items and the ETag to send next time. A 304 response
            yields no items and echoes ``etag`` back unchanged.

        Raises
        ------
        RateLimitExceeded
            If the quota is exhausted, locally known or reported by GitHub.
        NetworkError
            If the request timed out or could not connect after retries.
        ApiError
            For other error responses or an unreadable body.

        """
        url = self._config.events_url
        response = await self._get(url, etag)
        if response.status_code == _HTTP_NOT_MODIFIED:
            return EventsPage(
                items=[], etag=etag, quota=self._quota, not_modified=True
            )
        decoded = _decode_body(response, url)
        if decoded is None:
            decoded = []
        if not isinstance(decoded, list):
            raise ApiError.unexpected_shape(url, "array")
        return EventsPage(
            items=decoded,
            etag=response.headers.get("etag"),
            quota=self._quota,
        )

    async def fetch_resource(
        self, url: str, etag: str | None = None
    ) -> ResourceResponse:
        """Fetch a single REST resource such as a user or repository.

        Errors are classified exactly as for :meth:`fetch_events`. An empty
        body yields ``data=None``.
        """
        response = await self._get(url, etag)
        if response.status_code == _HTTP_NOT_MODIFIED:
            return ResourceResponse(
                data=None, etag=etag, quota=self._quota, not_modified=True
            )
        decoded = _decode_body(response, url)
        if decoded is not None and not isinstance(decoded, dict):
            raise ApiError.unexpected_shape(url, "object")
        return ResourceResponse(
            data=decoded,
            etag=response.headers.get("etag"),
            quota=self._quota,
        )

    async def _get(self, url: str, etag: str | None) -> httpx.Response:
        """Issue a GET with preflight quota checks and failure classification."""
        if self._quota.is_exhausted():
            reset_at = typ.cast("typ.Any", self._quota.reset_at)
            raise RateLimitExceeded.preflight(reset_at)

        headers = dict(self._headers)
        if etag:
            headers["If-None-Match"] = etag

        try:
            response = await self._send_with_retries(url, headers)
        except _TransientStatusError as exc:
            response = exc.response
        except httpx.TransportError as exc:
            raise NetworkError.transport(url, exc) from exc

        kind = classify_response(response.status_code, response.headers)
        self._record_quota(response, kind)
        if kind is ErrorKind.RATE_LIMIT:
            raise RateLimitExceeded.exhausted(
                self._quota.remaining, self._quota.reset_at
            )
        if kind is ErrorKind.API:
            raise ApiError.http_error(response.status_code, url)
        return response

    async def _send_with_retries(
        self, url: str, headers: dict[str, str]
    ) -> httpx.Response:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._config.max_transport_retries + 1),
            wait=wait_random_exponential(
                multiplier=self._config.backoff_multiplier,
                max=self._config.backoff_max_s,
            ),
            retry=retry_if_exception_type(
                (httpx.TimeoutException, httpx.NetworkError, _TransientStatusError)
            ),
            reraise=True,
        ):
            with attempt:
                attempt_number = attempt.retry_state.attempt_number
                if attempt_number > 1:
                    logger.debug("Retrying GET %s (attempt %d)", url, attempt_number)
                response = await self._client.get(url, headers=headers)
                if response.status_code in _TRANSIENT_STATUSES:
                    self._record_quota(response, ErrorKind.API)
                    logger.warning(
                        "GitHub returned HTTP %d for %s on attempt %d",
                        response.status_code,
                        url,
                        attempt_number,
                    )
                    raise _TransientStatusError(response)
                return response
        msg = "retry loop exited without a result"  # pragma: no cover
        raise AssertionError(msg)  # pragma: no cover

    def _record_quota(self, response: httpx.Response, kind: ErrorKind | None) -> None:
        """Replace the tracked quota with the one reported by ``response``."""
        assume_exhausted = kind is ErrorKind.RATE_LIMIT
        if not assume_exhausted and not any(
            name in response.headers for name in _RATE_LIMIT_HEADERS
        ):
            return
        self._quota = QuotaSnapshot.from_headers(
            response.headers, assume_exhausted=assume_exhausted
        )


def _decode_body(response: httpx.Response, url: str) -> typ.Any | None:  # noqa: ANN401
    """Decode a JSON body with msgspec; an empty body decodes to None."""
    content = response.content
    if not content.strip():
        return None
    try:
        return msgspec.json.decode(content)
    except msgspec.DecodeError as exc:
        raise ApiError.invalid_body(url, exc) from exc
