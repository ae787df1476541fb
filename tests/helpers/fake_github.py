"""Scripted GitHub REST API served through ``httpx.MockTransport``."""

from __future__ import annotations

import dataclasses
import typing as typ

import httpx
import msgspec

from pushfeed.github.client import GitHubEventsClient
from pushfeed.github.config import GitHubClientConfig
from tests.helpers.github_events import API_URL

if typ.TYPE_CHECKING:
    from pushfeed.github.quota import QuotaSnapshot

EVENTS_URL = f"{API_URL}/events"


@dataclasses.dataclass(frozen=True, slots=True)
class Reply:
    """One scripted response, or a transport failure to raise instead."""

    status: int = 200
    body: object = None
    headers: dict[str, str] = dataclasses.field(default_factory=dict)
    raw: bytes | None = None
    error: type[httpx.TransportError] | None = None

    def build(self, request: httpx.Request) -> httpx.Response:
        """Materialise the reply for ``request``."""
        if self.error is not None:
            raise self.error("scripted transport failure", request=request)
        if self.raw is not None:
            content = self.raw
        elif self.body is None:
            content = b""
        else:
            content = msgspec.json.encode(self.body)
        return httpx.Response(
            self.status, content=content, headers=self.headers, request=request
        )


def ok(body: object, *, etag: str | None = None, remaining: int = 4999) -> Reply:
    """Return a 200 reply carrying ``body`` and rate-limit headers."""
    headers = {
        "x-ratelimit-remaining": str(remaining),
        "x-ratelimit-limit": "5000",
        "x-ratelimit-reset": "4102444800",
    }
    if etag is not None:
        headers["etag"] = etag
    return Reply(status=200, body=body, headers=headers)


def not_modified(etag: str) -> Reply:
    """Return a 304 reply echoing ``etag``."""
    return Reply(status=304, headers={"etag": etag})


def rate_limited(status: int = 403, *, reset: int = 4102444800) -> Reply:
    """Return a quota refusal with zero requests remaining."""
    return Reply(
        status=status,
        body={"message": "API rate limit exceeded"},
        headers={
            "x-ratelimit-remaining": "0",
            "x-ratelimit-limit": "60",
            "x-ratelimit-reset": str(reset),
        },
    )


class FakeGitHub:
    """Route requests by URL to scripted replies and record what was sent.

    Each URL serves its replies in order; the last reply repeats once the
    script is exhausted. Unscripted URLs answer 404.
    """

    def __init__(self) -> None:
        """Start with no routes and an empty request log."""
        self._routes: dict[str, list[Reply]] = {}
        self.requests: list[httpx.Request] = []

    def script(self, url: str, *replies: Reply) -> FakeGitHub:
        """Replace the replies served for ``url``."""
        self._routes[url] = list(replies)
        return self

    def requests_for(self, url: str) -> list[httpx.Request]:
        """Return the recorded requests sent to ``url``."""
        return [request for request in self.requests if str(request.url) == url]

    def handler(self, request: httpx.Request) -> httpx.Response:
        """Serve the next scripted reply for ``request``."""
        self.requests.append(request)
        replies = self._routes.get(str(request.url))
        if not replies:
            return Reply(status=404, body={"message": "Not Found"}).build(request)
        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        return reply.build(request)

    def client(
        self,
        *,
        token: str | None = "test-token",
        max_transport_retries: int = 2,
        quota: QuotaSnapshot | None = None,
    ) -> GitHubEventsClient:
        """Return a client whose HTTP traffic is served by this fake."""
        config = GitHubClientConfig(
            token=token,
            api_url=API_URL,
            max_transport_retries=max_transport_retries,
            backoff_multiplier=0.0,
            backoff_max_s=0.0,
        )
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return GitHubEventsClient(config, http_client=http_client, quota=quota)
