"""Resolve actor and repository resources referenced by a push event.

Lookup URLs come from the raw event payload, trying in order: the explicit
API ``url``, a URL built from the login or repository name, and a URL
rewritten from the browser-facing ``html_url``. Repositories finally fall
back to the push event's own repository identifier, which is either an
``owner/name`` pair or a numeric repository id.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import enum
import typing as typ
from urllib.parse import quote, urlsplit

import msgspec

from pushfeed.github.config import DEFAULT_API_URL
from pushfeed.silver.extraction import first_present, lookup

_GITHUB_WEB_HOSTS = frozenset({"github.com", "www.github.com"})


class ResourceKind(enum.StrEnum):
    """Resources attached to a push event during enrichment."""

    ACTOR = "actor"
    REPOSITORY = "repository"


class UserResource(msgspec.Struct):
    """Display fields kept from a ``GET /users/{login}`` response."""

    id: int | str
    login: str | None = None
    avatar_url: str | None = None


class RepositoryResource(msgspec.Struct):
    """Display fields kept from a ``GET /repos/{owner}/{name}`` response."""

    id: int | str
    full_name: str | None = None
    description: str | None = None


def _text(value: object) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, int):
        return str(value)
    return None


def _path_segments(html_url: str | None) -> list[str]:
    if not html_url:
        return []
    parts = urlsplit(html_url)
    if parts.hostname not in _GITHUB_WEB_HOSTS:
        return []
    return [segment for segment in parts.path.split("/") if segment]


@dc.dataclass(frozen=True, slots=True)
class ResourceLocator:
    """Build REST URLs for resources referenced from an event payload."""

    api_url: str = DEFAULT_API_URL

    def _api(self, *segments: str) -> str:
        path = "/".join(quote(segment, safe="") for segment in segments)
        return f"{self.api_url.rstrip('/')}/{path}"

    def actor_url(self, payload: cabc.Mapping[str, typ.Any]) -> str | None:
        """Return the ``/users`` URL for the event actor, if derivable."""
        explicit = _text(lookup(payload, "actor", "url"))
        if explicit:
            return explicit
        login = _text(lookup(payload, "actor", "login"))
        if login:
            return self._api("users", login)
        segments = _path_segments(_text(lookup(payload, "actor", "html_url")))
        if len(segments) == 1:
            return self._api("users", segments[0])
        return None

    def repository_url(
        self,
        payload: cabc.Mapping[str, typ.Any],
        repository_id: str | None = None,
    ) -> str | None:
        """Return the ``/repos`` URL for the event repository, if derivable."""
        explicit = _text(lookup(payload, "repo", "url"))
        if explicit:
            return explicit
        name = first_present(
            _text(lookup(payload, "repo", "full_name")),
            _text(lookup(payload, "repo", "name")),
        )
        if name and "/" in name:
            return self._repos_url(name)
        segments = _path_segments(_text(lookup(payload, "repo", "html_url")))
        if len(segments) == 2:  # noqa: PLR2004
            return self._api("repos", *segments)
        if not repository_id:
            return None
        if "/" in repository_id:
            return self._repos_url(repository_id)
        if repository_id.isdigit():
            return self._api("repositories", repository_id)
        return None

    def _repos_url(self, full_name: str) -> str:
        owner, _, name = full_name.partition("/")
        return self._api("repos", owner, name)


def payload_resource_id(
    payload: cabc.Mapping[str, typ.Any], kind: ResourceKind
) -> str | None:
    """Return the upstream id of ``kind`` carried in the event payload."""
    container = "actor" if kind is ResourceKind.ACTOR else "repo"
    return _text(lookup(payload, container, "id"))


def decode_user(data: cabc.Mapping[str, typ.Any]) -> UserResource | None:
    """Validate a user resource body; None when it lacks an ``id``."""
    try:
        return msgspec.convert(data, type=UserResource)
    except msgspec.ValidationError:
        return None


def decode_repository(
    data: cabc.Mapping[str, typ.Any],
) -> RepositoryResource | None:
    """Validate a repository resource body; None when it lacks an ``id``."""
    try:
        return msgspec.convert(data, type=RepositoryResource)
    except msgspec.ValidationError:
        return None
