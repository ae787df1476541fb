"""Field extraction for GitHub push events.

Every field is read through :func:`lookup`, which walks nested mappings and
returns ``None`` when any step is absent. Fallback chains are resolved with
:func:`first_present` and validation happens once, at the end, so a rejected
payload reports every missing field together.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import typing as typ

from pushfeed.bronze.storage import PUSH_EVENT_TYPE

from .errors import PushEventParseError


@dc.dataclass(frozen=True, slots=True)
class PushFields:
    """Structured fields extracted from a push event payload."""

    repository_id: str
    push_id: str
    ref: str
    head: str
    before: str


def lookup(data: object, *path: str | int) -> typ.Any | None:  # noqa: ANN401
    """Return the value at ``path`` inside ``data`` or None when absent.

    String steps index mappings and integer steps index sequences (negative
    indices count from the end). Any type mismatch along the way yields None.
    """
    current: object = data
    for step in path:
        if isinstance(step, str):
            if not isinstance(current, cabc.Mapping):
                return None
            current = current.get(step)
        else:
            if not isinstance(current, list) or not current:
                return None
            try:
                current = current[step]
            except IndexError:
                return None
        if current is None:
            return None
    return current


def first_present(*candidates: object) -> typ.Any | None:  # noqa: ANN401
    """Return the first candidate that is neither None nor an empty string."""
    for candidate in candidates:
        if candidate is None or candidate == "":
            continue
        return candidate
    return None


def _as_text(value: object) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, str | int):
        return str(value)
    return None


def _repository_id(payload: cabc.Mapping[str, typ.Any]) -> str | None:
    return first_present(
        _as_text(lookup(payload, "repo", "full_name")),
        _as_text(lookup(payload, "repo", "name")),
        _as_text(lookup(payload, "repo", "id")),
    )


def _push_id(payload: cabc.Mapping[str, typ.Any]) -> str | None:
    return first_present(
        _as_text(lookup(payload, "payload", "push_id")),
        _as_text(lookup(payload, "id")),
    )


def _ref(payload: cabc.Mapping[str, typ.Any]) -> str:
    return (
        first_present(
            _as_text(lookup(payload, "payload", "ref")),
            _as_text(lookup(payload, "ref")),
        )
        or ""
    )


def _head(payload: cabc.Mapping[str, typ.Any]) -> str:
    return (
        first_present(
            _as_text(lookup(payload, "payload", "head")),
            _as_text(lookup(payload, "payload", "commits", -1, "sha")),
            _as_text(lookup(payload, "payload", "head_commit", "id")),
            _as_text(lookup(payload, "payload", "head_commit", "sha")),
        )
        or ""
    )


def _before(payload: cabc.Mapping[str, typ.Any]) -> str:
    return _as_text(lookup(payload, "payload", "before")) or ""


def extract_push_fields(payload: object) -> PushFields:
    """Extract push fields from a raw GitHub event payload.

    Parameters
    ----------
    payload : object
        Raw event as returned by the events feed. Non-mapping values are
        treated as an empty payload.

    Returns
    -------
    PushFields
        The extracted repository, push id, ref, head and before values.

    Raises
    ------
    PushEventParseError
        If the payload is not a push event, or if any of repository_id,
        push_id, ref or head is empty.

    """
    data: cabc.Mapping[str, typ.Any] = (
        payload if isinstance(payload, cabc.Mapping) else {}
    )
    event_type = data.get("type")
    if event_type != PUSH_EVENT_TYPE:
        raise PushEventParseError.wrong_type(event_type)

    repository_id = _repository_id(data) or ""
    push_id = _push_id(data) or ""
    ref = _ref(data)
    head = _head(data)
    before = _before(data)

    missing = [
        name
        for name, value in (
            ("repository_id", repository_id),
            ("push_id", push_id),
            ("ref", ref),
            ("head", head),
        )
        if not value
    ]
    if missing:
        raise PushEventParseError.missing(missing)

    return PushFields(
        repository_id=repository_id,
        push_id=push_id,
        ref=ref,
        head=head,
        before=before,
    )
