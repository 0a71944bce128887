"""Temporary identifiers and the per-run resolution table.

A temporary identifier is `aw_` followed by 3 to 8 ASCII alphanumerics, matched
case-insensitively and stored lower-cased. Agents write them bare in id fields
(`"parent": "aw_abc1"`) and with a leading `#` in free text (`"see #aw_abc1"`).

The table only grows: a key is bound once per run and any attempt to bind it to
a different reference raises `ResolutionConflictError`.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
import logging
import re
from types import MappingProxyType

from safeoutputs.models import (
    BoardReference,
    DraftItemReference,
    ItemReference,
    ResolvedReference,
)
from safeoutputs.observability import log_event


LOGGER = logging.getLogger("safeoutputs.temporary_id")

TEMPORARY_ID_PATTERN = re.compile(r"#(aw_[A-Za-z0-9]{3,8})(?![A-Za-z0-9])", re.IGNORECASE)
_TEMPORARY_ID_SHAPE = re.compile(r"aw_[A-Za-z0-9]{3,8}", re.IGNORECASE)
_RESERVED_PREFIX = "aw_"
_FORMAT_HINT = (
    "Temporary IDs must be 'aw_' followed by 3 to 8 alphanumeric characters "
    "(A-Za-z0-9), e.g. 'aw_abc' or 'aw_Test123'"
)

ResolutionView = Mapping[str, ResolvedReference]


class TemporaryIdError(ValueError):
    pass


class MalformedTemporaryIdError(TemporaryIdError):
    """Value carries the reserved prefix but does not have the required shape."""


class NotTemporaryIdError(TemporaryIdError):
    """Value is not a temporary identifier at all (for example a plain number)."""


class ResolutionConflictError(TemporaryIdError):
    pass


def _strip_marker(value: str) -> str:
    stripped = value.strip()
    if stripped.startswith("#"):
        return stripped[1:].strip()
    return stripped


def is_temporary_id(value: object) -> bool:
    if not isinstance(value, str):
        return False
    return _TEMPORARY_ID_SHAPE.fullmatch(_strip_marker(value)) is not None


def looks_like_temporary_id(value: object) -> bool:
    if not isinstance(value, str):
        return False
    return _strip_marker(value).lower().startswith(_RESERVED_PREFIX)


def normalize(token: object) -> str:
    if not isinstance(token, str):
        raise NotTemporaryIdError(
            f"temporary_id must be a string (got {type(token).__name__})"
        )
    candidate = _strip_marker(token)
    if _TEMPORARY_ID_SHAPE.fullmatch(candidate) is not None:
        return candidate.lower()
    if candidate.lower().startswith(_RESERVED_PREFIX):
        raise MalformedTemporaryIdError(f"Invalid temporary ID format: {token!r}. {_FORMAT_HINT}")
    raise NotTemporaryIdError(f"{token!r} is not a temporary ID. {_FORMAT_HINT}")


def reference_to_json(reference: ResolvedReference) -> dict[str, object]:
    if isinstance(reference, ItemReference):
        return {"repo": reference.scope, "number": reference.number}
    if isinstance(reference, BoardReference):
        return {"projectUrl": reference.board_url}
    return {"draftItemId": reference.draft_item_id}


def reference_from_json(value: object, *, default_scope: str) -> ResolvedReference:
    if isinstance(value, bool):
        raise TemporaryIdError("Resolved reference must not be a boolean")
    if isinstance(value, int):
        return ItemReference(scope=default_scope, number=value)
    if not isinstance(value, dict):
        raise TemporaryIdError(f"Unsupported resolved reference: {value!r}")
    if "projectUrl" in value:
        board_url = value["projectUrl"]
        if not isinstance(board_url, str) or not board_url:
            raise TemporaryIdError("projectUrl must be a non-empty string")
        return BoardReference(board_url=board_url)
    if "draftItemId" in value:
        draft_item_id = value["draftItemId"]
        if not isinstance(draft_item_id, str) or not draft_item_id:
            raise TemporaryIdError("draftItemId must be a non-empty string")
        return DraftItemReference(draft_item_id=draft_item_id)
    if "number" in value:
        number = value["number"]
        if isinstance(number, bool) or not isinstance(number, int | str):
            raise TemporaryIdError(f"Unsupported issue number: {number!r}")
        try:
            parsed = int(number)
        except ValueError as exc:
            raise TemporaryIdError(f"Unsupported issue number: {number!r}") from exc
        scope = value.get("repo")
        if scope is None or scope == "":
            scope = default_scope
        if not isinstance(scope, str):
            raise TemporaryIdError(f"Unsupported repo value: {scope!r}")
        return ItemReference(scope=scope, number=parsed)
    raise TemporaryIdError(f"Unsupported resolved reference: {value!r}")


def describe_reference(reference: ResolvedReference) -> str:
    if isinstance(reference, ItemReference):
        return f"{reference.scope}#{reference.number}"
    if isinstance(reference, BoardReference):
        return reference.board_url
    return f"draft item {reference.draft_item_id}"


class ResolutionTable:
    def __init__(self, entries: Mapping[str, ResolvedReference] | None = None) -> None:
        self._entries: dict[str, ResolvedReference] = {}
        for key, reference in (entries or {}).items():
            self.register(normalize(key), reference)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, canonical_id: object) -> bool:
        return canonical_id in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def register(self, canonical_id: str, reference: ResolvedReference) -> bool:
        """Bind `canonical_id`; returns False when the identical binding already exists."""
        existing = self._entries.get(canonical_id)
        if existing is not None:
            if existing == reference:
                log_event(
                    LOGGER,
                    "temporary_id_already_registered",
                    level=logging.WARNING,
                    temporary_id=canonical_id,
                    reference=describe_reference(reference),
                )
                return False
            raise ResolutionConflictError(
                f"Temporary ID {canonical_id!r} is already bound to "
                f"{describe_reference(existing)}; refusing to rebind it to "
                f"{describe_reference(reference)}"
            )
        self._entries[canonical_id] = reference
        log_event(
            LOGGER,
            "temporary_id_registered",
            temporary_id=canonical_id,
            reference=describe_reference(reference),
        )
        return True

    def lookup(self, canonical_id: str) -> ResolvedReference | None:
        return self._entries.get(canonical_id)

    def view(self) -> ResolutionView:
        return MappingProxyType(dict(self._entries))

    def unresolved_in(self, text: str) -> tuple[str, ...]:
        return unresolved_references(text, self._entries)

    def scan_for_unresolved(self, text: str) -> bool:
        return bool(self.unresolved_in(text))

    def rewrite(self, text: str, scope: str | None) -> str:
        return rewrite_references(text, self._entries, scope)

    def to_json_dict(self) -> dict[str, dict[str, object]]:
        return {key: reference_to_json(value) for key, value in self._entries.items()}

    @classmethod
    def from_json_dict(cls, data: Mapping[str, object], *, default_scope: str) -> ResolutionTable:
        table = cls()
        for key, value in data.items():
            table.register(
                normalize(key),
                reference_from_json(value, default_scope=default_scope),
            )
        return table


def unresolved_references(text: str, view: ResolutionView) -> tuple[str, ...]:
    if not text:
        return ()
    unresolved: list[str] = []
    for match in TEMPORARY_ID_PATTERN.finditer(text):
        canonical = match.group(1).lower()
        if canonical not in view and canonical not in unresolved:
            unresolved.append(canonical)
    return tuple(unresolved)


def rewrite_references(text: str, view: ResolutionView, scope: str | None) -> str:
    if not text:
        return text

    def replace(match: re.Match[str]) -> str:
        reference = view.get(match.group(1).lower())
        if isinstance(reference, ItemReference):
            if scope and reference.scope == scope:
                return f"#{reference.number}"
            return f"{reference.scope}#{reference.number}"
        if isinstance(reference, BoardReference):
            return reference.board_url
        # Unresolved ids and draft items have no textual form yet.
        return match.group(0)

    return TEMPORARY_ID_PATTERN.sub(replace, text)


@dataclass(frozen=True)
class ItemTarget:
    reference: ItemReference | None
    unresolved_id: str | None = None
    error: str | None = None

    @property
    def deferred(self) -> bool:
        return self.unresolved_id is not None


def resolve_item_target(value: object, view: ResolutionView, default_scope: str) -> ItemTarget:
    if value is None or value == "":
        return ItemTarget(reference=None, error="Issue number is missing")
    if isinstance(value, bool):
        return ItemTarget(reference=None, error=f"Invalid issue number: {value!r}")
    if isinstance(value, int):
        if value <= 0:
            return ItemTarget(reference=None, error=f"Invalid issue number: {value}")
        return ItemTarget(reference=ItemReference(scope=default_scope, number=value))

    raw = str(value)
    if is_temporary_id(raw):
        canonical = normalize(raw)
        resolved = view.get(canonical)
        if resolved is None:
            return ItemTarget(reference=None, unresolved_id=canonical)
        if not isinstance(resolved, ItemReference):
            return ItemTarget(
                reference=None,
                error=(
                    f"Temporary ID {raw!r} refers to {describe_reference(resolved)}, "
                    "not an issue or pull request"
                ),
            )
        return ItemTarget(reference=resolved)
    if looks_like_temporary_id(raw):
        return ItemTarget(
            reference=None,
            error=f"Invalid temporary ID format: {raw!r}. {_FORMAT_HINT}",
        )

    candidate = _strip_marker(raw)
    if not candidate.isdigit() or int(candidate) <= 0:
        return ItemTarget(
            reference=None,
            error=(
                f"Invalid issue number: {raw!r}. Expected a temporary ID or a positive "
                "issue number"
            ),
        )
    return ItemTarget(reference=ItemReference(scope=default_scope, number=int(candidate)))


@dataclass(frozen=True)
class BoardTarget:
    board_url: str | None
    unresolved_id: str | None = None
    error: str | None = None


def resolve_board_target(value: object, view: ResolutionView) -> BoardTarget:
    if not isinstance(value, str) or not value.strip():
        return BoardTarget(board_url=None, error="Project is missing")
    if is_temporary_id(value):
        canonical = normalize(value)
        resolved = view.get(canonical)
        if resolved is None:
            return BoardTarget(board_url=None, unresolved_id=canonical)
        if not isinstance(resolved, BoardReference):
            return BoardTarget(
                board_url=None,
                error=f"Temporary ID {value!r} refers to {describe_reference(resolved)}, not a project",
            )
        return BoardTarget(board_url=resolved.board_url)
    if looks_like_temporary_id(value):
        return BoardTarget(
            board_url=None, error=f"Invalid temporary ID format: {value!r}. {_FORMAT_HINT}"
        )
    return BoardTarget(board_url=value.strip())
