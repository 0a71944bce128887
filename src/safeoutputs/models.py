from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Literal


DispatchStatus = Literal["success", "error", "deferred", "skipped"]
HandlerStatus = Literal["success", "error", "deferred"]
SkipReason = Literal["standalone", "custom", "collected"]
CreatedKind = Literal["issue", "comment"]
ReviewEvent = Literal["APPROVE", "REQUEST_CHANGES", "COMMENT"]
ReviewSide = Literal["LEFT", "RIGHT"]


@dataclass(frozen=True)
class Request:
    position: int
    type: str
    payload: Mapping[str, object]
    temporary_id: object = None

    @classmethod
    def from_raw(cls, position: int, raw: Mapping[str, object]) -> Request:
        raw_type = raw.get("type")
        temporary_id = raw.get("temporary_id")
        if temporary_id is None:
            temporary_id = raw.get("temporaryId")
        return cls(
            position=position,
            type=raw_type if isinstance(raw_type, str) else "",
            payload=MappingProxyType(dict(raw)),
            temporary_id=temporary_id,
        )

    def with_temporary_id(self, canonical: str) -> Request:
        return replace(self, temporary_id=canonical)

    def get_str(self, key: str) -> str | None:
        value = self.payload.get(key)
        if isinstance(value, str):
            return value
        return None


@dataclass(frozen=True)
class ItemReference:
    scope: str
    number: int


@dataclass(frozen=True)
class BoardReference:
    board_url: str


@dataclass(frozen=True)
class DraftItemReference:
    draft_item_id: str


ResolvedReference = ItemReference | BoardReference | DraftItemReference


@dataclass(frozen=True)
class NewMapping:
    temporary_id: str
    reference: ResolvedReference


@dataclass(frozen=True)
class CreatedLocation:
    kind: CreatedKind
    scope: str
    number: int
    comment_id: int | None = None
    html_url: str = ""
    # Text as posted; unresolved references are still in their `#aw_...` form.
    body: str = ""

    def describe(self) -> str:
        if self.kind == "comment":
            return f"comment {self.comment_id} on {self.scope}#{self.number}"
        return f"{self.scope}#{self.number}"


@dataclass(frozen=True)
class HandlerOutcome:
    status: HandlerStatus
    error: str | None = None
    new_mapping: NewMapping | None = None
    created: CreatedLocation | None = None
    follow_up: str | None = None
    detail: Mapping[str, object] = field(default_factory=dict)

    @classmethod
    def succeeded(
        cls,
        *,
        new_mapping: NewMapping | None = None,
        created: CreatedLocation | None = None,
        follow_up: str | None = None,
        **detail: object,
    ) -> HandlerOutcome:
        return cls(
            status="success",
            new_mapping=new_mapping,
            created=created,
            follow_up=follow_up,
            detail=detail,
        )

    @classmethod
    def failed(cls, error: str) -> HandlerOutcome:
        return cls(status="error", error=error)

    @classmethod
    def deferred(cls, reason: str) -> HandlerOutcome:
        return cls(status="deferred", error=reason)


@dataclass(frozen=True)
class DispatchResult:
    position: int | None
    type: str
    status: DispatchStatus
    error: str | None = None
    skip_reason: SkipReason | None = None
    attempts: int = 0
    detail: Mapping[str, object] = field(default_factory=dict)

    def to_json_dict(self) -> dict[str, object]:
        out: dict[str, object] = {
            "position": self.position,
            "type": self.type,
            "status": self.status,
            "attempts": self.attempts,
        }
        if self.error is not None:
            out["error"] = self.error
        if self.skip_reason is not None:
            out["skip_reason"] = self.skip_reason
        if self.detail:
            out["detail"] = dict(self.detail)
        return out


@dataclass(frozen=True)
class TrackedOutput:
    type: str
    request: Request
    location: CreatedLocation
    table_size: int


@dataclass(frozen=True)
class ReviewComment:
    path: str
    line: int
    body: str
    start_line: int | None = None
    side: ReviewSide | None = None
    start_side: ReviewSide | None = None


@dataclass(frozen=True)
class ReviewMetadata:
    body: str
    event: ReviewEvent


@dataclass(frozen=True)
class ReviewTarget:
    scope: str
    pr_number: int
    head_sha: str


@dataclass(frozen=True)
class SubmittedReview:
    review_id: int
    html_url: str
    comment_count: int
    event: ReviewEvent


@dataclass(frozen=True)
class MissingReport:
    tools: tuple[Mapping[str, object], ...] = ()
    data: tuple[Mapping[str, object], ...] = ()
    noops: tuple[str, ...] = ()

    def to_json_dict(self) -> dict[str, object]:
        return {
            "missing_tools": [dict(item) for item in self.tools],
            "missing_data": [dict(item) for item in self.data],
            "noop_messages": list(self.noops),
        }


@dataclass(frozen=True)
class RunReport:
    results: tuple[DispatchResult, ...]
    resolution_table: Mapping[str, Mapping[str, object]]
    synthetic_update_count: int
    follow_ups: tuple[str, ...] = ()
    missing: MissingReport = field(default_factory=MissingReport)
    review: SubmittedReview | None = None

    def count(self, status: DispatchStatus) -> int:
        return sum(1 for result in self.results if result.status == status)

    def to_json_dict(self) -> dict[str, object]:
        out: dict[str, object] = {
            "results": [result.to_json_dict() for result in self.results],
            "temporary_id_map": {key: dict(value) for key, value in self.resolution_table.items()},
            "synthetic_update_count": self.synthetic_update_count,
            "follow_ups": list(self.follow_ups),
            "missing": self.missing.to_json_dict(),
            "counts": {
                status: self.count(status)
                for status in ("success", "error", "deferred", "skipped")
            },
        }
        if self.review is not None:
            out["review"] = {
                "review_id": self.review.review_id,
                "html_url": self.review.html_url,
                "comment_count": self.review.comment_count,
                "event": self.review.event,
            }
        return out


@dataclass(frozen=True)
class IssueHandle:
    number: int
    html_url: str
    database_id: int
    node_id: str


@dataclass(frozen=True)
class CommentHandle:
    comment_id: int
    html_url: str


@dataclass(frozen=True)
class PullRequestSnapshot:
    number: int
    head_sha: str
    state: str


@dataclass(frozen=True)
class ProjectBoard:
    project_id: str
    url: str
