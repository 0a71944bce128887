"""Per-type request handlers.

Every factory takes the handler's configuration plus the shared run context and
returns a `handle(request, view)` callable. Handlers never touch the resolution
table directly: they read the view they are given and report new bindings back
through `HandlerOutcome.new_mapping`.

A handler returns a deferred outcome, without calling GitHub, whenever a
temporary ID it needs for addressing is not bound yet. Ids that only appear in
free text never defer; they are posted verbatim and patched later if possible.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
import logging
from typing import Final, cast

from safeoutputs.config import HandlerConfig, RuntimeConfig
from safeoutputs.github_gateway import GitHubGateway
from safeoutputs.models import (
    BoardReference,
    CreatedLocation,
    DraftItemReference,
    HandlerOutcome,
    ItemReference,
    NewMapping,
    Request,
    ReviewComment,
    ReviewEvent,
    ReviewSide,
    ReviewTarget,
    SubmittedReview,
)
from safeoutputs.observability import log_event
from safeoutputs.review_buffer import ReviewBuffer, ReviewSubmitter
from safeoutputs.temporary_id import (
    ResolutionView,
    is_temporary_id,
    normalize,
    resolve_board_target,
    resolve_item_target,
    rewrite_references,
)


LOGGER = logging.getLogger("safeoutputs.handlers")

_REVIEW_EVENTS: Final[frozenset[str]] = frozenset({"APPROVE", "REQUEST_CHANGES", "COMMENT"})
_REVIEW_SIDES: Final[frozenset[str]] = frozenset({"LEFT", "RIGHT"})
_CLOSE_REASONS: Final[frozenset[str]] = frozenset({"completed", "not_planned"})


@dataclass(frozen=True)
class HandlerContext:
    gateway: GitHubGateway
    runtime: RuntimeConfig
    review_buffer: ReviewBuffer | None = None

    def footer(self) -> str:
        return build_footer(self.runtime)

    def scope_for(self, config: HandlerConfig) -> str:
        return config.target_repo or self.runtime.repo

    def gateway_for(self, scope: str) -> GitHubGateway:
        return self.gateway.for_repo(scope)


Handler = Callable[[Request, ResolutionView], HandlerOutcome]
HandlerFactory = Callable[[HandlerConfig, HandlerContext], Handler]


def build_footer(runtime: RuntimeConfig) -> str:
    if runtime.workflow_name and runtime.run_url:
        return f"\n\n> Generated by [{runtime.workflow_name}]({runtime.run_url})"
    if runtime.workflow_name:
        return f"\n\n> Generated by {runtime.workflow_name}"
    if runtime.run_url:
        return f"\n\n> Generated by [workflow run]({runtime.run_url})"
    return ""


def review_submitter(gateway: GitHubGateway) -> ReviewSubmitter:
    def submit(
        target: ReviewTarget,
        event: ReviewEvent,
        body: str,
        comments: tuple[dict[str, object], ...],
    ) -> SubmittedReview:
        return gateway.for_repo(target.scope).create_pull_request_review(
            target.pr_number,
            commit_id=target.head_sha,
            event=event,
            body=body,
            comments=comments,
        )

    return submit


class GitHubContentUpdater:
    """Rewrites already-posted issue and comment bodies."""

    def __init__(self, gateway: GitHubGateway) -> None:
        self._gateway = gateway

    def update_issue_body(self, scope: str, number: int, body: str) -> None:
        self._gateway.for_repo(scope).update_issue(number, body=body)

    def update_comment_body(self, scope: str, comment_id: int, body: str) -> None:
        self._gateway.for_repo(scope).update_issue_comment(comment_id, body)


class _Budget:
    def __init__(self, config: HandlerConfig) -> None:
        self._type = config.type
        self._max_count = config.max_count
        self._used = 0

    def exhausted(self) -> HandlerOutcome | None:
        if self._used < self._max_count:
            return None
        log_event(
            LOGGER,
            "handler_max_reached",
            level=logging.WARNING,
            request_type=self._type,
            max_count=self._max_count,
        )
        return HandlerOutcome.failed(f"Max count of {self._max_count} reached for {self._type}")

    def consume(self) -> None:
        self._used += 1


def create_issue_handler(config: HandlerConfig, context: HandlerContext) -> Handler:
    budget = _Budget(config)
    scope = context.scope_for(config)
    agent_login = context.runtime.agent_login

    def handle(request: Request, view: ResolutionView) -> HandlerOutcome:
        title = _required_text(request, "title")
        if title is None:
            return HandlerOutcome.failed("create_issue requires a non-empty 'title'")
        title = title.strip()
        body = request.get_str("body") or ""

        parent: ItemReference | None = None
        if request.payload.get("parent") is not None:
            target = resolve_item_target(request.payload.get("parent"), view, scope)
            if target.deferred:
                return HandlerOutcome.deferred(
                    f"Parent temporary ID {target.unresolved_id!r} is not resolved yet"
                )
            if target.error is not None:
                return HandlerOutcome.failed(f"Invalid parent: {target.error}")
            parent = target.reference

        limit = budget.exhausted()
        if limit is not None:
            return limit

        labels = _merge_unique(config.labels, _str_list(request.payload.get("labels")))
        requested_assignees = _merge_unique(
            config.assignees, _str_list(request.payload.get("assignees"))
        )
        # The agent cannot be assigned through the issues API; it is handed off instead.
        assignees = tuple(item for item in requested_assignees if item.lower() != agent_login)
        wants_agent = len(assignees) != len(requested_assignees)

        full_title = title if title.startswith(config.title_prefix) else config.title_prefix + title
        posted_body = rewrite_references(body, view, scope)
        if config.footer:
            posted_body += context.footer()

        budget.consume()
        gateway = context.gateway_for(scope)
        issue = gateway.create_issue(
            title=full_title, body=posted_body, labels=labels, assignees=assignees
        )

        detail: dict[str, object] = {"number": issue.number, "url": issue.html_url}
        if parent is not None:
            try:
                context.gateway_for(parent.scope).add_sub_issue(parent.number, issue.database_id)
                detail["parent"] = f"{parent.scope}#{parent.number}"
            except Exception as exc:  # noqa: BLE001
                log_event(
                    LOGGER,
                    "sub_issue_link_failed",
                    level=logging.WARNING,
                    parent=f"{parent.scope}#{parent.number}",
                    issue_number=issue.number,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                detail["parent_link_error"] = str(exc)

        return HandlerOutcome.succeeded(
            new_mapping=_item_mapping(request, ItemReference(scope=scope, number=issue.number)),
            created=CreatedLocation(
                kind="issue",
                scope=scope,
                number=issue.number,
                html_url=issue.html_url,
                body=posted_body,
            ),
            follow_up=f"{scope}#{issue.number}" if wants_agent else None,
            **detail,
        )

    return handle


def add_comment_handler(config: HandlerConfig, context: HandlerContext) -> Handler:
    budget = _Budget(config)
    scope = context.scope_for(config)

    def handle(request: Request, view: ResolutionView) -> HandlerOutcome:
        body = _required_text(request, "body")
        if body is None:
            return HandlerOutcome.failed("add_comment requires a non-empty 'body'")

        raw_target = _first_present(request.payload, "issue_number", "item_number")
        if raw_target is None:
            raw_target = context.runtime.issue_number or context.runtime.pull_request_number
        if raw_target is None:
            return HandlerOutcome.failed(
                "add_comment needs 'issue_number' when the run has no triggering issue"
            )
        target = resolve_item_target(raw_target, view, scope)
        if target.deferred:
            return HandlerOutcome.deferred(
                f"Comment target {target.unresolved_id!r} is not resolved yet"
            )
        if target.error is not None or target.reference is None:
            return HandlerOutcome.failed(target.error or "Comment target is missing")

        limit = budget.exhausted()
        if limit is not None:
            return limit

        reference = target.reference
        posted_body = rewrite_references(body, view, reference.scope)
        if config.footer:
            posted_body += context.footer()

        budget.consume()
        comment = context.gateway_for(reference.scope).post_issue_comment(
            reference.number, posted_body
        )
        return HandlerOutcome.succeeded(
            created=CreatedLocation(
                kind="comment",
                scope=reference.scope,
                number=reference.number,
                comment_id=comment.comment_id,
                html_url=comment.html_url,
                body=posted_body,
            ),
            number=reference.number,
            comment_id=comment.comment_id,
            url=comment.html_url,
        )

    return handle


def update_issue_handler(config: HandlerConfig, context: HandlerContext) -> Handler:
    budget = _Budget(config)
    scope = context.scope_for(config)

    def handle(request: Request, view: ResolutionView) -> HandlerOutcome:
        title = request.get_str("title")
        body = request.get_str("body")
        status = request.get_str("status")
        if status is not None and status not in {"open", "closed"}:
            return HandlerOutcome.failed(
                f"Invalid status {status!r}; expected 'open' or 'closed'"
            )
        if title is None and body is None and status is None:
            return HandlerOutcome.failed(
                "update_issue requires at least one of 'title', 'body' or 'status'"
            )

        outcome_or_target = _resolve_issue(request, view, scope, context, what="Issue")
        if isinstance(outcome_or_target, HandlerOutcome):
            return outcome_or_target
        reference = outcome_or_target

        limit = budget.exhausted()
        if limit is not None:
            return limit

        if body is not None:
            body = rewrite_references(body, view, reference.scope)
        budget.consume()
        context.gateway_for(reference.scope).update_issue(
            reference.number, title=title, body=body, state=status
        )
        return HandlerOutcome.succeeded(number=reference.number)

    return handle


def close_issue_handler(config: HandlerConfig, context: HandlerContext) -> Handler:
    budget = _Budget(config)
    scope = context.scope_for(config)

    def handle(request: Request, view: ResolutionView) -> HandlerOutcome:
        state_reason = request.get_str("state_reason") or "completed"
        if state_reason not in _CLOSE_REASONS:
            return HandlerOutcome.failed(
                f"Invalid state_reason {state_reason!r}; expected one of "
                + ", ".join(sorted(_CLOSE_REASONS))
            )

        outcome_or_target = _resolve_issue(request, view, scope, context, what="Issue")
        if isinstance(outcome_or_target, HandlerOutcome):
            return outcome_or_target
        reference = outcome_or_target

        limit = budget.exhausted()
        if limit is not None:
            return limit

        budget.consume()
        gateway = context.gateway_for(reference.scope)
        detail: dict[str, object] = {"number": reference.number}
        body = request.get_str("body")
        if body:
            comment_body = rewrite_references(body, view, reference.scope)
            if config.footer:
                comment_body += context.footer()
            comment = gateway.post_issue_comment(reference.number, comment_body)
            detail["comment_id"] = comment.comment_id
        gateway.update_issue(reference.number, state="closed", state_reason=state_reason)
        return HandlerOutcome.succeeded(**detail)

    return handle


def add_labels_handler(config: HandlerConfig, context: HandlerContext) -> Handler:
    budget = _Budget(config)
    scope = context.scope_for(config)
    allowed = {label.lower() for label in config.allowed_labels}

    def handle(request: Request, view: ResolutionView) -> HandlerOutcome:
        requested = _merge_unique((), _str_list(request.payload.get("labels")))
        if not requested:
            return HandlerOutcome.failed("add_labels requires a non-empty 'labels' list")
        labels = requested
        if allowed:
            labels = tuple(label for label in requested if label.lower() in allowed)
            rejected = [label for label in requested if label not in labels]
            if rejected:
                log_event(
                    LOGGER,
                    "labels_rejected",
                    level=logging.WARNING,
                    rejected=rejected,
                )
            if not labels:
                return HandlerOutcome.failed(
                    "None of the requested labels are allowed: " + ", ".join(requested)
                )

        outcome_or_target = _resolve_issue(request, view, scope, context, what="Issue")
        if isinstance(outcome_or_target, HandlerOutcome):
            return outcome_or_target
        reference = outcome_or_target

        limit = budget.exhausted()
        if limit is not None:
            return limit

        budget.consume()
        context.gateway_for(reference.scope).add_labels(reference.number, labels)
        return HandlerOutcome.succeeded(number=reference.number, labels=list(labels))

    return handle


def link_sub_issue_handler(config: HandlerConfig, context: HandlerContext) -> Handler:
    budget = _Budget(config)
    scope = context.scope_for(config)

    def handle(request: Request, view: ResolutionView) -> HandlerOutcome:
        parent = resolve_item_target(request.payload.get("parent_issue_number"), view, scope)
        child = resolve_item_target(request.payload.get("sub_issue_number"), view, scope)
        pending = [
            target.unresolved_id
            for target in (parent, child)
            if target.unresolved_id is not None
        ]
        if pending:
            return HandlerOutcome.deferred(
                "Unresolved temporary IDs: " + ", ".join(repr(item) for item in pending)
            )
        if parent.error is not None or parent.reference is None:
            return HandlerOutcome.failed(f"Invalid parent_issue_number: {parent.error}")
        if child.error is not None or child.reference is None:
            return HandlerOutcome.failed(f"Invalid sub_issue_number: {child.error}")
        if parent.reference.scope != child.reference.scope:
            return HandlerOutcome.failed(
                "Parent and sub-issue must be in the same repository: "
                f"{parent.reference.scope} vs {child.reference.scope}"
            )
        if parent.reference.number == child.reference.number:
            return HandlerOutcome.failed("An issue cannot be its own sub-issue")

        limit = budget.exhausted()
        if limit is not None:
            return limit

        budget.consume()
        gateway = context.gateway_for(parent.reference.scope)
        sub_issue = gateway.get_issue(child.reference.number)
        gateway.add_sub_issue(parent.reference.number, sub_issue.database_id)
        return HandlerOutcome.succeeded(
            parent_issue_number=parent.reference.number,
            sub_issue_number=child.reference.number,
        )

    return handle


def create_pull_request_review_comment_handler(
    config: HandlerConfig, context: HandlerContext
) -> Handler:
    budget = _Budget(config)
    scope = context.scope_for(config)

    def handle(request: Request, view: ResolutionView) -> HandlerOutcome:
        buffer = context.review_buffer
        if buffer is None:
            return HandlerOutcome.failed("Review comments need a review buffer for this run")
        path = _required_text(request, "path")
        if path is None:
            return HandlerOutcome.failed("Review comment requires a non-empty 'path'")
        body = _required_text(request, "body")
        if body is None:
            return HandlerOutcome.failed("Review comment requires a non-empty 'body'")
        line = _positive_int(request.payload.get("line"))
        if line is None:
            return HandlerOutcome.failed(
                f"Invalid line number: {request.payload.get('line')!r}"
            )
        start_line: int | None = None
        if request.payload.get("start_line") is not None:
            start_line = _positive_int(request.payload.get("start_line"))
            if start_line is None or start_line > line:
                return HandlerOutcome.failed(
                    f"Invalid start_line {request.payload.get('start_line')!r} for line {line}"
                )
        side = (request.get_str("side") or "RIGHT").upper()
        if side not in _REVIEW_SIDES:
            return HandlerOutcome.failed(f"Invalid side {side!r}; expected LEFT or RIGHT")

        target_or_outcome = _review_target(request, buffer, scope, context)
        if isinstance(target_or_outcome, HandlerOutcome):
            return target_or_outcome

        limit = budget.exhausted()
        if limit is not None:
            return limit

        budget.consume()
        buffer.add_comment(
            ReviewComment(
                path=path,
                line=line,
                body=rewrite_references(body, view, target_or_outcome.scope),
                start_line=start_line,
                side=cast(ReviewSide, side),
            )
        )
        return HandlerOutcome.succeeded(
            buffered=True, pr_number=target_or_outcome.pr_number, path=path, line=line
        )

    return handle


def submit_pull_request_review_handler(
    config: HandlerConfig, context: HandlerContext
) -> Handler:
    budget = _Budget(config)
    scope = context.scope_for(config)
    if context.review_buffer is not None:
        context.review_buffer.set_include_footer(config.footer)

    def handle(request: Request, view: ResolutionView) -> HandlerOutcome:
        buffer = context.review_buffer
        if buffer is None:
            return HandlerOutcome.failed("Review submission needs a review buffer for this run")
        event = (request.get_str("event") or "COMMENT").upper()
        if event not in _REVIEW_EVENTS:
            return HandlerOutcome.failed(
                f"Invalid review event {event!r}; expected one of "
                + ", ".join(sorted(_REVIEW_EVENTS))
            )
        body = request.get_str("body") or ""

        target_or_outcome = _review_target(request, buffer, scope, context)
        if isinstance(target_or_outcome, HandlerOutcome):
            return target_or_outcome

        limit = budget.exhausted()
        if limit is not None:
            return limit

        budget.consume()
        buffer.set_metadata(
            rewrite_references(body, view, target_or_outcome.scope), cast(ReviewEvent, event)
        )
        return HandlerOutcome.succeeded(
            buffered=True, pr_number=target_or_outcome.pr_number, review_event=event
        )

    return handle


def create_project_handler(config: HandlerConfig, context: HandlerContext) -> Handler:
    budget = _Budget(config)

    def handle(request: Request, view: ResolutionView) -> HandlerOutcome:
        _ = view
        title = _required_text(request, "title")
        if title is None:
            return HandlerOutcome.failed("create_project requires a non-empty 'title'")
        owner_login = request.get_str("owner") or context.runtime.owner

        limit = budget.exhausted()
        if limit is not None:
            return limit

        budget.consume()
        board = context.gateway.create_project(
            owner_login=owner_login, title=config.title_prefix + title
        )
        new_mapping: NewMapping | None = None
        temporary_id = _canonical_temporary_id(request)
        if temporary_id is not None:
            new_mapping = NewMapping(temporary_id, BoardReference(board_url=board.url))
        return HandlerOutcome.succeeded(new_mapping=new_mapping, project_url=board.url)

    return handle


def update_project_handler(config: HandlerConfig, context: HandlerContext) -> Handler:
    budget = _Budget(config)
    scope = context.scope_for(config)

    def handle(request: Request, view: ResolutionView) -> HandlerOutcome:
        board = resolve_board_target(request.payload.get("project"), view)
        if board.unresolved_id is not None:
            return HandlerOutcome.deferred(
                f"Project temporary ID {board.unresolved_id!r} is not resolved yet"
            )
        if board.error is not None or board.board_url is None:
            return HandlerOutcome.failed(board.error or "Project is missing")

        content_type = request.get_str("content_type") or (
            "draft_issue" if request.payload.get("draft_title") is not None else "issue"
        )
        if content_type == "draft_issue":
            draft_title = request.get_str("draft_title")
            if not draft_title or not draft_title.strip():
                return HandlerOutcome.failed("Draft items require a non-empty 'draft_title'")
            limit = budget.exhausted()
            if limit is not None:
                return limit
            budget.consume()
            item_id = context.gateway.add_project_draft_item(
                board.board_url,
                title=draft_title.strip(),
                body=request.get_str("draft_body") or "",
            )
            new_mapping: NewMapping | None = None
            temporary_id = _canonical_temporary_id(request)
            if temporary_id is not None:
                new_mapping = NewMapping(temporary_id, DraftItemReference(draft_item_id=item_id))
            return HandlerOutcome.succeeded(
                new_mapping=new_mapping, project_url=board.board_url, item_id=item_id
            )

        if content_type not in {"issue", "pull_request"}:
            return HandlerOutcome.failed(
                f"Invalid content_type {content_type!r}; expected issue, pull_request "
                "or draft_issue"
            )
        target = resolve_item_target(request.payload.get("content_number"), view, scope)
        if target.deferred:
            return HandlerOutcome.deferred(
                f"Content temporary ID {target.unresolved_id!r} is not resolved yet"
            )
        if target.error is not None or target.reference is None:
            return HandlerOutcome.failed(f"Invalid content_number: {target.error}")

        limit = budget.exhausted()
        if limit is not None:
            return limit

        budget.consume()
        reference = target.reference
        content = context.gateway_for(reference.scope).get_issue(reference.number)
        item_id = context.gateway.add_project_item(
            board.board_url, content_node_id=content.node_id
        )
        return HandlerOutcome.succeeded(
            project_url=board.board_url, item_id=item_id, number=reference.number
        )

    return handle


def missing_tool_handler(config: HandlerConfig, context: HandlerContext) -> Handler:
    return _missing_report_handler(config, ("tool", "reason", "alternatives"), key="tool")


def missing_data_handler(config: HandlerConfig, context: HandlerContext) -> Handler:
    return _missing_report_handler(config, ("data_type", "reason", "context"), key="data_type")


def _missing_report_handler(
    config: HandlerConfig, fields: tuple[str, ...], *, key: str
) -> Handler:
    budget = _Budget(config)

    def handle(request: Request, view: ResolutionView) -> HandlerOutcome:
        _ = view
        if _required_text(request, key) is None:
            return HandlerOutcome.failed(f"{request.type} requires a non-empty {key!r}")
        limit = budget.exhausted()
        if limit is not None:
            return limit
        budget.consume()
        record = {
            field: request.payload[field]
            for field in fields
            if request.payload.get(field) is not None
        }
        log_event(LOGGER, "missing_reported", request_type=request.type, **record)
        return HandlerOutcome.succeeded(**record)

    return handle


HANDLER_FACTORIES: Final[Mapping[str, HandlerFactory]] = {
    "create_issue": create_issue_handler,
    "add_comment": add_comment_handler,
    "update_issue": update_issue_handler,
    "close_issue": close_issue_handler,
    "add_labels": add_labels_handler,
    "link_sub_issue": link_sub_issue_handler,
    "create_pull_request_review_comment": create_pull_request_review_comment_handler,
    "submit_pull_request_review": submit_pull_request_review_handler,
    "create_project": create_project_handler,
    "update_project": update_project_handler,
    "missing_tool": missing_tool_handler,
    "missing_data": missing_data_handler,
}


def _resolve_issue(
    request: Request,
    view: ResolutionView,
    scope: str,
    context: HandlerContext,
    *,
    what: str,
) -> ItemReference | HandlerOutcome:
    raw_target = _first_present(request.payload, "issue_number", "item_number")
    if raw_target is None:
        raw_target = context.runtime.issue_number
    if raw_target is None:
        return HandlerOutcome.failed(
            f"{request.type} needs 'issue_number' when the run has no triggering issue"
        )
    target = resolve_item_target(raw_target, view, scope)
    if target.deferred:
        return HandlerOutcome.deferred(
            f"{what} temporary ID {target.unresolved_id!r} is not resolved yet"
        )
    if target.error is not None or target.reference is None:
        return HandlerOutcome.failed(target.error or f"{what} number is missing")
    return target.reference


def _review_target(
    request: Request, buffer: ReviewBuffer, scope: str, context: HandlerContext
) -> ReviewTarget | HandlerOutcome:
    raw_number = request.payload.get("pull_request_number")
    if raw_number is None:
        pr_number = context.runtime.pull_request_number
    else:
        pr_number = _positive_int(raw_number)
        if pr_number is None:
            return HandlerOutcome.failed(f"Invalid pull_request_number: {raw_number!r}")
    if pr_number is None:
        return HandlerOutcome.failed(
            f"{request.type} needs 'pull_request_number' when the run has no triggering "
            "pull request"
        )

    existing = buffer.target
    if existing is not None:
        if existing.pr_number != pr_number or existing.scope != scope:
            return HandlerOutcome.failed(
                f"Review is already bound to {existing.scope}#{existing.pr_number}; "
                f"cannot add to {scope}#{pr_number}"
            )
        return existing

    snapshot = context.gateway_for(scope).get_pull_request(pr_number)
    if snapshot.state != "open":
        return HandlerOutcome.failed(
            f"Pull request {scope}#{pr_number} is {snapshot.state or 'not open'}"
        )
    target = ReviewTarget(scope=scope, pr_number=snapshot.number, head_sha=snapshot.head_sha)
    buffer.set_target(target)
    return target


def _item_mapping(request: Request, reference: ItemReference) -> NewMapping | None:
    temporary_id = _canonical_temporary_id(request)
    if temporary_id is None:
        return None
    return NewMapping(temporary_id, reference)


def _canonical_temporary_id(request: Request) -> str | None:
    if not is_temporary_id(request.temporary_id):
        return None
    return normalize(request.temporary_id)


def _required_text(request: Request, key: str) -> str | None:
    value = request.get_str(key)
    if value is None or not value.strip():
        return None
    return value


def _first_present(payload: Mapping[str, object], *keys: str) -> object:
    for key in keys:
        value = payload.get(key)
        if value is not None and value != "":
            return value
    return None


def _str_list(value: object) -> tuple[str, ...]:
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list | tuple):
        return ()
    return tuple(str(item).strip() for item in value if str(item).strip())


def _merge_unique(first: tuple[str, ...], second: tuple[str, ...]) -> tuple[str, ...]:
    out: list[str] = []
    for item in (*first, *second):
        if item not in out:
            out.append(item)
    return tuple(out)


def _positive_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
        return parsed if parsed > 0 else None
    return None
