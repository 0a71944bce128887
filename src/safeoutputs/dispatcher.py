"""Run one batch of agent requests against the configured handlers.

A run is four phases over per-run state:

1. the primary pass walks the dependency-sorted batch, registering every new
   temporary ID binding as soon as its producer succeeds;
2. the retry pass re-invokes each deferred request exactly once against the
   grown table; anything still deferred is final;
3. the synthetic pass patches bodies that were posted while they still named
   unbound ids, provided those ids are bound now;
4. the buffered pull request review, if any, is submitted as one review.

No request failure escapes `dispatch_batch`; every request ends with exactly
one result.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import logging
from typing import Protocol, cast

from safeoutputs.dependency_sort import sort_requests
from safeoutputs.handlers import Handler
from safeoutputs.models import (
    DispatchResult,
    DispatchStatus,
    HandlerOutcome,
    MissingReport,
    Request,
    ResolvedReference,
    RunReport,
    SkipReason,
    SubmittedReview,
    TrackedOutput,
)
from safeoutputs.observability import log_event
from safeoutputs.registry import HandlerRegistry
from safeoutputs.review_buffer import ReviewBuffer, ReviewSubmissionError
from safeoutputs.temporary_id import (
    ResolutionConflictError,
    ResolutionTable,
    TemporaryIdError,
    describe_reference,
    is_temporary_id,
    normalize,
)


LOGGER = logging.getLogger("safeoutputs.dispatcher")

REVIEW_RESULT_TYPE = "pull_request_review"


class ContentUpdater(Protocol):
    def update_issue_body(self, scope: str, number: int, body: str) -> None: ...

    def update_comment_body(self, scope: str, comment_id: int, body: str) -> None: ...


def dispatch_batch(
    requests: Sequence[Request],
    *,
    registry: HandlerRegistry,
    updater: ContentUpdater,
    review_buffer: ReviewBuffer | None = None,
    initial_table: Mapping[str, ResolvedReference] | None = None,
    default_scope: str,
) -> RunReport:
    run = _BatchRun(
        registry=registry,
        updater=updater,
        review_buffer=review_buffer,
        table=_carried_in_table(initial_table),
        default_scope=default_scope,
    )
    return run.execute(requests)


def _carried_in_table(entries: Mapping[str, ResolvedReference] | None) -> ResolutionTable:
    table = ResolutionTable()
    for key, reference in (entries or {}).items():
        try:
            table.register(normalize(key), reference)
        except TemporaryIdError as exc:
            log_event(
                LOGGER,
                "carried_in_entry_dropped",
                level=logging.WARNING,
                temporary_id=str(key),
                error=str(exc),
            )
    return table


class _BatchRun:
    def __init__(
        self,
        *,
        registry: HandlerRegistry,
        updater: ContentUpdater,
        review_buffer: ReviewBuffer | None,
        table: ResolutionTable,
        default_scope: str,
    ) -> None:
        self._registry = registry
        self._updater = updater
        self._review_buffer = review_buffer
        self._table = table
        self._default_scope = default_scope
        self._carried_in = frozenset(table)
        self._claims: dict[str, int] = {}
        self._live_producers: set[str] = set()
        self._results: list[DispatchResult] = []
        self._attempts: dict[int, int] = {}
        self._deferred: list[tuple[Request, Handler]] = []
        self._tracked: list[TrackedOutput] = []
        self._follow_ups: list[str] = []
        self._missing_tools: list[Mapping[str, object]] = []
        self._missing_data: list[Mapping[str, object]] = []
        self._noops: list[str] = []

    def execute(self, requests: Sequence[Request]) -> RunReport:
        log_event(
            LOGGER,
            "dispatch_started",
            request_count=len(requests),
            carried_in_count=len(self._carried_in),
            default_scope=self._default_scope,
        )
        self._collect_missing(requests)
        self._claim_producers(requests)
        for request in sort_requests(requests):
            self._dispatch(request)
        self._retry_deferred()
        synthetic_count = self._apply_synthetic_updates()
        review = self._flush_review()

        results = tuple(
            sorted(
                self._results,
                key=lambda result: (result.position is None, result.position or 0),
            )
        )
        report = RunReport(
            results=results,
            resolution_table=self._table.to_json_dict(),
            synthetic_update_count=synthetic_count,
            follow_ups=tuple(self._follow_ups),
            missing=MissingReport(
                tools=tuple(self._missing_tools),
                data=tuple(self._missing_data),
                noops=tuple(self._noops),
            ),
            review=review,
        )
        log_event(
            LOGGER,
            "dispatch_summary",
            request_count=len(requests),
            success_count=report.count("success"),
            error_count=report.count("error"),
            deferred_count=report.count("deferred"),
            skipped_count=report.count("skipped"),
            synthetic_update_count=synthetic_count,
            temporary_id_count=len(self._table),
        )
        return report

    def _collect_missing(self, requests: Sequence[Request]) -> None:
        for request in requests:
            payload = request.payload
            if request.type == "missing_tool":
                if payload.get("tool") and payload.get("reason"):
                    self._missing_tools.append(
                        {
                            "tool": payload["tool"],
                            "reason": payload["reason"],
                            "alternatives": payload.get("alternatives") or None,
                        }
                    )
            elif request.type == "missing_data":
                if payload.get("data_type") and payload.get("reason"):
                    self._missing_data.append(
                        {
                            "data_type": payload["data_type"],
                            "reason": payload["reason"],
                            "context": payload.get("context") or None,
                            "alternatives": payload.get("alternatives") or None,
                        }
                    )
            elif request.type == "noop":
                message = request.get_str("message")
                if message:
                    self._noops.append(message)
        log_event(
            LOGGER,
            "missing_collected",
            missing_tool_count=len(self._missing_tools),
            missing_data_count=len(self._missing_data),
            noop_count=len(self._noops),
        )

    def _claim_producers(self, requests: Sequence[Request]) -> None:
        # The first request in batch order owns an id; later producers are rejected.
        for request in requests:
            if request.temporary_id is None:
                continue
            try:
                canonical = normalize(request.temporary_id)
            except TemporaryIdError:
                continue
            if canonical in self._carried_in or canonical in self._claims:
                continue
            self._claims[canonical] = request.position
            self._live_producers.add(canonical)

    def _dispatch(self, request: Request) -> None:
        if not request.type:
            self._record(request, "error", error="Request is missing required 'type' field")
            return

        prepared = self._prepare_temporary_id(request)
        if prepared is None:
            return
        request = prepared

        classification = self._registry.classify(request.type)
        if classification in ("standalone", "collected", "custom"):
            skip_reason = cast(SkipReason, classification)
            log_event(
                LOGGER,
                "request_skipped",
                position=request.position,
                request_type=request.type,
                skip_reason=skip_reason,
            )
            self._record(request, "skipped", skip_reason=skip_reason)
            return

        handler = self._registry.get(request.type)
        if classification == "unhandled" or handler is None:
            log_event(
                LOGGER,
                "request_unhandled",
                level=logging.WARNING,
                position=request.position,
                request_type=request.type,
                configured_types=self._registry.types(),
            )
            self._record(
                request,
                "error",
                error=f"No handler is configured for request type {request.type!r}",
            )
            return

        self._attempt(request, handler, final=False)

    def _prepare_temporary_id(self, request: Request) -> Request | None:
        if request.temporary_id is None:
            return request
        try:
            canonical = normalize(request.temporary_id)
        except TemporaryIdError as exc:
            self._record(request, "error", error=str(exc))
            return None
        existing = self._table.lookup(canonical)
        if canonical in self._carried_in and existing is not None:
            self._record(
                request,
                "error",
                error=(
                    f"Temporary ID {canonical!r} was already resolved by an earlier run "
                    f"to {describe_reference(existing)}"
                ),
            )
            return None
        owner = self._claims.get(canonical)
        if owner != request.position:
            self._record(
                request,
                "error",
                error=(
                    f"Temporary ID {canonical!r} is already produced by the request at "
                    f"position {owner}"
                ),
            )
            return None
        return request.with_temporary_id(canonical)

    def _attempt(self, request: Request, handler: Handler, *, final: bool) -> None:
        self._attempts[request.position] = self._attempts.get(request.position, 0) + 1
        table_size = len(self._table)
        try:
            outcome = handler(request, self._table.view())
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "handler_raised",
                level=logging.WARNING,
                position=request.position,
                request_type=request.type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            outcome = HandlerOutcome.failed(str(exc))

        if outcome.status == "deferred":
            if final:
                self._record(
                    request,
                    "deferred",
                    error=outcome.error or "Unresolved temporary ID",
                )
                return
            log_event(
                LOGGER,
                "request_deferred",
                position=request.position,
                request_type=request.type,
                reason=outcome.error,
            )
            self._deferred.append((request, handler))
            return

        if outcome.status == "error":
            log_event(
                LOGGER,
                "request_failed",
                level=logging.WARNING,
                position=request.position,
                request_type=request.type,
                error=outcome.error,
            )
            self._record(request, "error", error=outcome.error or "Handler reported failure")
            return

        self._settle_success(request, outcome, table_size)

    def _settle_success(self, request: Request, outcome: HandlerOutcome, table_size: int) -> None:
        if outcome.new_mapping is not None:
            try:
                self._table.register(
                    outcome.new_mapping.temporary_id, outcome.new_mapping.reference
                )
            except ResolutionConflictError as exc:
                self._record(request, "error", error=str(exc), detail=outcome.detail)
                return
            self._live_producers.discard(outcome.new_mapping.temporary_id)
        self._release_claim(request)

        location = outcome.created
        if location is not None:
            content = location.body or request.get_str("body") or ""
            unresolved = self._table.unresolved_in(content)
            if unresolved:
                pending = [item for item in unresolved if item in self._live_producers]
                if pending:
                    self._tracked.append(
                        TrackedOutput(
                            type=request.type,
                            request=request,
                            location=location,
                            table_size=table_size,
                        )
                    )
                    log_event(
                        LOGGER,
                        "output_tracked",
                        position=request.position,
                        location=location.describe(),
                        pending_ids=pending,
                    )
                else:
                    log_event(
                        LOGGER,
                        "unresolved_reference_left",
                        level=logging.WARNING,
                        position=request.position,
                        location=location.describe(),
                        temporary_ids=unresolved,
                    )

        if outcome.follow_up is not None:
            self._follow_ups.append(outcome.follow_up)

        log_event(
            LOGGER,
            "request_succeeded",
            position=request.position,
            request_type=request.type,
            attempts=self._attempts.get(request.position, 0),
        )
        self._record(request, "success", detail=outcome.detail)

    def _release_claim(self, request: Request) -> None:
        if not is_temporary_id(request.temporary_id):
            return
        canonical = normalize(request.temporary_id)
        if self._claims.get(canonical) == request.position:
            self._live_producers.discard(canonical)

    def _retry_deferred(self) -> None:
        queue, self._deferred = self._deferred, []
        for request, handler in queue:
            self._attempt(request, handler, final=True)
        log_event(
            LOGGER,
            "deferred_retry_finished",
            retried_count=len(queue),
            still_deferred_count=sum(1 for item in self._results if item.status == "deferred"),
        )

    def _apply_synthetic_updates(self) -> int:
        applied = 0
        for tracked in self._tracked:
            location = tracked.location
            if len(self._table) == tracked.table_size:
                log_event(LOGGER, "synthetic_update_skipped", location=location.describe())
                continue
            content = location.body or tracked.request.get_str("body") or ""
            if self._table.scan_for_unresolved(content):
                log_event(
                    LOGGER,
                    "synthetic_update_incomplete",
                    location=location.describe(),
                    temporary_ids=self._table.unresolved_in(content),
                )
                continue
            updated = self._table.rewrite(content, location.scope)
            try:
                if location.kind == "comment":
                    if location.comment_id is None:
                        continue
                    self._updater.update_comment_body(location.scope, location.comment_id, updated)
                else:
                    self._updater.update_issue_body(location.scope, location.number, updated)
            except Exception as exc:  # noqa: BLE001
                log_event(
                    LOGGER,
                    "synthetic_update_failed",
                    level=logging.WARNING,
                    location=location.describe(),
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                continue
            applied += 1
            log_event(LOGGER, "synthetic_update_applied", location=location.describe())
        self._tracked.clear()
        return applied

    def _flush_review(self) -> SubmittedReview | None:
        buffer = self._review_buffer
        if buffer is None or not buffer.has_content():
            return None
        try:
            submitted = buffer.flush()
        except ReviewSubmissionError as exc:
            self._results.append(
                DispatchResult(
                    position=None,
                    type=REVIEW_RESULT_TYPE,
                    status="error",
                    error=str(exc),
                    attempts=1,
                )
            )
            return None
        if submitted is None:
            return None
        self._results.append(
            DispatchResult(
                position=None,
                type=REVIEW_RESULT_TYPE,
                status="success",
                attempts=1,
                detail={
                    "review_id": submitted.review_id,
                    "url": submitted.html_url,
                    "comment_count": submitted.comment_count,
                    "event": submitted.event,
                },
            )
        )
        return submitted

    def _record(
        self,
        request: Request,
        status: DispatchStatus,
        *,
        error: str | None = None,
        skip_reason: SkipReason | None = None,
        detail: Mapping[str, object] | None = None,
    ) -> None:
        self._release_claim(request)
        self._results.append(
            DispatchResult(
                position=request.position,
                type=request.type,
                status=status,
                error=error,
                skip_reason=skip_reason,
                attempts=self._attempts.get(request.position, 0),
                detail=dict(detail or {}),
            )
        )
