from __future__ import annotations

from collections.abc import Callable

from github_fakes import FakeGitHub
import pytest

from safeoutputs.config import AppConfig, HandlerConfig, RuntimeConfig
from safeoutputs.dispatcher import REVIEW_RESULT_TYPE, dispatch_batch
from safeoutputs.handlers import HandlerContext, review_submitter
from safeoutputs.models import (
    CreatedLocation,
    HandlerOutcome,
    ItemReference,
    NewMapping,
    Request,
    RunReport,
)
from safeoutputs.registry import HandlerRegistry, build_registry
from safeoutputs.review_buffer import ReviewBuffer
from safeoutputs.temporary_id import ResolutionView


class FakeUpdater:
    def __init__(self, error: Exception | None = None) -> None:
        self.issue_updates: list[tuple[str, int, str]] = []
        self.comment_updates: list[tuple[str, int, str]] = []
        self.error = error

    def update_issue_body(self, scope: str, number: int, body: str) -> None:
        if self.error is not None:
            raise self.error
        self.issue_updates.append((scope, number, body))

    def update_comment_body(self, scope: str, comment_id: int, body: str) -> None:
        if self.error is not None:
            raise self.error
        self.comment_updates.append((scope, comment_id, body))


def _batch(*items: dict[str, object]) -> list[Request]:
    return [Request.from_raw(index, item) for index, item in enumerate(items)]


def _statuses(report: RunReport) -> list[tuple[int | None, str]]:
    return [(result.position, result.status) for result in report.results]


def _github_run(
    requests: list[Request],
    *,
    github: FakeGitHub | None = None,
    updater: FakeUpdater | None = None,
    handler_types: tuple[str, ...] = ("create_issue", "add_comment"),
    custom_job_types: frozenset[str] = frozenset(),
    initial_table: ResolutionView | None = None,
) -> tuple[RunReport, FakeGitHub, FakeUpdater, ReviewBuffer]:
    github = github or FakeGitHub()
    updater = updater or FakeUpdater()
    runtime = RuntimeConfig(
        repo="o/r", issue_number=12, pull_request_number=34, custom_job_types=custom_job_types
    )
    config = AppConfig(
        runtime=runtime,
        handlers=tuple(HandlerConfig(type=item, footer=False) for item in handler_types),
    )
    buffer = ReviewBuffer(review_submitter(github))  # type: ignore[arg-type]
    context = HandlerContext(gateway=github, runtime=runtime, review_buffer=buffer)  # type: ignore[arg-type]
    report = dispatch_batch(
        requests,
        registry=build_registry(config, context),
        updater=updater,
        review_buffer=buffer,
        initial_table=initial_table,
        default_scope="o/r",
    )
    return report, github, updater, buffer


def _scripted_registry(
    **handlers: Callable[[Request, ResolutionView], HandlerOutcome],
) -> HandlerRegistry:
    return HandlerRegistry(handlers)


def test_parent_then_children_resolve_in_one_run() -> None:
    report, github, _, _ = _github_run(
        _batch(
            {"type": "create_issue", "title": "Child A", "parent": "aw_prnt"},
            {"type": "create_issue", "title": "Parent", "temporary_id": "aw_prnt"},
            {"type": "create_issue", "title": "Child B", "parent": "#AW_PRNT"},
        )
    )

    assert _statuses(report) == [(0, "success"), (1, "success"), (2, "success")]
    assert report.resolution_table == {"aw_prnt": {"repo": "o/r", "number": 101}}
    assert [call for call in github.calls if call[0] == "add_sub_issue"] == [
        ("add_sub_issue", "o/r", 101, 1020),
        ("add_sub_issue", "o/r", 101, 1030),
    ]
    assert all(result.attempts == 1 for result in report.results)


def test_reference_without_producer_is_posted_verbatim_and_not_tracked() -> None:
    report, github, updater, _ = _github_run(
        _batch({"type": "create_issue", "title": "T", "body": "see #aw_xyz9"})
    )

    assert _statuses(report) == [(0, "success")]
    assert github.calls[0][3] == "see #aw_xyz9"
    assert report.synthetic_update_count == 0
    assert updater.issue_updates == []


def test_textual_cycle_is_patched_by_synthetic_update() -> None:
    report, github, updater, _ = _github_run(
        _batch(
            {"type": "create_issue", "title": "A", "body": "see #aw_bbb", "temporary_id": "aw_aaa"},
            {"type": "create_issue", "title": "B", "body": "see #aw_aaa", "temporary_id": "aw_bbb"},
            {"type": "add_comment", "issue_number": 5, "body": "A is #aw_aaa, B is #aw_bbb"},
        )
    )

    assert _statuses(report) == [(0, "success"), (1, "success"), (2, "success")]
    assert github.calls[0][3] == "see #aw_bbb"
    assert github.calls[1][3] == "see #101"
    assert updater.issue_updates == [("o/r", 101, "see #102")]
    assert report.synthetic_update_count == 1


def test_comment_created_before_its_reference_is_patched() -> None:
    report, _, updater, _ = _github_run(
        _batch(
            {"type": "add_comment", "body": "tracking #aw_late", "temporary_id": "aw_cmt1"},
            {"type": "create_issue", "title": "Late", "body": "#aw_cmt1", "temporary_id": "aw_late"},
        )
    )

    assert report.count("success") == 2
    assert updater.comment_updates == [("o/r", 5001, "tracking #101")]
    assert report.synthetic_update_count == 1


def test_mutual_parent_cycle_stays_deferred_after_one_retry() -> None:
    report, github, _, _ = _github_run(
        _batch(
            {"type": "create_issue", "title": "A", "temporary_id": "aw_aaa", "parent": "aw_bbb"},
            {"type": "create_issue", "title": "B", "temporary_id": "aw_bbb", "parent": "aw_aaa"},
        )
    )

    assert _statuses(report) == [(0, "deferred"), (1, "deferred")]
    assert [result.attempts for result in report.results] == [2, 2]
    assert "aw_bbb" in (report.results[0].error or "")
    assert github.calls == []
    assert report.resolution_table == {}


def test_deferred_request_succeeds_on_retry() -> None:
    calls: list[int] = []

    def flaky(request: Request, view: ResolutionView) -> HandlerOutcome:
        _ = request, view
        calls.append(1)
        if len(calls) == 1:
            return HandlerOutcome.deferred("not yet")
        return HandlerOutcome.succeeded(done=True)

    report = dispatch_batch(
        _batch({"type": "flaky"}),
        registry=_scripted_registry(flaky=flaky),
        updater=FakeUpdater(),
        default_scope="o/r",
    )

    assert _statuses(report) == [(0, "success")]
    assert report.results[0].attempts == 2
    assert report.results[0].detail == {"done": True}


def test_malformed_temporary_id_is_an_error_that_does_not_abort_the_batch() -> None:
    report, github, _, _ = _github_run(
        _batch(
            {"type": "create_issue", "title": "Bad", "temporary_id": "aw_ab"},
            {"type": "create_issue", "title": "Numeric", "temporary_id": "123"},
            {"type": "create_issue", "title": "Fine"},
        )
    )

    assert _statuses(report) == [(0, "error"), (1, "error"), (2, "success")]
    assert "Invalid temporary ID format" in (report.results[0].error or "")
    assert "is not a temporary ID" in (report.results[1].error or "")
    assert [call[2] for call in github.calls] == ["Fine"]


def test_second_producer_of_an_id_is_rejected() -> None:
    report, github, _, _ = _github_run(
        _batch(
            {"type": "create_issue", "title": "First", "temporary_id": "aw_dup"},
            {"type": "create_issue", "title": "Second", "temporary_id": "AW_DUP"},
        )
    )

    assert _statuses(report) == [(0, "success"), (1, "error")]
    assert "position 0" in (report.results[1].error or "")
    assert len(github.calls) == 1


def test_carried_in_table_resolves_targets_and_blocks_reproduction() -> None:
    initial = {"aw_old1": ItemReference(scope="x/y", number=40)}
    report, github, _, _ = _github_run(
        _batch(
            {"type": "add_comment", "issue_number": "aw_old1", "body": "again #aw_old1"},
            {"type": "create_issue", "title": "Again", "temporary_id": "aw_old1"},
        ),
        initial_table=initial,
    )

    assert _statuses(report) == [(0, "success"), (1, "error")]
    assert github.calls == [("post_issue_comment", "x/y", 40, "again #40")]
    assert "earlier run" in (report.results[1].error or "")
    assert report.resolution_table == {"aw_old1": {"repo": "x/y", "number": 40}}


def test_classification_of_unconfigured_types() -> None:
    report, _, _, _ = _github_run(
        _batch(
            {"type": "noop", "message": "nothing to do"},
            {"type": "deploy_docs"},
            {"type": "create_discussion", "title": "x"},
            {"title": "no type"},
        ),
        custom_job_types=frozenset({"deploy_docs"}),
    )

    assert _statuses(report) == [(0, "skipped"), (1, "skipped"), (2, "error"), (3, "error")]
    assert [result.skip_reason for result in report.results[:2]] == ["standalone", "custom"]
    assert "No handler is configured" in (report.results[2].error or "")
    assert "'type'" in (report.results[3].error or "")
    assert report.missing.noops == ("nothing to do",)


def test_handler_exception_message_is_preserved() -> None:
    def broken(request: Request, view: ResolutionView) -> HandlerOutcome:
        _ = request, view
        raise RuntimeError("HTTP 403: Resource not accessible by integration")

    def fine(request: Request, view: ResolutionView) -> HandlerOutcome:
        _ = request, view
        return HandlerOutcome.succeeded()

    report = dispatch_batch(
        _batch({"type": "broken"}, {"type": "fine"}),
        registry=_scripted_registry(broken=broken, fine=fine),
        updater=FakeUpdater(),
        default_scope="o/r",
    )

    assert _statuses(report) == [(0, "error"), (1, "success")]
    assert report.results[0].error == "HTTP 403: Resource not accessible by integration"


def test_failed_synthetic_update_is_not_counted() -> None:
    report, _, updater, _ = _github_run(
        _batch(
            {"type": "create_issue", "title": "A", "body": "see #aw_bbb", "temporary_id": "aw_aaa"},
            {"type": "create_issue", "title": "B", "body": "see #aw_aaa", "temporary_id": "aw_bbb"},
        ),
        updater=FakeUpdater(error=RuntimeError("boom")),
    )

    assert report.count("success") == 2
    assert report.synthetic_update_count == 0
    assert updater.issue_updates == []


def test_failed_producer_leaves_reference_unpatched() -> None:
    report, _, updater, _ = _github_run(
        _batch(
            {"type": "create_issue", "title": "A", "body": "see #aw_bbb", "temporary_id": "aw_aaa"},
            {"type": "create_issue", "title": "  ", "body": "#aw_aaa", "temporary_id": "aw_bbb"},
        ),
    )

    assert _statuses(report) == [(0, "success"), (1, "error")]
    assert report.synthetic_update_count == 0
    assert updater.issue_updates == []


def test_review_comments_are_submitted_once_at_the_end() -> None:
    report, github, _, _ = _github_run(
        _batch(
            {"type": "create_pull_request_review_comment", "path": "a.py", "line": 1, "body": "1"},
            {"type": "create_pull_request_review_comment", "path": "a.py", "line": 2, "body": "2"},
            {"type": "create_pull_request_review_comment", "path": "b.py", "line": 3, "body": "3"},
            {"type": "submit_pull_request_review", "event": "COMMENT", "body": "Summary"},
        ),
        handler_types=("create_pull_request_review_comment", "submit_pull_request_review"),
    )

    reviews = [call for call in github.calls if call[0] == "create_pull_request_review"]
    assert len(reviews) == 1
    assert reviews[0][2:6] == (34, "headsha", "COMMENT", "Summary")
    assert len(reviews[0][6]) == 3  # type: ignore[arg-type]
    assert report.results[-1].position is None
    assert report.results[-1].type == REVIEW_RESULT_TYPE
    assert report.results[-1].status == "success"
    assert report.review is not None
    assert report.review.comment_count == 3


def test_review_submission_failure_becomes_one_synthetic_error() -> None:
    github = FakeGitHub()
    github.fail_on["create_pull_request_review"] = RuntimeError("Validation Failed")

    report, _, _, _ = _github_run(
        _batch({"type": "create_pull_request_review_comment", "path": "a", "line": 1, "body": "x"}),
        github=github,
        handler_types=("create_pull_request_review_comment",),
    )

    assert _statuses(report) == [(0, "success"), (None, "error")]
    assert report.results[1].error == "Validation Failed"
    assert report.review is None


def test_follow_ups_and_missing_reports_are_collected() -> None:
    runtime = RuntimeConfig(repo="o/r")
    github = FakeGitHub()
    config = AppConfig(
        runtime=runtime,
        handlers=(
            HandlerConfig(type="create_issue", assignees=("Copilot",)),
            HandlerConfig(type="missing_tool"),
            HandlerConfig(type="missing_data"),
        ),
    )
    context = HandlerContext(gateway=github, runtime=runtime)  # type: ignore[arg-type]

    report = dispatch_batch(
        _batch(
            {"type": "create_issue", "title": "Agent task"},
            {"type": "missing_tool", "tool": "docker", "reason": "absent"},
            {"type": "missing_data", "data_type": "logs", "reason": "expired"},
        ),
        registry=build_registry(config, context),
        updater=FakeUpdater(),
        default_scope="o/r",
    )

    assert report.follow_ups == ("o/r#101",)
    assert report.missing.tools == ({"tool": "docker", "reason": "absent", "alternatives": None},)
    assert report.missing.data == (
        {"data_type": "logs", "reason": "expired", "context": None, "alternatives": None},
    )
    payload = report.to_json_dict()
    assert payload["counts"] == {"success": 3, "error": 0, "deferred": 0, "skipped": 0}
    assert payload["follow_ups"] == ["o/r#101"]


def test_missing_reports_are_collected_without_configured_handlers() -> None:
    report, github, _, _ = _github_run(
        _batch(
            {"type": "missing_tool", "tool": "docker", "reason": "absent", "alternatives": "podman"},
            {"type": "missing_data", "data_type": "logs", "reason": "expired", "context": "ci"},
            {"type": "missing_tool", "tool": "helm"},
            {"type": "noop"},
            {"type": "noop", "message": "all good"},
        ),
        handler_types=("create_issue",),
    )

    assert _statuses(report) == [
        (0, "skipped"),
        (1, "skipped"),
        (2, "skipped"),
        (3, "skipped"),
        (4, "skipped"),
    ]
    assert [result.skip_reason for result in report.results] == [
        "collected",
        "collected",
        "collected",
        "standalone",
        "standalone",
    ]
    assert report.missing.tools == ({"tool": "docker", "reason": "absent", "alternatives": "podman"},)
    assert report.missing.data == (
        {"data_type": "logs", "reason": "expired", "context": "ci", "alternatives": None},
    )
    assert report.missing.noops == ("all good",)
    assert report.count("error") == 0
    assert github.calls == []


def test_malformed_carried_in_entries_are_dropped() -> None:
    def post(request: Request, view: ResolutionView) -> HandlerOutcome:
        _ = request
        return HandlerOutcome.succeeded(seen=sorted(view))

    report = dispatch_batch(
        _batch({"type": "post", "issue_number": "aw_good"}),
        registry=_scripted_registry(post=post),
        updater=FakeUpdater(),
        initial_table={
            "aw_x": ItemReference(scope="o/r", number=1),
            "AW_GOOD": ItemReference(scope="o/r", number=2),
        },
        default_scope="o/r",
    )

    assert _statuses(report) == [(0, "success")]
    assert report.results[0].detail == {"seen": ["aw_good"]}
    assert report.resolution_table == {"aw_good": {"repo": "o/r", "number": 2}}


def test_tracked_output_is_left_alone_when_its_producer_never_succeeds() -> None:
    producer_calls: list[int] = []

    def producer(request: Request, view: ResolutionView) -> HandlerOutcome:
        _ = request, view
        producer_calls.append(1)
        if len(producer_calls) == 1:
            return HandlerOutcome.deferred("waiting")
        return HandlerOutcome.failed("HTTP 422")

    def poster(request: Request, view: ResolutionView) -> HandlerOutcome:
        _ = view
        return HandlerOutcome.succeeded(
            created=CreatedLocation(
                kind="issue", scope="o/r", number=7, body=request.get_str("body") or ""
            )
        )

    updater = FakeUpdater()
    report = dispatch_batch(
        _batch(
            {"type": "post", "body": "see #aw_bbb"},
            {"type": "produce", "temporary_id": "aw_bbb"},
        ),
        registry=_scripted_registry(post=poster, produce=producer),
        updater=updater,
        default_scope="o/r",
    )

    assert _statuses(report) == [(0, "success"), (1, "error")]
    assert len(producer_calls) == 2
    assert updater.issue_updates == []
    assert updater.comment_updates == []
    assert report.synthetic_update_count == 0


def test_per_run_state_is_not_shared_between_runs() -> None:
    def producer(request: Request, view: ResolutionView) -> HandlerOutcome:
        _ = view
        assert isinstance(request.temporary_id, str)
        return HandlerOutcome.succeeded(
            new_mapping=NewMapping(request.temporary_id, ItemReference(scope="o/r", number=1))
        )

    registry = _scripted_registry(make=producer)
    for _ in range(2):
        report = dispatch_batch(
            _batch({"type": "make", "temporary_id": "aw_same"}),
            registry=registry,
            updater=FakeUpdater(),
            default_scope="o/r",
        )
        assert _statuses(report) == [(0, "success")]
        assert report.resolution_table == {"aw_same": {"repo": "o/r", "number": 1}}


@pytest.mark.parametrize("bad_type", ["", None, 7])
def test_missing_or_non_string_type_is_an_error(bad_type: object) -> None:
    report = dispatch_batch(
        _batch({"type": bad_type}),
        registry=_scripted_registry(),
        updater=FakeUpdater(),
        default_scope="o/r",
    )
    assert _statuses(report) == [(0, "error")]
    assert report.results[0].attempts == 0
