from __future__ import annotations

from collections.abc import Callable
import logging

from safeoutputs.models import (
    ReviewComment,
    ReviewEvent,
    ReviewMetadata,
    ReviewTarget,
    SubmittedReview,
)
from safeoutputs.observability import log_event


LOGGER = logging.getLogger("safeoutputs.review_buffer")

ReviewSubmitter = Callable[
    [ReviewTarget, ReviewEvent, str, tuple[dict[str, object], ...]], SubmittedReview
]


class ReviewSubmissionError(RuntimeError):
    pass


class ReviewBuffer:
    """Collects inline comments and review metadata for one combined review per run."""

    def __init__(
        self,
        submit: ReviewSubmitter,
        *,
        include_footer: bool = True,
        footer: str = "",
    ) -> None:
        self._submit = submit
        self._include_footer = include_footer
        self._footer = footer
        self._comments: list[ReviewComment] = []
        self._metadata: ReviewMetadata | None = None
        self._target: ReviewTarget | None = None
        self._flushed = False

    @property
    def target(self) -> ReviewTarget | None:
        return self._target

    @property
    def comment_count(self) -> int:
        return len(self._comments)

    @property
    def metadata(self) -> ReviewMetadata | None:
        return self._metadata

    def set_include_footer(self, value: bool) -> None:
        self._include_footer = value

    def set_target(self, target: ReviewTarget) -> bool:
        if self._target is not None:
            return False
        self._target = target
        log_event(
            LOGGER,
            "review_target_set",
            repo_full_name=target.scope,
            pr_number=target.pr_number,
        )
        return True

    def add_comment(self, comment: ReviewComment) -> None:
        self._ensure_open()
        self._comments.append(comment)
        log_event(
            LOGGER,
            "review_comment_buffered",
            index=len(self._comments),
            path=comment.path,
            line=comment.line,
        )

    def set_metadata(self, body: str, event: ReviewEvent) -> None:
        self._ensure_open()
        self._metadata = ReviewMetadata(body=body, event=event)
        log_event(LOGGER, "review_metadata_set", review_event=event, body_length=len(body))

    def has_content(self) -> bool:
        return bool(self._comments) or self._metadata is not None

    def flush(self) -> SubmittedReview | None:
        if self._flushed:
            raise ReviewSubmissionError("Review buffer was already flushed")
        self._flushed = True
        if not self.has_content():
            return None
        if self._target is None:
            raise ReviewSubmissionError("No pull request review target was established")

        event: ReviewEvent = self._metadata.event if self._metadata is not None else "COMMENT"
        body = self._metadata.body if self._metadata is not None else ""
        if self._include_footer and self._footer:
            body = f"{body}{self._footer}" if body else self._footer.lstrip()
        comments = tuple(_comment_payload(comment) for comment in self._comments)

        log_event(
            LOGGER,
            "review_submit_started",
            repo_full_name=self._target.scope,
            pr_number=self._target.pr_number,
            review_event=event,
            comment_count=len(comments),
            body_length=len(body),
        )
        try:
            submitted = self._submit(self._target, event, body, comments)
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "review_submit_failed",
                level=logging.ERROR,
                repo_full_name=self._target.scope,
                pr_number=self._target.pr_number,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise ReviewSubmissionError(str(exc)) from exc
        log_event(
            LOGGER,
            "review_submitted",
            repo_full_name=self._target.scope,
            pr_number=self._target.pr_number,
            review_id=submitted.review_id,
            review_url=submitted.html_url,
        )
        return submitted

    def _ensure_open(self) -> None:
        if self._flushed:
            raise ReviewSubmissionError("Review buffer was already flushed")


def _comment_payload(comment: ReviewComment) -> dict[str, object]:
    payload: dict[str, object] = {
        "path": comment.path,
        "line": comment.line,
        "body": comment.body,
    }
    if comment.start_line is not None:
        payload["start_line"] = comment.start_line
    if comment.side is not None:
        payload["side"] = comment.side
    if comment.start_line is not None:
        start_side = comment.start_side or comment.side
        if start_side is not None:
            payload["start_side"] = start_side
    return payload
