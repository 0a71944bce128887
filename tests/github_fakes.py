from __future__ import annotations

from safeoutputs.models import (
    CommentHandle,
    IssueHandle,
    ProjectBoard,
    PullRequestSnapshot,
    ReviewEvent,
    SubmittedReview,
)


class FakeGitHub:
    """In-memory stand-in for `GitHubGateway`; every scope shares one call log."""

    def __init__(self, owner: str = "o", name: str = "r", *, _shared: FakeGitHub | None = None):
        self.owner = owner
        self.name = name
        root = _shared or self
        self._root = root
        if _shared is None:
            self.calls: list[tuple[object, ...]] = []
            self.fail_on: dict[str, Exception] = {}
            self.pr_state = "open"
            self._next_issue = 100
            self._next_comment = 5000

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def for_repo(self, full_name: str) -> FakeGitHub:
        owner, _, name = full_name.partition("/")
        return FakeGitHub(owner, name, _shared=self._root)

    @property
    def log(self) -> list[tuple[object, ...]]:
        return self._root.calls

    def _record(self, method: str, *args: object) -> None:
        root = self._root
        root.calls.append((method, self.full_name, *args))
        failure = root.fail_on.get(method)
        if failure is not None:
            raise failure

    def create_issue(
        self,
        *,
        title: str,
        body: str,
        labels: tuple[str, ...] = (),
        assignees: tuple[str, ...] = (),
    ) -> IssueHandle:
        self._record("create_issue", title, body, labels, assignees)
        root = self._root
        root._next_issue += 1
        number = root._next_issue
        return IssueHandle(
            number=number,
            html_url=f"https://github.com/{self.full_name}/issues/{number}",
            database_id=number * 10,
            node_id=f"I_{number}",
        )

    def get_issue(self, issue_number: int) -> IssueHandle:
        self._record("get_issue", issue_number)
        return IssueHandle(
            number=issue_number,
            html_url=f"https://github.com/{self.full_name}/issues/{issue_number}",
            database_id=issue_number * 10,
            node_id=f"I_{issue_number}",
        )

    def update_issue(
        self,
        issue_number: int,
        *,
        title: str | None = None,
        body: str | None = None,
        state: str | None = None,
        state_reason: str | None = None,
    ) -> None:
        self._record("update_issue", issue_number, title, body, state, state_reason)

    def add_labels(self, issue_number: int, labels: tuple[str, ...]) -> None:
        self._record("add_labels", issue_number, labels)

    def add_sub_issue(self, parent_number: int, sub_issue_id: int) -> None:
        self._record("add_sub_issue", parent_number, sub_issue_id)

    def post_issue_comment(self, issue_number: int, body: str) -> CommentHandle:
        self._record("post_issue_comment", issue_number, body)
        root = self._root
        root._next_comment += 1
        return CommentHandle(
            comment_id=root._next_comment,
            html_url=f"https://github.com/{self.full_name}/issues/{issue_number}#c",
        )

    def update_issue_comment(self, comment_id: int, body: str) -> None:
        self._record("update_issue_comment", comment_id, body)

    def get_pull_request(self, pr_number: int) -> PullRequestSnapshot:
        self._record("get_pull_request", pr_number)
        return PullRequestSnapshot(number=pr_number, head_sha="headsha", state=self._root.pr_state)

    def create_pull_request_review(
        self,
        pr_number: int,
        *,
        commit_id: str,
        event: ReviewEvent,
        body: str,
        comments: tuple[dict[str, object], ...],
    ) -> SubmittedReview:
        self._record("create_pull_request_review", pr_number, commit_id, event, body, comments)
        return SubmittedReview(
            review_id=77,
            html_url=f"https://github.com/{self.full_name}/pull/{pr_number}#review",
            comment_count=len(comments),
            event=event,
        )

    def create_project(self, *, owner_login: str, title: str) -> ProjectBoard:
        self._record("create_project", owner_login, title)
        return ProjectBoard(
            project_id="PVT_1", url=f"https://github.com/orgs/{owner_login}/projects/1"
        )

    def add_project_draft_item(self, project_url: str, *, title: str, body: str) -> str:
        self._record("add_project_draft_item", project_url, title, body)
        return "PVTI_draft"

    def add_project_item(self, project_url: str, *, content_node_id: str) -> str:
        self._record("add_project_item", project_url, content_node_id)
        return "PVTI_item"

    def methods(self) -> list[object]:
        return [call[0] for call in self.log]
