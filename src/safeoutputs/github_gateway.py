from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import re
from typing import cast

from safeoutputs.models import (
    CommentHandle,
    IssueHandle,
    ProjectBoard,
    PullRequestSnapshot,
    ReviewEvent,
    SubmittedReview,
)
from safeoutputs.observability import log_event
from safeoutputs.shell import run


LOGGER = logging.getLogger("safeoutputs.github_gateway")
_PROJECT_URL_PATTERN = re.compile(
    r"^https://github\.com/(orgs|users)/([^/]+)/projects/(\d+)/?$", re.IGNORECASE
)

_OWNER_ID_QUERY = """
query($login: String!) {
  repositoryOwner(login: $login) { id }
}
"""
_CREATE_PROJECT_MUTATION = """
mutation($ownerId: ID!, $title: String!) {
  createProjectV2(input: {ownerId: $ownerId, title: $title}) {
    projectV2 { id url }
  }
}
"""
_ORG_PROJECT_QUERY = """
query($login: String!, $number: Int!) {
  organization(login: $login) { projectV2(number: $number) { id } }
}
"""
_USER_PROJECT_QUERY = """
query($login: String!, $number: Int!) {
  user(login: $login) { projectV2(number: $number) { id } }
}
"""
_ADD_DRAFT_MUTATION = """
mutation($projectId: ID!, $title: String!, $body: String) {
  addProjectV2DraftIssue(input: {projectId: $projectId, title: $title, body: $body}) {
    projectItem { id }
  }
}
"""
_ADD_ITEM_MUTATION = """
mutation($projectId: ID!, $contentId: ID!) {
  addProjectV2ItemById(input: {projectId: $projectId, contentId: $contentId}) {
    item { id }
  }
}
"""


class GitHubApiError(RuntimeError):
    """GitHub answered with a non-success status or an unexpected payload."""


@dataclass(frozen=True)
class GitHubGateway:
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def for_repo(self, full_name: str) -> GitHubGateway:
        owner, sep, name = full_name.partition("/")
        if not sep or not owner or not name or "/" in name:
            raise ValueError(f"Repository must be in 'owner/name' form, got {full_name!r}")
        if owner == self.owner and name == self.name:
            return self
        return GitHubGateway(owner, name)

    def create_issue(
        self,
        *,
        title: str,
        body: str,
        labels: tuple[str, ...] = (),
        assignees: tuple[str, ...] = (),
    ) -> IssueHandle:
        path = f"/repos/{self.owner}/{self.name}/issues"
        request: dict[str, object] = {"title": title, "body": body}
        if labels:
            request["labels"] = list(labels)
        if assignees:
            request["assignees"] = list(assignees)
        try:
            payload = self._api_json("POST", path, payload=request)
            handle = _issue_handle(payload)
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_issue_create_failed",
                level=logging.WARNING,
                repo_full_name=self.full_name,
                error_type=type(exc).__name__,
            )
            raise
        log_event(
            LOGGER,
            "github_issue_created",
            repo_full_name=self.full_name,
            issue_number=handle.number,
            issue_url=handle.html_url,
        )
        return handle

    def get_issue(self, issue_number: int) -> IssueHandle:
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}"
        handle = _issue_handle(self._api_json("GET", path))
        log_event(LOGGER, "github_read", endpoint="issue", issue_number=handle.number)
        return handle

    def update_issue(
        self,
        issue_number: int,
        *,
        title: str | None = None,
        body: str | None = None,
        state: str | None = None,
        state_reason: str | None = None,
    ) -> None:
        request: dict[str, object] = {}
        if title is not None:
            request["title"] = title
        if body is not None:
            request["body"] = body
        if state is not None:
            request["state"] = state
        if state_reason is not None:
            request["state_reason"] = state_reason
        if not request:
            raise ValueError("update_issue requires at least one field to change")
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}"
        self._api_json("PATCH", path, payload=request)
        log_event(
            LOGGER,
            "github_issue_updated",
            repo_full_name=self.full_name,
            issue_number=issue_number,
            fields=sorted(request),
        )

    def add_labels(self, issue_number: int, labels: tuple[str, ...]) -> None:
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}/labels"
        self._api_json("POST", path, payload={"labels": list(labels)})
        log_event(
            LOGGER,
            "github_labels_added",
            repo_full_name=self.full_name,
            issue_number=issue_number,
            labels=labels,
        )

    def add_sub_issue(self, parent_number: int, sub_issue_id: int) -> None:
        path = f"/repos/{self.owner}/{self.name}/issues/{parent_number}/sub_issues"
        self._api_json("POST", path, payload={"sub_issue_id": sub_issue_id})
        log_event(
            LOGGER,
            "github_sub_issue_linked",
            repo_full_name=self.full_name,
            parent_number=parent_number,
            sub_issue_id=sub_issue_id,
        )

    def post_issue_comment(self, issue_number: int, body: str) -> CommentHandle:
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}/comments"
        try:
            payload = self._api_json("POST", path, payload={"body": body})
            payload_obj = _require_object(payload, what="comment")
            handle = CommentHandle(
                comment_id=_as_int(payload_obj.get("id"), field="id"),
                html_url=_as_string(payload_obj.get("html_url")),
            )
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_issue_comment_failed",
                level=logging.WARNING,
                repo_full_name=self.full_name,
                issue_number=issue_number,
                error_type=type(exc).__name__,
            )
            raise
        log_event(
            LOGGER,
            "github_issue_comment_posted",
            repo_full_name=self.full_name,
            issue_number=issue_number,
            comment_id=handle.comment_id,
        )
        return handle

    def update_issue_comment(self, comment_id: int, body: str) -> None:
        path = f"/repos/{self.owner}/{self.name}/issues/comments/{comment_id}"
        self._api_json("PATCH", path, payload={"body": body})
        log_event(
            LOGGER,
            "github_issue_comment_updated",
            repo_full_name=self.full_name,
            comment_id=comment_id,
        )

    def get_pull_request(self, pr_number: int) -> PullRequestSnapshot:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}"
        payload_obj = _require_object(self._api_json("GET", path), what="pull request")
        head = _as_object_dict(payload_obj.get("head"))
        if head is None:
            raise GitHubApiError("Unexpected GitHub response: missing pull request head")
        snapshot = PullRequestSnapshot(
            number=_as_int(payload_obj.get("number"), field="number"),
            head_sha=_as_string(head.get("sha")),
            state=_as_string(payload_obj.get("state")),
        )
        log_event(LOGGER, "github_read", endpoint="pull_request", pr_number=snapshot.number)
        return snapshot

    def create_pull_request_review(
        self,
        pr_number: int,
        *,
        commit_id: str,
        event: ReviewEvent,
        body: str,
        comments: tuple[dict[str, object], ...],
    ) -> SubmittedReview:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/reviews"
        request: dict[str, object] = {"commit_id": commit_id, "event": event}
        if comments:
            request["comments"] = list(comments)
        if body:
            request["body"] = body
        payload_obj = _require_object(
            self._api_json("POST", path, payload=request), what="pull request review"
        )
        review = SubmittedReview(
            review_id=_as_int(payload_obj.get("id"), field="id"),
            html_url=_as_string(payload_obj.get("html_url")),
            comment_count=len(comments),
            event=event,
        )
        log_event(
            LOGGER,
            "github_review_created",
            repo_full_name=self.full_name,
            pr_number=pr_number,
            review_id=review.review_id,
        )
        return review

    def create_project(self, *, owner_login: str, title: str) -> ProjectBoard:
        owner_data = self._graphql(_OWNER_ID_QUERY, {"login": owner_login})
        owner_obj = _as_object_dict(owner_data.get("repositoryOwner"))
        if owner_obj is None:
            raise GitHubApiError(f"GitHub owner {owner_login!r} was not found")
        data = self._graphql(
            _CREATE_PROJECT_MUTATION,
            {"ownerId": _as_string(owner_obj.get("id")), "title": title},
        )
        project_obj = _dig(data, "createProjectV2", "projectV2")
        board = ProjectBoard(
            project_id=_as_string(project_obj.get("id")),
            url=_as_string(project_obj.get("url")),
        )
        log_event(LOGGER, "github_project_created", owner_login=owner_login, project_url=board.url)
        return board

    def add_project_draft_item(self, project_url: str, *, title: str, body: str) -> str:
        project_id = self._project_id(project_url)
        data = self._graphql(
            _ADD_DRAFT_MUTATION, {"projectId": project_id, "title": title, "body": body}
        )
        item_id = _as_string(_dig(data, "addProjectV2DraftIssue", "projectItem").get("id"))
        log_event(LOGGER, "github_project_draft_added", project_url=project_url, item_id=item_id)
        return item_id

    def add_project_item(self, project_url: str, *, content_node_id: str) -> str:
        project_id = self._project_id(project_url)
        data = self._graphql(
            _ADD_ITEM_MUTATION, {"projectId": project_id, "contentId": content_node_id}
        )
        item_id = _as_string(_dig(data, "addProjectV2ItemById", "item").get("id"))
        log_event(LOGGER, "github_project_item_added", project_url=project_url, item_id=item_id)
        return item_id

    def _project_id(self, project_url: str) -> str:
        parsed = parse_project_url(project_url)
        if parsed is None:
            raise GitHubApiError(
                f"Unsupported project URL {project_url!r}; expected "
                "https://github.com/orgs/<org>/projects/<n> or "
                "https://github.com/users/<user>/projects/<n>"
            )
        owner_kind, login, number = parsed
        if owner_kind == "orgs":
            data = self._graphql(_ORG_PROJECT_QUERY, {"login": login, "number": number})
            project_obj = _dig(data, "organization", "projectV2")
        else:
            data = self._graphql(_USER_PROJECT_QUERY, {"login": login, "number": number})
            project_obj = _dig(data, "user", "projectV2")
        return _as_string(project_obj.get("id"))

    def _graphql(self, query: str, variables: dict[str, object]) -> dict[str, object]:
        cmd = ["gh", "api", "graphql", "--input", "-"]
        raw = run(cmd, input_text=json.dumps({"query": query, "variables": variables}))
        payload_obj = _require_object(json.loads(raw), what="GraphQL response")
        errors = payload_obj.get("errors")
        if isinstance(errors, list) and errors:
            messages = [
                _as_string(error_obj.get("message"))
                for error in errors
                if (error_obj := _as_object_dict(error)) is not None
            ]
            raise GitHubApiError("GitHub GraphQL error: " + "; ".join(messages or ["<unknown>"]))
        data = _as_object_dict(payload_obj.get("data"))
        if data is None:
            raise GitHubApiError("Unexpected GitHub GraphQL response: missing data")
        return data

    def _api_json(self, method: str, path: str, payload: dict[str, object] | None = None) -> object:
        method_upper = method.upper()
        if method_upper == "GET":
            raw = run(["gh", "api", "--method", method_upper, "--include", path], check=False)
            try:
                status_code, _headers, body = _parse_http_response(raw)
                if status_code < 200 or status_code >= 300:
                    message = body.strip() or "<empty>"
                    raise GitHubApiError(
                        f"GitHub API request failed with status {status_code}: {message}"
                    )
                return json.loads(body)
            except Exception as exc:
                log_event(
                    LOGGER,
                    "github_get_failed",
                    level=logging.WARNING,
                    path=path,
                    error_type=type(exc).__name__,
                    error=str(exc),
                    raw_preview=_preview_for_log(raw),
                )
                if isinstance(exc, GitHubApiError):
                    raise
                raise GitHubApiError(f"GitHub GET failed for path {path}: {exc}") from exc

        cmd = ["gh", "api", "--method", method_upper, path]
        stdin_payload: str | None = None
        if payload is not None:
            cmd.extend(["--input", "-"])
            stdin_payload = json.dumps(payload)
        raw = run(cmd, input_text=stdin_payload)
        if not raw.strip():
            return {}
        return json.loads(raw)


def parse_project_url(project_url: str) -> tuple[str, str, int] | None:
    match = _PROJECT_URL_PATTERN.match(project_url.strip())
    if match is None:
        return None
    owner_kind, login, number = match.groups()
    return owner_kind.lower(), login, int(number)


def _issue_handle(payload: object) -> IssueHandle:
    payload_obj = _require_object(payload, what="issue")
    return IssueHandle(
        number=_as_int(payload_obj.get("number"), field="number"),
        html_url=_as_string(payload_obj.get("html_url")),
        database_id=_as_int(payload_obj.get("id"), field="id"),
        node_id=_as_string(payload_obj.get("node_id")),
    )


def _parse_http_response(raw: str) -> tuple[int, dict[str, str], str]:
    normalized = raw.replace("\r\n", "\n")
    lines = normalized.split("\n")

    status_line_index = -1
    for index, line in enumerate(lines):
        if line.startswith("HTTP/"):
            status_line_index = index

    if status_line_index < 0:
        raise GitHubApiError("Unexpected GitHub response: missing HTTP status line")

    status_line = lines[status_line_index]
    status_parts = status_line.split(" ", 2)
    if len(status_parts) < 2:
        raise GitHubApiError(f"Unexpected GitHub response status line: {status_line!r}")

    try:
        status_code = int(status_parts[1])
    except ValueError as exc:
        raise GitHubApiError(f"Unexpected GitHub response status line: {status_line!r}") from exc

    headers: dict[str, str] = {}
    body_start = len(lines)
    for index in range(status_line_index + 1, len(lines)):
        line = lines[index]
        if line == "":
            body_start = index + 1
            break
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        headers[key.strip().lower()] = value.strip()

    body = "\n".join(lines[body_start:])
    return status_code, headers, body


def _preview_for_log(text: str, *, limit: int = 240) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def _dig(data: dict[str, object], *keys: str) -> dict[str, object]:
    current: dict[str, object] | None = data
    for key in keys:
        current = _as_object_dict(current.get(key)) if current is not None else None
        if current is None:
            raise GitHubApiError(f"Unexpected GitHub GraphQL response: missing {'.'.join(keys)}")
    return cast(dict[str, object], current)


def _require_object(value: object, *, what: str) -> dict[str, object]:
    payload_obj = _as_object_dict(value)
    if payload_obj is None:
        raise GitHubApiError(f"Unexpected GitHub response: expected object for {what}")
    return payload_obj


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool):
        raise GitHubApiError(f"Unexpected GitHub response type for {field}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise GitHubApiError(f"Unexpected GitHub response value for {field}: {value}") from exc
    raise GitHubApiError(f"Unexpected GitHub response type for {field}")
