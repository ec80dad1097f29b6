"""GitHub issue tracker adapter over the ``gh`` CLI.

Every call goes through ``CommandRunner`` (retry, timeout, JSON
classification).  A failed result becomes ``RemoteError``; responses are
validated into the models of ``worklog_sync.sync.models`` here, so nothing
loosely typed reaches the synchronizers.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Sequence

from pydantic import ValidationError

from ..sync.labels import label_color, labels_for_update, normalize_label_prefix
from ..sync.models import (
    ExternalComment,
    ExternalIssueRecord,
    IssueHierarchy,
    IssuePayload,
    IssueState,
)
from .retry import RetryPolicy
from .runner import CommandRunner

if TYPE_CHECKING:
    from ..config import SyncConfig

logger = logging.getLogger(__name__)

_HIERARCHY_QUERY = """query($owner: String!, $name: String!, $number: Int!) {
  repository(owner: $owner, name: $name) {
    issue(number: $number) {
      parent { number }
      subIssues(first: 100) { nodes { number } }
    }
  }
}"""

_NODE_ID_QUERY = """query($owner: String!, $name: String!, $number: Int!) {
  repository(owner: $owner, name: $name) {
    issue(number: $number) { id }
  }
}"""

_ADD_SUB_ISSUE_MUTATION = """mutation($parent: ID!, $child: ID!) {
  addSubIssue(input: { issueId: $parent, subIssueId: $child }) {
    issue { id }
    subIssue { id }
  }
}"""

_REMOTE_URL_RE = re.compile(
    r"github\.com[:/](?P<owner>[^/\s]+)/(?P<name>[^/\s]+?)(?:\.git)?/?$"
)


class RemoteError(Exception):
    """A tracker call failed or returned an unexpected shape."""

    def __init__(self, message: str, command: Sequence[str] | None = None):
        super().__init__(message)
        self.message = message
        self.command = list(command or [])


def _is_pull_request(entry: dict) -> bool:
    if entry.get("pull_request"):
        return True
    html_url = entry.get("html_url")
    if isinstance(html_url, str) and "/pull/" in html_url:
        return True
    return bool(entry.get("pull_request_url"))


def normalize_issue(raw: Any) -> ExternalIssueRecord:
    """Validate a REST issue payload into ``ExternalIssueRecord``.

    Raises:
        RemoteError: If the payload is not a recognisable issue.
    """
    if not isinstance(raw, dict):
        raise RemoteError(
            f"unexpected response shape: expected issue object, "
            f"got {type(raw).__name__}"
        )
    labels = [
        label.get("name") if isinstance(label, dict) else label
        for label in raw.get("labels") or []
    ]
    state = str(raw.get("state") or "").lower()
    summary = raw.get("sub_issues_summary")
    try:
        return ExternalIssueRecord(
            id=raw.get("id"),
            number=raw.get("number"),
            title=raw.get("title") or "",
            body=raw.get("body"),
            state=IssueState.CLOSED if state == "closed" else IssueState.OPEN,
            labels=[lb for lb in labels if isinstance(lb, str)],
            updated_at=raw.get("updated_at") or raw.get("updatedAt"),
            sub_issues_summary=(
                {
                    "total": summary.get("total") or 0,
                    "completed": summary.get("completed") or 0,
                }
                if isinstance(summary, dict)
                else None
            ),
        )
    except ValidationError as exc:
        raise RemoteError(f"unexpected response shape: {exc}") from exc


def normalize_comment(raw: Any) -> ExternalComment:
    if not isinstance(raw, dict):
        raise RemoteError(
            f"unexpected response shape: expected comment object, "
            f"got {type(raw).__name__}"
        )
    try:
        return ExternalComment(
            id=raw.get("id"),
            body=raw.get("body") or "",
            updated_at=raw.get("updated_at") or raw.get("created_at"),
        )
    except ValidationError as exc:
        raise RemoteError(f"unexpected response shape: {exc}") from exc


def format_since(since: datetime) -> str:
    """ISO-8601 UTC form accepted by the ``since`` query parameter."""
    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    return since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_repo_url(url: str) -> str | None:
    """Return ``owner/name`` from a GitHub remote URL, or ``None``."""
    match = _REMOTE_URL_RE.search(url.strip())
    if match is None:
        return None
    return f"{match.group('owner')}/{match.group('name')}"


def repo_from_git_remote(
    runner: CommandRunner | None = None, remote: str = "origin"
) -> str | None:
    """Infer the repository slug from a git remote URL."""
    git = runner or CommandRunner(binary="git")
    result = git.run(["remote", "get-url", remote], retry=False)
    if not result.ok:
        return None
    return parse_repo_url(result.stdout)


class GithubClient:
    """Issues, comments, labels and sub-issue hierarchy of one repository.

    Args:
        config: Runtime configuration; ``config.repo`` must be set.
        runner: Command runner for the ``gh`` binary.  Built from *config*
            when omitted.
    """

    def __init__(self, config: SyncConfig, runner: CommandRunner | None = None):
        self.config = config
        self.repo = config.repo
        self.label_prefix = normalize_label_prefix(config.label_prefix)
        self.runner = runner or CommandRunner(
            binary=config.gh_binary,
            policy=RetryPolicy(
                max_retries=config.max_retries,
                initial_delay=config.retry_initial_delay,
            ),
            timeout=config.command_timeout,
        )
        self._labels: set[str] | None = None
        self._node_ids: dict[int, str] = {}

    @property
    def owner_and_name(self) -> tuple[str, str]:
        owner, _, name = self.repo.partition("/")
        if not owner or not name:
            raise RemoteError(f"Invalid repository slug '{self.repo}'")
        return owner, name

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _api(self, args: list[str], payload: dict | None = None) -> Any:
        command = ["api", *args]
        if payload is not None:
            command += ["--input", "-"]
        result = self.runner.run_json(
            command, json.dumps(payload) if payload is not None else None
        )
        if not result.ok:
            raise RemoteError(result.error or "gh api call failed", command)
        return result.data

    def _api_paginated(self, path: str) -> list[Any]:
        command = ["api", path, "--paginate"]
        result = self.runner.run_paginated(command)
        if not result.ok:
            raise RemoteError(result.error or "gh api call failed", command)
        return result.data

    def _graphql(self, query: str, **variables: str | int) -> dict:
        command = ["api", "graphql", "-f", f"query={query}"]
        for key, value in variables.items():
            flag = "-F" if isinstance(value, int) else "-f"
            command += [flag, f"{key}={value}"]
        result = self.runner.run_json(command)
        if not result.ok:
            raise RemoteError(result.error or "GraphQL call failed", command)
        data = result.data.get("data") if isinstance(result.data, dict) else None
        if not isinstance(data, dict):
            raise RemoteError(
                "unexpected response shape: GraphQL response has no data",
                command,
            )
        return data

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    def list_issues(self, since: datetime | None = None) -> list[ExternalIssueRecord]:
        """List issues in every state, pull requests excluded.

        Args:
            since: Only issues updated at or after this instant.
        """
        path = f"repos/{self.repo}/issues?state=all&per_page=100"
        if since is not None:
            path += f"&since={format_since(since)}"
        entries = self._api_paginated(path)
        return [
            normalize_issue(entry)
            for entry in entries
            if isinstance(entry, dict) and not _is_pull_request(entry)
        ]

    def get_issue(self, number: int) -> ExternalIssueRecord:
        return normalize_issue(
            self._api([f"repos/{self.repo}/issues/{number}"])
        )

    def create_issue(self, payload: IssuePayload) -> ExternalIssueRecord:
        """Create an issue; a closed payload is created, then closed."""
        self.ensure_labels(payload.labels)
        created = normalize_issue(
            self._api(
                ["-X", "POST", f"repos/{self.repo}/issues"],
                {
                    "title": payload.title,
                    "body": payload.body,
                    "labels": payload.labels,
                },
            )
        )
        if payload.state == IssueState.CLOSED:
            return normalize_issue(
                self._api(
                    ["-X", "PATCH", f"repos/{self.repo}/issues/{created.number}"],
                    {"state": "closed"},
                )
            )
        return created

    def update_issue(
        self,
        number: int,
        payload: IssuePayload,
        current_labels: list[str] | None = None,
    ) -> ExternalIssueRecord:
        """Overwrite title, body, state and our labels of issue *number*.

        Labels outside the prefix namespace are kept; namespaced labels the
        payload no longer carries are removed.
        """
        if current_labels is None:
            current_labels = self.get_issue(number).labels
        final, removed = labels_for_update(
            current_labels, payload.labels, self.label_prefix
        )
        if removed:
            logger.debug("#%d: removing stale labels %s", number, removed)
        self.ensure_labels(payload.labels)
        return normalize_issue(
            self._api(
                ["-X", "PATCH", f"repos/{self.repo}/issues/{number}"],
                {
                    "title": payload.title,
                    "body": payload.body,
                    "labels": final,
                    "state": payload.state.value,
                },
            )
        )

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def list_issue_comments(self, number: int) -> list[ExternalComment]:
        entries = self._api_paginated(
            f"repos/{self.repo}/issues/{number}/comments?per_page=100"
        )
        return [normalize_comment(entry) for entry in entries]

    def create_comment(self, number: int, body: str) -> ExternalComment:
        return normalize_comment(
            self._api(
                ["-X", "POST", f"repos/{self.repo}/issues/{number}/comments"],
                {"body": body},
            )
        )

    def update_comment(self, comment_id: int, body: str) -> ExternalComment:
        return normalize_comment(
            self._api(
                [
                    "-X",
                    "PATCH",
                    f"repos/{self.repo}/issues/comments/{comment_id}",
                ],
                {"body": body},
            )
        )

    # ------------------------------------------------------------------
    # Labels
    # ------------------------------------------------------------------

    def ensure_labels(self, labels: list[str]) -> None:
        """Create any of *labels* the repository does not have yet."""
        if self._labels is None:
            entries = self._api_paginated(
                f"repos/{self.repo}/labels?per_page=100"
            )
            self._labels = {
                entry["name"]
                for entry in entries
                if isinstance(entry, dict) and isinstance(entry.get("name"), str)
            }
        for label in labels:
            if label in self._labels:
                continue
            try:
                self._api(
                    ["-X", "POST", f"repos/{self.repo}/labels"],
                    {"name": label, "color": label_color(label)},
                )
            except RemoteError as exc:
                if "already_exists" not in exc.message:
                    raise
            logger.debug("Created label %s", label)
            self._labels.add(label)

    # ------------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------------

    def get_issue_hierarchy(self, number: int) -> IssueHierarchy:
        """Query parent and sub-issues of issue *number*."""
        owner, name = self.owner_and_name
        data = self._graphql(
            _HIERARCHY_QUERY, owner=owner, name=name, number=number
        )
        issue = (data.get("repository") or {}).get("issue") or {}
        parent = issue.get("parent") or {}
        nodes = (issue.get("subIssues") or {}).get("nodes") or []
        return IssueHierarchy(
            parent_issue_number=(
                parent.get("number")
                if isinstance(parent.get("number"), int)
                else None
            ),
            child_issue_numbers=[
                node["number"]
                for node in nodes
                if isinstance(node, dict) and isinstance(node.get("number"), int)
            ],
        )

    def get_issue_node_id(self, number: int) -> str:
        cached = self._node_ids.get(number)
        if cached:
            return cached
        owner, name = self.owner_and_name
        data = self._graphql(
            _NODE_ID_QUERY, owner=owner, name=name, number=number
        )
        node_id = ((data.get("repository") or {}).get("issue") or {}).get("id")
        if not node_id:
            raise RemoteError(f"Unable to resolve node id for #{number}")
        self._node_ids[number] = node_id
        return node_id

    def add_sub_issue_link(self, parent_number: int, child_number: int) -> None:
        """Link *child_number* as a sub-issue of *parent_number*."""
        data = self._graphql(
            _ADD_SUB_ISSUE_MUTATION,
            parent=self.get_issue_node_id(parent_number),
            child=self.get_issue_node_id(child_number),
        )
        outcome = data.get("addSubIssue") or {}
        if not (outcome.get("issue") or {}).get("id") or not (
            outcome.get("subIssue") or {}
        ).get("id"):
            raise RemoteError(
                "addSubIssue returned no data "
                "(sub-issues may be disabled for this repository)"
            )
