"""Shared pytest fixtures for worklog-sync tests."""

from datetime import datetime, timedelta, timezone

import pytest
from dotenv import load_dotenv

from worklog_sync.config import SyncConfig
from worklog_sync.core.client import RemoteError
from worklog_sync.core.runner import CommandResult, JsonResult
from worklog_sync.sync.models import (
    ExternalComment,
    ExternalIssueRecord,
    IssueHierarchy,
    IssueState,
)

load_dotenv()

_ENV_KEYS = (
    "WORKLOG_GITHUB_REPO",
    "WORKLOG_LABEL_PREFIX",
    "WORKLOG_MAX_RETRIES",
    "WORKLOG_COMMAND_TIMEOUT",
    "WORKLOG_GIT_REMOTE",
    "WORKLOG_GIT_BRANCH",
    "WORKLOG_DATA_FILE",
    "WORKLOG_ID_PREFIX",
    "WORKLOG_SYNC_CONFIG",
    "LOG_LEVEL",
    "LOG_FILE",
)

REMOTE_EPOCH = datetime(2024, 6, 1, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep developer environment variables out of configuration tests."""
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def sync_config():
    """A valid SyncConfig pointing at a test repository."""
    return SyncConfig(repo="acme/app")


# ---------------------------------------------------------------------------
# Fake command runner
# ---------------------------------------------------------------------------


class FakeRunner:
    """Scripted stand-in for CommandRunner.

    ``responses`` maps a predicate over the argument list to a result.  The
    first matching entry wins; unmatched calls succeed with empty output.
    """

    def __init__(self):
        self.calls: list[tuple[list[str], str | None]] = []
        self.responses: list[tuple[callable, object]] = []

    def on(self, predicate, result):
        self.responses.append((predicate, result))
        return self

    def _match(self, args):
        for predicate, result in self.responses:
            if predicate(args):
                return result
        return None

    def run(self, args, input=None, retry=True):
        self.calls.append((list(args), input))
        result = self._match(list(args))
        return result if result is not None else CommandResult(ok=True)

    def run_json(self, args, input=None):
        self.calls.append((list(args), input))
        result = self._match(list(args))
        return result if result is not None else JsonResult(ok=True)

    def run_paginated(self, args):
        self.calls.append((list(args), None))
        result = self._match(list(args))
        return result if result is not None else JsonResult(ok=True, data=[])


@pytest.fixture
def fake_runner():
    return FakeRunner()


# ---------------------------------------------------------------------------
# Fake tracker
# ---------------------------------------------------------------------------


class FakeGithubClient:
    """In-memory issue tracker with the GithubClient surface.

    Every write advances a fake clock by one minute, so remote timestamps
    are strictly increasing and later than any local fixture timestamp.
    ``fail`` makes a method raise RemoteError, optionally for one issue.
    """

    label_prefix = "wl:"

    def __init__(self):
        self.issues: dict[int, ExternalIssueRecord] = {}
        self.comments: dict[int, list[ExternalComment]] = {}
        self.children: dict[int, list[int]] = {}
        self.writes: list[tuple] = []
        self.links_disabled = False
        self._failures: dict[str, set | None] = {}
        self._clock = REMOTE_EPOCH
        self._next_number = 1
        self._next_comment_id = 1000

    def _tick(self) -> datetime:
        self._clock += timedelta(minutes=1)
        return self._clock

    def fail(self, method: str, key=None):
        if key is None:
            self._failures[method] = None
        else:
            self._failures.setdefault(method, set()).add(key)

    def clear_failures(self):
        self._failures.clear()

    def _check(self, method: str, key=None):
        if method not in self._failures:
            return
        keys = self._failures[method]
        if keys is None or key in keys:
            raise RemoteError(f"{method} failed")

    def add_issue(
        self,
        number: int,
        body: str | None = None,
        title: str = "",
        state: IssueState = IssueState.OPEN,
        labels: list[str] | None = None,
        updated_at: datetime | None = None,
        sub_issues: int = 0,
    ) -> ExternalIssueRecord:
        issue = ExternalIssueRecord(
            id=number * 100,
            number=number,
            title=title,
            body=body,
            state=state,
            labels=labels or [],
            updated_at=updated_at or self._tick(),
            sub_issues_summary={"total": sub_issues, "completed": 0},
        )
        self.issues[number] = issue
        self._next_number = max(self._next_number, number + 1)
        return issue

    # -- GithubClient surface ------------------------------------------

    def list_issues(self, since=None):
        self._check("list_issues")
        return [
            issue
            for issue in self.issues.values()
            if since is None or issue.updated_at >= since
        ]

    def get_issue(self, number):
        self._check("get_issue", number)
        if number not in self.issues:
            raise RemoteError(f"HTTP 404: issue #{number} not found")
        return self.issues[number]

    def create_issue(self, payload):
        self._check("create_issue", payload.title)
        number = self._next_number
        self.writes.append(("create_issue", number))
        return self.add_issue(
            number,
            body=payload.body,
            title=payload.title,
            state=payload.state,
            labels=list(payload.labels),
        )

    def update_issue(self, number, payload, current_labels=None):
        self._check("update_issue", number)
        self.writes.append(("update_issue", number))
        current = self.issues[number]
        foreign = [lb for lb in current.labels if not lb.startswith("wl:")]
        issue = current.model_copy(
            update={
                "title": payload.title,
                "body": payload.body,
                "state": payload.state,
                "labels": foreign + list(payload.labels),
                "updated_at": self._tick(),
            }
        )
        self.issues[number] = issue
        return issue

    def list_issue_comments(self, number):
        self._check("list_issue_comments", number)
        return list(self.comments.get(number, []))

    def create_comment(self, number, body):
        self._check("create_comment", number)
        self.writes.append(("create_comment", number))
        comment = ExternalComment(
            id=self._next_comment_id, body=body, updated_at=self._tick()
        )
        self._next_comment_id += 1
        self.comments.setdefault(number, []).append(comment)
        return comment

    def update_comment(self, comment_id, body):
        self._check("update_comment", comment_id)
        self.writes.append(("update_comment", comment_id))
        for entries in self.comments.values():
            for index, entry in enumerate(entries):
                if entry.id == comment_id:
                    entries[index] = entry.model_copy(
                        update={"body": body, "updated_at": self._tick()}
                    )
                    return entries[index]
        raise RemoteError(f"comment {comment_id} not found")

    def get_issue_hierarchy(self, number):
        self._check("get_issue_hierarchy", number)
        parent = next(
            (p for p, kids in self.children.items() if number in kids), None
        )
        return IssueHierarchy(
            parent_issue_number=parent,
            child_issue_numbers=list(self.children.get(number, [])),
        )

    def add_sub_issue_link(self, parent_number, child_number):
        self._check("add_sub_issue_link", child_number)
        self.writes.append(("add_sub_issue_link", parent_number, child_number))
        if not self.links_disabled:
            self.children.setdefault(parent_number, []).append(child_number)


@pytest.fixture
def fake_github():
    return FakeGithubClient()
