"""Pydantic models for the reconciliation engine.

Defines the data contracts shared by every sync module:

- ``WorkItem`` / ``Comment``: local records, as stored in the snapshot file.
- ``MergeOptions``, ``ConflictDetail``, ``ConflictFieldDetail``: merge
  configuration and the conflict side channel.
- ``ExternalIssueRecord``, ``ExternalComment``, ``IssueHierarchy``: remote
  tracker shapes, validated at the client boundary.
- ``PushResult``, ``PushTimings``, ``PushOutcome``, ``ImportOutcome``,
  ``SyncProgress``: synchronizer results.

All models are frozen (immutable).  Python attributes are snake_case; the
snapshot file uses camelCase aliases (``parentId``, ``githubIssueNumber``).
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _ensure_utc(value: datetime) -> datetime:
    """Interpret naive timestamps as UTC so comparisons never mix kinds."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


Timestamp = Annotated[datetime, AfterValidator(_ensure_utc)]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


_RECORD_CONFIG = ConfigDict(
    frozen=True,
    alias_generator=to_camel,
    populate_by_name=True,
    extra="ignore",
)


class WorkItemStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in-progress"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    DELETED = "deleted"


class WorkItemPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class WorkItem(BaseModel):
    """A trackable unit of work.

    Attributes:
        id: Stable, locally assigned identifier.
        status: Lifecycle state; ``deleted`` items are never pushed.
        stage: Free-form workflow stage, empty when undefined.
        parent_id: Id of the parent work item, if any.
        external_issue_number: Remote issue number once pushed/imported.
        external_issue_id: Remote issue database id.
        external_issue_updated_at: Watermark -- remote ``updated_at`` last
            observed for the issue (and its comments).
    """

    model_config = _RECORD_CONFIG

    id: str
    title: str = ""
    description: str = ""
    status: WorkItemStatus = WorkItemStatus.OPEN
    priority: WorkItemPriority = WorkItemPriority.MEDIUM
    stage: str = ""
    risk: str = ""
    effort: str = ""
    tags: list[str] = Field(default_factory=list)
    assignee: str = ""
    parent_id: str | None = None
    issue_type: str = ""
    created_by: str = ""
    deleted_by: str = ""
    delete_reason: str = ""
    created_at: Timestamp = Field(default_factory=utc_now)
    updated_at: Timestamp = Field(default_factory=utc_now)
    external_issue_number: int | None = Field(
        default=None, alias="githubIssueNumber"
    )
    external_issue_id: int | None = Field(
        default=None, alias="githubIssueId"
    )
    external_issue_updated_at: Timestamp | None = Field(
        default=None, alias="githubIssueUpdatedAt"
    )


class Comment(BaseModel):
    """A comment attached to a work item.

    Comments are keyed by ``id``; an update overwrites the record in place.
    """

    model_config = _RECORD_CONFIG

    id: str
    work_item_id: str
    author: str = ""
    body: str = Field(default="", alias="comment")
    created_at: Timestamp = Field(default_factory=utc_now)
    references: list[str] = Field(default_factory=list)
    external_comment_id: int | None = Field(
        default=None, alias="githubCommentId"
    )
    external_comment_updated_at: Timestamp | None = Field(
        default=None, alias="githubCommentUpdatedAt"
    )


# ---------------------------------------------------------------------------
# Merge contracts
# ---------------------------------------------------------------------------


class TieBreakStrategy(str, Enum):
    """Rule applied when both sides carry the same ``updated_at``."""

    PREFER_LOCAL = "local"
    PREFER_REMOTE = "remote"
    LEXICOGRAPHIC = "lexicographic"


class MergeOptions(BaseModel):
    """Per-merge configuration.

    Attributes:
        default_value_fields: Field names never treated as default/unset,
            so they always go through timestamp resolution.
        tie_break: Strategy for equal timestamps with differing content.
    """

    model_config = ConfigDict(frozen=True)

    default_value_fields: frozenset[str] = frozenset()
    tie_break: TieBreakStrategy = TieBreakStrategy.PREFER_LOCAL


class ConflictType(str, Enum):
    SAME_TIMESTAMP = "same-timestamp"
    DIFFERENT_TIMESTAMP = "different-timestamp"


class ChosenSource(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"
    MERGED = "merged"


class ConflictFieldDetail(BaseModel):
    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )

    field: str
    local_value: Any = None
    remote_value: Any = None
    chosen_value: Any = None
    chosen_source: ChosenSource
    reason: str


class ConflictDetail(BaseModel):
    """Audit record for one work item whose two versions disagreed."""

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )

    item_id: str
    conflict_type: ConflictType
    fields: list[ConflictFieldDetail] = Field(default_factory=list)
    local_updated_at: Timestamp | None = None
    remote_updated_at: Timestamp | None = None


class MergeResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    merged: list[WorkItem] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)
    conflict_details: list[ConflictDetail] = Field(default_factory=list)


class CommentMergeResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    merged: list[Comment] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Remote tracker shapes
# ---------------------------------------------------------------------------


class IssueState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class SubIssuesSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    completed: int = 0


class ExternalIssueRecord(BaseModel):
    """A remote issue as returned by the tracker's REST API."""

    model_config = ConfigDict(frozen=True)

    id: int
    number: int
    title: str = ""
    body: str | None = None
    state: IssueState = IssueState.OPEN
    labels: list[str] = Field(default_factory=list)
    updated_at: Timestamp
    sub_issues_summary: SubIssuesSummary | None = None

    @property
    def is_closed(self) -> bool:
        return self.state == IssueState.CLOSED


class ExternalComment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    body: str = ""
    updated_at: Timestamp


class IssueHierarchy(BaseModel):
    """Parent/child relationships of one issue, as queried from the tracker."""

    model_config = ConfigDict(frozen=True)

    parent_issue_number: int | None = None
    child_issue_numbers: list[int] = Field(default_factory=list)


class IssuePayload(BaseModel):
    """Outgoing issue content derived from a work item."""

    model_config = ConfigDict(frozen=True)

    title: str
    body: str
    labels: list[str] = Field(default_factory=list)
    state: IssueState = IssueState.OPEN


# ---------------------------------------------------------------------------
# Synchronizer results
# ---------------------------------------------------------------------------


class SyncPhase(str, Enum):
    PUSH = "push"
    IMPORT = "import"
    HIERARCHY = "hierarchy"
    CLOSE_CHECK = "close-check"


class SyncProgress(BaseModel):
    model_config = ConfigDict(frozen=True)

    phase: SyncPhase
    current: int
    total: int


class PushResult(BaseModel):
    """Counters and errors of a push pass.

    ``errors`` entries are ``"<context>: <message>"`` strings.
    """

    created: int = 0
    updated: int = 0
    skipped: int = 0
    comments_created: int = 0
    comments_updated: int = 0
    hierarchy_linked: int = 0
    hierarchy_existing: int = 0
    errors: list[str] = Field(default_factory=list)


class PushTimings(BaseModel):
    """Aggregate wall-clock time per push phase, in seconds."""

    issue_upsert: float = 0.0
    comment_list: float = 0.0
    comment_upsert: float = 0.0
    hierarchy_check: float = 0.0
    hierarchy_link: float = 0.0
    hierarchy_verify: float = 0.0

    @property
    def total(self) -> float:
        return (
            self.issue_upsert
            + self.comment_list
            + self.comment_upsert
            + self.hierarchy_check
            + self.hierarchy_link
            + self.hierarchy_verify
        )


class PushOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    updated_items: list[WorkItem]
    updated_comments: list[Comment]
    result: PushResult
    timing: PushTimings


class ImportOutcome(BaseModel):
    """Result of an import pass.

    Attributes:
        updated_items: Merged items whose content differs from local.
        created_items: Merged items with no local counterpart.
        merged_items: The complete merged collection.
        conflicts: Human-readable merge conflict lines.
        conflict_details: Structured merge conflict records.
        markers_found: Number of listed issues carrying an identity marker.
        issues: Every issue returned by the listing.
        errors: ``"<context>: <message>"`` failures.
        warnings: Data-integrity diagnostics (duplicate markers).
    """

    model_config = ConfigDict(frozen=True)

    updated_items: list[WorkItem] = Field(default_factory=list)
    created_items: list[WorkItem] = Field(default_factory=list)
    merged_items: list[WorkItem] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)
    conflict_details: list[ConflictDetail] = Field(default_factory=list)
    markers_found: int = 0
    issues: list[ExternalIssueRecord] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
