"""Reconciliation engine for work items and comments.

Keeps local records consistent with two remote copies: the shared snapshot
on a git ref and issues in the GitHub tracker.

Modules:

- ``models``    -- ``WorkItem``, ``Comment``, merge options and conflict
  records, remote issue shapes, synchronizer results.
- ``merger``    -- field-level merge of item and comment collections.
- ``markers``   -- identity markers in issue/comment bodies, hierarchy hints.
- ``labels``    -- work item fields as namespaced labels.
- ``push``      -- ``PushSynchronizer``: local -> tracker.
- ``importer``  -- ``ImportSynchronizer``: tracker -> local.
- ``snapshot``  -- ``GitSnapshotTransport``: snapshot file on a git ref.
- ``engine``    -- ``WorklogSyncEngine``: orchestration over a record store.
- ``reporter``  -- human-readable and JSON summaries.

Only the pure modules are re-exported here; import the synchronizers and
the engine from their modules::

    from worklog_sync.sync.engine import WorklogSyncEngine
"""

from .merger import merge_comments, merge_work_items
from .models import (
    Comment,
    ConflictDetail,
    ConflictFieldDetail,
    MergeOptions,
    MergeResult,
    TieBreakStrategy,
    WorkItem,
    WorkItemPriority,
    WorkItemStatus,
)

__all__ = [
    "Comment",
    "ConflictDetail",
    "ConflictFieldDetail",
    "MergeOptions",
    "MergeResult",
    "TieBreakStrategy",
    "WorkItem",
    "WorkItemPriority",
    "WorkItemStatus",
    "merge_comments",
    "merge_work_items",
]
