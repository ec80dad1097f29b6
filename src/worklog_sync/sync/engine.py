"""Sync orchestration over a local record store.

``WorklogSyncEngine`` ties the store to the two remote copies:

* ``sync_snapshot`` -- fetch the shared snapshot from its git ref, merge it
  with the local records, persist, and publish the merged snapshot.
* ``push_github`` -- push local items and comments to the issue tracker.
* ``import_github`` -- merge tracker issues into the local items.

Each call persists its results through the store.  Tracker passes collect
per-item errors in their outcome.  Configuration errors raise
``ValueError`` before any remote call.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from pydantic import BaseModel, ConfigDict, Field

from ..config import SyncConfig, validate_config
from ..core.async_utils import run_sync
from ..core.client import GithubClient
from ..jsonl import parse_jsonl
from .importer import ImportSynchronizer
from .merger import merge_comments, merge_work_items, stable_item_key
from .models import (
    Comment,
    ConflictDetail,
    ImportOutcome,
    PushOutcome,
    SyncProgress,
    WorkItem,
    utc_now,
)
from .push import PushSynchronizer
from .snapshot import GitSnapshotTransport, GitTarget

if TYPE_CHECKING:
    from ..store import RecordStore

logger = logging.getLogger(__name__)


class SnapshotSyncResult(BaseModel):
    """Outcome of merging the shared snapshot with local records."""

    model_config = ConfigDict(frozen=True)

    items_added: int = 0
    items_updated: int = 0
    items_unchanged: int = 0
    comments_added: int = 0
    conflicts: list[str] = Field(default_factory=list)
    conflict_details: list[ConflictDetail] = Field(default_factory=list)
    merged_items: list[WorkItem] = Field(default_factory=list)
    merged_comments: list[Comment] = Field(default_factory=list)
    remote_found: bool = False
    pushed: bool = False
    dry_run: bool = False


def merge_snapshot(
    local_items: list[WorkItem],
    local_comments: list[Comment],
    remote_content: str | None,
) -> SnapshotSyncResult:
    """Merge snapshot *remote_content* (``None`` if absent) into local records.

    Snapshot timestamp ties go to local, like every other merge.

    Raises:
        ValueError: If *remote_content* is not a valid snapshot.
    """
    if remote_content is None:
        return SnapshotSyncResult(
            items_unchanged=len(local_items),
            merged_items=list(local_items),
            merged_comments=list(local_comments),
        )

    remote_items, remote_comments = parse_jsonl(remote_content)
    items = merge_work_items(local_items, remote_items)
    comments = merge_comments(local_comments, remote_comments)

    local_keys = {i.id: stable_item_key(i) for i in local_items}
    added = updated = unchanged = 0
    for item in items.merged:
        key = local_keys.get(item.id)
        if key is None:
            added += 1
        elif key != stable_item_key(item):
            updated += 1
        else:
            unchanged += 1

    local_comment_ids = {c.id for c in local_comments}
    return SnapshotSyncResult(
        items_added=added,
        items_updated=updated,
        items_unchanged=unchanged,
        comments_added=sum(
            1 for c in comments.merged if c.id not in local_comment_ids
        ),
        conflicts=[*items.conflicts, *comments.conflicts],
        conflict_details=items.conflict_details,
        merged_items=items.merged,
        merged_comments=comments.merged,
        remote_found=True,
    )


class WorklogSyncEngine:
    """Run snapshot and tracker syncs against a record store.

    Args:
        store: Local records.
        config: Runtime configuration.
        client: Tracker client; built from *config* on first use.
        snapshot: Git transport for the snapshot ref.
    """

    def __init__(
        self,
        store: RecordStore,
        config: SyncConfig,
        client: GithubClient | None = None,
        snapshot: GitSnapshotTransport | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self._client = client
        self.snapshot = snapshot or GitSnapshotTransport()

    @property
    def client(self) -> GithubClient:
        if self._client is None:
            validate_config(self.config, require_repo=True)
            self._client = GithubClient(self.config)
        return self._client

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def sync_snapshot(self, dry_run: bool = False) -> SnapshotSyncResult:
        """Merge the shared snapshot into the store and publish the result."""
        target = GitTarget(
            remote=self.config.git_remote, branch=self.config.git_branch
        )
        content = self.snapshot.read_remote_snapshot(
            self.config.data_file, target
        )
        if content is None:
            logger.info(
                "No snapshot on %s %s yet", target.remote, target.branch
            )
        result = merge_snapshot(
            self.store.list(), self.store.list_comments(), content
        )
        if dry_run:
            return result.model_copy(update={"dry_run": True})

        self._persist(result.merged_items, result.merged_comments)
        message = f"Sync work items ({utc_now().isoformat()})"
        pushed = self.snapshot.push_snapshot(
            self.config.data_file, message, target
        )
        return result.model_copy(update={"pushed": pushed})

    # ------------------------------------------------------------------
    # Tracker
    # ------------------------------------------------------------------

    def push_github(
        self, on_progress: Callable[[SyncProgress], None] | None = None
    ) -> PushOutcome:
        """Push local items and comments; persist the new linkage."""
        outcome = PushSynchronizer(self.client).push(
            self.store.list(), self.store.list_comments(), on_progress
        )
        self._persist(outcome.updated_items, outcome.updated_comments)
        return outcome

    def import_github(
        self,
        since: datetime | None = None,
        create_new: bool = False,
        on_progress: Callable[[SyncProgress], None] | None = None,
    ) -> ImportOutcome:
        """Merge tracker issues into the store."""
        outcome = ImportSynchronizer(self.client).import_issues(
            self.store.list(),
            since=since,
            create_new=create_new,
            id_generator=self.store.generate_id,
            on_progress=on_progress,
        )
        self._persist(outcome.merged_items, [])
        return outcome

    async def push_github_async(
        self, on_progress: Callable[[SyncProgress], None] | None = None
    ) -> PushOutcome:
        return await run_sync(self.push_github, on_progress)

    async def import_github_async(
        self,
        since: datetime | None = None,
        create_new: bool = False,
        on_progress: Callable[[SyncProgress], None] | None = None,
    ) -> ImportOutcome:
        return await run_sync(
            self.import_github, since, create_new, on_progress
        )

    def _persist(self, items: list[WorkItem], comments: list[Comment]) -> None:
        """Save records that differ from the stored copy, then flush."""
        changed = 0
        for item in items:
            stored = self.store.get(item.id)
            if stored is None or stable_item_key(stored) != stable_item_key(item):
                self.store.save(item)
                changed += 1
        stored_comments = {c.id: c for c in self.store.list_comments()}
        for comment in comments:
            if stored_comments.get(comment.id) != comment:
                self.store.save_comment(comment)
                changed += 1
        self.store.flush()
        logger.debug("Persisted %d changed records", changed)
