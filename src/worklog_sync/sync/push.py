"""Push local work items and comments to the issue tracker.

One pass has two phases:

1. **Upsert** -- for each non-deleted item, create or update its issue
   and then its comments.  Items whose watermark already covers the local
   ``updated_at`` and every comment are skipped without a remote call.
2. **Hierarchy** -- link child issues under parent issues wherever both
   items now have issue numbers, verifying every new link by re-query.

Remote failures are collected per item, comment or link, never raised, so
one bad item does not stop the rest.  Because skipped items and existing
links cause no writes, a second run with no local change writes nothing.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Iterable, Iterator

from ..core.client import GithubClient, RemoteError
from .labels import work_item_to_issue_payload
from .markers import (
    body_with_marker,
    build_comment_marker,
    build_marker,
    extract_comment_id,
)
from .models import (
    Comment,
    ExternalComment,
    ExternalIssueRecord,
    IssueHierarchy,
    PushOutcome,
    PushResult,
    PushTimings,
    SyncPhase,
    SyncProgress,
    WorkItem,
    WorkItemStatus,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[SyncProgress], None]

_WATERMARK_STEP = timedelta(milliseconds=1)


def issue_body(item: WorkItem) -> str:
    return body_with_marker(build_marker(item.id), item.description)


def comment_body(comment: Comment) -> str:
    """Marker line, author line, blank line, comment text."""
    author = comment.author or "unknown"
    return f"{build_comment_marker(comment.id)}\n**{author}**\n\n{comment.body}"


def _earliest(comments: Iterable[Comment]) -> datetime | None:
    return min((c.created_at for c in comments), default=None)


def comments_due(
    item: WorkItem, comments: Iterable[Comment]
) -> list[Comment]:
    """Comments created after the item's watermark (all, if none is set)."""
    watermark = item.external_issue_updated_at
    if watermark is None:
        return list(comments)
    return [c for c in comments if c.created_at > watermark]


def should_skip(item: WorkItem, comments: Iterable[Comment]) -> bool:
    """Return ``True`` if *item* needs no remote work at all."""
    watermark = item.external_issue_updated_at
    if item.external_issue_number is None or watermark is None:
        return False
    if item.updated_at > watermark:
        return False
    return not comments_due(item, comments)


class PushSynchronizer:
    """Upsert issues, comments and sub-issue links for local items.

    Args:
        client: Tracker client; its label prefix namespaces all labels.
        clock: Monotonic clock used for phase timings.
    """

    def __init__(
        self,
        client: GithubClient,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.client = client
        self._clock = clock
        self._hierarchy: dict[int, IssueHierarchy] = {}

    @contextmanager
    def _timed(self, timing: PushTimings, phase: str) -> Iterator[None]:
        start = self._clock()
        try:
            yield
        finally:
            setattr(
                timing, phase, getattr(timing, phase) + self._clock() - start
            )

    def push(
        self,
        items: list[WorkItem],
        comments: list[Comment],
        on_progress: ProgressCallback | None = None,
    ) -> PushOutcome:
        """Push *items* and their *comments*.

        Returns:
            ``PushOutcome`` with every item (linkage updated where an issue
            was written), the comments whose remote linkage changed,
            counters and phase timings.
        """
        result = PushResult()
        timing = PushTimings()
        self._hierarchy.clear()

        by_item: dict[str, list[Comment]] = {}
        for comment in comments:
            by_item.setdefault(comment.work_item_id, []).append(comment)

        active = [i for i in items if i.status != WorkItemStatus.DELETED]
        result.skipped = len(items) - len(active)

        updated_by_id: dict[str, WorkItem] = {}
        updated_comments: list[Comment] = []

        for index, item in enumerate(active, start=1):
            if on_progress:
                on_progress(
                    SyncProgress(
                        phase=SyncPhase.PUSH, current=index, total=len(active)
                    )
                )
            item_comments = by_item.get(item.id, [])
            if should_skip(item, item_comments):
                result.skipped += 1
                continue
            updated = self._push_item(
                item, item_comments, result, timing, updated_comments
            )
            if updated is not item:
                updated_by_id[item.id] = updated

        merged_items = [updated_by_id.get(i.id, i) for i in items]
        self._link_hierarchy(merged_items, result, timing, on_progress)

        logger.info(
            "Push: %d created, %d updated, %d skipped, %d comments created, "
            "%d comments updated, %d links created, %d errors",
            result.created,
            result.updated,
            result.skipped,
            result.comments_created,
            result.comments_updated,
            result.hierarchy_linked,
            len(result.errors),
        )
        return PushOutcome(
            updated_items=merged_items,
            updated_comments=updated_comments,
            result=result,
            timing=timing,
        )

    # ------------------------------------------------------------------
    # Upsert phase
    # ------------------------------------------------------------------

    def _push_item(
        self,
        item: WorkItem,
        item_comments: list[Comment],
        result: PushResult,
        timing: PushTimings,
        updated_comments: list[Comment],
    ) -> WorkItem:
        watermark = item.external_issue_updated_at
        issue_changed = (
            item.external_issue_number is None
            or watermark is None
            or item.updated_at > watermark
        )
        due = comments_due(item, item_comments)

        issue: ExternalIssueRecord | None = None
        if issue_changed:
            payload = work_item_to_issue_payload(
                item, issue_body(item), self.client.label_prefix
            )
            try:
                with self._timed(timing, "issue_upsert"):
                    if item.external_issue_number is not None:
                        issue = self.client.update_issue(
                            item.external_issue_number, payload
                        )
                        result.updated += 1
                    else:
                        issue = self.client.create_issue(payload)
                        result.created += 1
            except RemoteError as exc:
                logger.error("Push failed for %s: %s", item.id, exc.message)
                result.errors.append(f"{item.id}: {exc.message}")
                return item
            item = item.model_copy(
                update={
                    "external_issue_number": issue.number,
                    "external_issue_id": issue.id,
                    "external_issue_updated_at": issue.updated_at,
                }
            )

        number = item.external_issue_number
        if item_comments and number is not None and (issue_changed or due):
            latest, pending = self._sync_comments(
                item, number, item_comments, due, result, timing, updated_comments
            )
            watermark = item.external_issue_updated_at
            if latest is not None and (watermark is None or latest > watermark):
                watermark = latest
            if pending is not None and (
                watermark is None or watermark >= pending
            ):
                watermark = pending - _WATERMARK_STEP
            if watermark != item.external_issue_updated_at:
                item = item.model_copy(
                    update={"external_issue_updated_at": watermark}
                )
        return item

    def _sync_comments(
        self,
        item: WorkItem,
        number: int,
        item_comments: list[Comment],
        due: list[Comment],
        result: PushResult,
        timing: PushTimings,
        updated_comments: list[Comment],
    ) -> tuple[datetime | None, datetime | None]:
        """Upsert comments.

        Returns:
            ``(latest, pending)``: the latest timestamp of comments written
            or already present, and the earliest ``created_at`` of comments
            left unsynced.  The watermark must stay below ``pending`` so the
            next push retries them.
        """
        try:
            with self._timed(timing, "comment_list"):
                remote = self.client.list_issue_comments(number)
        except RemoteError as exc:
            logger.error(
                "Listing comments of #%d (%s) failed: %s",
                number,
                item.id,
                exc.message,
            )
            result.errors.append(f"{item.id}: {exc.message}")
            return None, _earliest(due)

        by_marker: dict[str, ExternalComment] = {}
        for entry in remote:
            marker_id = extract_comment_id(entry.body)
            if marker_id and marker_id not in by_marker:
                by_marker[marker_id] = entry

        latest: datetime | None = None
        failed: list[Comment] = []

        def observe(ts: datetime) -> None:
            nonlocal latest
            if latest is None or ts > latest:
                latest = ts

        for comment in item_comments:
            body = comment_body(comment)
            existing = by_marker.get(comment.id)
            try:
                with self._timed(timing, "comment_upsert"):
                    if existing is None:
                        written = self.client.create_comment(number, body)
                        result.comments_created += 1
                    elif existing.body != body:
                        written = self.client.update_comment(existing.id, body)
                        result.comments_updated += 1
                    else:
                        written = existing
            except RemoteError as exc:
                logger.error(
                    "Push failed for %s comment %s: %s",
                    item.id,
                    comment.id,
                    exc.message,
                )
                result.errors.append(
                    f"{item.id} comment {comment.id}: {exc.message}"
                )
                failed.append(comment)
                continue
            observe(comment.created_at)
            observe(written.updated_at)
            if (
                comment.external_comment_id != written.id
                or comment.external_comment_updated_at != written.updated_at
            ):
                updated_comments.append(
                    comment.model_copy(
                        update={
                            "external_comment_id": written.id,
                            "external_comment_updated_at": written.updated_at,
                        }
                    )
                )
        return latest, _earliest(failed)

    # ------------------------------------------------------------------
    # Hierarchy phase
    # ------------------------------------------------------------------

    def _hierarchy_of(self, parent: int) -> IssueHierarchy:
        cached = self._hierarchy.get(parent)
        if cached is None:
            cached = self.client.get_issue_hierarchy(parent)
            self._hierarchy[parent] = cached
        return cached

    def _link_hierarchy(
        self,
        items: list[WorkItem],
        result: PushResult,
        timing: PushTimings,
        on_progress: ProgressCallback | None,
    ) -> None:
        by_id = {i.id: i for i in items}
        pairs: dict[tuple[int, int], None] = {}
        for item in items:
            if item.status == WorkItemStatus.DELETED or not item.parent_id:
                continue
            parent = by_id.get(item.parent_id)
            if parent is None or parent.status == WorkItemStatus.DELETED:
                continue
            if (
                parent.external_issue_number is not None
                and item.external_issue_number is not None
            ):
                pairs[
                    (parent.external_issue_number, item.external_issue_number)
                ] = None

        for index, (parent_number, child_number) in enumerate(pairs, start=1):
            if on_progress:
                on_progress(
                    SyncProgress(
                        phase=SyncPhase.HIERARCHY,
                        current=index,
                        total=len(pairs),
                    )
                )
            context = f"link {parent_number}->{child_number}"
            try:
                with self._timed(timing, "hierarchy_check"):
                    hierarchy = self._hierarchy_of(parent_number)
                if child_number in hierarchy.child_issue_numbers:
                    result.hierarchy_existing += 1
                    continue

                with self._timed(timing, "hierarchy_link"):
                    self.client.add_sub_issue_link(parent_number, child_number)
                self._hierarchy.pop(parent_number, None)

                with self._timed(timing, "hierarchy_verify"):
                    hierarchy = self._hierarchy_of(parent_number)
                if child_number in hierarchy.child_issue_numbers:
                    result.hierarchy_linked += 1
                    continue
                logger.warning(
                    "Sub-issue link #%d -> #%d was not created; check that "
                    "sub-issues are enabled for the repository",
                    parent_number,
                    child_number,
                )
                result.errors.append(f"{context}: sub-issue link not created")
            except RemoteError as exc:
                logger.error("%s failed: %s", context, exc.message)
                result.errors.append(f"{context}: {exc.message}")
