"""Import tracker issues into the local work item collection.

Steps of one pass:

1. List issues (optionally only those updated since a timestamp) and query
   the sub-issue graph of every issue that reports sub-issues.
2. Drop duplicate identity markers, keeping the most recently updated issue
   and warning about the others.
3. Turn each issue into a candidate work item.  It is matched by marker
   first and by recorded issue number second.  Closed issues always map to
   ``completed``.
4. Close-check: re-fetch linked issues the listing did not return, so
   issues closed outside the ``since`` window are still noticed.
5. Merge candidates with the local items.  ``status`` is never treated as
   unset, and timestamp ties go to local.
6. Record the remote linkage fields, then apply parent hints in
   increasing trust order (body ids, body issue numbers, queried graph).
7. Split the result into created and updated items.  Bookkeeping fields
   are ignored when deciding what counts as updated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from ..core.client import GithubClient, RemoteError
from .labels import decode_labels
from .markers import (
    extract_child_ids,
    extract_child_issue_numbers,
    extract_parent_id,
    extract_parent_issue_number,
    extract_worklog_id,
    visible_text,
)
from .merger import LINKAGE_FIELDS, merge_work_items, stable_item_key
from .models import (
    ExternalIssueRecord,
    ImportOutcome,
    IssueHierarchy,
    MergeOptions,
    SyncPhase,
    SyncProgress,
    TieBreakStrategy,
    WorkItem,
    WorkItemStatus,
)

logger = logging.getLogger(__name__)

IMPORT_MERGE_OPTIONS = MergeOptions(
    default_value_fields=frozenset({"status"}),
    tie_break=TieBreakStrategy.PREFER_LOCAL,
)

_PARTITION_EXCLUDE = ("updated_at", *LINKAGE_FIELDS)


@dataclass
class _Hints:
    """Parent/child hints gathered per candidate item, by trust layer."""

    parent_ids: dict[str, str] = field(default_factory=dict)
    child_ids: dict[str, list[str]] = field(default_factory=dict)
    parent_numbers: dict[str, int] = field(default_factory=dict)
    child_numbers: dict[str, list[int]] = field(default_factory=dict)
    graph_parent: dict[str, int] = field(default_factory=dict)
    graph_children: dict[str, list[int]] = field(default_factory=dict)


def import_partition_key(item: WorkItem) -> str:
    return stable_item_key(item, exclude=_PARTITION_EXCLUDE)


def resolve_duplicate_markers(
    issues: list[ExternalIssueRecord],
) -> tuple[list[ExternalIssueRecord], list[ExternalIssueRecord], list[str]]:
    """Keep one issue per marker id: the most recently updated one.

    Equal update times keep the lower issue number.

    Returns:
        ``(kept, dropped, warnings)``.  *kept* preserves listing order.
    """
    winners: dict[str, ExternalIssueRecord] = {}
    for issue in issues:
        marker = extract_worklog_id(issue.body)
        if marker is None:
            continue
        current = winners.get(marker)
        if current is None or (issue.updated_at, -issue.number) > (
            current.updated_at,
            -current.number,
        ):
            winners[marker] = issue

    kept: list[ExternalIssueRecord] = []
    dropped: list[ExternalIssueRecord] = []
    warnings: list[str] = []
    for issue in issues:
        marker = extract_worklog_id(issue.body)
        if marker is None or winners[marker] is issue:
            kept.append(issue)
            continue
        winner = winners[marker]
        dropped.append(issue)
        message = (
            f"Duplicate marker {marker} on issues #{winner.number} and "
            f"#{issue.number}: using #{winner.number} (most recently "
            f"updated). Remove the marker from #{issue.number} to resolve."
        )
        logger.warning(message)
        warnings.append(message)
    return kept, dropped, warnings


class ImportSynchronizer:
    """Build work items from tracker issues and merge them with local ones.

    Args:
        client: Tracker client; its label prefix decodes labels.
    """

    def __init__(self, client: GithubClient):
        self.client = client

    def import_issues(
        self,
        items: list[WorkItem],
        since: datetime | None = None,
        create_new: bool = False,
        id_generator: Callable[[], str] | None = None,
        on_progress: Callable[[SyncProgress], None] | None = None,
    ) -> ImportOutcome:
        """Run one import pass against *items*.

        Args:
            items: Local work items.
            since: Only list issues updated at or after this instant.
            create_new: Create items for issues without a marker.
            id_generator: Supplies ids for such items; required with
                *create_new*.
            on_progress: Optional progress callback.
        """
        errors: list[str] = []
        try:
            issues = self.client.list_issues(since)
        except RemoteError as exc:
            logger.error("Listing issues failed: %s", exc.message)
            return ImportOutcome(
                merged_items=list(items),
                errors=[f"list issues: {exc.message}"],
            )

        markers_found = sum(
            1 for issue in issues if extract_worklog_id(issue.body)
        )
        kept, dropped, warnings = resolve_duplicate_markers(issues)
        graph = self._query_hierarchy(kept, errors, on_progress)
        parent_by_child: dict[int, int] = {}
        for parent_number, hierarchy in graph.items():
            for child_number in hierarchy.child_issue_numbers:
                parent_by_child[child_number] = parent_number

        by_id = {i.id: i for i in items}
        by_number = {
            i.external_issue_number: i
            for i in items
            if i.external_issue_number is not None
        }

        candidates: list[WorkItem] = []
        meta: dict[str, ExternalIssueRecord] = {}
        hints = _Hints()
        seen_numbers = {issue.number for issue in issues}

        for index, issue in enumerate(kept, start=1):
            if on_progress:
                on_progress(
                    SyncProgress(
                        phase=SyncPhase.IMPORT, current=index, total=len(kept)
                    )
                )
            marker = extract_worklog_id(issue.body)
            existing = (by_id.get(marker) if marker else None) or by_number.get(
                issue.number
            )
            if existing is None:
                if issue.is_closed:
                    continue
                if marker is None and not (create_new and id_generator):
                    continue
                base = WorkItem(
                    id=marker or id_generator(),
                    title="Untitled",
                    created_at=issue.updated_at,
                    updated_at=issue.updated_at,
                )
            else:
                base = existing

            candidate = self._candidate(base, issue)
            candidates.append(candidate)
            meta[candidate.id] = issue
            self._collect_hints(candidate.id, issue, graph, parent_by_child, hints)

        self._close_check(
            items, seen_numbers, graph, parent_by_child,
            candidates, meta, hints, errors, on_progress,
        )

        merge = merge_work_items(items, candidates, IMPORT_MERGE_OPTIONS)
        merged = [
            self._apply_meta(item, meta.get(item.id)) for item in merge.merged
        ]
        merged = self._apply_hints(merged, hints)

        local_keys = {i.id: import_partition_key(i) for i in items}
        created: list[WorkItem] = []
        updated: list[WorkItem] = []
        for item in merged:
            local_key = local_keys.get(item.id)
            if local_key is None:
                created.append(item)
            elif local_key != import_partition_key(item):
                updated.append(item)

        if dropped:
            logger.warning(
                "%d issue(s) ignored because of duplicate markers",
                len(dropped),
            )
        logger.info(
            "Import: %d issues listed, %d markers, %d created, %d updated, "
            "%d conflicts, %d errors",
            len(issues),
            markers_found,
            len(created),
            len(updated),
            len(merge.conflict_details),
            len(errors),
        )
        return ImportOutcome(
            updated_items=updated,
            created_items=created,
            merged_items=merged,
            conflicts=merge.conflicts,
            conflict_details=merge.conflict_details,
            markers_found=markers_found,
            issues=issues,
            errors=errors,
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _query_hierarchy(
        self,
        issues: list[ExternalIssueRecord],
        errors: list[str],
        on_progress: Callable[[SyncProgress], None] | None,
    ) -> dict[int, IssueHierarchy]:
        parents = [
            issue.number
            for issue in issues
            if issue.sub_issues_summary is not None
            and issue.sub_issues_summary.total > 0
        ]
        graph: dict[int, IssueHierarchy] = {}
        for index, number in enumerate(parents, start=1):
            if on_progress:
                on_progress(
                    SyncProgress(
                        phase=SyncPhase.HIERARCHY,
                        current=index,
                        total=len(parents),
                    )
                )
            try:
                graph[number] = self.client.get_issue_hierarchy(number)
            except RemoteError as exc:
                logger.warning(
                    "Hierarchy query for #%d failed: %s", number, exc.message
                )
                errors.append(f"hierarchy #{number}: {exc.message}")
        return graph

    def _candidate(
        self,
        base: WorkItem,
        issue: ExternalIssueRecord,
        force_completed: bool = False,
    ) -> WorkItem:
        fields = decode_labels(issue.labels, self.client.label_prefix)
        if issue.is_closed or force_completed:
            status = WorkItemStatus.COMPLETED
        else:
            status = fields.status or base.status
        tags = base.tags
        if fields.tags:
            tags = list(dict.fromkeys([*base.tags, *fields.tags]))
        return base.model_copy(
            update={
                "title": issue.title or base.title,
                "description": visible_text(issue.body) or base.description,
                "status": status,
                "priority": fields.priority or base.priority,
                "stage": fields.stage or base.stage,
                "issue_type": fields.issue_type or base.issue_type,
                "risk": fields.risk or base.risk,
                "effort": fields.effort or base.effort,
                "tags": tags,
                "updated_at": issue.updated_at,
            }
        )

    @staticmethod
    def _collect_hints(
        item_id: str,
        issue: ExternalIssueRecord,
        graph: dict[int, IssueHierarchy],
        parent_by_child: dict[int, int],
        hints: _Hints,
    ) -> None:
        parent_id = extract_parent_id(issue.body)
        if parent_id:
            hints.parent_ids[item_id] = parent_id
        child_ids = extract_child_ids(issue.body)
        if child_ids:
            hints.child_ids[item_id] = child_ids
        parent_number = extract_parent_issue_number(issue.body)
        if parent_number is not None:
            hints.parent_numbers[item_id] = parent_number
        child_numbers = extract_child_issue_numbers(issue.body)
        if child_numbers:
            hints.child_numbers[item_id] = child_numbers

        hierarchy = graph.get(issue.number)
        graph_parent = parent_by_child.get(issue.number)
        if graph_parent is None and hierarchy is not None:
            graph_parent = hierarchy.parent_issue_number
        if graph_parent is not None:
            hints.graph_parent[item_id] = graph_parent
        if hierarchy is not None and hierarchy.child_issue_numbers:
            hints.graph_children[item_id] = list(hierarchy.child_issue_numbers)

    def _close_check(
        self,
        items: list[WorkItem],
        seen_numbers: set[int],
        graph: dict[int, IssueHierarchy],
        parent_by_child: dict[int, int],
        candidates: list[WorkItem],
        meta: dict[str, ExternalIssueRecord],
        hints: _Hints,
        errors: list[str],
        on_progress: Callable[[SyncProgress], None] | None,
    ) -> None:
        pending = [
            item
            for item in items
            if item.external_issue_number is not None
            and item.external_issue_number not in seen_numbers
            and item.id not in meta
        ]
        for index, item in enumerate(pending, start=1):
            if on_progress:
                on_progress(
                    SyncProgress(
                        phase=SyncPhase.CLOSE_CHECK,
                        current=index,
                        total=len(pending),
                    )
                )
            number = item.external_issue_number
            try:
                issue = self.client.get_issue(number)
            except RemoteError as exc:
                logger.error("Close-check of #%d failed: %s", number, exc.message)
                errors.append(f"close-check #{number}: {exc.message}")
                continue
            if not issue.is_closed:
                continue
            watermark = item.external_issue_updated_at
            if (
                watermark is not None
                and watermark >= issue.updated_at
                and item.status == WorkItemStatus.COMPLETED
            ):
                continue
            logger.debug("#%d closed remotely; completing %s", number, item.id)
            candidate = self._candidate(item, issue, force_completed=True)
            candidates.append(candidate)
            meta[item.id] = issue
            self._collect_hints(item.id, issue, graph, parent_by_child, hints)

    @staticmethod
    def _apply_hints(items: list[WorkItem], hints: _Hints) -> list[WorkItem]:
        """Set ``parent_id`` from hints; later layers overwrite earlier ones."""
        parents: dict[str, str] = {}
        ids = {i.id for i in items}
        numbers: dict[int, str] = {}
        for item in items:
            if item.external_issue_number is not None:
                numbers[item.external_issue_number] = item.id

        def layer(
            parent_of: dict[str, str | int],
            children_of: dict[str, list],
            resolve: Callable[[str | int], str | None],
        ) -> None:
            for child_id, parent_ref in parent_of.items():
                parent_id = resolve(parent_ref)
                if parent_id and child_id in ids and parent_id != child_id:
                    parents[child_id] = parent_id
            for parent_id, child_refs in children_of.items():
                for ref in child_refs:
                    child_id = resolve(ref)
                    if child_id and child_id in ids and child_id != parent_id:
                        parents[child_id] = parent_id

        def by_id(ref: str) -> str | None:
            return ref if ref in ids else None

        layer(hints.parent_ids, hints.child_ids, by_id)
        layer(hints.parent_numbers, hints.child_numbers, numbers.get)
        layer(hints.graph_parent, hints.graph_children, numbers.get)

        return [
            item.model_copy(update={"parent_id": parents[item.id]})
            if item.id in parents and item.parent_id != parents[item.id]
            else item
            for item in items
        ]

    @staticmethod
    def _apply_meta(
        item: WorkItem, issue: ExternalIssueRecord | None
    ) -> WorkItem:
        if issue is None:
            return item
        return item.model_copy(
            update={
                "external_issue_number": issue.number,
                "external_issue_id": issue.id,
                "external_issue_updated_at": issue.updated_at,
            }
        )
