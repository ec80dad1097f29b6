"""Field-level merge of two versions of the work item and comment collections.

There is no common ancestor to merge against, so each field is resolved on
its own:

* A default (empty) value loses to a set value, without a conflict.
* Two different set values are resolved by ``updated_at``; the newer side
  wins and the field is reported as a conflict.
* Differing tag sets are unioned rather than picked.
* Equal ``updated_at`` with differing content is a same-timestamp conflict,
  resolved by ``MergeOptions.tie_break``.  The merged ``updated_at`` is
  bumped one millisecond past both inputs so the next round has a winner.

Comments merge by id, and the local copy always wins a collision.

Both functions are pure and deterministic: the same inputs give the same
output, with no clock reads.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Iterable

from worklog_sync.sync.models import (
    ChosenSource,
    Comment,
    CommentMergeResult,
    ConflictDetail,
    ConflictFieldDetail,
    ConflictType,
    MergeOptions,
    MergeResult,
    TieBreakStrategy,
    WorkItem,
)

logger = logging.getLogger(__name__)

# Content fields resolved one by one.  Timestamps and remote linkage are
# handled separately.
MERGE_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "status",
    "priority",
    "stage",
    "risk",
    "effort",
    "parent_id",
    "tags",
    "assignee",
    "issue_type",
    "created_by",
    "deleted_by",
    "delete_reason",
)

LINKAGE_FIELDS: tuple[str, ...] = (
    "external_issue_number",
    "external_issue_id",
    "external_issue_updated_at",
)

TIE_BUMP = timedelta(milliseconds=1)


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


def is_default_value(
    value: Any, field: str, options: MergeOptions | None = None
) -> bool:
    """Return ``True`` if *value* counts as unset for *field*.

    ``None``, ``""`` and empty lists are default, except for fields listed
    in ``options.default_value_fields``, which are never default.
    """
    if options is not None and field in options.default_value_fields:
        return False
    if value is None or value == "":
        return True
    if isinstance(value, (list, tuple, set, frozenset)) and not value:
        return True
    return False


def _plain(value: Any) -> Any:
    """Reduce enums to their string value for comparison and reporting."""
    return getattr(value, "value", value)


def stable_value_key(value: Any) -> str:
    """Serialise *value* so that equal values give equal keys.

    Lists compare as sets of their string forms.
    """
    if value is None:
        return "n"
    if isinstance(value, (list, tuple, set, frozenset)):
        return "a:" + json.dumps(sorted(str(v) for v in value))
    value = _plain(value)
    if isinstance(value, datetime):
        return "t:" + value.isoformat()
    return "v:" + json.dumps(value, sort_keys=True, default=str)


def stable_item_key(
    item: WorkItem, exclude: Iterable[str] = ()
) -> str:
    """Serialise a whole work item independent of tag order."""
    data = item.model_dump(mode="json", exclude=set(exclude))
    if "tags" in data:
        data["tags"] = sorted(str(t) for t in data["tags"] or [])
    return json.dumps(data, sort_keys=True)


def content_key(item: WorkItem) -> str:
    """Key over the merged content fields only."""
    return "|".join(
        stable_value_key(getattr(item, name)) for name in MERGE_FIELDS
    )


def merge_tags(
    a: Iterable[str] | None, b: Iterable[str] | None
) -> list[str]:
    """Sorted union of two tag collections."""
    out = {str(t) for t in a or []}
    out.update(str(t) for t in b or [])
    return sorted(out)


# ---------------------------------------------------------------------------
# Work items
# ---------------------------------------------------------------------------


def _merge_linkage(local: WorkItem, remote: WorkItem) -> dict[str, Any]:
    """Pick remote linkage from the side that observed the issue last.

    A missing value never overwrites a present one.
    """
    if local.external_issue_number is None:
        source = remote
    elif remote.external_issue_number is None:
        source = local
    else:
        local_seen = local.external_issue_updated_at
        remote_seen = remote.external_issue_updated_at
        if remote_seen is not None and (
            local_seen is None or remote_seen > local_seen
        ):
            source = remote
        else:
            source = local
    return {name: getattr(source, name) for name in LINKAGE_FIELDS}


def _tie_break_choice(
    local_value: Any, remote_value: Any, strategy: TieBreakStrategy
) -> ChosenSource:
    if strategy == TieBreakStrategy.PREFER_REMOTE:
        return ChosenSource.REMOTE
    if strategy == TieBreakStrategy.LEXICOGRAPHIC:
        if stable_value_key(remote_value) > stable_value_key(local_value):
            return ChosenSource.REMOTE
        return ChosenSource.LOCAL
    return ChosenSource.LOCAL


def _merge_pair(
    local: WorkItem,
    remote: WorkItem,
    options: MergeOptions,
    conflicts: list[str],
    conflict_details: list[ConflictDetail],
) -> WorkItem:
    """Merge two versions of the same work item."""
    linkage = _merge_linkage(local, remote)
    same_timestamp = local.updated_at == remote.updated_at
    remote_newer = remote.updated_at > local.updated_at

    if content_key(local) == content_key(remote):
        update = dict(linkage)
        update["updated_at"] = max(local.updated_at, remote.updated_at)
        return local.model_copy(update=update)

    update: dict[str, Any] = {}
    details: list[ConflictFieldDetail] = []
    resolved: list[str] = []
    contested: list[str] = []

    for name in MERGE_FIELDS:
        local_value = getattr(local, name)
        remote_value = getattr(remote, name)
        if stable_value_key(local_value) == stable_value_key(remote_value):
            continue

        local_default = is_default_value(local_value, name, options)
        remote_default = is_default_value(remote_value, name, options)

        if local_default and not remote_default:
            update[name] = remote_value
            resolved.append(f"{name} (from remote)")
            logger.debug(
                "%s: %s taken from remote (local unset)", local.id, name
            )
            continue
        if remote_default and not local_default:
            resolved.append(f"{name} (from local)")
            logger.debug(
                "%s: %s kept from local (remote unset)", local.id, name
            )
            continue

        if name == "tags":
            union = merge_tags(local_value, remote_value)
            update[name] = union
            resolved.append("tags (union)")
            details.append(
                ConflictFieldDetail(
                    field=name,
                    local_value=list(local_value),
                    remote_value=list(remote_value),
                    chosen_value=union,
                    chosen_source=ChosenSource.MERGED,
                    reason="union of both tag sets",
                )
            )
            continue

        if same_timestamp:
            source = _tie_break_choice(
                local_value, remote_value, options.tie_break
            )
            reason = f"same updatedAt, tie-break: {options.tie_break.value}"
        elif remote_newer:
            source = ChosenSource.REMOTE
            reason = f"remote is newer ({remote.updated_at.isoformat()})"
        else:
            source = ChosenSource.LOCAL
            reason = f"local is newer ({local.updated_at.isoformat()})"

        chosen = remote_value if source == ChosenSource.REMOTE else local_value
        if source == ChosenSource.REMOTE:
            update[name] = remote_value
        contested.append(name)
        details.append(
            ConflictFieldDetail(
                field=name,
                local_value=_plain(local_value),
                remote_value=_plain(remote_value),
                chosen_value=_plain(chosen),
                chosen_source=source,
                reason=reason,
            )
        )

    update.update(linkage)
    update["created_at"] = local.created_at
    if same_timestamp:
        update["updated_at"] = local.updated_at + TIE_BUMP
        conflicts.append(
            f"{local.id}: Same updatedAt but different content - "
            f"resolved with {options.tie_break.value} tie-break and "
            f"bumped updatedAt"
        )
    else:
        update["updated_at"] = max(local.updated_at, remote.updated_at)
        if contested:
            winner = "remote" if remote_newer else "local"
            conflicts.append(
                f"{local.id}: Conflicting fields [{', '.join(contested)}] "
                f"resolved using {winner} values "
                f"(local: {local.updated_at.isoformat()}, "
                f"remote: {remote.updated_at.isoformat()})"
            )
    if resolved:
        conflicts.append(
            f"{local.id}: Merged fields [{', '.join(resolved)}]"
        )

    if details or same_timestamp:
        conflict_details.append(
            ConflictDetail(
                item_id=local.id,
                conflict_type=(
                    ConflictType.SAME_TIMESTAMP
                    if same_timestamp
                    else ConflictType.DIFFERENT_TIMESTAMP
                ),
                fields=details,
                local_updated_at=local.updated_at,
                remote_updated_at=remote.updated_at,
            )
        )

    return local.model_copy(update=update)


def merge_work_items(
    local_items: Iterable[WorkItem],
    remote_items: Iterable[WorkItem],
    options: MergeOptions | None = None,
) -> MergeResult:
    """Merge two work item collections field by field.

    Args:
        local_items: Locally held items.
        remote_items: Items from the other copy (snapshot or tracker).
        options: Default-value and tie-break configuration.

    Returns:
        ``MergeResult`` with the merged collection (local order first, then
        remote-only items in remote order), conflict lines and details.
    """
    opts = options or MergeOptions()
    conflicts: list[str] = []
    conflict_details: list[ConflictDetail] = []

    merged: dict[str, WorkItem] = {}
    for item in local_items:
        merged[item.id] = item

    for remote in remote_items:
        local = merged.get(remote.id)
        if local is None:
            merged[remote.id] = remote
            continue
        if stable_item_key(local) == stable_item_key(remote):
            continue
        merged[remote.id] = _merge_pair(
            local, remote, opts, conflicts, conflict_details
        )

    return MergeResult(
        merged=list(merged.values()),
        conflicts=conflicts,
        conflict_details=conflict_details,
    )


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


def merge_comments(
    local_comments: Iterable[Comment],
    remote_comments: Iterable[Comment],
) -> CommentMergeResult:
    """Merge comment collections keyed by id.

    On an id collision the local comment wins in full (author, body,
    references).  Remote linkage is adopted only when the local copy has
    none.  Remote-only comments are appended unchanged.
    """
    merged: dict[str, Comment] = {}
    conflicts: list[str] = []
    for comment in local_comments:
        merged[comment.id] = comment

    for remote in remote_comments:
        local = merged.get(remote.id)
        if local is None:
            merged[remote.id] = remote
            continue
        if (local.author, local.body, sorted(local.references)) != (
            remote.author,
            remote.body,
            sorted(remote.references),
        ):
            conflicts.append(
                f"{local.id}: comment differs from remote copy - kept local"
            )
        if (
            local.external_comment_id is None
            and remote.external_comment_id is not None
        ):
            merged[remote.id] = local.model_copy(
                update={
                    "external_comment_id": remote.external_comment_id,
                    "external_comment_updated_at": (
                        remote.external_comment_updated_at
                    ),
                }
            )

    return CommentMergeResult(
        merged=list(merged.values()), conflicts=conflicts
    )
