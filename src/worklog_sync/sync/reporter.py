"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync operations:

- ``format_snapshot_report`` -- snapshot sync summary.
- ``format_push_summary`` -- tracker push counters, timings and errors.
- ``format_import_summary`` -- tracker import summary and diagnostics.
- ``conflict_log_lines`` -- per-field conflict audit trail.
- ``report_to_json`` -- structured dict for ``--json`` output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable

if TYPE_CHECKING:
    from .engine import SnapshotSyncResult
    from .models import ConflictDetail, ImportOutcome, PushOutcome, WorkItem


def _value(value: Any) -> str:
    if value is None or value == "":
        return "(empty)"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(str(v) for v in value) + "]"
    return str(getattr(value, "value", value))


# ------------------------------------------------------------------
# Conflict audit trail
# ------------------------------------------------------------------


def conflict_log_lines(
    details: Iterable[ConflictDetail],
    merged_items: Iterable[WorkItem] | None = None,
) -> list[str]:
    """Render conflict details, one header per item and one line per field.

    Args:
        details: Conflict records from a merge.
        merged_items: When given, headers include the merged item's title.
    """
    titles = {i.id: i.title for i in merged_items or []}
    lines: list[str] = []
    for detail in details:
        header = f"{detail.item_id}"
        if titles.get(detail.item_id):
            header += f" ({titles[detail.item_id]})"
        header += f": {detail.conflict_type.value}"
        if detail.local_updated_at and detail.remote_updated_at:
            header += (
                f" [local {detail.local_updated_at.isoformat()}, "
                f"remote {detail.remote_updated_at.isoformat()}]"
            )
        lines.append(header)
        for field in detail.fields:
            lines.append(
                f"  {field.field}: chose {field.chosen_source.value} "
                f"({field.reason}); local={_value(field.local_value)} "
                f"remote={_value(field.remote_value)}"
            )
    return lines


# ------------------------------------------------------------------
# Human-readable summaries
# ------------------------------------------------------------------


def format_snapshot_report(result: SnapshotSyncResult) -> str:
    header = "Snapshot sync"
    if result.dry_run:
        header += " (DRY RUN)"
    lines = [header, ""]
    if not result.remote_found:
        lines.append("No remote snapshot found; local data will be published.")
    lines.append(
        f"Work items: {result.items_added} added, {result.items_updated} "
        f"updated, {result.items_unchanged} unchanged"
    )
    lines.append(f"Comments: {result.comments_added} added")
    if result.conflicts:
        lines.append("")
        lines.append(f"Conflicts ({len(result.conflicts)}):")
        lines.extend(f"  {c}" for c in result.conflicts)
    if result.conflict_details:
        lines.append("")
        lines.extend(
            conflict_log_lines(result.conflict_details, result.merged_items)
        )
    if not result.dry_run:
        lines.append("")
        lines.append("Pushed snapshot." if result.pushed else "Snapshot unchanged.")
    return "\n".join(lines).rstrip()


def format_push_summary(outcome: PushOutcome) -> str:
    """Format push counters, phase timings and errors."""
    r = outcome.result
    t = outcome.timing
    lines = [
        "GitHub push",
        "",
        f"Issues: {r.created} created, {r.updated} updated, {r.skipped} skipped",
        f"Comments: {r.comments_created} created, {r.comments_updated} updated",
        f"Sub-issue links: {r.hierarchy_linked} created, "
        f"{r.hierarchy_existing} already linked",
        "",
        f"Timing: issues {t.issue_upsert:.2f}s, comments "
        f"{t.comment_list + t.comment_upsert:.2f}s, hierarchy "
        f"{t.hierarchy_check + t.hierarchy_link + t.hierarchy_verify:.2f}s, "
        f"total {t.total:.2f}s",
    ]
    if r.errors:
        lines.append("")
        lines.append(f"Errors ({len(r.errors)}):")
        lines.extend(f"  {e}" for e in r.errors)
    return "\n".join(lines).rstrip()


def format_import_summary(outcome: ImportOutcome) -> str:
    lines = [
        "GitHub import",
        "",
        f"Issues listed: {len(outcome.issues)} "
        f"({outcome.markers_found} with markers)",
        f"Work items: {len(outcome.created_items)} created, "
        f"{len(outcome.updated_items)} updated",
    ]
    if outcome.warnings:
        lines.append("")
        lines.append("Warnings:")
        lines.extend(f"  {w}" for w in outcome.warnings)
    if outcome.conflict_details:
        lines.append("")
        lines.append(f"Conflicts ({len(outcome.conflict_details)}):")
        lines.extend(
            f"  {line}"
            for line in conflict_log_lines(
                outcome.conflict_details, outcome.merged_items
            )
        )
    if outcome.errors:
        lines.append("")
        lines.append(f"Errors ({len(outcome.errors)}):")
        lines.extend(f"  {e}" for e in outcome.errors)
    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(outcome: SnapshotSyncResult | PushOutcome | ImportOutcome) -> dict:
    """Convert an outcome to a dict for JSON serialisation.

    Full record collections are left out; counts, conflicts, errors and
    warnings are kept.
    """
    from .engine import SnapshotSyncResult
    from .models import PushOutcome

    details = [
        d.model_dump(mode="json", by_alias=True)
        for d in getattr(outcome, "conflict_details", [])
    ]
    if isinstance(outcome, SnapshotSyncResult):
        return {
            "operation": "snapshot",
            "dry_run": outcome.dry_run,
            "remote_found": outcome.remote_found,
            "pushed": outcome.pushed,
            "counts": {
                "items_added": outcome.items_added,
                "items_updated": outcome.items_updated,
                "items_unchanged": outcome.items_unchanged,
                "comments_added": outcome.comments_added,
            },
            "conflicts": outcome.conflicts,
            "conflict_details": details,
        }
    if isinstance(outcome, PushOutcome):
        return {
            "operation": "push",
            "counts": outcome.result.model_dump(exclude={"errors"}),
            "timing": {
                **outcome.timing.model_dump(),
                "total": outcome.timing.total,
            },
            "errors": outcome.result.errors,
        }
    return {
        "operation": "import",
        "counts": {
            "issues": len(outcome.issues),
            "markers_found": outcome.markers_found,
            "created": len(outcome.created_items),
            "updated": len(outcome.updated_items),
        },
        "created": [i.id for i in outcome.created_items],
        "updated": [i.id for i in outcome.updated_items],
        "conflicts": outcome.conflicts,
        "conflict_details": details,
        "warnings": outcome.warnings,
        "errors": outcome.errors,
    }
