"""Encode work item fields as namespaced tracker labels, and back.

With the default prefix ``wl:`` a work item maps to labels such as::

    wl:status:in-progress  wl:priority:high  wl:stage:review
    wl:type:bug  wl:risk:low  wl:effort:M  wl:tag:backend

Decoding also accepts the legacy bare status form (``wl:completed``).
Labels under the prefix that match no known key are ignored.  Labels outside
the prefix are foreign, and they come back as free-form tags.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from worklog_sync.sync.models import (
    IssuePayload,
    IssueState,
    WorkItem,
    WorkItemPriority,
    WorkItemStatus,
)

DEFAULT_LABEL_PREFIX = "wl:"

# Reserved colour GitHub renders as invisible on its default theme.
_INVISIBLE_COLOR = "000000"
_FALLBACK_COLOR = "ededed"

_STATUS_VALUES = {s.value for s in WorkItemStatus}
_PRIORITY_VALUES = {p.value for p in WorkItemPriority}

# Single-valued fields: label key -> WorkItem attribute.
_FIELD_KEYS: dict[str, str] = {
    "status": "status",
    "priority": "priority",
    "stage": "stage",
    "type": "issue_type",
    "risk": "risk",
    "effort": "effort",
}


def normalize_label_prefix(prefix: str | None) -> str:
    """Return *prefix* ending with ``:``; empty means the default."""
    if not prefix:
        return DEFAULT_LABEL_PREFIX
    return prefix if prefix.endswith(":") else f"{prefix}:"


def label_color(label: str) -> str:
    """Deterministic six-digit hex colour for *label*."""
    value = 0
    for ch in label:
        value = (value * 31 + ord(ch)) & 0xFFFFFFFF
    color = format(value % 0xFFFFFF, "06x")
    return _FALLBACK_COLOR if color == _INVISIBLE_COLOR else color


def is_status_label(label: str, prefix: str) -> bool:
    """Return ``True`` for both ``<prefix>status:x`` and legacy ``<prefix>x``."""
    normalized = normalize_label_prefix(prefix)
    if not label.startswith(normalized):
        return False
    value = label[len(normalized) :]
    return value.startswith("status:") or value in _STATUS_VALUES


def is_owned_label(label: str, prefix: str) -> bool:
    """Return ``True`` if *label* lives in our namespace."""
    return label.startswith(normalize_label_prefix(prefix))


def work_item_labels(item: WorkItem, prefix: str) -> list[str]:
    """Return the labels that encode *item*, in a stable order."""
    p = normalize_label_prefix(prefix)
    labels = [
        f"{p}status:{item.status.value}",
        f"{p}priority:{item.priority.value}",
    ]
    for key in ("stage", "type", "risk", "effort"):
        value = getattr(item, _FIELD_KEYS[key])
        if value:
            labels.append(f"{p}{key}:{value}")
    for tag in sorted(set(item.tags)):
        if tag:
            labels.append(f"{p}tag:{tag}")
    return labels


def issue_state_for(item: WorkItem) -> IssueState:
    if item.status in (WorkItemStatus.COMPLETED, WorkItemStatus.DELETED):
        return IssueState.CLOSED
    return IssueState.OPEN


def work_item_to_issue_payload(
    item: WorkItem, body: str, prefix: str
) -> IssuePayload:
    """Build the outgoing issue payload for *item*.

    Args:
        item: The local work item.
        body: Issue body, already carrying the identity marker.
        prefix: Label namespace prefix.
    """
    return IssuePayload(
        title=item.title or item.id,
        body=body,
        labels=work_item_labels(item, prefix),
        state=issue_state_for(item),
    )


@dataclass
class LabelFields:
    """Work item fields decoded from an issue's labels.

    Fields are ``None`` when no label carried them.
    """

    status: WorkItemStatus | None = None
    priority: WorkItemPriority | None = None
    stage: str | None = None
    issue_type: str | None = None
    risk: str | None = None
    effort: str | None = None
    tags: list[str] = field(default_factory=list)


def decode_labels(labels: list[str], prefix: str) -> LabelFields:
    """Decode tracker labels into work item fields."""
    p = normalize_label_prefix(prefix)
    fields = LabelFields()
    tags: list[str] = []

    for label in labels:
        if not label.startswith(p):
            tags.append(label)
            continue
        value = label[len(p) :]
        if value in _STATUS_VALUES:
            fields.status = WorkItemStatus(value)
            continue
        key, sep, rest = value.partition(":")
        if not sep or not rest:
            continue
        if key == "status":
            if rest in _STATUS_VALUES:
                fields.status = WorkItemStatus(rest)
        elif key == "priority":
            if rest in _PRIORITY_VALUES:
                fields.priority = WorkItemPriority(rest)
        elif key == "tag":
            tags.append(rest)
        elif key in _FIELD_KEYS:
            setattr(fields, _FIELD_KEYS[key], rest)

    seen: set[str] = set()
    fields.tags = [t for t in tags if not (t in seen or seen.add(t))]
    return fields


def labels_for_update(
    current: list[str], desired: list[str], prefix: str
) -> tuple[list[str], list[str]]:
    """Plan a label update.

    Returns:
        ``(final_labels, removed)``: foreign labels are preserved, owned
        labels are replaced by *desired*; *removed* lists the owned labels
        that are dropped.
    """
    desired_set = set(desired)
    foreign = [lb for lb in current if not is_owned_label(lb, prefix)]
    removed = [
        lb
        for lb in current
        if is_owned_label(lb, prefix) and lb not in desired_set
    ]
    final = foreign + [lb for lb in desired if lb not in foreign]
    return final, removed
