"""Identity markers embedded in remote issue and comment bodies.

A marker is a single-line HTML comment, invisible when the tracker renders
Markdown, carrying the id of the local record:

* issue body:   ``<!-- worklog:id=WL-123 -->``
* comment body: ``<!-- worklog:comment=WL-C456 -->``

The marker is always the first line of a body built here.  Extraction looks
anywhere in the body so hand-edited issues still resolve.

The module also reads the free-text hierarchy hints some bodies carry::

    Parent: WL-12          (parent by local id)
    Parent: #12            (parent by issue number)
    Children:              (child ids, one "- WL-13" per line)
    Sub-issues:            (child issue numbers, one "- #13" per line)
"""

from __future__ import annotations

import re

MARKER_PREFIX = "<!-- worklog:id="
COMMENT_MARKER_PREFIX = "<!-- worklog:comment="
MARKER_SUFFIX = " -->"

_ANY_MARKER_RE = re.compile(
    r"[ \t]*<!--\s*worklog:(?:id|comment)=[^\n]*?-->[ \t]*\n?"
)
_PARENT_ID_RE = re.compile(r"^Parent:\s*([^\s-]+(?:-[^\s-]+)*)")
_CHILD_ID_RE = re.compile(r"^-\s*([^\s-]+(?:-[^\s-]+)*)")
_ISSUE_NUMBER_RE = re.compile(r"#(\d+)")


def build_marker(work_item_id: str) -> str:
    """Return the issue-body marker for *work_item_id*."""
    return f"{MARKER_PREFIX}{work_item_id}{MARKER_SUFFIX}"


def build_comment_marker(comment_id: str) -> str:
    """Return the comment-body marker for *comment_id*."""
    return f"{COMMENT_MARKER_PREFIX}{comment_id}{MARKER_SUFFIX}"


def _extract(body: str | None, prefix: str) -> str | None:
    if not body:
        return None
    start = body.find(prefix)
    if start == -1:
        return None
    end = body.find(MARKER_SUFFIX, start + len(prefix))
    if end == -1:
        return None
    value = body[start + len(prefix) : end].strip()
    return value or None


def extract_worklog_id(body: str | None) -> str | None:
    """Return the work item id carried by an issue body, or ``None``."""
    return _extract(body, MARKER_PREFIX)


def extract_comment_id(body: str | None) -> str | None:
    """Return the comment id carried by a comment body, or ``None``."""
    return _extract(body, COMMENT_MARKER_PREFIX)


def strip_markers(body: str | None) -> str:
    """Remove every identity marker, returning the human-visible text."""
    if not body:
        return ""
    return _ANY_MARKER_RE.sub("", body)


def body_with_marker(marker: str, text: str) -> str:
    """Prefix *text* with *marker* on its own line."""
    if not text:
        return marker
    return f"{marker}\n\n{text}"


def visible_text(body: str | None) -> str:
    """Inverse of ``body_with_marker``: markers and the separator removed."""
    return strip_markers(body).lstrip("\n")


# ---------------------------------------------------------------------------
# Free-text hierarchy hints
# ---------------------------------------------------------------------------


def extract_parent_id(body: str | None) -> str | None:
    """Return the id from the first ``Parent:`` line, if it names an id."""
    if not body:
        return None
    for line in body.split("\n"):
        if not line.startswith("Parent:"):
            continue
        if _ISSUE_NUMBER_RE.search(line):
            return None
        match = _PARENT_ID_RE.match(line)
        return match.group(1) if match else None
    return None


def extract_parent_issue_number(body: str | None) -> int | None:
    """Return the issue number from the first ``Parent:`` line, if any."""
    if not body:
        return None
    for line in body.split("\n"):
        if not line.startswith("Parent:"):
            continue
        match = _ISSUE_NUMBER_RE.search(line)
        return int(match.group(1)) if match else None
    return None


def extract_child_ids(body: str | None) -> list[str]:
    """Return ids listed under a ``Children:`` (or ``Pending children:``) block."""
    if not body:
        return []
    child_ids: list[str] = []
    in_children = False
    for line in body.split("\n"):
        if not line.strip():
            if in_children:
                break
            continue
        if line.startswith(("Children:", "Pending children:")):
            in_children = True
            continue
        if not in_children:
            continue
        if not line.startswith("- "):
            break
        if _ISSUE_NUMBER_RE.search(line):
            continue
        match = _CHILD_ID_RE.match(line)
        if match:
            child_ids.append(match.group(1))
    return child_ids


def extract_child_issue_numbers(body: str | None) -> list[int]:
    """Return issue numbers listed under a ``Sub-issues:`` or ``Children:`` block."""
    if not body:
        return []
    numbers: list[int] = []
    in_children = False
    for line in body.split("\n"):
        if not line.strip():
            if in_children:
                break
            continue
        if line.startswith(("Sub-issues:", "Children:")):
            in_children = True
            continue
        if not in_children:
            continue
        match = _ISSUE_NUMBER_RE.search(line)
        if match is None:
            if not line.startswith("-"):
                break
            continue
        numbers.append(int(match.group(1)))
    return numbers
