"""Line-delimited snapshot file codec.

One record per line, so the file diffs and merges well in git::

    {"type": "workitem", "data": {"id": "WL-1", "title": "...", ...}}
    {"type": "comment", "data": {"id": "WL-C1", "workItemId": "WL-1", ...}}

Lines without a ``type`` field come from the older format and are read as
work items.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable

from pydantic import ValidationError

from .sync.models import Comment, WorkItem

logger = logging.getLogger(__name__)


def _record(kind: str, model: WorkItem | Comment) -> str:
    return json.dumps(
        {"type": kind, "data": model.model_dump(mode="json", by_alias=True)},
        ensure_ascii=False,
    )


def dump_jsonl(items: Iterable[WorkItem], comments: Iterable[Comment]) -> str:
    """Serialise *items* then *comments*, one record per line."""
    lines = [_record("workitem", item) for item in items]
    lines.extend(_record("comment", comment) for comment in comments)
    return "\n".join(lines) + "\n" if lines else ""


def parse_jsonl(content: str) -> tuple[list[WorkItem], list[Comment]]:
    """Parse snapshot *content*.

    Raises:
        ValueError: If a line is not valid JSON or not a valid record.
    """
    items: list[WorkItem] = []
    comments: list[Comment] = []
    legacy = 0
    for lineno, line in enumerate(content.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            parsed = json.loads(line)
            kind = parsed.get("type") if isinstance(parsed, dict) else None
            if kind == "workitem" and parsed.get("data"):
                items.append(WorkItem.model_validate(parsed["data"]))
            elif kind == "comment" and parsed.get("data"):
                comments.append(Comment.model_validate(parsed["data"]))
            else:
                legacy += 1
                items.append(WorkItem.model_validate(parsed))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise ValueError(f"Invalid snapshot record on line {lineno}: {exc}") from exc
    if legacy:
        logger.warning(
            "Found %d entries without a type field; read them as work items. "
            "Rewrite the file to migrate to the typed format.",
            legacy,
        )
    return items, comments


def read_jsonl(path: str | Path) -> tuple[list[WorkItem], list[Comment]]:
    """Read a snapshot file; a missing file is an empty snapshot."""
    path = Path(path)
    if not path.exists():
        return [], []
    return parse_jsonl(path.read_text(encoding="utf-8"))


def write_jsonl(
    path: str | Path,
    items: Iterable[WorkItem],
    comments: Iterable[Comment],
) -> None:
    """Atomically replace *path* with the serialised snapshot."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    content = dump_jsonl(items, comments)
    fd, tmp_name = tempfile.mkstemp(
        dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
