"""Local record store used by the sync engine.

The engine only needs a small key-value surface, described by the
``RecordStore`` protocol.  ``JsonlRecordStore`` implements it over the
snapshot file itself.
"""

from __future__ import annotations

import logging
import secrets
import time
from pathlib import Path
from typing import Protocol

from .jsonl import read_jsonl, write_jsonl
from .sync.models import Comment, WorkItem

logger = logging.getLogger(__name__)

_TIME_LENGTH = 9
_RANDOM_LENGTH = 7
_MAX_ID_ATTEMPTS = 10
_DIGITS = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(_DIGITS[rem])
    return "".join(reversed(out))


def unique_suffix() -> str:
    """Nine base-36 digits of epoch milliseconds plus seven random ones."""
    time_part = to_base36(int(time.time() * 1000))
    if len(time_part) > _TIME_LENGTH:
        raise ValueError("Timestamp overflow while generating unique id")
    random_part = to_base36(secrets.randbits(32))
    return time_part.rjust(_TIME_LENGTH, "0") + random_part.rjust(
        _RANDOM_LENGTH, "0"
    )


class RecordStore(Protocol):
    def get(self, item_id: str) -> WorkItem | None: ...

    def list(self) -> list[WorkItem]: ...

    def list_comments(self) -> list[Comment]: ...

    def save(self, item: WorkItem) -> None: ...

    def save_comment(self, comment: Comment) -> None: ...

    def generate_id(self) -> str: ...

    def flush(self) -> None: ...


class JsonlRecordStore:
    """In-memory records backed by a JSONL snapshot file.

    Records load on construction (and on ``reload``).  ``save`` and
    ``save_comment`` change memory only; ``flush`` writes the file.
    """

    def __init__(self, path: str | Path, id_prefix: str = "WL"):
        self.path = Path(path)
        self.id_prefix = id_prefix
        self._items: dict[str, WorkItem] = {}
        self._comments: dict[str, Comment] = {}
        self.reload()

    def reload(self) -> None:
        items, comments = read_jsonl(self.path)
        self._items = {item.id: item for item in items}
        self._comments = {c.id: c for c in comments}
        logger.debug(
            "Loaded %d items and %d comments from %s",
            len(self._items),
            len(self._comments),
            self.path,
        )

    def replace_all(self, items: list[WorkItem], comments: list[Comment]) -> None:
        self._items = {item.id: item for item in items}
        self._comments = {c.id: c for c in comments}

    def flush(self) -> None:
        write_jsonl(self.path, self._items.values(), self._comments.values())

    def get(self, item_id: str) -> WorkItem | None:
        return self._items.get(item_id)

    def list(self) -> list[WorkItem]:
        return list(self._items.values())

    def list_comments(self) -> list[Comment]:
        return list(self._comments.values())

    def save(self, item: WorkItem) -> None:
        self._items[item.id] = item

    def save_comment(self, comment: Comment) -> None:
        self._comments[comment.id] = comment

    def generate_id(self) -> str:
        for _ in range(_MAX_ID_ATTEMPTS):
            candidate = f"{self.id_prefix}-{unique_suffix()}"
            if candidate not in self._items:
                return candidate
        raise RuntimeError("Unable to generate a unique work item id")

    def generate_comment_id(self) -> str:
        for _ in range(_MAX_ID_ATTEMPTS):
            candidate = f"{self.id_prefix}-C{unique_suffix()}"
            if candidate not in self._comments:
                return candidate
        raise RuntimeError("Unable to generate a unique comment id")
