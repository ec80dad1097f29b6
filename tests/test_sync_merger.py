"""Tests for sync/merger.py — field-level merge of work items and comments.

Covers:
- merge_work_items() default-value handling, timestamp resolution, tag union
- same-timestamp tie-breaks and the updated_at bump
- remote linkage selection
- merge_comments() id-keyed merge with local precedence
"""

from datetime import datetime, timedelta, timezone

import pytest

from worklog_sync.sync.merger import (
    TIE_BUMP,
    is_default_value,
    merge_comments,
    merge_tags,
    merge_work_items,
    stable_item_key,
    stable_value_key,
)
from worklog_sync.sync.models import (
    ChosenSource,
    Comment,
    ConflictType,
    MergeOptions,
    TieBreakStrategy,
    WorkItem,
    WorkItemPriority,
    WorkItemStatus,
)

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
T1 = T0 + timedelta(hours=1)


def _item(**kwargs) -> WorkItem:
    defaults = {"id": "WL-1", "created_at": T0, "updated_at": T0}
    defaults.update(kwargs)
    return WorkItem(**defaults)


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


class TestValueHelpers:
    """Tests for is_default_value, stable_value_key and merge_tags."""

    @pytest.mark.parametrize("value", [None, "", [], ()])
    def test_empty_values_are_default(self, value):
        assert is_default_value(value, "title")

    def test_set_value_is_not_default(self):
        assert not is_default_value("x", "title")

    def test_listed_field_never_default(self):
        """Fields in default_value_fields always compete on timestamp."""
        options = MergeOptions(default_value_fields=frozenset({"stage"}))
        assert not is_default_value("", "stage", options)

    def test_stable_key_ignores_list_order(self):
        assert stable_value_key(["b", "a"]) == stable_value_key(["a", "b"])

    def test_stable_key_enum_equals_plain_value(self):
        assert stable_value_key(WorkItemStatus.OPEN) == stable_value_key("open")

    def test_stable_item_key_ignores_tag_order(self):
        a = _item(tags=["x", "y"])
        b = _item(tags=["y", "x"])
        assert stable_item_key(a) == stable_item_key(b)

    def test_stable_item_key_exclude(self):
        a = _item(updated_at=T0)
        b = _item(updated_at=T1)
        assert stable_item_key(a) != stable_item_key(b)
        assert stable_item_key(a, exclude=["updated_at"]) == stable_item_key(
            b, exclude=["updated_at"]
        )

    def test_merge_tags_sorted_union(self):
        assert merge_tags(["b", "a"], ["c", "a"]) == ["a", "b", "c"]
        assert merge_tags(None, None) == []


# ---------------------------------------------------------------------------
# Work item merge
# ---------------------------------------------------------------------------


class TestMergeWorkItems:
    """Tests for merge_work_items()."""

    def test_identical_items_no_conflicts(self):
        item = _item(title="Same")
        result = merge_work_items([item], [item])

        assert result.merged == [item]
        assert result.conflicts == []
        assert result.conflict_details == []

    def test_remote_only_item_appended(self):
        local = _item(id="WL-1")
        remote = _item(id="WL-2", title="Remote")
        result = merge_work_items([local], [remote])

        assert [i.id for i in result.merged] == ["WL-1", "WL-2"]

    def test_local_only_item_kept(self):
        result = merge_work_items([_item(id="WL-1")], [])
        assert [i.id for i in result.merged] == ["WL-1"]

    def test_newer_remote_wins_field(self):
        local = _item(title="Local", updated_at=T0)
        remote = _item(title="Remote", updated_at=T1)

        result = merge_work_items([local], [remote])
        merged = result.merged[0]

        assert merged.title == "Remote"
        assert merged.updated_at == T1
        detail = result.conflict_details[0]
        assert detail.conflict_type == ConflictType.DIFFERENT_TIMESTAMP
        assert detail.fields[0].field == "title"
        assert detail.fields[0].chosen_source == ChosenSource.REMOTE

    def test_newer_local_wins_field(self):
        local = _item(title="Local", updated_at=T1)
        remote = _item(title="Remote", updated_at=T0)

        merged = merge_work_items([local], [remote]).merged[0]

        assert merged.title == "Local"
        assert merged.updated_at == T1

    def test_default_loses_to_set_value_regardless_of_time(self):
        """An unset local field takes the remote value even if local is newer."""
        local = _item(description="", assignee="alice", updated_at=T1)
        remote = _item(description="Remote text", updated_at=T0)

        result = merge_work_items([local], [remote])
        merged = result.merged[0]

        assert merged.description == "Remote text"
        assert merged.assignee == "alice"
        assert result.conflict_details == []
        assert any("Merged fields" in c for c in result.conflicts)

    def test_tags_are_unioned(self):
        local = _item(tags=["a", "b"], updated_at=T1)
        remote = _item(tags=["b", "c"], updated_at=T0)

        result = merge_work_items([local], [remote])

        assert result.merged[0].tags == ["a", "b", "c"]
        field = result.conflict_details[0].fields[0]
        assert field.chosen_source == ChosenSource.MERGED

    def test_same_timestamp_prefers_local_and_bumps(self):
        local = _item(title="Local", priority=WorkItemPriority.HIGH)
        remote = _item(title="Remote", priority=WorkItemPriority.LOW)

        result = merge_work_items([local], [remote])
        merged = result.merged[0]

        assert merged.title == "Local"
        assert merged.priority == WorkItemPriority.HIGH
        assert merged.updated_at == T0 + TIE_BUMP
        assert result.conflict_details[0].conflict_type == (
            ConflictType.SAME_TIMESTAMP
        )
        assert "Same updatedAt" in result.conflicts[0]

    def test_same_timestamp_prefer_remote(self):
        local = _item(title="Local")
        remote = _item(title="Remote")
        options = MergeOptions(tie_break=TieBreakStrategy.PREFER_REMOTE)

        merged = merge_work_items([local], [remote], options).merged[0]

        assert merged.title == "Remote"
        assert merged.updated_at > T0

    def test_same_timestamp_lexicographic(self):
        local = _item(title="Alpha")
        remote = _item(title="Beta")
        options = MergeOptions(tie_break=TieBreakStrategy.LEXICOGRAPHIC)

        forward = merge_work_items([local], [remote], options).merged[0]
        backward = merge_work_items([remote], [local], options).merged[0]

        assert forward.title == backward.title == "Beta"

    def test_merge_is_deterministic(self):
        local = _item(title="Local", tags=["x"])
        remote = _item(title="Remote", tags=["y"], updated_at=T1)

        first = merge_work_items([local], [remote])
        second = merge_work_items([local], [remote])

        assert first == second

    def test_remerge_keeps_content(self):
        """Merging the merged result with remote again keeps every field."""
        local = _item(title="Local", stage="review")
        remote = _item(title="Remote", updated_at=T1)

        merged = merge_work_items([local], [remote]).merged
        again = merge_work_items(merged, [remote]).merged

        assert again[0].title == "Remote"
        assert again[0].stage == "review"

    def test_created_at_kept_from_local(self):
        local = _item(title="Local", created_at=T0)
        remote = _item(
            title="Remote", created_at=T0 - timedelta(days=1), updated_at=T1
        )

        merged = merge_work_items([local], [remote]).merged[0]
        assert merged.created_at == T0

    def test_status_listed_as_never_default(self):
        """A status label always competes on timestamp when configured so."""
        options = MergeOptions(default_value_fields=frozenset({"status"}))
        local = _item(status=WorkItemStatus.OPEN, updated_at=T0)
        remote = _item(status=WorkItemStatus.COMPLETED, updated_at=T1)

        merged = merge_work_items([local], [remote], options).merged[0]
        assert merged.status == WorkItemStatus.COMPLETED


class TestLinkageMerge:
    """Remote linkage fields follow the most recent observation."""

    def test_missing_linkage_never_overwrites(self):
        local = _item(title="A", external_issue_number=7, external_issue_id=70)
        remote = _item(title="B", updated_at=T1)

        merged = merge_work_items([local], [remote]).merged[0]

        assert merged.external_issue_number == 7
        assert merged.external_issue_id == 70

    def test_adopts_remote_linkage_when_local_has_none(self):
        local = _item(title="A")
        remote = _item(
            title="A",
            external_issue_number=3,
            external_issue_updated_at=T1,
        )

        merged = merge_work_items([local], [remote]).merged[0]

        assert merged.external_issue_number == 3
        assert merged.external_issue_updated_at == T1

    def test_newer_watermark_wins(self):
        local = _item(external_issue_number=3, external_issue_updated_at=T0)
        remote = _item(external_issue_number=4, external_issue_updated_at=T1)

        merged = merge_work_items([local], [remote]).merged[0]
        assert merged.external_issue_number == 4


# ---------------------------------------------------------------------------
# Comment merge
# ---------------------------------------------------------------------------


class TestMergeComments:
    """Tests for merge_comments()."""

    def _comment(self, **kwargs) -> Comment:
        defaults = {"id": "WL-C1", "work_item_id": "WL-1", "created_at": T0}
        defaults.update(kwargs)
        return Comment(**defaults)

    def test_local_wins_collision(self):
        local = self._comment(body="local")
        remote = self._comment(body="remote")

        result = merge_comments([local], [remote])

        assert result.merged[0].body == "local"
        assert "kept local" in result.conflicts[0]

    def test_remote_only_appended(self):
        result = merge_comments(
            [self._comment(id="WL-C1")], [self._comment(id="WL-C2")]
        )
        assert [c.id for c in result.merged] == ["WL-C1", "WL-C2"]

    def test_adopts_remote_linkage(self):
        local = self._comment(body="same")
        remote = self._comment(
            body="same", external_comment_id=55, external_comment_updated_at=T1
        )

        result = merge_comments([local], [remote])

        assert result.merged[0].external_comment_id == 55
        assert result.conflicts == []
