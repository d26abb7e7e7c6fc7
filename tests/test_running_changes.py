"""
Unit tests for running change ingestion.

These tests verify that:
1. UK day-first dates and ISO dates both parse to midnight UTC
2. Sheet column aliases from different revisions are all understood
3. Import upserts by CN number and reports bad rows without stopping
"""

from datetime import datetime, timezone

import pytest

from bomtrail.changes.running_changes import (
    calculate_running_change_stats,
    delete_running_change,
    get_active_running_changes,
    get_running_change,
    import_running_changes,
    list_running_changes,
    parse_codes,
    parse_uk_date,
    running_change_from_row,
    set_running_change_active,
)
from bomtrail.errors import DocumentNotFoundError, RunningChangeFormatError
from bomtrail.models import CodeReplacement, RunningChange


def make_row(cn: str = "CN-100", old: str = "B200", new: str = "B201", date: str = "01/07/2025", **extra):
    """Helper to create a sheet row with the current column headings."""
    row = {
        "CN Number": cn,
        "CN Description": f"Change {cn}",
        "Old B-codes": old,
        "New- B-codes": new,
        "Estimated GO LIVE date": date,
        "Who": "Sam",
    }
    row.update(extra)
    return row


def make_change(cn: str, go_live: datetime, active: bool = True, old=("B1",), new=("B2",)) -> RunningChange:
    return RunningChange.from_parallel_codes(
        id=cn.lower(),
        cn_number=cn,
        old_codes=list(old),
        new_codes=list(new),
        estimated_go_live_date=go_live,
        is_active=active,
    )


# =============================================================================
# PARSING
# =============================================================================

class TestParseUkDate:
    """Tests for go-live date parsing."""

    @pytest.mark.parametrize("text", ["01/07/2025", "1.7.2025", "01-07-2025", "2025-07-01"])
    def test_formats(self, text):
        assert parse_uk_date(text) == datetime(2025, 7, 1, tzinfo=timezone.utc)

    def test_day_comes_first(self):
        assert parse_uk_date("03/04/2025").month == 4

    @pytest.mark.parametrize("text", ["", None, "31/02/2025", "next week"])
    def test_unparseable_is_none(self, text):
        assert parse_uk_date(text) is None

    def test_datetime_passthrough_is_made_aware(self):
        assert parse_uk_date(datetime(2025, 7, 1)).tzinfo is not None


class TestParseCodes:

    def test_comma_separated(self):
        assert parse_codes("b100, B200 ,,b300") == ["B100", "B200", "B300"]

    def test_empty(self):
        assert parse_codes("") == []


class TestRunningChangeFromRow:
    """Tests for turning one sheet row into a RunningChange."""

    def test_current_headings(self):
        change = running_change_from_row(make_row(), user_id="u1", filename="cn.xlsx")
        assert change.cn_number == "CN-100"
        assert change.replacements == [CodeReplacement("B200", "B201")]
        assert change.owner == "Sam"
        assert change.source_filename == "cn.xlsx"
        assert change.is_active

    def test_legacy_camel_case_headings(self):
        row = {
            "cnNumber": "CN-7",
            "oldBCodes": "B1,B2",
            "newBCodes": "B3",
            "estimatedGoLiveDate": "15/08/2025",
        }
        change = running_change_from_row(row)
        assert change.old_codes == ["B1", "B2"]
        assert change.new_codes == ["B3", "B3"]

    def test_row_without_cn_is_skipped(self):
        assert running_change_from_row({"Old B-codes": "B1"}) is None

    def test_bad_date_is_rejected(self):
        with pytest.raises(RunningChangeFormatError):
            running_change_from_row(make_row(date="soon"))

    def test_ambiguous_codes_are_rejected(self):
        with pytest.raises(RunningChangeFormatError):
            running_change_from_row(make_row(old="B1,B2,B3", new="N1,N2"))

    def test_missing_new_codes_are_rejected(self):
        with pytest.raises(RunningChangeFormatError):
            running_change_from_row(make_row(new=""))


# =============================================================================
# IMPORT
# =============================================================================

class TestImportRunningChanges:
    """Tests for sheet import and upsert by CN number."""

    def test_creates_new_changes(self, store, now):
        result = import_running_changes(store, [make_row("CN-1"), make_row("CN-2")], "u1", "cn.xlsx", now=now)
        assert result.success
        assert result.created_count == 2
        assert result.updated_count == 0
        assert len(list_running_changes(store)) == 2

    def test_reimport_updates_by_cn(self, store, now):
        import_running_changes(store, [make_row("CN-1", new="B201")], "u1", "a.xlsx", now=now)
        original_id = list_running_changes(store)[0].id

        result = import_running_changes(store, [make_row("CN-1", new="B202")], "u1", "b.xlsx", now=now)
        changes = list_running_changes(store)

        assert result.updated_count == 1
        assert result.created_count == 0
        assert len(changes) == 1
        assert changes[0].id == original_id
        assert changes[0].new_codes == ["B202"]

    def test_bad_rows_are_reported_with_sheet_row_numbers(self, store, now):
        rows = [make_row("CN-1"), make_row("CN-2", date="TBC"), {}, make_row("CN-3")]
        result = import_running_changes(store, rows, "u1", "cn.xlsx", now=now)

        assert result.success_count == 2
        assert result.error_count == 1
        assert result.errors[0].startswith("Row 3:")
        assert not result.success

    def test_duplicate_cn_in_one_sheet_keeps_last_row(self, store, now):
        rows = [make_row("CN-1", new="B201"), make_row("CN-1", new="B209")]
        result = import_running_changes(store, rows, "u1", "cn.xlsx", now=now)
        assert result.created_count == 1
        assert list_running_changes(store)[0].new_codes == ["B209"]


# =============================================================================
# ACCESS & STATS
# =============================================================================

class TestRunningChangeAccess:

    def test_active_changes_sorted_by_go_live(self, store, now):
        import_running_changes(store, [
            make_row("CN-LATE", date="01/12/2025"),
            make_row("CN-EARLY", date="01/02/2025"),
            make_row("CN-DONE", date="01/01/2025"),
        ], "u1", "cn.xlsx", now=now)
        done = next(c for c in list_running_changes(store) if c.cn_number == "CN-DONE")
        set_running_change_active(store, done.id, False, now=now)

        active = get_active_running_changes(store)
        assert [c.cn_number for c in active] == ["CN-EARLY", "CN-LATE"]
        assert get_running_change(store, done.id).is_active is False

    def test_deactivate_missing_change_raises(self, store):
        with pytest.raises(DocumentNotFoundError):
            set_running_change_active(store, "ghost", False)

    def test_delete(self, store, now):
        import_running_changes(store, [make_row("CN-1")], "u1", "cn.xlsx", now=now)
        change = list_running_changes(store)[0]
        delete_running_change(store, change.id)
        assert get_running_change(store, change.id) is None


class TestRunningChangeStats:

    def test_counts(self, now):
        changes = [
            make_change("CN-1", datetime(2025, 1, 1, tzinfo=timezone.utc), old=("B1",), new=("B2",)),
            make_change("CN-2", datetime(2025, 12, 1, tzinfo=timezone.utc), old=("B1", "B3"), new=("B4",)),
            make_change("CN-3", datetime(2025, 12, 1, tzinfo=timezone.utc), active=False),
        ]
        stats = calculate_running_change_stats(changes, now=now)
        assert stats.total == 3
        assert stats.active == 2
        assert stats.live == 1
        assert stats.upcoming == 1
        assert stats.unique_old_codes == 2
        assert stats.unique_new_codes == 2
