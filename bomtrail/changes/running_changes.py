"""
Running change (CN) ingestion and access.

Running changes are shared by every project and live in the global
``running_changes`` collection, keyed by document id and upserted by CN
number.

Input rows are dicts already parsed from a change-tracking sheet. Column
names vary between sheet revisions, so each field accepts several aliases.
Dates are UK style (DD/MM/YYYY, DD.MM.YYYY, DD-MM-YYYY) with ISO-8601 as a
fallback. Code columns hold comma-separated B-codes, converted into explicit
old -> new pairs on ingestion.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from ..errors import RunningChangeFormatError
from ..models import (
    RunningChange,
    RunningChangeImportResult,
    RunningChangeStats,
    ensure_utc,
    normalize_item_code,
    to_iso,
    utc_now,
)
from ..store.base import GLOBAL_PROJECT, RUNNING_CHANGES, Filter, ItemStore

logger = logging.getLogger(__name__)

# Field -> accepted column names, first match wins
RUNNING_CHANGE_COLUMN_ALIASES: Dict[str, tuple] = {
    "cn_number": ("CN Number", "cnNumber", "CN_Number", "cn_number"),
    "cn_description": ("CN Description", "cnDescription", "CN_Description", "cn_description"),
    "owner": ("Who", "owner"),
    "assignee": ("Assignee", "assignee"),
    "estimated_go_live_date": (
        "Estimated GO LIVE date", "estimatedGoLiveDate", "Estimated_GO_LIVE_date",
        "GoLiveDate", "estimated_go_live_date",
    ),
    "affected_line": ("Affected Line", "affectedLine", "Affected_Line", "affected_line"),
    "old_codes": ("Old B-codes", "oldBCodes", "Old_B-codes", "OldBCodes", "old_codes"),
    "new_codes": (
        "New- B-codes", "newBCodes", "New-_B-codes", "NewBCodes", "New B-codes", "new_codes",
    ),
    "status_description": (
        "Current status description", "statusDescription",
        "Current_status_description", "status_description",
    ),
    "change_type": ("Change Type", "changeType", "Change_Type", "change_type"),
}

_UK_DATE = re.compile(r"^(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{4})$")


# =============================================================================
# ROW PARSING
# =============================================================================

def _row_value(row: Dict[str, Any], field: str) -> str:
    for key in RUNNING_CHANGE_COLUMN_ALIASES[field]:
        value = row.get(key)
        if value is not None:
            if isinstance(value, (list, tuple)):
                return ",".join(str(v) for v in value)
            return str(value).strip()
    return ""


def parse_uk_date(value: Any) -> Optional[datetime]:
    """
    Parse a go-live date.

    Accepts datetimes, DD/MM/YYYY, DD.MM.YYYY, DD-MM-YYYY and ISO-8601.
    Day-first dates are taken as midnight UTC.

    Returns:
        Aware UTC datetime, or None when the value is empty or unparseable
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)

    text = str(value).strip()
    if not text:
        return None

    match = _UK_DATE.match(text)
    if match:
        day, month, year = (int(part) for part in match.groups())
        try:
            return datetime(year, month, day, tzinfo=timezone.utc)
        except ValueError:
            return None

    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def parse_codes(value: Any) -> List[str]:
    """Split a comma-separated B-code cell into normalized codes."""
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        parts = value
    else:
        parts = str(value).split(",")
    return [code for code in (normalize_item_code(p) for p in parts) if code]


def running_change_from_row(
    row: Dict[str, Any],
    user_id: Optional[str] = None,
    filename: Optional[str] = None,
    change_id: Optional[str] = None,
    now: Optional[datetime] = None
) -> Optional[RunningChange]:
    """
    Build a RunningChange from one sheet row.

    Returns:
        The running change, or None for rows without a CN number (blank rows)

    Raises:
        RunningChangeFormatError: If the go-live date is missing or invalid,
                                  or the code columns cannot be paired
    """
    cn_number = _row_value(row, "cn_number")
    if not cn_number:
        return None

    date_text = _row_value(row, "estimated_go_live_date")
    raw_date = _raw_date(row)
    go_live = parse_uk_date(raw_date if raw_date is not None else date_text)
    if go_live is None:
        raise RunningChangeFormatError(f'Invalid or missing go-live date "{date_text}"')

    return RunningChange.from_parallel_codes(
        id=change_id or uuid4().hex,
        cn_number=cn_number,
        old_codes=parse_codes(_row_value(row, "old_codes")),
        new_codes=parse_codes(_row_value(row, "new_codes")),
        estimated_go_live_date=go_live,
        cn_description=_row_value(row, "cn_description"),
        owner=_row_value(row, "owner"),
        assignee=_row_value(row, "assignee"),
        status_description=_row_value(row, "status_description"),
        change_type=_row_value(row, "change_type") or "Running",
        affected_line=_row_value(row, "affected_line"),
        is_active=True,
        source_filename=filename,
        imported_by=user_id,
        updated_at=now or utc_now(),
    )


def _raw_date(row: Dict[str, Any]) -> Optional[datetime]:
    # Spreadsheet readers may already hand back datetime cells
    for key in RUNNING_CHANGE_COLUMN_ALIASES["estimated_go_live_date"]:
        value = row.get(key)
        if isinstance(value, datetime):
            return value
    return None


# =============================================================================
# STORE ACCESS
# =============================================================================

def import_running_changes(
    store: ItemStore,
    rows: Iterable[Dict[str, Any]],
    user_id: str,
    filename: str,
    now: Optional[datetime] = None
) -> RunningChangeImportResult:
    """
    Import sheet rows, upserting by CN number.

    Rows without a CN number are skipped silently. Rows that cannot be
    interpreted are reported by sheet row number (header is row 1) and do
    not stop the import.

    Returns:
        RunningChangeImportResult with success/created/updated counts and
        per-row errors
    """
    result = RunningChangeImportResult()
    existing = {
        doc.get("cn_number"): doc["id"]
        for doc in store.query(GLOBAL_PROJECT, RUNNING_CHANGES)
    }

    parsed: Dict[str, RunningChange] = {}
    for index, row in enumerate(rows):
        row_number = index + 2
        try:
            change = running_change_from_row(row, user_id=user_id, filename=filename, now=now)
        except RunningChangeFormatError as e:
            result.errors.append(f"Row {row_number}: {e}")
            continue
        if change is None:
            continue

        # Later rows for the same CN replace earlier ones
        prior = parsed.get(change.cn_number)
        change.id = existing.get(change.cn_number) or (prior.id if prior else change.id)
        parsed[change.cn_number] = change
        result.success_count += 1

    docs = [(change.id, change.to_dict()) for change in parsed.values()]
    if docs:
        store.write_all(GLOBAL_PROJECT, RUNNING_CHANGES, docs)

    result.updated_count = sum(1 for cn in parsed if cn in existing)
    result.created_count = len(parsed) - result.updated_count

    logger.info(
        f"Imported running changes from {filename}: {result.created_count} created, "
        f"{result.updated_count} updated, {result.error_count} errors"
    )
    return result


def save_running_change(store: ItemStore, change: RunningChange) -> None:
    store.set(GLOBAL_PROJECT, RUNNING_CHANGES, change.id, change.to_dict())


def _by_go_live(changes: List[RunningChange]) -> List[RunningChange]:
    epoch = datetime(1970, 1, 1, tzinfo=timezone.utc)
    return sorted(changes, key=lambda c: (c.estimated_go_live_date or epoch, c.cn_number))


def list_running_changes(store: ItemStore) -> List[RunningChange]:
    """All running changes, soonest go-live first."""
    docs = store.query(GLOBAL_PROJECT, RUNNING_CHANGES)
    return _by_go_live([RunningChange.from_dict(doc) for doc in docs])


def get_active_running_changes(store: ItemStore) -> List[RunningChange]:
    docs = store.query(GLOBAL_PROJECT, RUNNING_CHANGES, filters=[Filter("is_active", "==", True)])
    return _by_go_live([RunningChange.from_dict(doc) for doc in docs])


def get_running_change(store: ItemStore, change_id: str) -> Optional[RunningChange]:
    doc = store.get(GLOBAL_PROJECT, RUNNING_CHANGES, change_id)
    return RunningChange.from_dict(doc) if doc else None


def set_running_change_active(
    store: ItemStore,
    change_id: str,
    active: bool,
    now: Optional[datetime] = None
) -> None:
    """
    Deactivate (complete) or reactivate a running change.

    Raises:
        DocumentNotFoundError: If the change does not exist
    """
    store.update(GLOBAL_PROJECT, RUNNING_CHANGES, change_id, {
        "is_active": active,
        "updated_at": to_iso(now or utc_now()),
    })


def delete_running_change(store: ItemStore, change_id: str) -> None:
    store.delete(GLOBAL_PROJECT, RUNNING_CHANGES, change_id)


def calculate_running_change_stats(
    changes: Iterable[RunningChange],
    now: Optional[datetime] = None
) -> RunningChangeStats:
    """Counts for dashboards: active, live vs upcoming, distinct codes."""
    now = ensure_utc(now) if now else utc_now()
    stats = RunningChangeStats()
    old_codes = set()
    new_codes = set()

    for change in changes:
        stats.total += 1
        if change.is_active:
            stats.active += 1
            go_live = change.estimated_go_live_date
            if go_live is not None:
                if go_live > now:
                    stats.upcoming += 1
                else:
                    stats.live += 1
        old_codes.update(change.old_codes)
        new_codes.update(change.new_codes)

    stats.unique_old_codes = len(old_codes)
    stats.unique_new_codes = len(new_codes)
    return stats
