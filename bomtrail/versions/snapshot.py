"""
Version Snapshot Builder.

Freezes the working BOM of a project into an immutable, numbered BomVersion
plus one VersionItem per line.

Storage layout (per project):
- ``versions/<version_id>``            -> BomVersion header
- ``versions/<version_id>/items/<id>`` -> VersionItem

Write protocol:
1. version_number = current max + 1, read fresh (never reserved)
2. VersionItems are written in bounded batches
3. The header is written LAST

A version becomes visible only when its header exists. If any item batch
fails, the header is never written, the batches already committed are
removed best-effort, and SnapshotWriteError is raised. The failed attempt
consumes no version number because numbering reads existing headers only.
"""

import logging
from datetime import datetime, time, timezone
from typing import List, Optional
from uuid import uuid4

from ..config import get_settings
from ..errors import EmptyBomError, MissingItemCodeError, SnapshotWriteError, VersionNotFoundError
from ..items import load_bom_items
from ..models import (
    BomItem,
    BomVersion,
    VersionItem,
    VersionSummary,
    VersionTrigger,
    ensure_utc,
    to_iso,
    utc_now,
)
from ..store.base import VERSIONS, Filter, ItemStore, chunked, version_items_collection

logger = logging.getLogger(__name__)


# =============================================================================
# NUMBERING & TRIGGERS
# =============================================================================

def get_next_version_number(store: ItemStore, project_id: str) -> int:
    """Current max version_number + 1, starting at 1."""
    latest = get_latest_version(store, project_id)
    return latest.version_number + 1 if latest else 1


def should_auto_create_version(affected_item_count: int, threshold: Optional[int] = None) -> bool:
    """True when a bulk operation touched enough items to warrant a snapshot."""
    if threshold is None:
        threshold = get_settings().auto_version_threshold
    return affected_item_count >= threshold


def generate_trigger_details(
    trigger: VersionTrigger,
    item_count: Optional[int] = None,
    file_name: Optional[str] = None,
    operation: Optional[str] = None
) -> str:
    """Human-readable description of why a version was taken."""
    count = item_count or 0
    if trigger == VersionTrigger.IMPORT:
        return f"Imported from {file_name}" if file_name else f"Imported {count} items"
    if trigger == VersionTrigger.PRICE_UPDATE:
        return f"Applied prices to {count} items"
    if trigger == VersionTrigger.TRANSFER:
        return f"Transferred {count} items from template"
    if trigger == VersionTrigger.BULK_EDIT:
        return f"Bulk edited {count} items"
    if trigger == VersionTrigger.MANUAL:
        return operation or "Manual snapshot"
    if trigger == VersionTrigger.SCHEDULED:
        return "Scheduled automatic snapshot"
    return ""


# =============================================================================
# CREATION
# =============================================================================

def _remove_item_batches(
    store: ItemStore,
    project_id: str,
    version_id: str,
    written_ids: List[str]
) -> None:
    # Orphaned items are unreachable without a header, so cleanup is
    # best-effort only
    collection = version_items_collection(version_id)
    try:
        for chunk in chunked(written_ids, store.max_batch_size):
            batch = store.batch(project_id)
            for doc_id in chunk:
                batch.delete(collection, doc_id)
            store.commit(batch)
    except Exception:
        logger.warning(
            f"Could not clean up {len(written_ids)} orphaned items of failed "
            f"version {version_id} in project {project_id}",
            exc_info=True
        )


def create_version(
    store: ItemStore,
    project_id: str,
    trigger: VersionTrigger,
    user_id: str,
    version_name: Optional[str] = None,
    description: Optional[str] = None,
    trigger_details: Optional[str] = None,
    user_name: Optional[str] = None,
    items: Optional[List[BomItem]] = None,
    now: Optional[datetime] = None
) -> BomVersion:
    """
    Freeze the working BOM into a new version.

    Args:
        store: Item store
        project_id: Project to snapshot
        trigger: Why the snapshot is taken
        user_id: Acting user
        version_name: Optional short name
        description: Optional free text
        trigger_details: Optional detail string; generated from the trigger
                         when omitted
        user_name: Optional display name of the acting user
        items: Item set to freeze. Loaded from the store when omitted.
        now: Creation timestamp (defaults to current UTC time)

    Returns:
        The created BomVersion

    Raises:
        EmptyBomError: If there are no items to snapshot
        MissingItemCodeError: If any line has a blank item code
        SnapshotWriteError: If any write failed; no version was created
    """
    if items is None:
        items = load_bom_items(store, project_id)
    if not items:
        raise EmptyBomError(f"Cannot create a version of project {project_id}: BOM has no items")
    blank = [item.id for item in items if not item.item_code]
    if blank:
        raise MissingItemCodeError(project_id, blank)

    created_at = ensure_utc(now) if now else utc_now()
    previous = get_latest_version(store, project_id)
    version_number = previous.version_number + 1 if previous else 1
    version_id = uuid4().hex

    version_items = [VersionItem.from_bom_item(item) for item in items]
    summary = VersionSummary.from_items(version_items)

    version = BomVersion(
        id=version_id,
        project_id=project_id,
        version_number=version_number,
        trigger=trigger,
        created_at=created_at,
        created_by=user_id,
        created_by_name=user_name,
        summary=summary,
        item_count=len(version_items),
        version_name=version_name,
        description=description,
        trigger_details=trigger_details or generate_trigger_details(
            trigger, item_count=len(version_items)
        ),
        previous_version_id=previous.id if previous else None,
    )

    collection = version_items_collection(version_id)
    written_ids: List[str] = []
    try:
        for chunk in chunked(version_items, store.max_batch_size):
            batch = store.batch(project_id)
            for item in chunk:
                batch.set(collection, item.bom_item_id, item.to_dict())
            store.commit(batch)
            written_ids.extend(item.bom_item_id for item in chunk)

        store.set(project_id, VERSIONS, version_id, version.to_dict())
    except Exception as e:
        logger.error(
            f"Snapshot v{version_number} of project {project_id} failed after "
            f"{len(written_ids)}/{len(version_items)} items",
            exc_info=True
        )
        _remove_item_batches(store, project_id, version_id, written_ids)
        raise SnapshotWriteError(
            f"No version created for project {project_id}; retry the snapshot ({e})"
        ) from e

    logger.info(
        f"Created version v{version_number} of project {project_id} "
        f"({len(version_items)} items, trigger={trigger.value})"
    )
    return version


def maybe_create_version(
    store: ItemStore,
    project_id: str,
    affected_item_count: int,
    trigger: VersionTrigger,
    user_id: str,
    threshold: Optional[int] = None,
    **kwargs
) -> Optional[BomVersion]:
    """
    Snapshot after a bulk operation, but only when it crossed the threshold.

    Returns:
        The created version, or None when below the threshold
    """
    if not should_auto_create_version(affected_item_count, threshold):
        return None
    kwargs.setdefault(
        "trigger_details",
        generate_trigger_details(trigger, item_count=affected_item_count),
    )
    return create_version(store, project_id, trigger, user_id, **kwargs)


# =============================================================================
# RETRIEVAL
# =============================================================================

def _versions(docs) -> List[BomVersion]:
    return [BomVersion.from_dict(doc) for doc in docs]


def list_versions(store: ItemStore, project_id: str) -> List[BomVersion]:
    """All versions of a project, newest (highest number) first."""
    versions = _versions(store.query(project_id, VERSIONS))
    versions.sort(key=lambda v: v.version_number, reverse=True)
    return versions


def get_version(store: ItemStore, project_id: str, version_id: str) -> Optional[BomVersion]:
    doc = store.get(project_id, VERSIONS, version_id)
    return BomVersion.from_dict(doc) if doc else None


def require_version(store: ItemStore, project_id: str, version_id: str) -> BomVersion:
    """
    Raises:
        VersionNotFoundError: If the version header does not exist
    """
    version = get_version(store, project_id, version_id)
    if version is None:
        raise VersionNotFoundError(version_id, project_id)
    return version


def get_version_items(store: ItemStore, project_id: str, version_id: str) -> List[VersionItem]:
    docs = store.query(project_id, version_items_collection(version_id), order_by="item_code")
    return [VersionItem.from_dict(doc) for doc in docs]


def get_latest_version(store: ItemStore, project_id: str) -> Optional[BomVersion]:
    docs = store.query(project_id, VERSIONS, order_by="version_number", descending=True, limit=1)
    return BomVersion.from_dict(docs[0]) if docs else None


def get_earliest_version(store: ItemStore, project_id: str) -> Optional[BomVersion]:
    docs = store.query(project_id, VERSIONS, order_by="version_number", limit=1)
    return BomVersion.from_dict(docs[0]) if docs else None


def get_version_at_date(store: ItemStore, project_id: str, date: datetime) -> Optional[BomVersion]:
    """
    The version in effect at a date.

    Among versions created at or before the date, the one with the highest
    version_number wins; backdated imports therefore never outrank later
    snapshots.
    """
    docs = store.query(project_id, VERSIONS, filters=[Filter("created_at", "<=", to_iso(date))])
    versions = _versions(docs)
    if not versions:
        return None
    return max(versions, key=lambda v: v.version_number)


def get_versions_in_range(
    store: ItemStore,
    project_id: str,
    start_date: datetime,
    end_date: datetime
) -> List[BomVersion]:
    """Versions created within [start_date, end_date], ascending by version_number."""
    docs = store.query(
        project_id,
        VERSIONS,
        filters=[
            Filter("created_at", ">=", to_iso(start_date)),
            Filter("created_at", "<=", to_iso(end_date)),
        ],
    )
    versions = _versions(docs)
    versions.sort(key=lambda v: v.version_number)
    return versions


def start_of_day(value: datetime) -> datetime:
    value = ensure_utc(value)
    return datetime.combine(value.date(), time.min, tzinfo=timezone.utc)


def end_of_day(value: datetime) -> datetime:
    value = ensure_utc(value)
    return datetime.combine(value.date(), time.max, tzinfo=timezone.utc)


def verify_version_summary(
    store: ItemStore,
    project_id: str,
    version_id: str,
    tolerance: float = 1e-6
) -> bool:
    """
    Recompute a version's summary from its items and compare it with the
    stored header.

    Raises:
        VersionNotFoundError: If the version does not exist
    """
    version = require_version(store, project_id, version_id)
    items = get_version_items(store, project_id, version_id)
    recomputed = VersionSummary.from_items(items)
    stored = version.summary

    checks = [
        (stored.total_items, recomputed.total_items),
        (stored.total_assemblies, recomputed.total_assemblies),
        (stored.total_material_cost, recomputed.total_material_cost),
        (stored.total_landing_cost, recomputed.total_landing_cost),
        (stored.total_labour_cost, recomputed.total_labour_cost),
        (stored.total_extended_cost, recomputed.total_extended_cost),
        (version.item_count, len(items)),
    ]
    consistent = all(abs(a - b) <= tolerance for a, b in checks)
    if not consistent:
        logger.warning(f"Summary of version {version_id} in project {project_id} does not match its items")
    return consistent


# =============================================================================
# MAINTENANCE
# =============================================================================

def update_version_details(
    store: ItemStore,
    project_id: str,
    version_id: str,
    version_name: Optional[str] = None,
    description: Optional[str] = None
) -> BomVersion:
    """
    Rename or re-describe a version. Its items and summary never change.

    Raises:
        VersionNotFoundError: If the version does not exist
    """
    require_version(store, project_id, version_id)
    changes = {}
    if version_name is not None:
        changes["version_name"] = version_name
    if description is not None:
        changes["description"] = description
    if changes:
        store.update(project_id, VERSIONS, version_id, changes)
    return require_version(store, project_id, version_id)


def delete_version(store: ItemStore, project_id: str, version_id: str) -> bool:
    """
    Delete a version: header first, so readers stop seeing it, then items.

    Returns:
        False if the version did not exist
    """
    if get_version(store, project_id, version_id) is None:
        return False

    store.delete(project_id, VERSIONS, version_id)

    collection = version_items_collection(version_id)
    item_ids = [doc["id"] for doc in store.query(project_id, collection)]
    for chunk in chunked(item_ids, store.max_batch_size):
        batch = store.batch(project_id)
        for doc_id in chunk:
            batch.delete(collection, doc_id)
        store.commit(batch)

    logger.info(f"Deleted version {version_id} of project {project_id} ({len(item_ids)} items)")
    return True
