"""
Change applicator.

Executes approved code substitutions on the working BOM.

Single replace: the line is read first and a request naming a code the line
no longer carries is rejected. One atomic store update then sets the new
item code and records provenance (``last_change_applied``) so later version
diffs see a rename instead of a remove plus an add. A best-effort audit
entry follows; if the audit sink fails the substitution stands and the
result says so.

Bulk replace: processes each request independently, in order. A failure on
one line never blocks the others and never raises; the caller gets counts
and a per-line error list. Adoption of a running change is an editorial
decision per line, so partial success is a normal outcome.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

from ..activity import RUNNING_CHANGE_APPLIED, ActivityEntry, ActivityLog, StoreActivityLog, record_activity
from ..errors import BomTrailError, DocumentNotFoundError, StaleReplacementError
from ..items import get_bom_item
from ..models import (
    BulkReplaceResult,
    ReplacementError,
    ReplacementRequest,
    ReplacementResult,
    VersionTrigger,
    ensure_utc,
    normalize_item_code,
    to_iso,
    utc_now,
)
from ..store.base import BOM_ITEMS, ItemStore
from ..versions.snapshot import create_version, generate_trigger_details, should_auto_create_version

logger = logging.getLogger(__name__)


def replace_item_code(
    store: ItemStore,
    project_id: str,
    request: ReplacementRequest,
    user_id: str,
    user_name: Optional[str] = None,
    activity_log: Optional[ActivityLog] = None,
    now: Optional[datetime] = None
) -> ReplacementResult:
    """
    Substitute one BOM line's code as directed by a running change.

    Args:
        store: Item store
        project_id: Project owning the line
        request: Line id, its current code, the new code and the originating
                 change identity
        user_id: Acting user
        user_name: Optional display name for the audit entry
        activity_log: Audit sink; defaults to the project's activities
                      collection in the same store
        now: Timestamp of the substitution

    Returns:
        ReplacementResult; ``audit_logged`` is False if the audit entry
        could not be written

    Raises:
        ValueError: If the new code is empty
        DocumentNotFoundError: If the BOM line does not exist
        StaleReplacementError: If the line no longer carries the request's
                               current code
        StoreWriteError: If the store rejected the update
    """
    new_code = normalize_item_code(request.new_code)
    if not new_code:
        raise ValueError(f"Replacement for item {request.bom_item_id} has no new code")

    item = get_bom_item(store, project_id, request.bom_item_id)
    if item is None:
        raise DocumentNotFoundError(project_id, BOM_ITEMS, request.bom_item_id)
    old_code = item.item_code
    expected = normalize_item_code(request.current_code)
    if expected and expected != old_code:
        raise StaleReplacementError(request.bom_item_id, expected, old_code)

    applied_at = ensure_utc(now) if now else utc_now()

    store.update(project_id, BOM_ITEMS, request.bom_item_id, {
        "item_code": new_code,
        "updated_at": to_iso(applied_at),
        "updated_by": user_id,
        "last_change_applied": {
            "running_change_id": request.running_change_id,
            "cn_number": request.cn_number,
            "old_code": old_code,
            "new_code": new_code,
            "applied_at": to_iso(applied_at),
            "applied_by": user_id,
        },
    })

    if activity_log is None:
        activity_log = StoreActivityLog(store)

    audit_logged = record_activity(activity_log, ActivityEntry(
        project_id=project_id,
        type=RUNNING_CHANGE_APPLIED,
        description=f"Applied running change {request.cn_number}: replaced {old_code} with {new_code}",
        user_id=user_id,
        user_name=user_name or user_id,
        details={
            "bom_item_id": request.bom_item_id,
            "running_change_id": request.running_change_id,
            "cn_number": request.cn_number,
            "old_code": old_code,
            "new_code": new_code,
        },
        timestamp=applied_at,
    ))

    logger.info(
        f"Replaced {old_code} with {new_code} on item {request.bom_item_id} "
        f"of project {project_id} ({request.cn_number})"
    )

    return ReplacementResult(
        bom_item_id=request.bom_item_id,
        old_code=old_code,
        new_code=new_code,
        running_change_id=request.running_change_id,
        cn_number=request.cn_number,
        applied_at=applied_at,
        audit_logged=audit_logged,
    )


def bulk_replace(
    store: ItemStore,
    project_id: str,
    replacements: Iterable[ReplacementRequest],
    user_id: str,
    user_name: Optional[str] = None,
    activity_log: Optional[ActivityLog] = None,
    auto_version_threshold: Optional[int] = None,
    now: Optional[datetime] = None
) -> BulkReplaceResult:
    """
    Apply many replacements, each independently.

    When the number of successful replacements reaches the auto-version
    threshold, a bulk_edit version is created afterwards. A failed snapshot
    is reported on ``version_error``; the replacements stay applied.

    Returns:
        BulkReplaceResult with succeeded/failed counts and per-line errors
    """
    result = BulkReplaceResult()

    for request in replacements:
        try:
            replaced = replace_item_code(
                store,
                project_id,
                request,
                user_id,
                user_name=user_name,
                activity_log=activity_log,
                now=now,
            )
        except Exception as e:
            logger.warning(
                f"Replacement of {request.current_code} on item {request.bom_item_id} failed: {e}"
            )
            result.failed += 1
            result.errors.append(ReplacementError(
                bom_item_id=request.bom_item_id,
                item_code=request.current_code,
                message=str(e),
            ))
            continue
        result.succeeded += 1
        result.results.append(replaced)

    if result.succeeded and should_auto_create_version(result.succeeded, auto_version_threshold):
        try:
            result.version = create_version(
                store,
                project_id,
                VersionTrigger.BULK_EDIT,
                user_id,
                trigger_details=generate_trigger_details(
                    VersionTrigger.BULK_EDIT, item_count=result.succeeded
                ),
                user_name=user_name,
                now=now,
            )
        except BomTrailError as e:
            logger.error(f"Automatic version after bulk replace failed for project {project_id}", exc_info=True)
            result.version_error = str(e)

    logger.info(
        f"Bulk replace for project {project_id}: {result.succeeded} succeeded, "
        f"{result.failed} failed"
    )
    return result
