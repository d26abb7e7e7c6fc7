"""
Change matcher.

Finds working-BOM lines superseded by active running changes.

Each BOM line may match several concurrent changes; every match yields its
own AffectedBomItem proposing the new code paired with the line's code.
Per match:
- is_live: go-live date has passed (go_live <= now)
- is_after_dtx: a DTx milestone is set and go-live falls after it
- days_until_go_live: ceil of days from now to go-live, negative once live

Results are sorted live first, then by ascending days_until_go_live. Item
code and CN number break remaining ties.
"""

import logging
import math
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from ..items import load_bom_items
from ..models import (
    AffectedBomItem,
    BomItem,
    CodeReplacement,
    RunningChange,
    ensure_utc,
    normalize_item_code,
    utc_now,
)
from ..store.base import ItemStore
from .running_changes import get_active_running_changes

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def index_running_changes(
    running_changes: Iterable[RunningChange]
) -> Dict[str, List[Tuple[RunningChange, CodeReplacement]]]:
    """
    Map each superseded code to the active changes replacing it.

    Inactive changes and changes without a go-live date are left out. If one
    change lists the same old code twice, its first pair wins.
    """
    index: Dict[str, List[Tuple[RunningChange, CodeReplacement]]] = {}
    for change in running_changes:
        if not change.is_active:
            continue
        if change.estimated_go_live_date is None:
            logger.warning(f"Running change {change.cn_number} has no go-live date; skipped")
            continue
        seen = set()
        for replacement in change.replacements:
            if replacement.old_code in seen:
                continue
            seen.add(replacement.old_code)
            index.setdefault(replacement.old_code, []).append((change, replacement))
    return index


def days_until(go_live: datetime, now: datetime) -> int:
    return math.ceil((go_live - now).total_seconds() / SECONDS_PER_DAY)


def _affected_sort_key(affected: AffectedBomItem):
    return (
        not affected.is_live,
        affected.days_until_go_live,
        affected.item_code,
        affected.cn_number,
    )


def find_affected_items(
    bom_items: Iterable[BomItem],
    running_changes: Iterable[RunningChange],
    dtx_date: Optional[datetime] = None,
    now: Optional[datetime] = None
) -> List[AffectedBomItem]:
    """
    Match BOM lines against running changes.

    Args:
        bom_items: Current working BOM
        running_changes: Running changes to consider (inactive ones ignored)
        dtx_date: Project DTx milestone; when None no match is after DTx
        now: Reference time (defaults to current UTC time)

    Returns:
        One AffectedBomItem per (line, change) match, live first
    """
    now = ensure_utc(now) if now else utc_now()
    dtx = ensure_utc(dtx_date) if dtx_date else None
    index = index_running_changes(running_changes)

    affected: List[AffectedBomItem] = []
    for item in bom_items:
        code = normalize_item_code(item.item_code)
        if not code:
            continue
        for change, replacement in index.get(code, []):
            go_live = change.estimated_go_live_date
            affected.append(AffectedBomItem(
                bom_item_id=item.id,
                item_code=code,
                item_description=item.item_description,
                group_code=item.group_code,
                quantity=item.quantity,
                running_change_id=change.id,
                cn_number=change.cn_number,
                cn_description=change.cn_description,
                old_code=replacement.old_code,
                new_code=replacement.new_code,
                go_live_date=go_live,
                is_live=go_live <= now,
                is_after_dtx=dtx is not None and go_live > dtx,
                days_until_go_live=days_until(go_live, now),
                owner=change.owner,
                assignee=change.assignee,
                status_description=change.status_description,
            ))

    affected.sort(key=_affected_sort_key)
    return affected


def count_affected_items(
    bom_items: Iterable[BomItem],
    running_changes: Iterable[RunningChange]
) -> int:
    """Number of BOM lines matched by at least one active running change."""
    index = index_running_changes(running_changes)
    return sum(1 for item in bom_items if normalize_item_code(item.item_code) in index)


def find_affected_items_for_project(
    store: ItemStore,
    project_id: str,
    dtx_date: Optional[datetime] = None,
    now: Optional[datetime] = None
) -> List[AffectedBomItem]:
    """Load a project's working BOM and the active changes, then match them."""
    return find_affected_items(
        load_bom_items(store, project_id),
        get_active_running_changes(store),
        dtx_date=dtx_date,
        now=now,
    )
