"""
Version diff engine.

Compares two immutable BOM versions line by line, keyed by item code, and
explains every cost movement by driver.

Algorithm:
1. Build an item-code-keyed map per side. GRP- header rows are skipped and
   duplicate codes inside one version are consolidated.
2. Classify each code: added (compare only), removed (base only), modified
   (quantity, a unit cost, or the group differs) or unchanged.
3. Recognise renames: an unmatched removed/added pair where either line's
   ``replaced_from`` names the other's code is ONE modified line, not an
   add plus a remove. Running-change substitutions therefore never show up
   as false churn.
4. Decompose each modified line's extended-cost delta in a fixed order:

       quantity_change = (new_qty - old_qty) x old_unit_cost
       material_price  = new_qty x (new_material - old_material)
       landing_price   = new_qty x (new_landing - old_landing)
       labour_price    = new_qty x (new_labour - old_labour)

   The four components always sum exactly to new_extended - old_extended.
5. Added lines contribute +extended as item_added, removed lines
   -extended as item_removed.

CORE PRINCIPLES:
1. version_number decides which side is the base, never argument order
   (``compare_versions``). The pure ``diff_version_items`` does not
   canonicalise, so Diff(A, B) and Diff(B, A) mirror each other.
2. Comparisons are recomputed on demand and never cached.
3. Missing collaborators (spec mapping) degrade to warnings.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from ..errors import IdenticalVersionsError, VersionNotFoundError
from ..models import (
    BomImpact,
    BomVersion,
    ChangeType,
    CostDriver,
    CostSummary,
    DateRangeComparison,
    ItemChange,
    PartCategory,
    VersionComparison,
    VersionItem,
    VersionTransition,
    consolidate_lines,
    is_group_row,
    values_differ,
)
from ..spec_mapping import SpecMappingSource, SpecSelection, find_unmapped_options
from ..store.base import ItemStore
from ..versions.snapshot import (
    end_of_day,
    get_earliest_version,
    get_latest_version,
    get_version_at_date,
    get_version_items,
    get_versions_in_range,
    require_version,
    start_of_day,
)
from .cost_aggregation import (
    aggregate_by_assembly,
    aggregate_by_driver,
    aggregate_comparison,
    build_cost_trend,
    summarize_transition,
)

logger = logging.getLogger(__name__)

CHANGE_TYPE_ORDER = {
    ChangeType.ADDED: 0,
    ChangeType.REMOVED: 1,
    ChangeType.MODIFIED: 2,
    ChangeType.UNCHANGED: 3,
}

COMPARED_COST_FIELDS = ("material_cost", "landing_cost", "labour_cost")

_ONE_MICROSECOND = timedelta(microseconds=1)


# =============================================================================
# PURE DIFF
# =============================================================================

def build_item_map(items: Iterable[VersionItem]) -> Dict[str, VersionItem]:
    """
    Key version lines by item code.

    GRP- header rows are skipped. Lines sharing a code are consolidated into
    one, preserving their combined extended cost.
    """
    by_code: Dict[str, VersionItem] = {}
    for item in items:
        if not item.item_code or is_group_row(item.item_code):
            continue
        existing = by_code.get(item.item_code)
        if existing is None:
            by_code[item.item_code] = item
        else:
            logger.debug(f"Consolidating duplicate lines for item code {item.item_code}")
            by_code[item.item_code] = consolidate_lines(existing, item)
    return by_code


def decompose_cost_delta(old: VersionItem, new: VersionItem) -> Dict[CostDriver, float]:
    """
    Split a modified line's extended-cost delta into its four drivers.

    The order is fixed: quantity first at the old unit cost, then each price
    component at the new quantity.
    """
    return {
        CostDriver.QUANTITY_CHANGE: (new.quantity - old.quantity) * old.unit_cost,
        CostDriver.MATERIAL_PRICE: new.quantity * (new.material_cost - old.material_cost),
        CostDriver.LANDING_PRICE: new.quantity * (new.landing_cost - old.landing_cost),
        CostDriver.LABOUR_PRICE: new.quantity * (new.labour_cost - old.labour_cost),
    }


def _changed_fields(old: VersionItem, new: VersionItem) -> List[str]:
    fields = []
    if old.item_code != new.item_code:
        fields.append("item_code")
    if values_differ(old.quantity, new.quantity):
        fields.append("quantity")
    for name in COMPARED_COST_FIELDS:
        if values_differ(getattr(old, name), getattr(new, name)):
            fields.append(name)
    if old.group_code != new.group_code:
        fields.append("group_code")
    return fields


def diff_item(old: VersionItem, new: VersionItem) -> ItemChange:
    """
    Compare the two states of one line.

    Returns:
        ItemChange classified as modified or unchanged. Modified changes
        carry all four decomposition drivers; a group move adds the
        zero-cost assembly_change tag.
    """
    fields = _changed_fields(old, new)
    if not fields:
        return ItemChange(
            item_code=new.item_code,
            change_type=ChangeType.UNCHANGED,
            group_code=new.group_code,
            old_item=old,
            new_item=new,
        )

    impacts = decompose_cost_delta(old, new)
    previous_group = None
    if "group_code" in fields:
        impacts[CostDriver.ASSEMBLY_CHANGE] = 0.0
        previous_group = old.group_code

    return ItemChange(
        item_code=new.item_code,
        change_type=ChangeType.MODIFIED,
        group_code=new.group_code,
        old_item=old,
        new_item=new,
        impacts=impacts,
        changed_fields=fields,
        previous_item_code=old.item_code if old.item_code != new.item_code else None,
        previous_group_code=previous_group,
    )


def _pair_renames(
    removed: Dict[str, VersionItem],
    added: Dict[str, VersionItem]
) -> List[Tuple[VersionItem, VersionItem]]:
    """Match removed and added lines linked by running-change provenance."""
    pairs = []
    for new_code in sorted(added):
        new_item = added[new_code]
        old_item = None
        if new_item.replaced_from and new_item.replaced_from in removed:
            old_item = removed[new_item.replaced_from]
        else:
            for old_code in sorted(removed):
                if removed[old_code].replaced_from == new_code:
                    old_item = removed[old_code]
                    break
        if old_item is not None:
            del removed[old_item.item_code]
            pairs.append((old_item, new_item))

    for _, new_item in pairs:
        del added[new_item.item_code]
    return pairs


def _sort_key(change: ItemChange):
    return (CHANGE_TYPE_ORDER[change.change_type], change.item_code)


def diff_version_items(
    base_items: Iterable[VersionItem],
    compare_items: Iterable[VersionItem],
    include_unchanged: bool = False
) -> List[ItemChange]:
    """
    Diff two item sets, treating the first as base.

    Args:
        base_items: Lines of the base (older) version
        compare_items: Lines of the compare (newer) version
        include_unchanged: Also return unchanged lines

    Returns:
        Item changes ordered by change type (added, removed, modified,
        unchanged), then item code
    """
    base = build_item_map(base_items)
    compare = build_item_map(compare_items)

    changes: List[ItemChange] = []
    removed: Dict[str, VersionItem] = {}
    added: Dict[str, VersionItem] = {}

    for code, old in base.items():
        new = compare.get(code)
        if new is None:
            removed[code] = old
            continue
        change = diff_item(old, new)
        if change.change_type != ChangeType.UNCHANGED or include_unchanged:
            changes.append(change)

    for code, new in compare.items():
        if code not in base:
            added[code] = new

    for old, new in _pair_renames(removed, added):
        changes.append(diff_item(old, new))

    for code, old in removed.items():
        changes.append(ItemChange(
            item_code=code,
            change_type=ChangeType.REMOVED,
            group_code=old.group_code,
            old_item=old,
            impacts={CostDriver.ITEM_REMOVED: -old.extended_cost},
        ))

    for code, new in added.items():
        changes.append(ItemChange(
            item_code=code,
            change_type=ChangeType.ADDED,
            group_code=new.group_code,
            new_item=new,
            impacts={CostDriver.ITEM_ADDED: new.extended_cost},
        ))

    changes.sort(key=_sort_key)
    return changes


def count_unchanged(base_items: Iterable[VersionItem], compare_items: Iterable[VersionItem]) -> int:
    """Number of codes present on both sides with no relevant difference."""
    base = build_item_map(base_items)
    compare = build_item_map(compare_items)
    return sum(
        1 for code, old in base.items()
        if code in compare and not _changed_fields(old, compare[code])
    )


# =============================================================================
# BOM IMPACT
# =============================================================================

def _group_codes(items: Iterable[VersionItem]) -> set:
    return {
        item.group_code for item in items
        if item.group_code and not is_group_row(item.item_code)
    }


def calculate_bom_impact(
    changes: List[ItemChange],
    base_items: List[VersionItem],
    compare_items: List[VersionItem],
    spec_mapping: Optional[SpecMappingSource] = None,
    spec_selections: Optional[Iterable[SpecSelection]] = None
) -> BomImpact:
    """
    Structural impact of a comparison.

    Unmapped spec options and placeholder-priced lines are reported as
    warnings; they never fail the comparison.
    """
    base_groups = _group_codes(base_items)
    compare_groups = _group_codes(compare_items)

    impact = BomImpact(
        groups_added=sorted(compare_groups - base_groups),
        groups_removed=sorted(base_groups - compare_groups),
    )

    for change in changes:
        if change.change_type == ChangeType.UNCHANGED:
            continue
        impact.parts_affected += 1
        if (
            change.change_type == ChangeType.ADDED
            and change.new_item.part_category == PartCategory.NEW_PART
        ):
            impact.new_part_codes.append(change.item_code)
    impact.new_parts_needed = len(impact.new_part_codes)

    impact.placeholder_item_codes = sorted({
        item.item_code for item in compare_items
        if item.is_placeholder and not is_group_row(item.item_code)
    })
    if impact.placeholder_item_codes:
        impact.warnings.append(
            f"{len(impact.placeholder_item_codes)} item(s) in the compare version "
            f"have placeholder pricing"
        )

    if spec_selections is not None:
        unmapped, warnings = find_unmapped_options(spec_mapping, spec_selections)
        impact.unmapped_options = unmapped
        impact.warnings.extend(warnings)
        if unmapped:
            impact.warnings.append(f"{len(unmapped)} spec option(s) have no group mapping")

    return impact


# =============================================================================
# VERSION COMPARISON
# =============================================================================

def compare_versions(
    store: ItemStore,
    project_id: str,
    version_a_id: str,
    version_b_id: str,
    spec_mapping: Optional[SpecMappingSource] = None,
    spec_selections: Optional[Iterable[SpecSelection]] = None
) -> VersionComparison:
    """
    Compare two versions of a project.

    Argument order does not matter: the version with the lower
    version_number is always the base.

    Args:
        store: Item store
        project_id: Project owning both versions
        version_a_id: One version id
        version_b_id: The other version id
        spec_mapping: Optional spec-mapping collaborator
        spec_selections: Optional spec options to check for missing mappings

    Returns:
        VersionComparison with changes, counts, cost summary, aggregates and
        BOM impact

    Raises:
        IdenticalVersionsError: If both ids name the same version
        VersionNotFoundError: If either version does not exist
    """
    if version_a_id == version_b_id:
        raise IdenticalVersionsError(f"Cannot compare version {version_a_id} with itself")

    version_a = require_version(store, project_id, version_a_id)
    version_b = require_version(store, project_id, version_b_id)

    if version_a.version_number == version_b.version_number:
        raise IdenticalVersionsError(
            f"Versions {version_a_id} and {version_b_id} share version number "
            f"{version_a.version_number}"
        )

    base, compare = sorted([version_a, version_b], key=lambda v: v.version_number)

    base_items = get_version_items(store, project_id, base.id)
    compare_items = get_version_items(store, project_id, compare.id)

    changes = diff_version_items(base_items, compare_items)

    comparison = VersionComparison(
        base_version=base,
        compare_version=compare,
        item_changes=changes,
        items_added=sum(1 for c in changes if c.change_type == ChangeType.ADDED),
        items_removed=sum(1 for c in changes if c.change_type == ChangeType.REMOVED),
        items_modified=sum(1 for c in changes if c.change_type == ChangeType.MODIFIED),
        items_unchanged=count_unchanged(base_items, compare_items),
        cost_summary=CostSummary.between(base.summary, compare.summary),
        bom_impact=calculate_bom_impact(
            changes, base_items, compare_items, spec_mapping, spec_selections
        ),
    )
    aggregate_comparison(comparison)

    logger.debug(
        f"Compared {base.label} -> {compare.label} of project {project_id}: "
        f"{comparison.items_added} added, {comparison.items_removed} removed, "
        f"{comparison.items_modified} modified"
    )
    return comparison


def get_cost_drivers_summary(store: ItemStore, project_id: str):
    """
    Driver rows explaining the cost movement from the earliest to the latest
    version of a project.

    Returns:
        Driver aggregates, empty when the project has fewer than two versions
    """
    earliest = get_earliest_version(store, project_id)
    latest = get_latest_version(store, project_id)
    if earliest is None or latest is None or earliest.id == latest.id:
        return []
    return compare_versions(store, project_id, earliest.id, latest.id).driver_aggregates


# =============================================================================
# DATE RANGE COMPARISON
# =============================================================================

@dataclass
class _RangeBounds:
    start: Optional[BomVersion]
    end: Optional[BomVersion]


def _resolve_range_bounds(
    store: ItemStore,
    project_id: str,
    start: datetime,
    end: datetime,
    in_range: List[BomVersion]
) -> _RangeBounds:
    if len(in_range) >= 2:
        return _RangeBounds(in_range[0], in_range[-1])

    if len(in_range) == 1:
        end_version = in_range[0]
        before = get_version_at_date(store, project_id, start - _ONE_MICROSECOND)
        if before is None or before.version_number >= end_version.version_number:
            before = get_earliest_version(store, project_id) or end_version
        return _RangeBounds(before, end_version)

    start_version = get_version_at_date(store, project_id, start)
    end_version = get_version_at_date(store, project_id, end)
    if start_version is None:
        start_version = get_earliest_version(store, project_id)
    if end_version is None:
        end_version = get_latest_version(store, project_id)
    return _RangeBounds(start_version, end_version)


def compare_date_range(
    store: ItemStore,
    project_id: str,
    start_date: datetime,
    end_date: datetime
) -> DateRangeComparison:
    """
    Explain how a project's BOM cost moved between two calendar dates.

    The range is widened to whole UTC days. Boundary versions are the first
    and last version created in the range; with only one version in range
    the version in effect just before the range (or the earliest version)
    is the start. Consecutive versions are compared pairwise and all their
    changes aggregated.

    Raises:
        VersionNotFoundError: If the project has no versions
        IdenticalVersionsError: If only one version resolves for the range
    """
    range_start = start_of_day(start_date)
    range_end = end_of_day(end_date)
    if range_end < range_start:
        range_start, range_end = start_of_day(end_date), end_of_day(start_date)

    in_range = get_versions_in_range(store, project_id, range_start, range_end)
    bounds = _resolve_range_bounds(store, project_id, range_start, range_end, in_range)

    if bounds.start is None or bounds.end is None:
        raise VersionNotFoundError("any", project_id)
    if bounds.start.id == bounds.end.id:
        raise IdenticalVersionsError(
            "Only one version found in this date range. Select a wider range or create more versions."
        )
    if bounds.start.version_number > bounds.end.version_number:
        bounds = _RangeBounds(bounds.end, bounds.start)

    versions = {v.id: v for v in in_range}
    versions[bounds.start.id] = bounds.start
    versions[bounds.end.id] = bounds.end
    ordered = sorted(
        (
            v for v in versions.values()
            if bounds.start.version_number <= v.version_number <= bounds.end.version_number
        ),
        key=lambda v: v.version_number,
    )

    transitions: List[VersionTransition] = []
    all_changes: List[ItemChange] = []
    for from_version, to_version in zip(ordered, ordered[1:]):
        comparison = compare_versions(store, project_id, from_version.id, to_version.id)
        all_changes.extend(comparison.item_changes)
        top_drivers = comparison.driver_aggregates[:3]
        transitions.append(VersionTransition(
            from_version=from_version,
            to_version=to_version,
            cost_change=comparison.cost_summary.absolute_change,
            percentage_change=comparison.cost_summary.percentage_change,
            change_count=comparison.changes_count,
            summary=summarize_transition(
                comparison.cost_summary.absolute_change,
                comparison.changes_count,
                top_drivers,
            ),
            top_drivers=top_drivers,
        ))

    start_total = bounds.start.summary.total_extended_cost
    total_change = bounds.end.summary.total_extended_cost - start_total

    return DateRangeComparison(
        start_date=range_start,
        end_date=range_end,
        start_version=bounds.start,
        end_version=bounds.end,
        versions_in_range=ordered,
        total_cost_change=total_change,
        percentage_change=total_change / start_total * 100 if start_total > 0 else 0.0,
        cost_trend=build_cost_trend(ordered),
        driver_aggregates=aggregate_by_driver(all_changes),
        assembly_aggregates=aggregate_by_assembly(all_changes),
        transitions=transitions,
    )
