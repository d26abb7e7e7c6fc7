"""
Cost Aggregator.

Rolls a list of ItemChanges up into driver-level and assembly-level rows.

Every row carries:
- total_impact: signed sum of the impacts attributed to it
- item_count: number of item changes contributing to it
- percent_of_change: total_impact / sum(|row total_impact|) x 100

Percentages are signed, so a row that reduced cost shows a negative share,
and the absolute shares across all rows add up to 100. When every row is
zero all percentages are zero.

Rows are sorted by descending |total_impact|, ties broken alphabetically by
label, so output order never depends on input order.
"""

from typing import Dict, Iterable, List, Optional

from ..models import (
    COST_DRIVER_LABELS,
    COST_EPSILON,
    AssemblyAggregate,
    BomVersion,
    ChangeType,
    CostDriver,
    CostTrendPoint,
    DriverAggregate,
    ItemChange,
    UNGROUPED,
    VersionComparison,
)


def _assign_percentages(rows) -> None:
    denominator = sum(abs(row.total_impact) for row in rows)
    for row in rows:
        if denominator > COST_EPSILON:
            row.percent_of_change = row.total_impact / denominator * 100
        else:
            row.percent_of_change = 0.0


def aggregate_by_driver(changes: Iterable[ItemChange]) -> List[DriverAggregate]:
    """
    Aggregate item changes by cost driver.

    A change contributes to a driver row when its impact for that driver is
    non-zero. Assembly moves contribute to the assembly_change row even
    though they carry no net cost.

    Args:
        changes: Item changes of one or more comparisons

    Returns:
        Driver rows, largest absolute impact first
    """
    rows: Dict[CostDriver, DriverAggregate] = {}

    for change in changes:
        for driver, impact in change.impacts.items():
            if driver != CostDriver.ASSEMBLY_CHANGE and abs(impact) <= COST_EPSILON:
                continue
            row = rows.get(driver)
            if row is None:
                row = DriverAggregate(
                    driver=driver,
                    label=COST_DRIVER_LABELS[driver],
                    total_impact=0.0,
                    item_count=0,
                )
                rows[driver] = row
            row.total_impact += impact
            row.item_count += 1
            row.item_codes.append(change.item_code)

    result = list(rows.values())
    _assign_percentages(result)
    result.sort(key=lambda r: (-abs(r.total_impact), r.label))
    return result


def _assembly_contributions(change: ItemChange) -> Dict[str, float]:
    # A line that moved groups leaves its old cost in the old group and
    # brings its new cost to the new one
    if change.change_type == ChangeType.MODIFIED and change.moved_assembly:
        old_group = change.previous_group_code or UNGROUPED
        new_group = change.group_code or UNGROUPED
        return {
            old_group: -change.old_extended_cost,
            new_group: change.new_extended_cost,
        }
    return {change.group_code or UNGROUPED: change.total_impact}


def aggregate_by_assembly(changes: Iterable[ItemChange]) -> List[AssemblyAggregate]:
    """
    Aggregate item changes by assembly (group code).

    Lines without a group code are reported under ``UNGROUPED``.
    """
    rows: Dict[str, AssemblyAggregate] = {}

    for change in changes:
        for group_code, impact in _assembly_contributions(change).items():
            row = rows.get(group_code)
            if row is None:
                row = AssemblyAggregate(group_code=group_code, total_impact=0.0, item_count=0)
                rows[group_code] = row
            row.total_impact += impact
            row.item_count += 1
            row.item_codes.append(change.item_code)

    result = list(rows.values())
    _assign_percentages(result)
    result.sort(key=lambda r: (-abs(r.total_impact), r.label))
    return result


def aggregate_comparison(comparison: VersionComparison, top_n: int = 10) -> VersionComparison:
    """Fill the aggregate rows and top movers of a comparison in place."""
    comparison.driver_aggregates = aggregate_by_driver(comparison.item_changes)
    comparison.assembly_aggregates = aggregate_by_assembly(comparison.item_changes)

    by_impact = sorted(comparison.item_changes, key=lambda c: (-c.total_impact, c.item_code))
    comparison.top_increases = [c for c in by_impact if c.total_impact > COST_EPSILON][:top_n]
    comparison.top_decreases = sorted(
        (c for c in comparison.item_changes if c.total_impact < -COST_EPSILON),
        key=lambda c: (c.total_impact, c.item_code),
    )[:top_n]
    return comparison


# =============================================================================
# TRENDS & TRANSITIONS
# =============================================================================

def build_cost_trend(versions: Iterable[BomVersion]) -> List[CostTrendPoint]:
    """One point per version, in version_number order."""
    points = []
    for version in sorted(versions, key=lambda v: v.version_number):
        summary = version.summary
        points.append(CostTrendPoint(
            date=version.created_at,
            version_number=version.version_number,
            version_name=version.version_name,
            total_cost=summary.total_extended_cost,
            material_cost=summary.total_material_cost,
            landing_cost=summary.total_landing_cost,
            labour_cost=summary.total_labour_cost,
            item_count=summary.total_items,
            trigger=version.trigger,
        ))
    return points


def summarize_transition(
    cost_change: float,
    change_count: int,
    top_drivers: Optional[List[DriverAggregate]] = None
) -> str:
    """
    One-line description of a version-to-version transition, e.g.
    "Cost increased by £16.00. Main driver: Quantity Change".
    """
    direction = "increased" if cost_change >= 0 else "decreased"
    amount = f"£{abs(cost_change):.2f}"
    if not top_drivers:
        return f"Cost {direction} by {amount} with {change_count} changes"
    return f"Cost {direction} by {amount}. Main driver: {top_drivers[0].label}"
