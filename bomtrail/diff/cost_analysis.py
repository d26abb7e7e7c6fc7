"""
Cost analysis over the working BOM and its version history.

CORE PRINCIPLES:
1. Current-cost figures come from the working BOM; history comes from
   version headers and diffs, never from re-reading old working data
2. GRP- header rows and lines without a code carry no cost of their own
3. Risk indicators are percentages in [0, 100]:
   - placeholder_risk: share of extended cost still on placeholder prices
   - new_part_risk: share of lines that are new parts
4. Price volatility compares the earliest version with the latest, so a
   project with fewer than two versions has none
"""

import logging
from typing import Dict, Iterable, List, Optional

from ..items import load_bom_items
from ..models import (
    COST_EPSILON,
    UNGROUPED,
    AssemblyCost,
    BomItem,
    ChangeType,
    CostAnalysis,
    CostDriver,
    CostSource,
    PriceVolatilityItem,
    VersionSummary,
    is_group_row,
)
from ..store.base import ItemStore
from ..versions.snapshot import get_earliest_version, get_latest_version, list_versions
from .cost_aggregation import build_cost_trend
from .version_diff import compare_versions

logger = logging.getLogger(__name__)

MAX_VOLATILITY_SCORE = 100.0


def _costed_lines(items: Iterable[BomItem]) -> List[BomItem]:
    return [item for item in items if item.item_code and not is_group_row(item.item_code)]


def _percent(part: float, whole: float) -> float:
    return part / whole * 100 if whole > COST_EPSILON else 0.0


# =============================================================================
# CURRENT COST
# =============================================================================

def calculate_cost_by_assembly(items: Iterable[BomItem]) -> List[AssemblyCost]:
    """
    Break the current cost down by assembly.

    Lines without a group code are reported under ``UNGROUPED``. The
    description is taken from the assembly's first line.

    Returns:
        One row per assembly, most expensive first (ties by group code)
    """
    lines = _costed_lines(items)
    total = sum(item.extended_cost for item in lines)

    rows: Dict[str, AssemblyCost] = {}
    for item in lines:
        group_code = item.group_code or UNGROUPED
        row = rows.get(group_code)
        if row is None:
            row = AssemblyCost(
                group_code=group_code,
                group_description=item.item_description,
                total_cost=0.0,
                item_count=0,
                material_cost=0.0,
                landing_cost=0.0,
                labour_cost=0.0,
            )
            rows[group_code] = row
        row.total_cost += item.extended_cost
        row.material_cost += item.quantity * item.material_cost
        row.landing_cost += item.quantity * item.landing_cost
        row.labour_cost += item.quantity * item.labour_cost
        row.item_count += 1

    result = list(rows.values())
    for row in result:
        row.percent_of_total = _percent(row.total_cost, total)
    result.sort(key=lambda r: (-r.total_cost, r.group_code))
    return result


def get_top_costly_items(items: Iterable[BomItem], limit: int = 10) -> List[BomItem]:
    """The highest extended-cost lines, ties broken by item code."""
    lines = _costed_lines(items)
    lines.sort(key=lambda item: (-item.extended_cost, item.item_code))
    return lines[:limit]


def calculate_placeholder_cost(items: Iterable[BomItem]) -> float:
    """Extended cost of lines flagged as placeholders or priced from one."""
    return sum(
        item.extended_cost
        for item in _costed_lines(items)
        if item.is_placeholder or item.cost_source == CostSource.PLACEHOLDER
    )


# =============================================================================
# HISTORY
# =============================================================================

def calculate_price_volatility(store: ItemStore, project_id: str) -> List[PriceVolatilityItem]:
    """
    Lines whose material price moved between the earliest and the latest
    version of a project.

    Returns:
        Volatility rows, largest absolute cost change first; empty when the
        project has fewer than two versions
    """
    earliest = get_earliest_version(store, project_id)
    latest = get_latest_version(store, project_id)
    if earliest is None or latest is None or earliest.id == latest.id:
        return []

    comparison = compare_versions(store, project_id, earliest.id, latest.id)

    rows = []
    for change in comparison.item_changes:
        if change.change_type != ChangeType.MODIFIED:
            continue
        if abs(change.impact(CostDriver.MATERIAL_PRICE)) <= COST_EPSILON:
            continue

        original = change.old_extended_cost
        current = change.new_extended_cost
        absolute_change = current - original
        percent_change = _percent(absolute_change, original)
        rows.append(PriceVolatilityItem(
            item_code=change.item_code,
            item_description=change.new_item.item_description,
            group_code=change.group_code,
            original_cost=original,
            current_cost=current,
            absolute_change=absolute_change,
            percent_change=percent_change,
            volatility_score=min(MAX_VOLATILITY_SCORE, abs(percent_change)),
        ))

    rows.sort(key=lambda r: (-abs(r.absolute_change), r.item_code))
    return rows


def get_full_cost_analysis(
    store: ItemStore,
    project_id: str,
    current_items: Optional[List[BomItem]] = None,
    top_n: int = 5
) -> CostAnalysis:
    """
    Build the cost dashboard of a project.

    Args:
        store: Item store
        project_id: Project to analyse
        current_items: Working BOM; loaded from the store when omitted
        top_n: Number of highest-cost lines to include

    Returns:
        CostAnalysis of the current BOM plus its version history
    """
    if current_items is None:
        current_items = load_bom_items(store, project_id)

    summary = VersionSummary.from_items(current_items)
    placeholder_cost = calculate_placeholder_cost(current_items)
    versions = list_versions(store, project_id)

    analysis = CostAnalysis(
        current_summary=summary,
        cost_by_assembly=calculate_cost_by_assembly(current_items),
        cost_trend=build_cost_trend(versions),
        total_versions=len(versions),
        highest_cost_items=get_top_costly_items(current_items, top_n),
        placeholder_cost=placeholder_cost,
        placeholder_risk=_percent(placeholder_cost, summary.total_extended_cost),
        new_part_risk=(
            summary.new_parts_count / summary.total_items * 100 if summary.total_items else 0.0
        ),
    )

    if versions:
        # list_versions is newest first
        first, latest = versions[-1], versions[0]
        analysis.first_version_cost = first.summary.total_extended_cost
        analysis.latest_version_cost = latest.summary.total_extended_cost
        if first.id != latest.id:
            analysis.overall_change = (
                analysis.latest_version_cost - analysis.first_version_cost
            )
            analysis.overall_change_percent = _percent(
                analysis.overall_change, analysis.first_version_cost
            )

    logger.debug(
        f"Cost analysis for project {project_id}: {summary.total_items} items, "
        f"{len(versions)} versions"
    )
    return analysis
