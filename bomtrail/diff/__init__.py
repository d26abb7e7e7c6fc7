"""Version comparison: item-level diff, cost attribution, aggregation and cost analysis."""

from .cost_analysis import (
    calculate_cost_by_assembly,
    calculate_placeholder_cost,
    calculate_price_volatility,
    get_full_cost_analysis,
    get_top_costly_items,
)
from .cost_aggregation import (
    aggregate_by_assembly,
    aggregate_by_driver,
    aggregate_comparison,
    build_cost_trend,
    summarize_transition,
)
from .version_diff import (
    build_item_map,
    calculate_bom_impact,
    compare_date_range,
    compare_versions,
    decompose_cost_delta,
    diff_item,
    diff_version_items,
    get_cost_drivers_summary,
)

__all__ = [
    # Diff engine
    "diff_version_items",
    "diff_item",
    "decompose_cost_delta",
    "build_item_map",
    "calculate_bom_impact",
    "compare_versions",
    "compare_date_range",
    "get_cost_drivers_summary",
    # Aggregation
    "aggregate_by_driver",
    "aggregate_by_assembly",
    "aggregate_comparison",
    "build_cost_trend",
    "summarize_transition",
    # Cost analysis
    "calculate_cost_by_assembly",
    "calculate_placeholder_cost",
    "calculate_price_volatility",
    "get_full_cost_analysis",
    "get_top_costly_items",
]
