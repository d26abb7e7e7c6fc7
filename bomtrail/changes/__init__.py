"""Running changes: ingestion, matching against the BOM, and application."""

from .applicator import bulk_replace, replace_item_code
from .matching import (
    count_affected_items,
    find_affected_items,
    find_affected_items_for_project,
    index_running_changes,
)
from .running_changes import (
    calculate_running_change_stats,
    delete_running_change,
    get_active_running_changes,
    get_running_change,
    import_running_changes,
    list_running_changes,
    parse_codes,
    parse_uk_date,
    running_change_from_row,
    save_running_change,
    set_running_change_active,
)

__all__ = [
    # Ingestion and access
    "running_change_from_row",
    "import_running_changes",
    "parse_uk_date",
    "parse_codes",
    "save_running_change",
    "list_running_changes",
    "get_active_running_changes",
    "get_running_change",
    "set_running_change_active",
    "delete_running_change",
    "calculate_running_change_stats",
    # Matching
    "index_running_changes",
    "find_affected_items",
    "count_affected_items",
    "find_affected_items_for_project",
    # Application
    "replace_item_code",
    "bulk_replace",
]
