from .models import (
    BomItem,
    BomVersion,
    ChangeType,
    CostDriver,
    CostSource,
    RunningChange,
    VersionItem,
    VersionSummary,
    VersionTrigger,
)
from .store import MemoryItemStore, PostgresItemStore, ItemStore
from .versions import create_version, maybe_create_version
from .diff import compare_versions, compare_date_range, diff_version_items
from .changes import find_affected_items, count_affected_items, replace_item_code, bulk_replace
from .config import Settings, load_settings, get_settings

__all__ = [
    "BomItem", "BomVersion", "VersionItem", "VersionSummary", "RunningChange",
    "ChangeType", "CostDriver", "CostSource", "VersionTrigger",
    "ItemStore", "MemoryItemStore", "PostgresItemStore",
    "create_version", "maybe_create_version",
    "compare_versions", "compare_date_range", "diff_version_items",
    "find_affected_items", "count_affected_items", "replace_item_code", "bulk_replace",
    "Settings", "load_settings", "get_settings",
]
