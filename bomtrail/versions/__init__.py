"""Version snapshots: creation, retrieval and date queries."""

from .snapshot import (
    create_version,
    delete_version,
    end_of_day,
    generate_trigger_details,
    get_earliest_version,
    get_latest_version,
    get_next_version_number,
    get_version,
    get_version_at_date,
    get_version_items,
    get_versions_in_range,
    list_versions,
    maybe_create_version,
    require_version,
    should_auto_create_version,
    start_of_day,
    update_version_details,
    verify_version_summary,
)

__all__ = [
    "create_version",
    "maybe_create_version",
    "should_auto_create_version",
    "generate_trigger_details",
    "get_next_version_number",
    "get_version",
    "require_version",
    "list_versions",
    "get_version_items",
    "get_latest_version",
    "get_earliest_version",
    "get_version_at_date",
    "get_versions_in_range",
    "start_of_day",
    "end_of_day",
    "verify_version_summary",
    "update_version_details",
    "delete_version",
]
