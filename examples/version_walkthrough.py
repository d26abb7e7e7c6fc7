#!/usr/bin/env python3
"""Example: snapshot a BOM, apply a running change and explain the cost movement.

Runs against PostgreSQL when BOMTRAIL_DB_URL (or DATABASE_URL) is set in the
environment or a .env file, otherwise against an in-memory store.
"""

from datetime import timedelta

from bomtrail import (
    BomItem,
    MemoryItemStore,
    PostgresItemStore,
    VersionTrigger,
    bulk_replace,
    compare_versions,
    create_version,
    load_settings,
)
from bomtrail.changes import find_affected_items_for_project, import_running_changes
from bomtrail.items import load_bom_items, save_bom_items
from bomtrail.models import ReplacementRequest, VersionComparison, utc_now
from bomtrail.versions import generate_trigger_details

PROJECT_ID = "demo-ebike"


def seed_bom(store, project_id: str):
    """Write a small working BOM."""
    save_bom_items(store, project_id, [
        BomItem(id="grp-frame", item_code="GRP-FRAME", item_description="Frame assembly"),
        BomItem(id="i1", item_code="B200", item_description="Head tube", group_code="GRP-FRAME",
                quantity=2, material_cost=10.0),
        BomItem(id="i2", item_code="B310", item_description="Seat clamp", group_code="GRP-FRAME",
                quantity=1, material_cost=4.5, landing_cost=0.5),
        BomItem(id="i3", item_code="B420", item_description="Brake lever", group_code="GRP-BRAKES",
                quantity=2, material_cost=7.0, labour_cost=1.0),
    ])


def print_comparison(comparison: VersionComparison):
    """Pretty print a comparison with its cost drivers."""
    print("=" * 60)
    print(f"{comparison.base_version.label} → {comparison.compare_version.label}")
    print("=" * 60)

    summary = comparison.cost_summary
    print(f"📊 Cost: £{summary.base_total_cost:.2f} → £{summary.compare_total_cost:.2f} "
          f"({summary.absolute_change:+.2f}, {summary.percentage_change:+.1f}%)")
    print(f"  Added: {comparison.items_added}  Removed: {comparison.items_removed}  "
          f"Modified: {comparison.items_modified}  Unchanged: {comparison.items_unchanged}")
    print()

    for change in comparison.item_changes:
        if change.previous_item_code:
            print(f"  🔄 {change.previous_item_code} → {change.item_code} ({change.total_impact:+.2f})")
        else:
            print(f"  • {change.item_code} {change.change_type.value} ({change.total_impact:+.2f})")

    if comparison.driver_aggregates:
        print()
        print("💷 Drivers:")
        for row in comparison.driver_aggregates:
            print(f"  {row.label:<16} {row.total_impact:+10.2f}  {row.percent_of_change:+6.1f}%")

    for warning in comparison.bom_impact.warnings:
        print(f"⚠️  {warning}")


def main():
    settings = load_settings()
    if settings.database_url:
        store = PostgresItemStore(settings.database_url)
        store.ensure_schema()
    else:
        store = MemoryItemStore()

    try:
        now = utc_now()
        seed_bom(store, PROJECT_ID)
        before = create_version(
            store, PROJECT_ID, VersionTrigger.IMPORT, "demo",
            trigger_details=generate_trigger_details(VersionTrigger.IMPORT, file_name="ebike.csv"),
            now=now,
        )

        import_running_changes(store, [{
            "CN Number": "CN-0042",
            "CN Description": "Stronger head tube",
            "Old B-codes": "B200",
            "New- B-codes": "B201",
            "Estimated GO LIVE date": now.strftime("%d/%m/%Y"),
        }], "demo", "running_changes.xlsx", now=now)

        affected = find_affected_items_for_project(store, PROJECT_ID, now=now + timedelta(days=1))
        print(f"🔍 {len(affected)} line(s) affected by running changes")
        bulk_replace(store, PROJECT_ID, [ReplacementRequest.from_affected(a) for a in affected], "demo")

        # New part is dearer
        items = load_bom_items(store, PROJECT_ID)
        for item in items:
            if item.item_code == "B201":
                item.material_cost = 12.0
        save_bom_items(store, PROJECT_ID, items)

        after = create_version(store, PROJECT_ID, VersionTrigger.MANUAL, "demo",
                               version_name="After CN-0042", now=now + timedelta(minutes=1))

        print()
        print_comparison(compare_versions(store, PROJECT_ID, before.id, after.id))
        print()
        print("✅ Walkthrough completed successfully!")

    finally:
        if isinstance(store, PostgresItemStore):
            store.close()


if __name__ == "__main__":
    main()
