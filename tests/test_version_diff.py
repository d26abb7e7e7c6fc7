"""
Unit tests for the Version Diff Engine.

These tests verify that:
1. Classification is symmetric: Diff(A, B) mirrors Diff(B, A)
2. Modified-line decomposition sums exactly to the extended-cost delta
3. Per-item impacts sum to the difference of the version totals
4. Running-change renames are one modified line, not an add plus a remove
5. Argument order never changes which version is the base
"""

from datetime import datetime, timedelta, timezone

import pytest

from bomtrail.errors import IdenticalVersionsError, VersionNotFoundError
from bomtrail.diff.version_diff import (
    calculate_bom_impact,
    compare_date_range,
    compare_versions,
    decompose_cost_delta,
    diff_version_items,
    get_cost_drivers_summary,
)
from bomtrail.models import (
    BomItem,
    ChangeType,
    CostDriver,
    PartCategory,
    VersionItem,
    VersionSummary,
    VersionTrigger,
)
from bomtrail.spec_mapping import SpecMappingSource, SpecSelection, StaticSpecMapping
from bomtrail.versions.snapshot import create_version


def make_vitem(
    code: str,
    qty: float = 1,
    material: float = 0,
    landing: float = 0,
    labour: float = 0,
    group: str = "GRP-A",
    **kwargs
) -> VersionItem:
    """Helper to create VersionItem objects for testing."""
    return VersionItem(
        bom_item_id=kwargs.pop("bom_item_id", code.lower()),
        item_code=code,
        quantity=qty,
        material_cost=material,
        landing_cost=landing,
        labour_cost=labour,
        group_code=group,
        **kwargs
    )


def make_bom_item(code: str, qty: float = 1, material: float = 0, group: str = "GRP-A", **kwargs) -> BomItem:
    """Helper to create BomItem objects for testing."""
    return BomItem(
        id=kwargs.pop("id", code.lower()),
        item_code=code,
        quantity=qty,
        material_cost=material,
        group_code=group,
        **kwargs
    )


def make_version(store, project_id, items, when):
    """Helper to snapshot an explicit item set at a given time."""
    return create_version(store, project_id, VersionTrigger.MANUAL, "u1", items=items, now=when)


def by_code(changes):
    return {c.item_code: c for c in changes}


# =============================================================================
# DECOMPOSITION
# =============================================================================

class TestDecomposition:
    """Tests for splitting a modified line's cost delta."""

    def test_worked_scenario(self):
        """qty 2 @ £10 -> qty 3 @ £12: £10 quantity + £6 material = £16."""
        changes = diff_version_items(
            [make_vitem("X", qty=2, material=10)],
            [make_vitem("X", qty=3, material=12)],
        )
        change = changes[0]

        assert change.change_type == ChangeType.MODIFIED
        assert change.impact(CostDriver.QUANTITY_CHANGE) == pytest.approx(10)
        assert change.impact(CostDriver.MATERIAL_PRICE) == pytest.approx(6)
        assert change.total_impact == pytest.approx(16)
        assert change.new_extended_cost - change.old_extended_cost == pytest.approx(16)

    @pytest.mark.parametrize("old,new", [
        ((2, 10, 1, 0.5), (3, 12, 1, 0.5)),
        ((5, 1.25, 0.3, 2), (1, 0.75, 0.9, 2.5)),
        ((4, 3, 3, 3), (0, 3, 3, 3)),
        ((0, 8, 0, 0), (7, 9, 1, 1)),
    ])
    def test_components_sum_to_delta(self, old, new):
        old_item = make_vitem("X", *old)
        new_item = make_vitem("X", *new)
        parts = decompose_cost_delta(old_item, new_item)
        assert sum(parts.values()) == pytest.approx(new_item.extended_cost - old_item.extended_cost)

    def test_modified_line_carries_all_four_drivers(self):
        change = diff_version_items(
            [make_vitem("X", qty=1, landing=2)],
            [make_vitem("X", qty=1, landing=3)],
        )[0]
        assert set(change.impacts) == {
            CostDriver.QUANTITY_CHANGE,
            CostDriver.MATERIAL_PRICE,
            CostDriver.LANDING_PRICE,
            CostDriver.LABOUR_PRICE,
        }
        assert change.impact(CostDriver.LANDING_PRICE) == pytest.approx(1)
        assert change.changed_fields == ["landing_cost"]


# =============================================================================
# CLASSIFICATION
# =============================================================================

class TestClassification:
    """Tests for added/removed/modified/unchanged."""

    def test_basic_classification(self):
        base = [make_vitem("A", material=1), make_vitem("B", material=2), make_vitem("C", material=3)]
        compare = [make_vitem("A", material=1), make_vitem("B", material=5), make_vitem("D", material=4)]
        changes = by_code(diff_version_items(base, compare))

        assert "A" not in changes
        assert changes["B"].change_type == ChangeType.MODIFIED
        assert changes["C"].change_type == ChangeType.REMOVED
        assert changes["C"].impacts == {CostDriver.ITEM_REMOVED: -3}
        assert changes["D"].change_type == ChangeType.ADDED
        assert changes["D"].impacts == {CostDriver.ITEM_ADDED: 4}

    def test_include_unchanged(self):
        changes = diff_version_items([make_vitem("A")], [make_vitem("A")], include_unchanged=True)
        assert changes[0].change_type == ChangeType.UNCHANGED
        assert changes[0].total_impact == 0

    def test_description_change_alone_is_unchanged(self):
        changes = diff_version_items(
            [make_vitem("A", item_description="Bolt")],
            [make_vitem("A", item_description="Bolt M6")],
        )
        assert changes == []

    def test_group_move_is_tagged_with_zero_cost(self):
        change = diff_version_items(
            [make_vitem("A", material=5, group="GRP-A")],
            [make_vitem("A", material=5, group="GRP-B")],
        )[0]
        assert change.change_type == ChangeType.MODIFIED
        assert change.previous_group_code == "GRP-A"
        assert CostDriver.ASSEMBLY_CHANGE in change.impacts
        assert change.total_impact == 0

    def test_group_rows_are_ignored(self):
        changes = diff_version_items(
            [make_vitem("GRP-A", material=100, group="")],
            [make_vitem("GRP-A", material=200, group="")],
        )
        assert changes == []

    def test_duplicate_codes_are_consolidated(self):
        base = [
            make_vitem("A", qty=1, material=10, bom_item_id="a1"),
            make_vitem("A", qty=1, material=10, bom_item_id="a2"),
        ]
        compare = [make_vitem("A", qty=2, material=10)]
        assert diff_version_items(base, compare) == []

    def test_ordering_is_deterministic(self):
        base = [make_vitem("Z"), make_vitem("M", qty=1)]
        compare = [make_vitem("B"), make_vitem("A"), make_vitem("M", qty=2)]
        changes = diff_version_items(base, compare)
        assert [(c.change_type, c.item_code) for c in changes] == [
            (ChangeType.ADDED, "A"),
            (ChangeType.ADDED, "B"),
            (ChangeType.REMOVED, "Z"),
            (ChangeType.MODIFIED, "M"),
        ]


class TestMirror:
    """Diff(A, B) and Diff(B, A) are mirror images."""

    def test_mirror_classifications_and_impacts(self):
        a = [
            make_vitem("KEEP", qty=2, material=10),
            make_vitem("GONE", qty=1, material=7),
            make_vitem("SAME", qty=1, material=1),
        ]
        b = [
            make_vitem("KEEP", qty=3, material=12, landing=1),
            make_vitem("NEW", qty=4, material=2),
            make_vitem("SAME", qty=1, material=1),
        ]
        forward = by_code(diff_version_items(a, b))
        backward = by_code(diff_version_items(b, a))

        assert set(forward) == set(backward)
        mirror = {
            ChangeType.ADDED: ChangeType.REMOVED,
            ChangeType.REMOVED: ChangeType.ADDED,
            ChangeType.MODIFIED: ChangeType.MODIFIED,
        }
        for code, change in forward.items():
            assert backward[code].change_type == mirror[change.change_type]
            assert backward[code].total_impact == pytest.approx(-change.total_impact)

    def test_single_driver_impacts_negate(self):
        a = [make_vitem("X", qty=2, material=10)]
        b = [make_vitem("X", qty=2, material=13)]
        forward = diff_version_items(a, b)[0]
        backward = diff_version_items(b, a)[0]
        for driver in forward.impacts:
            assert backward.impact(driver) == pytest.approx(-forward.impact(driver))


# =============================================================================
# RENAMES
# =============================================================================

class TestRenameRecognition:
    """Running-change substitutions are modifications, not churn."""

    def test_rename_is_one_modified_line(self):
        changes = diff_version_items(
            [make_vitem("B200", qty=2, material=5)],
            [make_vitem("B201", qty=2, material=6, replaced_from="B200")],
        )
        assert len(changes) == 1
        change = changes[0]
        assert change.change_type == ChangeType.MODIFIED
        assert change.item_code == "B201"
        assert change.previous_item_code == "B200"
        assert change.total_impact == pytest.approx(2)
        assert "item_code" in change.changed_fields

    def test_rename_mirror(self):
        old = [make_vitem("B200", qty=2, material=5)]
        new = [make_vitem("B201", qty=2, material=6, replaced_from="B200")]
        backward = diff_version_items(new, old)
        assert len(backward) == 1
        assert backward[0].item_code == "B200"
        assert backward[0].previous_item_code == "B201"
        assert backward[0].total_impact == pytest.approx(-2)

    def test_unrelated_add_and_remove_stay_separate(self):
        changes = diff_version_items(
            [make_vitem("B200")],
            [make_vitem("B999", replaced_from="B123")],
        )
        assert sorted(c.change_type.value for c in changes) == ["added", "removed"]


# =============================================================================
# BOM IMPACT
# =============================================================================

class BrokenMapping(SpecMappingSource):
    def get_group_codes(self, bike_type, category, option_value):
        raise LookupError("mapping service offline")


class TestBomImpact:
    """Tests for structural impact and its warnings."""

    def test_groups_and_new_parts(self):
        base = [make_vitem("A", group="GRP-A"), make_vitem("B", group="GRP-B")]
        compare = [
            make_vitem("A", group="GRP-A"),
            make_vitem("N", group="GRP-C", part_category=PartCategory.NEW_PART),
            make_vitem("E", group="GRP-C"),
        ]
        changes = diff_version_items(base, compare)
        impact = calculate_bom_impact(changes, base, compare)

        assert impact.groups_added == ["GRP-C"]
        assert impact.groups_removed == ["GRP-B"]
        assert impact.parts_affected == 3
        assert impact.new_parts_needed == 1
        assert impact.new_part_codes == ["N"]

    def test_placeholders_are_warnings(self):
        compare = [make_vitem("P", is_placeholder=True)]
        impact = calculate_bom_impact([], [], compare)
        assert impact.placeholder_item_codes == ["P"]
        assert impact.has_warnings

    def test_unmapped_options(self):
        mapping = StaticSpecMapping({("E-Bike", "Brakes", "Disc"): ["GRP-BRK"]})
        selections = [
            SpecSelection("E-Bike", "Brakes", "Disc"),
            SpecSelection("E-Bike", "Saddle", "Gel"),
        ]
        impact = calculate_bom_impact([], [], [], mapping, selections)
        assert impact.unmapped_options == [{"category": "Saddle", "option": "Gel"}]
        assert impact.has_unmapped_options

    def test_missing_mapping_is_a_warning(self):
        impact = calculate_bom_impact([], [], [], None, [SpecSelection("E-Bike", "Brakes", "Disc")])
        assert impact.unmapped_options == []
        assert any("unavailable" in w for w in impact.warnings)

    def test_failing_mapping_is_a_warning(self):
        impact = calculate_bom_impact(
            [], [], [], BrokenMapping(), [SpecSelection("E-Bike", "Brakes", "Disc")]
        )
        assert any("offline" in w for w in impact.warnings)


# =============================================================================
# STORED VERSIONS
# =============================================================================

class TestCompareVersions:
    """Tests for comparing versions held in a store."""

    @pytest.fixture
    def two_versions(self, store, project_id, now):
        v1 = make_version(store, project_id, [
            make_bom_item("X", qty=2, material=10),
            make_bom_item("GONE", qty=1, material=5, group="GRP-B"),
            make_bom_item("GRP-A", qty=1, material=0, group=""),
            make_bom_item("DUP", qty=1, material=4, id="dup-1"),
            make_bom_item("DUP", qty=2, material=4, id="dup-2"),
        ], now)
        v2 = make_version(store, project_id, [
            make_bom_item("X", qty=3, material=12),
            make_bom_item("NEW", qty=2, material=8, group="GRP-C"),
            make_bom_item("GRP-A", qty=1, material=0, group=""),
            make_bom_item("DUP", qty=3, material=5),
        ], now + timedelta(days=1))
        return v1, v2

    def test_worked_scenario_through_store(self, store, project_id, two_versions):
        v1, v2 = two_versions
        comparison = compare_versions(store, project_id, v1.id, v2.id)
        change = comparison.change_for("X")
        assert change.impact(CostDriver.QUANTITY_CHANGE) == pytest.approx(10)
        assert change.impact(CostDriver.MATERIAL_PRICE) == pytest.approx(6)

    def test_counts(self, store, project_id, two_versions):
        v1, v2 = two_versions
        comparison = compare_versions(store, project_id, v1.id, v2.id)
        assert comparison.items_added == 1
        assert comparison.items_removed == 1
        assert comparison.items_modified == 2
        assert comparison.items_unchanged == 0

    def test_impacts_sum_to_summary_delta(self, store, project_id, two_versions):
        v1, v2 = two_versions
        comparison = compare_versions(store, project_id, v1.id, v2.id)
        total = sum(c.total_impact for c in comparison.item_changes)
        expected = v2.summary.total_extended_cost - v1.summary.total_extended_cost
        assert total == pytest.approx(expected)
        assert comparison.cost_summary.absolute_change == pytest.approx(expected)

    def test_impacts_sum_to_summary_delta_with_uncoded_lines(self):
        base = [make_vitem("X", qty=1, material=10)]
        compare = [make_vitem("X", qty=1, material=10), make_vitem("  ", qty=2, material=50, bom_item_id="blank")]

        changes = diff_version_items(base, compare)
        delta = (
            VersionSummary.from_items(compare).total_extended_cost
            - VersionSummary.from_items(base).total_extended_cost
        )
        assert sum(c.total_impact for c in changes) == pytest.approx(delta) == 0

    def test_argument_order_is_canonicalized(self, store, project_id, two_versions):
        v1, v2 = two_versions
        comparison = compare_versions(store, project_id, v2.id, v1.id)
        assert comparison.base_version.id == v1.id
        assert comparison.compare_version.id == v2.id
        assert comparison.change_for("NEW").change_type == ChangeType.ADDED

    def test_aggregates_and_top_movers_are_filled(self, store, project_id, two_versions):
        v1, v2 = two_versions
        comparison = compare_versions(store, project_id, v1.id, v2.id)
        assert comparison.driver_aggregates
        assert comparison.assembly_aggregates
        # Ties on impact fall back to item code
        assert [c.item_code for c in comparison.top_increases] == ["NEW", "X", "DUP"]
        assert [c.item_code for c in comparison.top_decreases] == ["GONE"]

    def test_identical_ids_are_rejected(self, store, project_id, two_versions):
        v1, _ = two_versions
        with pytest.raises(IdenticalVersionsError):
            compare_versions(store, project_id, v1.id, v1.id)

    def test_missing_version_is_rejected(self, store, project_id, two_versions):
        v1, _ = two_versions
        with pytest.raises(VersionNotFoundError):
            compare_versions(store, project_id, v1.id, "nope")

    def test_cost_drivers_summary(self, store, project_id, two_versions):
        rows = get_cost_drivers_summary(store, project_id)
        assert {r.driver for r in rows} >= {CostDriver.ITEM_ADDED, CostDriver.ITEM_REMOVED}

    def test_cost_drivers_summary_needs_two_versions(self, store, project_id):
        assert get_cost_drivers_summary(store, project_id) == []


# =============================================================================
# DATE RANGE
# =============================================================================

class TestCompareDateRange:
    """Tests for comparing two calendar dates."""

    @pytest.fixture
    def timeline(self, store, project_id):
        day = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)
        versions = [
            make_version(store, project_id, [make_bom_item("X", qty=1, material=10)], day),
            make_version(store, project_id, [make_bom_item("X", qty=2, material=10)], day + timedelta(days=5)),
            make_version(store, project_id, [make_bom_item("X", qty=2, material=11)], day + timedelta(days=10)),
        ]
        return day, versions

    def test_range_with_several_versions(self, store, project_id, timeline):
        day, versions = timeline
        result = compare_date_range(store, project_id, day, day + timedelta(days=10))

        assert result.start_version.id == versions[0].id
        assert result.end_version.id == versions[2].id
        assert len(result.transitions) == 2
        assert result.total_cost_change == pytest.approx(12)
        assert [p.total_cost for p in result.cost_trend] == [10, 20, 22]
        assert result.transitions[0].summary == "Cost increased by £10.00. Main driver: Quantity Change"

    def test_range_is_widened_to_whole_days(self, store, project_id, timeline):
        day, versions = timeline
        end_date = (day + timedelta(days=10)).replace(hour=0)
        result = compare_date_range(store, project_id, day.replace(hour=23), end_date)
        assert result.end_version.id == versions[2].id

    def test_single_version_in_range_uses_previous(self, store, project_id, timeline):
        day, versions = timeline
        target = day + timedelta(days=5)
        result = compare_date_range(store, project_id, target, target)
        assert result.start_version.id == versions[0].id
        assert result.end_version.id == versions[1].id

    def test_empty_range_between_versions(self, store, project_id, timeline):
        day, _ = timeline
        # Both ends resolve to the version in effect on those days
        with pytest.raises(IdenticalVersionsError):
            compare_date_range(store, project_id, day + timedelta(days=2), day + timedelta(days=3))

    def test_bounds_are_first_and_last_in_range(self, store, project_id, timeline):
        day, versions = timeline
        result = compare_date_range(store, project_id, day + timedelta(days=2), day + timedelta(days=12))
        assert result.start_version.id == versions[1].id
        assert result.end_version.id == versions[2].id
        assert [v.version_number for v in result.versions_in_range] == [2, 3]

    def test_project_without_versions(self, store, project_id):
        with pytest.raises(VersionNotFoundError):
            compare_date_range(store, project_id, datetime(2025, 1, 1), datetime(2025, 1, 2))

    def test_single_version_project(self, store, project_id, now):
        make_version(store, project_id, [make_bom_item("X")], now)
        with pytest.raises(IdenticalVersionsError):
            compare_date_range(store, project_id, now, now)
