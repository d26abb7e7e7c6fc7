"""
Data model for the temporal BOM engine.

Three layers of records:
- Working BOM (BomItem): mutable lines owned by a project
- Versions (BomVersion + VersionItem): immutable, numbered snapshots
- Analysis results (ItemChange, VersionComparison, AffectedBomItem, ...):
  transient, recomputed on demand and never persisted

CORE PRINCIPLES:
1. Extended cost is always quantity x (material + landing + labour).
   It is recomputed everywhere and never read back from input.
2. VersionItems never change once their BomVersion exists.
3. version_number is the only reliable ordering. Timestamps are advisory
   because imports can be backdated.

Persisted records round-trip through plain dicts (to_dict / from_dict) so any
ItemStore implementation can hold them. Datetimes are stored as ISO-8601 UTC
strings with microsecond precision, which keeps them lexicographically
ordered for range queries.
"""

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .errors import RunningChangeFormatError

# Item codes with this prefix are assembly header rows, not parts
GROUP_ROW_PREFIX = "GRP-"

UNGROUPED = "UNGROUPED"

# Absolute tolerance when comparing money and quantities
COST_EPSILON = 1e-9


# =============================================================================
# HELPERS
# =============================================================================

def normalize_item_code(code: Optional[str]) -> str:
    """Normalize a business key (B-code): trimmed and upper-cased."""
    if code is None:
        return ""
    return str(code).strip().upper()


def is_group_row(item_code: str) -> bool:
    return item_code.startswith(GROUP_ROW_PREFIX)


def values_differ(a: float, b: float) -> bool:
    return not math.isclose(a, b, rel_tol=0.0, abs_tol=COST_EPSILON)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec="microseconds")


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(str(value)))


def _float(value: Any) -> float:
    # Store backends may hand back Decimal, int or str
    if value is None or value == "":
        return 0.0
    return float(value)


# =============================================================================
# ENUMS
# =============================================================================

class CostSource(Enum):
    """Where a line's unit price came from."""
    CONTRACT = "contract"
    QUOTE = "quote"
    ESTIMATE = "estimate"
    PLACEHOLDER = "placeholder"


class VersionTrigger(Enum):
    """Why a version snapshot was taken."""
    IMPORT = "import"
    MANUAL = "manual"
    PRICE_UPDATE = "price_update"
    BULK_EDIT = "bulk_edit"
    TRANSFER = "transfer"
    SCHEDULED = "scheduled"


class PartCategory(Enum):
    NEW_PART = "new_part"
    EXISTING_PART = "existing_part"


class ChangeType(Enum):
    """Classification of one item code between two versions."""
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    UNCHANGED = "unchanged"


class CostDriver(Enum):
    """
    Explains a cost movement between two versions.

    The four price/quantity drivers are a fixed-order decomposition of a
    modified line's extended-cost delta. ASSEMBLY_CHANGE tags a line that
    moved between groups; it carries no net cost of its own.
    """
    QUANTITY_CHANGE = "quantity_change"
    MATERIAL_PRICE = "material_price"
    LANDING_PRICE = "landing_price"
    LABOUR_PRICE = "labour_price"
    ITEM_ADDED = "item_added"
    ITEM_REMOVED = "item_removed"
    ASSEMBLY_CHANGE = "assembly_change"


COST_DRIVER_LABELS: Dict[CostDriver, str] = {
    CostDriver.QUANTITY_CHANGE: "Quantity Change",
    CostDriver.MATERIAL_PRICE: "Material Price",
    CostDriver.LANDING_PRICE: "Landing Price",
    CostDriver.LABOUR_PRICE: "Labour Price",
    CostDriver.ITEM_ADDED: "Item Added",
    CostDriver.ITEM_REMOVED: "Item Removed",
    CostDriver.ASSEMBLY_CHANGE: "Assembly Change",
}


# =============================================================================
# WORKING BOM
# =============================================================================

@dataclass
class BomItem:
    """
    A line of the working BOM.

    Mutated by import, manual edit, pricing and change application.
    ``last_change_applied`` records the provenance of the most recent code
    substitution so later diffs can recognise a rename.
    """
    id: str
    item_code: str
    item_description: str = ""
    group_code: str = ""
    level: int = 0
    quantity: float = 0.0
    material_cost: float = 0.0
    landing_cost: float = 0.0
    labour_cost: float = 0.0
    cost_source: CostSource = CostSource.PLACEHOLDER
    is_placeholder: bool = False
    part_category: PartCategory = PartCategory.EXISTING_PART
    vendor_code: Optional[str] = None
    unit_of_measure: str = "EA"
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None
    last_change_applied: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        self.item_code = normalize_item_code(self.item_code)
        self.group_code = (self.group_code or "").strip()

    @property
    def unit_cost(self) -> float:
        return self.material_cost + self.landing_cost + self.labour_cost

    @property
    def extended_cost(self) -> float:
        return self.quantity * self.unit_cost

    @property
    def replaced_from(self) -> Optional[str]:
        """Code this item carried before its last applied running change."""
        if not self.last_change_applied:
            return None
        return normalize_item_code(self.last_change_applied.get("old_code")) or None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "item_code": self.item_code,
            "item_description": self.item_description,
            "group_code": self.group_code,
            "level": self.level,
            "quantity": self.quantity,
            "material_cost": self.material_cost,
            "landing_cost": self.landing_cost,
            "labour_cost": self.labour_cost,
            # Written for readers only; from_dict ignores it
            "extended_cost": self.extended_cost,
            "cost_source": self.cost_source.value,
            "is_placeholder": self.is_placeholder,
            "part_category": self.part_category.value,
            "vendor_code": self.vendor_code,
            "unit_of_measure": self.unit_of_measure,
            "updated_at": to_iso(self.updated_at),
            "updated_by": self.updated_by,
            "last_change_applied": self.last_change_applied,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BomItem":
        return cls(
            id=str(data["id"]),
            item_code=data.get("item_code", ""),
            item_description=data.get("item_description") or "",
            group_code=data.get("group_code") or "",
            level=int(data.get("level") or 0),
            quantity=_float(data.get("quantity")),
            material_cost=_float(data.get("material_cost")),
            landing_cost=_float(data.get("landing_cost")),
            labour_cost=_float(data.get("labour_cost")),
            cost_source=CostSource(data.get("cost_source") or CostSource.PLACEHOLDER.value),
            is_placeholder=bool(data.get("is_placeholder", False)),
            part_category=PartCategory(data.get("part_category") or PartCategory.EXISTING_PART.value),
            vendor_code=data.get("vendor_code"),
            unit_of_measure=data.get("unit_of_measure") or "EA",
            updated_at=parse_datetime(data.get("updated_at")),
            updated_by=data.get("updated_by"),
            last_change_applied=data.get("last_change_applied"),
        )


# =============================================================================
# VERSIONS
# =============================================================================

@dataclass(frozen=True)
class VersionItem:
    """A BOM line exactly as it existed when its version was taken."""
    bom_item_id: str
    item_code: str
    item_description: str = ""
    group_code: str = ""
    level: int = 0
    quantity: float = 0.0
    material_cost: float = 0.0
    landing_cost: float = 0.0
    labour_cost: float = 0.0
    cost_source: CostSource = CostSource.PLACEHOLDER
    is_placeholder: bool = False
    part_category: PartCategory = PartCategory.EXISTING_PART
    vendor_code: Optional[str] = None
    unit_of_measure: str = "EA"
    replaced_from: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "item_code", normalize_item_code(self.item_code))

    @property
    def unit_cost(self) -> float:
        return self.material_cost + self.landing_cost + self.labour_cost

    @property
    def extended_cost(self) -> float:
        return self.quantity * self.unit_cost

    @classmethod
    def from_bom_item(cls, item: BomItem) -> "VersionItem":
        return cls(
            bom_item_id=item.id,
            item_code=item.item_code,
            item_description=item.item_description,
            group_code=item.group_code,
            level=item.level,
            quantity=item.quantity,
            material_cost=item.material_cost,
            landing_cost=item.landing_cost,
            labour_cost=item.labour_cost,
            cost_source=item.cost_source,
            is_placeholder=item.is_placeholder,
            part_category=item.part_category,
            vendor_code=item.vendor_code,
            unit_of_measure=item.unit_of_measure,
            replaced_from=item.replaced_from,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bom_item_id": self.bom_item_id,
            "item_code": self.item_code,
            "item_description": self.item_description,
            "group_code": self.group_code,
            "level": self.level,
            "quantity": self.quantity,
            "material_cost": self.material_cost,
            "landing_cost": self.landing_cost,
            "labour_cost": self.labour_cost,
            "unit_cost": self.unit_cost,
            "extended_cost": self.extended_cost,
            "cost_source": self.cost_source.value,
            "is_placeholder": self.is_placeholder,
            "part_category": self.part_category.value,
            "vendor_code": self.vendor_code,
            "unit_of_measure": self.unit_of_measure,
            "replaced_from": self.replaced_from,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VersionItem":
        return cls(
            bom_item_id=str(data.get("bom_item_id") or data.get("id")),
            item_code=normalize_item_code(data.get("item_code")),
            item_description=data.get("item_description") or "",
            group_code=data.get("group_code") or "",
            level=int(data.get("level") or 0),
            quantity=_float(data.get("quantity")),
            material_cost=_float(data.get("material_cost")),
            landing_cost=_float(data.get("landing_cost")),
            labour_cost=_float(data.get("labour_cost")),
            cost_source=CostSource(data.get("cost_source") or CostSource.PLACEHOLDER.value),
            is_placeholder=bool(data.get("is_placeholder", False)),
            part_category=PartCategory(data.get("part_category") or PartCategory.EXISTING_PART.value),
            vendor_code=data.get("vendor_code"),
            unit_of_measure=data.get("unit_of_measure") or "EA",
            replaced_from=data.get("replaced_from"),
        )


@dataclass
class VersionSummary:
    """
    Denormalized totals stored on a version header.

    This is a write-time cache of data derivable from the version's items;
    ``from_items`` recomputes it for integrity checks. Cost splits are
    extended (quantity-weighted), so material + landing + labour equals the
    extended total.
    """
    total_items: int = 0
    total_assemblies: int = 0
    total_material_cost: float = 0.0
    total_landing_cost: float = 0.0
    total_labour_cost: float = 0.0
    total_extended_cost: float = 0.0
    new_parts_count: int = 0
    placeholders_count: int = 0
    count_by_source: Dict[str, int] = field(default_factory=dict)
    cost_by_source: Dict[str, float] = field(default_factory=dict)
    cost_by_assembly: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_items(cls, items: Iterable[Any]) -> "VersionSummary":
        """
        Compute a summary from BomItems or VersionItems.

        GRP- header rows count as assemblies but not as items. Lines without
        an item code are left out, as they are by the diff.
        """
        summary = cls(
            count_by_source={source.value: 0 for source in CostSource},
            cost_by_source={source.value: 0.0 for source in CostSource},
        )
        assemblies = set()

        for item in items:
            if not item.item_code:
                continue
            if is_group_row(item.item_code):
                assemblies.add(item.item_code)
                continue

            extended = item.extended_cost
            summary.total_items += 1
            summary.total_material_cost += item.quantity * item.material_cost
            summary.total_landing_cost += item.quantity * item.landing_cost
            summary.total_labour_cost += item.quantity * item.labour_cost
            summary.total_extended_cost += extended

            if item.part_category == PartCategory.NEW_PART:
                summary.new_parts_count += 1
            if item.is_placeholder:
                summary.placeholders_count += 1

            source = item.cost_source.value
            summary.count_by_source[source] += 1
            summary.cost_by_source[source] += extended

            if item.group_code:
                assemblies.add(item.group_code)
                summary.cost_by_assembly[item.group_code] = (
                    summary.cost_by_assembly.get(item.group_code, 0.0) + extended
                )

        summary.total_assemblies = len(assemblies)
        return summary

    @property
    def price_confidence_score(self) -> int:
        """Share of items priced from a contract or a quote, 0-100."""
        if not self.total_items:
            return 0
        confirmed = (
            self.count_by_source.get(CostSource.CONTRACT.value, 0)
            + self.count_by_source.get(CostSource.QUOTE.value, 0)
        )
        return round(confirmed / self.total_items * 100)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_items": self.total_items,
            "total_assemblies": self.total_assemblies,
            "total_material_cost": self.total_material_cost,
            "total_landing_cost": self.total_landing_cost,
            "total_labour_cost": self.total_labour_cost,
            "total_extended_cost": self.total_extended_cost,
            "new_parts_count": self.new_parts_count,
            "placeholders_count": self.placeholders_count,
            "count_by_source": dict(self.count_by_source),
            "cost_by_source": dict(self.cost_by_source),
            "cost_by_assembly": dict(self.cost_by_assembly),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VersionSummary":
        return cls(
            total_items=int(data.get("total_items", 0)),
            total_assemblies=int(data.get("total_assemblies", 0)),
            total_material_cost=_float(data.get("total_material_cost")),
            total_landing_cost=_float(data.get("total_landing_cost")),
            total_labour_cost=_float(data.get("total_labour_cost")),
            total_extended_cost=_float(data.get("total_extended_cost")),
            new_parts_count=int(data.get("new_parts_count", 0)),
            placeholders_count=int(data.get("placeholders_count", 0)),
            count_by_source={k: int(v) for k, v in (data.get("count_by_source") or {}).items()},
            cost_by_source={k: _float(v) for k, v in (data.get("cost_by_source") or {}).items()},
            cost_by_assembly={k: _float(v) for k, v in (data.get("cost_by_assembly") or {}).items()},
        )


@dataclass(frozen=True)
class BomVersion:
    """Immutable snapshot header. Append-only, never mutated after creation."""
    id: str
    project_id: str
    version_number: int
    trigger: VersionTrigger
    created_at: datetime
    created_by: str
    summary: VersionSummary
    item_count: int
    version_name: Optional[str] = None
    description: Optional[str] = None
    trigger_details: Optional[str] = None
    created_by_name: Optional[str] = None
    previous_version_id: Optional[str] = None

    @property
    def label(self) -> str:
        if self.version_name:
            return f"v{self.version_number} ({self.version_name})"
        return f"v{self.version_number}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "version_number": self.version_number,
            "trigger": self.trigger.value,
            "created_at": to_iso(self.created_at),
            "created_by": self.created_by,
            "created_by_name": self.created_by_name,
            "summary": self.summary.to_dict(),
            "item_count": self.item_count,
            "version_name": self.version_name,
            "description": self.description,
            "trigger_details": self.trigger_details,
            "previous_version_id": self.previous_version_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BomVersion":
        return cls(
            id=str(data["id"]),
            project_id=data["project_id"],
            version_number=int(data["version_number"]),
            trigger=VersionTrigger(data["trigger"]),
            created_at=parse_datetime(data["created_at"]),
            created_by=data.get("created_by") or "",
            created_by_name=data.get("created_by_name"),
            summary=VersionSummary.from_dict(data.get("summary") or {}),
            item_count=int(data.get("item_count", 0)),
            version_name=data.get("version_name"),
            description=data.get("description"),
            trigger_details=data.get("trigger_details"),
            previous_version_id=data.get("previous_version_id"),
        )


# =============================================================================
# COMPARISON RESULTS
# =============================================================================

@dataclass
class ItemChange:
    """
    One item code's movement between a base and a compare version.

    ``impacts`` holds the cost attribution by driver. For modified lines all
    four decomposition drivers are present (zero where nothing moved) and sum
    exactly to the extended-cost delta.
    """
    item_code: str
    change_type: ChangeType
    group_code: str
    old_item: Optional[VersionItem] = None
    new_item: Optional[VersionItem] = None
    impacts: Dict[CostDriver, float] = field(default_factory=dict)
    changed_fields: List[str] = field(default_factory=list)
    previous_item_code: Optional[str] = None
    previous_group_code: Optional[str] = None

    @property
    def old_extended_cost(self) -> float:
        return self.old_item.extended_cost if self.old_item else 0.0

    @property
    def new_extended_cost(self) -> float:
        return self.new_item.extended_cost if self.new_item else 0.0

    @property
    def total_impact(self) -> float:
        return sum(self.impacts.values())

    @property
    def is_rename(self) -> bool:
        return self.previous_item_code is not None

    @property
    def moved_assembly(self) -> bool:
        return self.previous_group_code is not None

    def impact(self, driver: CostDriver) -> float:
        return self.impacts.get(driver, 0.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_code": self.item_code,
            "change_type": self.change_type.value,
            "group_code": self.group_code,
            "previous_item_code": self.previous_item_code,
            "previous_group_code": self.previous_group_code,
            "changed_fields": list(self.changed_fields),
            "old_extended_cost": self.old_extended_cost,
            "new_extended_cost": self.new_extended_cost,
            "total_impact": self.total_impact,
            "impacts": {driver.value: value for driver, value in self.impacts.items()},
        }


@dataclass
class DriverAggregate:
    driver: CostDriver
    label: str
    total_impact: float
    item_count: int
    percent_of_change: float = 0.0
    item_codes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "driver": self.driver.value,
            "label": self.label,
            "total_impact": self.total_impact,
            "item_count": self.item_count,
            "percent_of_change": self.percent_of_change,
            "item_codes": list(self.item_codes),
        }


@dataclass
class AssemblyAggregate:
    group_code: str
    total_impact: float
    item_count: int
    percent_of_change: float = 0.0
    item_codes: List[str] = field(default_factory=list)

    @property
    def label(self) -> str:
        return self.group_code

    def to_dict(self) -> Dict[str, Any]:
        return {
            "group_code": self.group_code,
            "total_impact": self.total_impact,
            "item_count": self.item_count,
            "percent_of_change": self.percent_of_change,
            "item_codes": list(self.item_codes),
        }


@dataclass
class CostSummary:
    base_total_cost: float
    compare_total_cost: float
    absolute_change: float
    percentage_change: float
    material_change: float
    landing_change: float
    labour_change: float

    @classmethod
    def between(cls, base: VersionSummary, compare: VersionSummary) -> "CostSummary":
        absolute = compare.total_extended_cost - base.total_extended_cost
        percentage = (
            absolute / base.total_extended_cost * 100
            if base.total_extended_cost > 0 else 0.0
        )
        return cls(
            base_total_cost=base.total_extended_cost,
            compare_total_cost=compare.total_extended_cost,
            absolute_change=absolute,
            percentage_change=percentage,
            material_change=compare.total_material_cost - base.total_material_cost,
            landing_change=compare.total_landing_cost - base.total_landing_cost,
            labour_change=compare.total_labour_cost - base.total_labour_cost,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_total_cost": self.base_total_cost,
            "compare_total_cost": self.compare_total_cost,
            "absolute_change": self.absolute_change,
            "percentage_change": self.percentage_change,
            "material_change": self.material_change,
            "landing_change": self.landing_change,
            "labour_change": self.labour_change,
        }


@dataclass
class BomImpact:
    """
    Structural impact of a comparison.

    ``warnings`` carries non-blocking data-integrity findings (unmapped spec
    options, placeholder-priced lines, unavailable collaborators). A
    comparison with warnings still succeeded.
    """
    groups_added: List[str] = field(default_factory=list)
    groups_removed: List[str] = field(default_factory=list)
    parts_affected: int = 0
    new_parts_needed: int = 0
    new_part_codes: List[str] = field(default_factory=list)
    placeholder_item_codes: List[str] = field(default_factory=list)
    unmapped_options: List[Dict[str, str]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def has_unmapped_options(self) -> bool:
        return len(self.unmapped_options) > 0

    @property
    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "groups_added": list(self.groups_added),
            "groups_removed": list(self.groups_removed),
            "groups_to_add": len(self.groups_added),
            "groups_to_remove": len(self.groups_removed),
            "parts_affected": self.parts_affected,
            "new_parts_needed": self.new_parts_needed,
            "new_part_codes": list(self.new_part_codes),
            "placeholder_item_codes": list(self.placeholder_item_codes),
            "has_unmapped_options": self.has_unmapped_options,
            "unmapped_options": [dict(option) for option in self.unmapped_options],
            "warnings": list(self.warnings),
        }


@dataclass
class VersionComparison:
    """
    Transient diff between two versions, base always the older one.

    Recomputed on demand; never cached across requests.
    """
    base_version: BomVersion
    compare_version: BomVersion
    item_changes: List[ItemChange]
    items_added: int
    items_removed: int
    items_modified: int
    items_unchanged: int
    cost_summary: CostSummary
    bom_impact: BomImpact
    driver_aggregates: List[DriverAggregate] = field(default_factory=list)
    assembly_aggregates: List[AssemblyAggregate] = field(default_factory=list)
    top_increases: List[ItemChange] = field(default_factory=list)
    top_decreases: List[ItemChange] = field(default_factory=list)

    @property
    def changes_count(self) -> int:
        return len(self.item_changes)

    def changes_of(self, change_type: ChangeType) -> List[ItemChange]:
        return [c for c in self.item_changes if c.change_type == change_type]

    def change_for(self, item_code: str) -> Optional[ItemChange]:
        code = normalize_item_code(item_code)
        for change in self.item_changes:
            if change.item_code == code:
                return change
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_version_id": self.base_version.id,
            "base_version_number": self.base_version.version_number,
            "compare_version_id": self.compare_version.id,
            "compare_version_number": self.compare_version.version_number,
            "items_added": self.items_added,
            "items_removed": self.items_removed,
            "items_modified": self.items_modified,
            "items_unchanged": self.items_unchanged,
            "cost_summary": self.cost_summary.to_dict(),
            "bom_impact": self.bom_impact.to_dict(),
            "driver_aggregates": [a.to_dict() for a in self.driver_aggregates],
            "assembly_aggregates": [a.to_dict() for a in self.assembly_aggregates],
            "item_changes": [c.to_dict() for c in self.item_changes],
        }


@dataclass
class CostTrendPoint:
    date: datetime
    version_number: int
    version_name: Optional[str]
    total_cost: float
    material_cost: float
    landing_cost: float
    labour_cost: float
    item_count: int
    trigger: VersionTrigger


@dataclass
class VersionTransition:
    from_version: BomVersion
    to_version: BomVersion
    cost_change: float
    percentage_change: float
    change_count: int
    summary: str
    top_drivers: List[DriverAggregate] = field(default_factory=list)


@dataclass
class DateRangeComparison:
    start_date: datetime
    end_date: datetime
    start_version: BomVersion
    end_version: BomVersion
    versions_in_range: List[BomVersion]
    total_cost_change: float
    percentage_change: float
    cost_trend: List[CostTrendPoint]
    driver_aggregates: List[DriverAggregate]
    assembly_aggregates: List[AssemblyAggregate]
    transitions: List[VersionTransition]


# =============================================================================
# COST ANALYSIS
# =============================================================================

@dataclass
class AssemblyCost:
    """Current cost of one assembly, split by cost component."""
    group_code: str
    group_description: str
    total_cost: float
    item_count: int
    material_cost: float
    landing_cost: float
    labour_cost: float
    percent_of_total: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "group_code": self.group_code,
            "group_description": self.group_description,
            "total_cost": self.total_cost,
            "item_count": self.item_count,
            "material_cost": self.material_cost,
            "landing_cost": self.landing_cost,
            "labour_cost": self.labour_cost,
            "percent_of_total": self.percent_of_total,
        }


@dataclass
class PriceVolatilityItem:
    """
    A line whose material price moved between the first and latest version.

    ``volatility_score`` is |percent_change| capped at 100.
    """
    item_code: str
    item_description: str
    group_code: str
    original_cost: float
    current_cost: float
    absolute_change: float
    percent_change: float
    volatility_score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_code": self.item_code,
            "item_description": self.item_description,
            "group_code": self.group_code,
            "original_cost": self.original_cost,
            "current_cost": self.current_cost,
            "absolute_change": self.absolute_change,
            "percent_change": self.percent_change,
            "volatility_score": self.volatility_score,
        }


@dataclass
class CostAnalysis:
    """
    Project cost dashboard: the working BOM's current cost, its risk
    indicators and the cost history recorded by versions.

    Overall change fields are None until the project has two versions.
    """
    current_summary: VersionSummary
    cost_by_assembly: List[AssemblyCost]
    cost_trend: List[CostTrendPoint]
    total_versions: int
    highest_cost_items: List[BomItem]
    placeholder_cost: float
    placeholder_risk: float
    new_part_risk: float
    first_version_cost: Optional[float] = None
    latest_version_cost: Optional[float] = None
    overall_change: Optional[float] = None
    overall_change_percent: Optional[float] = None

    @property
    def largest_assembly(self) -> Optional[AssemblyCost]:
        return self.cost_by_assembly[0] if self.cost_by_assembly else None

    @property
    def price_confidence_score(self) -> int:
        return self.current_summary.price_confidence_score


# =============================================================================
# RUNNING CHANGES
# =============================================================================

@dataclass(frozen=True)
class CodeReplacement:
    """One explicit old -> new B-code pair of a running change."""
    old_code: str
    new_code: str

    def __post_init__(self):
        object.__setattr__(self, "old_code", normalize_item_code(self.old_code))
        object.__setattr__(self, "new_code", normalize_item_code(self.new_code))


@dataclass
class RunningChange:
    """
    An engineering change notice (CN) superseding B-codes from a go-live date.

    Replacements are held as explicit pairs. The sheet's parallel-array
    shape (old codes, new codes) is accepted through ``from_parallel_codes``.
    """
    id: str
    cn_number: str
    estimated_go_live_date: Optional[datetime]
    replacements: List[CodeReplacement] = field(default_factory=list)
    cn_description: str = ""
    owner: str = ""
    assignee: str = ""
    status_description: str = ""
    change_type: str = "Running"
    affected_line: str = ""
    is_active: bool = True
    source_filename: Optional[str] = None
    imported_by: Optional[str] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.estimated_go_live_date is not None:
            self.estimated_go_live_date = ensure_utc(self.estimated_go_live_date)
        if self.updated_at is not None:
            self.updated_at = ensure_utc(self.updated_at)

    @property
    def old_codes(self) -> List[str]:
        return [r.old_code for r in self.replacements]

    @property
    def new_codes(self) -> List[str]:
        return [r.new_code for r in self.replacements]

    @staticmethod
    def pair_codes(old_codes: List[str], new_codes: List[str]) -> List[CodeReplacement]:
        """
        Turn parallel old/new code arrays into explicit pairs.

        Cells pair by their position in the raw arrays, blanks included, so a
        blank cell never shifts the codes after it. Equal lengths pair
        positionally and pairs with a blank side are dropped. Otherwise a
        single new code replaces every old code. Any other mismatch is
        ambiguous and rejected.

        Raises:
            RunningChangeFormatError: On empty old codes or ambiguous lengths
        """
        olds = [normalize_item_code(c) for c in old_codes]
        news = [normalize_item_code(c) for c in new_codes]

        if not any(olds):
            raise RunningChangeFormatError("No old B-codes specified")
        if not any(news):
            raise RunningChangeFormatError("No new B-codes specified")

        if len(olds) == len(news):
            pairs = [CodeReplacement(old, new) for old, new in zip(olds, news) if old and new]
            if not pairs:
                raise RunningChangeFormatError("No old B-code lines up with a new B-code")
            return pairs

        filled = [new for new in news if new]
        if len(filled) == 1:
            return [CodeReplacement(old, filled[0]) for old in olds if old]

        raise RunningChangeFormatError(
            f"Cannot pair {len(olds)} old B-codes with {len(news)} new B-codes"
        )

    @classmethod
    def from_parallel_codes(
        cls,
        id: str,
        cn_number: str,
        old_codes: List[str],
        new_codes: List[str],
        estimated_go_live_date: Optional[datetime],
        **kwargs: Any
    ) -> "RunningChange":
        return cls(
            id=id,
            cn_number=cn_number,
            estimated_go_live_date=estimated_go_live_date,
            replacements=cls.pair_codes(old_codes, new_codes),
            **kwargs
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "cn_number": self.cn_number,
            "estimated_go_live_date": to_iso(self.estimated_go_live_date),
            "replacements": [
                {"old_code": r.old_code, "new_code": r.new_code}
                for r in self.replacements
            ],
            # Parallel arrays kept for readers that index by old code
            "old_codes": self.old_codes,
            "new_codes": self.new_codes,
            "cn_description": self.cn_description,
            "owner": self.owner,
            "assignee": self.assignee,
            "status_description": self.status_description,
            "change_type": self.change_type,
            "affected_line": self.affected_line,
            "is_active": self.is_active,
            "source_filename": self.source_filename,
            "imported_by": self.imported_by,
            "updated_at": to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunningChange":
        if data.get("replacements"):
            replacements = [
                CodeReplacement(r["old_code"], r["new_code"])
                for r in data["replacements"]
            ]
        else:
            replacements = cls.pair_codes(data.get("old_codes") or [], data.get("new_codes") or [])

        return cls(
            id=str(data["id"]),
            cn_number=data.get("cn_number") or "",
            estimated_go_live_date=parse_datetime(data.get("estimated_go_live_date")),
            replacements=replacements,
            cn_description=data.get("cn_description") or "",
            owner=data.get("owner") or "",
            assignee=data.get("assignee") or "",
            status_description=data.get("status_description") or "",
            change_type=data.get("change_type") or "Running",
            affected_line=data.get("affected_line") or "",
            is_active=bool(data.get("is_active", True)),
            source_filename=data.get("source_filename"),
            imported_by=data.get("imported_by"),
            updated_at=parse_datetime(data.get("updated_at")),
        )


@dataclass(frozen=True)
class AffectedBomItem:
    """One BOM line paired with one matching running change. Never persisted."""
    bom_item_id: str
    item_code: str
    item_description: str
    group_code: str
    quantity: float
    running_change_id: str
    cn_number: str
    cn_description: str
    old_code: str
    new_code: str
    go_live_date: datetime
    is_live: bool
    is_after_dtx: bool
    days_until_go_live: int
    owner: str = ""
    assignee: str = ""
    status_description: str = ""


@dataclass
class RunningChangeStats:
    total: int = 0
    active: int = 0
    upcoming: int = 0
    live: int = 0
    unique_old_codes: int = 0
    unique_new_codes: int = 0


@dataclass
class RunningChangeImportResult:
    success_count: int = 0
    created_count: int = 0
    updated_count: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def success(self) -> bool:
        return not self.errors


# =============================================================================
# CHANGE APPLICATION
# =============================================================================

@dataclass(frozen=True)
class ReplacementRequest:
    """An approved substitution of one BOM line's code."""
    bom_item_id: str
    current_code: str
    new_code: str
    running_change_id: str
    cn_number: str

    @classmethod
    def from_affected(cls, affected: AffectedBomItem) -> "ReplacementRequest":
        return cls(
            bom_item_id=affected.bom_item_id,
            current_code=affected.item_code,
            new_code=affected.new_code,
            running_change_id=affected.running_change_id,
            cn_number=affected.cn_number,
        )


@dataclass
class ReplacementResult:
    bom_item_id: str
    old_code: str
    new_code: str
    running_change_id: str
    cn_number: str
    applied_at: datetime
    audit_logged: bool = True


@dataclass
class ReplacementError:
    bom_item_id: str
    item_code: str
    message: str

    def __str__(self) -> str:
        return f"{self.item_code}: {self.message}"


@dataclass
class BulkReplaceResult:
    """
    Outcome of a bulk replacement.

    Partial success is the designed outcome: each line is an independent
    editorial decision. ``version_error`` is set when the automatic snapshot
    after a large replacement could not be written; the replacements
    themselves are durable either way.
    """
    succeeded: int = 0
    failed: int = 0
    errors: List[ReplacementError] = field(default_factory=list)
    results: List[ReplacementResult] = field(default_factory=list)
    version: Optional[BomVersion] = None
    version_error: Optional[str] = None

    @property
    def error_messages(self) -> List[str]:
        return [str(e) for e in self.errors]

    @property
    def has_warnings(self) -> bool:
        return self.version_error is not None or any(not r.audit_logged for r in self.results)


def consolidate_lines(first: VersionItem, second: VersionItem) -> VersionItem:
    """
    Merge two lines sharing an item code inside one snapshot.

    Quantities are summed and unit costs become quantity-weighted averages,
    so the merged extended cost equals the sum of both extended costs.
    """
    quantity = first.quantity + second.quantity
    if quantity == 0:
        return replace(first, quantity=0.0)

    def weighted(attr: str) -> float:
        return (
            first.quantity * getattr(first, attr) + second.quantity * getattr(second, attr)
        ) / quantity

    return replace(
        first,
        quantity=quantity,
        material_cost=weighted("material_cost"),
        landing_cost=weighted("landing_cost"),
        labour_cost=weighted("labour_cost"),
        is_placeholder=first.is_placeholder or second.is_placeholder,
        replaced_from=first.replaced_from or second.replaced_from,
    )
