"""
Spec-mapping collaborator.

Maps a product spec option (bike type, category, option value) to
the BOM group codes that implement it. The engine only reads it, to report
spec options that have no mapping when computing a comparison's BOM impact.
An absent or failing source degrades to a warning, never an error.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .store.base import GLOBAL_PROJECT, SPEC_MAPPINGS, Filter, ItemStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpecSelection:
    """One option chosen on a product spec."""
    bike_type: str
    category: str
    option_value: str


class SpecMappingSource:
    """Read-only lookup of group codes for a spec option."""

    def get_group_codes(self, bike_type: str, category: str, option_value: str) -> List[str]:
        """
        Returns:
            Group codes mapped to the option; empty when it is unmapped
        """
        raise NotImplementedError


class StoreSpecMapping(SpecMappingSource):
    """Reads mappings from the shared ``spec_mappings`` collection."""

    def __init__(self, store: ItemStore, project_id: str = GLOBAL_PROJECT):
        self.store = store
        self.project_id = project_id

    def get_group_codes(self, bike_type: str, category: str, option_value: str) -> List[str]:
        docs = self.store.query(
            self.project_id,
            SPEC_MAPPINGS,
            filters=[
                Filter("bike_type", "==", bike_type),
                Filter("category", "==", category),
                Filter("option_value", "==", option_value),
            ],
            limit=1,
        )
        if not docs:
            return []
        return list(docs[0].get("group_codes") or [])


class StaticSpecMapping(SpecMappingSource):
    """Mappings held in memory, keyed by (bike_type, category, option_value)."""

    def __init__(self, mappings: Optional[Dict[Tuple[str, str, str], List[str]]] = None):
        self.mappings = dict(mappings or {})

    def get_group_codes(self, bike_type: str, category: str, option_value: str) -> List[str]:
        return list(self.mappings.get((bike_type, category, option_value), []))


def find_unmapped_options(
    source: Optional[SpecMappingSource],
    selections: Iterable[SpecSelection]
) -> Tuple[List[Dict[str, str]], List[str]]:
    """
    Find spec selections with no group-code mapping.

    Args:
        source: Mapping source, or None when unavailable
        selections: Spec options to check

    Returns:
        Tuple of (unmapped options as {"category", "option"} dicts, warnings)
    """
    selections = list(selections)
    if not selections:
        return [], []
    if source is None:
        return [], ["Spec mapping unavailable; unmapped options were not checked"]

    unmapped = []
    try:
        for selection in selections:
            codes = source.get_group_codes(
                selection.bike_type, selection.category, selection.option_value
            )
            if not codes:
                unmapped.append({"category": selection.category, "option": selection.option_value})
    except Exception as e:
        logger.warning(f"Spec mapping lookup failed: {e}", exc_info=True)
        return [], [f"Spec mapping lookup failed: {e}"]

    return unmapped, []
