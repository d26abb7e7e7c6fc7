"""
Working-BOM item repository.

Thin typed layer over the ItemStore's ``bom_items`` collection.
"""

import logging
from typing import Iterable, List, Optional

from .models import BomItem, normalize_item_code
from .store.base import BOM_ITEMS, Filter, ItemStore

logger = logging.getLogger(__name__)


def load_bom_items(store: ItemStore, project_id: str) -> List[BomItem]:
    """Load the full working BOM of a project, ordered by item code."""
    docs = store.query(project_id, BOM_ITEMS, order_by="item_code")
    return [BomItem.from_dict(doc) for doc in docs]


def get_bom_item(store: ItemStore, project_id: str, bom_item_id: str) -> Optional[BomItem]:
    doc = store.get(project_id, BOM_ITEMS, bom_item_id)
    return BomItem.from_dict(doc) if doc else None


def find_items_by_code(store: ItemStore, project_id: str, item_code: str) -> List[BomItem]:
    docs = store.query(
        project_id,
        BOM_ITEMS,
        filters=[Filter("item_code", "==", normalize_item_code(item_code))],
    )
    return [BomItem.from_dict(doc) for doc in docs]


def save_bom_items(store: ItemStore, project_id: str, items: Iterable[BomItem]) -> int:
    """
    Write items to the working BOM in bounded batches.

    Each batch commits independently; this is a bulk load, not a snapshot.

    Returns:
        Number of items written
    """
    docs = [(item.id, item.to_dict()) for item in items]
    if not docs:
        return 0
    commits = store.write_all(project_id, BOM_ITEMS, docs)
    logger.info(f"Saved {len(docs)} BOM items for project {project_id} in {commits} commit(s)")
    return len(docs)
