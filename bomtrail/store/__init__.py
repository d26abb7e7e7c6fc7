"""Item Store contract and implementations."""

from .base import (
    ACTIVITIES,
    BOM_ITEMS,
    GLOBAL_PROJECT,
    RUNNING_CHANGES,
    SPEC_MAPPINGS,
    VERSIONS,
    Filter,
    ItemStore,
    WriteBatch,
    WriteOperation,
    chunked,
    version_items_collection,
)
from .memory import MemoryItemStore
from .postgres import PostgresItemStore

__all__ = [
    "ItemStore",
    "WriteBatch",
    "WriteOperation",
    "Filter",
    "chunked",
    "version_items_collection",
    "MemoryItemStore",
    "PostgresItemStore",
    "GLOBAL_PROJECT",
    "BOM_ITEMS",
    "VERSIONS",
    "RUNNING_CHANGES",
    "ACTIVITIES",
    "SPEC_MAPPINGS",
]
