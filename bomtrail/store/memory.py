"""
In-process ItemStore.

Holds documents in nested dicts. Used by tests and by callers that analyse
BOM data already loaded in memory. Commits validate every operation before
applying any of them, so a rejected commit leaves the store untouched.
"""

import copy
import logging
from typing import Any, Dict, Iterable, List, Optional

from ..config import DEFAULT_MAX_BATCH_SIZE
from ..errors import BatchLimitExceeded, DocumentNotFoundError
from .base import DELETE, SET, UPDATE, Filter, ItemStore, WriteBatch

logger = logging.getLogger(__name__)


def _sort_key(value: Any):
    # None sorts first, then values grouped by type name so mixed types never
    # raise during ordering
    if value is None:
        return (0, "", 0)
    if isinstance(value, bool):
        return (1, "bool", value)
    if isinstance(value, (int, float)):
        return (1, "number", value)
    return (1, type(value).__name__, value)


class MemoryItemStore(ItemStore):
    """
    Dict-backed store: {project_id: {collection: {doc_id: data}}}.

    Reads return deep copies so callers cannot mutate stored state.
    """

    def __init__(self, max_batch_size: int = DEFAULT_MAX_BATCH_SIZE):
        self.max_batch_size = max_batch_size
        self._data: Dict[str, Dict[str, Dict[str, Dict[str, Any]]]] = {}
        self.commit_count = 0

    def _collection(self, project_id: str, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._data.get(project_id, {}).get(collection, {})

    def get(
        self,
        project_id: str,
        collection: str,
        doc_id: str
    ) -> Optional[Dict[str, Any]]:
        doc = self._collection(project_id, collection).get(str(doc_id))
        if doc is None:
            return None
        result = copy.deepcopy(doc)
        result["id"] = str(doc_id)
        return result

    def query(
        self,
        project_id: str,
        collection: str,
        filters: Optional[Iterable[Filter]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        filters = list(filters or [])
        results = []
        for doc_id, doc in self._collection(project_id, collection).items():
            candidate = dict(doc)
            candidate["id"] = doc_id
            if all(f.matches(candidate) for f in filters):
                results.append(copy.deepcopy(candidate))

        if order_by:
            results.sort(key=lambda d: _sort_key(d.get(order_by)), reverse=descending)
        if limit is not None:
            results = results[:limit]
        return results

    def commit(self, batch: WriteBatch) -> None:
        if len(batch) > self.max_batch_size:
            raise BatchLimitExceeded(
                f"Batch of {len(batch)} operations exceeds cap of {self.max_batch_size}"
            )

        project = batch.project_id

        # Validate against the state the batch itself produces, then apply
        exists = {}
        for op in batch.operations:
            key = (op.collection, op.doc_id)
            present = exists.get(key, op.doc_id in self._collection(project, op.collection))
            if op.kind == UPDATE and not present:
                raise DocumentNotFoundError(project, op.collection, op.doc_id)
            exists[key] = op.kind != DELETE

        project_data = self._data.setdefault(project, {})
        for op in batch.operations:
            docs = project_data.setdefault(op.collection, {})
            if op.kind == SET:
                data = copy.deepcopy(op.data)
                data.pop("id", None)
                docs[op.doc_id] = data
            elif op.kind == UPDATE:
                changes = copy.deepcopy(op.data)
                changes.pop("id", None)
                docs[op.doc_id].update(changes)
            elif op.kind == DELETE:
                docs.pop(op.doc_id, None)

        self.commit_count += 1
        logger.debug(f"Committed {len(batch)} operations for project {project}")

    def count(self, project_id: str, collection: str) -> int:
        return len(self._collection(project_id, collection))

    def collections(self, project_id: str) -> List[str]:
        """Names of the non-empty collections of a project."""
        return sorted(name for name, docs in self._data.get(project_id, {}).items() if docs)
