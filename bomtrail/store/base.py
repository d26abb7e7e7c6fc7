"""
Item Store contract.

The engine talks to storage only through this interface: keyed JSON-like
documents addressed by (project_id, collection, doc_id), point reads, simple
equality/range queries, and write batches that commit atomically.

Key properties every implementation must honour:
- A WriteBatch holds at most ``max_batch_size`` operations
- A single commit is atomic: all operations apply or none do
- There are no transactions spanning several commits
- Documents returned by reads carry their key under "id"

Collections are plain strings. Nested collections use path syntax, e.g.
``versions/<version_id>/items``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from ..config import DEFAULT_MAX_BATCH_SIZE
from ..errors import BatchLimitExceeded

# Project id used for records shared by every project (running changes,
# spec mappings)
GLOBAL_PROJECT = "_global"

BOM_ITEMS = "bom_items"
VERSIONS = "versions"
RUNNING_CHANGES = "running_changes"
ACTIVITIES = "activities"
SPEC_MAPPINGS = "spec_mappings"


def version_items_collection(version_id: str) -> str:
    return f"{VERSIONS}/{version_id}/items"


# =============================================================================
# QUERIES
# =============================================================================

FILTER_OPS = ("==", "!=", "<", "<=", ">", ">=", "in")


@dataclass(frozen=True)
class Filter:
    """
    A single query predicate on a top-level document field.

    Range operators compare values of the same type only; documents whose
    field is missing never match.
    """
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in FILTER_OPS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, doc: Dict[str, Any]) -> bool:
        if self.field not in doc:
            return False
        actual = doc[self.field]

        if self.op == "==":
            return actual == self.value
        if self.op == "!=":
            return actual != self.value
        if self.op == "in":
            return actual in self.value

        if actual is None or self.value is None:
            return False
        try:
            if self.op == "<":
                return actual < self.value
            if self.op == "<=":
                return actual <= self.value
            if self.op == ">":
                return actual > self.value
            return actual >= self.value
        except TypeError:
            return False


# =============================================================================
# WRITE BATCHES
# =============================================================================

SET = "set"
UPDATE = "update"
DELETE = "delete"


@dataclass
class WriteOperation:
    kind: str
    collection: str
    doc_id: str
    data: Optional[Dict[str, Any]] = None


@dataclass
class WriteBatch:
    """
    Operations committed together, atomically, against one project.

    Adding an operation past the cap raises BatchLimitExceeded instead of
    silently splitting; callers that write more than the cap use ``chunked``
    and commit several batches.
    """
    project_id: str
    max_size: int = DEFAULT_MAX_BATCH_SIZE
    operations: List[WriteOperation] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.operations)

    def _add(self, operation: WriteOperation) -> "WriteBatch":
        if len(self.operations) >= self.max_size:
            raise BatchLimitExceeded(
                f"Write batch for project {self.project_id} exceeds "
                f"{self.max_size} operations"
            )
        self.operations.append(operation)
        return self

    def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> "WriteBatch":
        """Create or fully overwrite a document."""
        return self._add(WriteOperation(SET, collection, str(doc_id), dict(data)))

    def update(self, collection: str, doc_id: str, changes: Dict[str, Any]) -> "WriteBatch":
        """Merge top-level fields into an existing document."""
        return self._add(WriteOperation(UPDATE, collection, str(doc_id), dict(changes)))

    def delete(self, collection: str, doc_id: str) -> "WriteBatch":
        return self._add(WriteOperation(DELETE, collection, str(doc_id)))


def chunked(values: List[Any], size: int) -> Iterator[List[Any]]:
    """Split values into consecutive lists of at most ``size`` entries."""
    if size < 1:
        raise ValueError("Chunk size must be at least 1")
    for start in range(0, len(values), size):
        yield values[start:start + size]


# =============================================================================
# STORE INTERFACE
# =============================================================================

class ItemStore:
    """
    Abstract document store.

    Implement ``get``, ``query`` and ``commit``; the single-document write
    helpers are built on ``commit``.
    """

    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE

    def get(
        self,
        project_id: str,
        collection: str,
        doc_id: str
    ) -> Optional[Dict[str, Any]]:
        """
        Point read.

        Returns:
            The document with its key under "id", or None if it does not exist
        """
        raise NotImplementedError

    def query(
        self,
        project_id: str,
        collection: str,
        filters: Optional[Iterable[Filter]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Return documents of a collection matching every filter.

        Args:
            project_id: Owning project
            collection: Collection path
            filters: Predicates combined with AND
            order_by: Optional top-level field to sort on
            descending: Sort direction for order_by
            limit: Maximum number of documents to return

        Returns:
            List of documents, each carrying its key under "id"
        """
        raise NotImplementedError

    def commit(self, batch: WriteBatch) -> None:
        """
        Apply every operation of the batch atomically.

        Raises:
            BatchLimitExceeded: If the batch is larger than max_batch_size
            DocumentNotFoundError: If an update targets a missing document
            StoreWriteError: If the backend rejects the commit
        """
        raise NotImplementedError

    def batch(self, project_id: str) -> WriteBatch:
        return WriteBatch(project_id=project_id, max_size=self.max_batch_size)

    def set(self, project_id: str, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        self.commit(self.batch(project_id).set(collection, doc_id, data))

    def update(self, project_id: str, collection: str, doc_id: str, changes: Dict[str, Any]) -> None:
        self.commit(self.batch(project_id).update(collection, doc_id, changes))

    def delete(self, project_id: str, collection: str, doc_id: str) -> None:
        self.commit(self.batch(project_id).delete(collection, doc_id))

    def write_all(
        self,
        project_id: str,
        collection: str,
        docs: List[Tuple[str, Dict[str, Any]]]
    ) -> int:
        """
        Set many documents using as many sequential commits as needed.

        Commits are independent: a failure leaves earlier chunks written.

        Returns:
            Number of commits performed
        """
        commits = 0
        for chunk in chunked(docs, self.max_batch_size):
            batch = self.batch(project_id)
            for doc_id, data in chunk:
                batch.set(collection, doc_id, data)
            self.commit(batch)
            commits += 1
        return commits
