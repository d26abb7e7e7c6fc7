"""
Exception taxonomy for bomtrail.

Validation problems subclass ValueError and store problems subclass
RuntimeError, so callers that only know the builtin types still catch them.

- Validation errors are raised synchronously and leave no partial state.
- SnapshotWriteError means "no version created, retry the whole snapshot".
- Audit sink failures and data-integrity warnings are never raised; they are
  logged or carried on result objects.
"""


class BomTrailError(Exception):
    """Base class for all bomtrail errors."""


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class VersionNotFoundError(BomTrailError, ValueError):
    """A requested version does not exist (or has no readable header)."""

    def __init__(self, version_id: str, project_id: str = None):
        self.version_id = version_id
        self.project_id = project_id
        where = f" in project {project_id}" if project_id else ""
        super().__init__(f"Version {version_id} not found{where}")


class IdenticalVersionsError(BomTrailError, ValueError):
    """Base and compare resolve to the same version."""


class EmptyBomError(BomTrailError, ValueError):
    """A snapshot was requested for a project with no BOM items."""


class MissingItemCodeError(BomTrailError, ValueError):
    """BOM lines without an item code cannot be versioned or diffed."""

    def __init__(self, project_id: str, item_ids):
        self.project_id = project_id
        self.item_ids = list(item_ids)
        super().__init__(
            f"{len(self.item_ids)} BOM lines in project {project_id} have no item code: "
            f"{', '.join(self.item_ids[:5])}"
        )


class RunningChangeFormatError(BomTrailError, ValueError):
    """A running change record cannot be interpreted."""


class StaleReplacementError(BomTrailError, ValueError):
    """A replacement names a code the BOM line no longer carries."""

    def __init__(self, bom_item_id: str, expected_code: str, actual_code: str):
        self.bom_item_id = bom_item_id
        self.expected_code = expected_code
        self.actual_code = actual_code
        super().__init__(
            f"Item {bom_item_id} now carries {actual_code}, not {expected_code}; "
            f"reload the affected items"
        )


# =============================================================================
# STORE ERRORS
# =============================================================================

class StoreError(BomTrailError, RuntimeError):
    """Base class for item store failures."""


class DocumentNotFoundError(StoreError):
    """An update targeted a document that does not exist."""

    def __init__(self, project_id: str, collection: str, doc_id: str):
        self.project_id = project_id
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Document {collection}/{doc_id} not found in project {project_id}")


class BatchLimitExceeded(StoreError):
    """A write batch grew past the store's per-commit operation cap."""


class StoreWriteError(StoreError):
    """The store rejected a commit."""


class SnapshotWriteError(StoreError):
    """
    A multi-commit snapshot failed partway.

    The version header was never written, so no version exists and the
    version number was not consumed. Retry the whole snapshot.
    """
