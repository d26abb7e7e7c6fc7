"""
PostgreSQL ItemStore.

Stores every document in one table keyed by (project_id, collection, doc_id)
with the document body in a jsonb column:

    CREATE TABLE bomtrail_documents (
        project_id  text NOT NULL,
        collection  text NOT NULL,
        doc_id      text NOT NULL,
        data        jsonb NOT NULL,
        updated_at  timestamptz NOT NULL DEFAULT now(),
        PRIMARY KEY (project_id, collection, doc_id)
    );

Equality filters use jsonb containment (``data @> {...}``) so a GIN index on
``data`` serves itemCode / groupCode / status lookups. Range filters compare
jsonb values directly, which orders numbers numerically and strings
lexicographically (ISO timestamps sort correctly).

Each WriteBatch is committed in one Postgres transaction on a pooled
connection. The connection string comes from the ``db_url`` argument, then
from settings (BOMTRAIL_DB_URL / DATABASE_URL).
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import psycopg2
from psycopg2.extras import Json, RealDictCursor
from psycopg2.pool import SimpleConnectionPool

from ..config import DEFAULT_MAX_BATCH_SIZE, get_settings
from ..errors import BatchLimitExceeded, DocumentNotFoundError, StoreError, StoreWriteError
from .base import DELETE, SET, UPDATE, Filter, ItemStore, WriteBatch

logger = logging.getLogger(__name__)

TABLE_NAME = "bomtrail_documents"

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
    project_id  text NOT NULL,
    collection  text NOT NULL,
    doc_id      text NOT NULL,
    data        jsonb NOT NULL,
    updated_at  timestamptz NOT NULL DEFAULT now(),
    PRIMARY KEY (project_id, collection, doc_id)
);
CREATE INDEX IF NOT EXISTS {TABLE_NAME}_data_idx ON {TABLE_NAME} USING gin (data jsonb_path_ops);
"""

_RANGE_SQL = {"<": "<", "<=": "<=", ">": ">", ">=": ">="}


def _filter_clause(f: Filter) -> Tuple[str, List[Any]]:
    """Translate a Filter into a SQL fragment and its parameters."""
    if f.op == "==":
        return "data @> %s::jsonb", [Json({f.field: f.value})]
    if f.op == "!=":
        return "(data ? %s AND NOT data @> %s::jsonb)", [f.field, Json({f.field: f.value})]
    if f.op == "in":
        values = list(f.value)
        if not values:
            return "FALSE", []
        clause = " OR ".join(["data @> %s::jsonb"] * len(values))
        return f"({clause})", [Json({f.field: v}) for v in values]

    # Range: only compare values of the same jsonb type
    return (
        f"(jsonb_typeof(data -> %s) = jsonb_typeof(%s::jsonb) "
        f"AND data -> %s {_RANGE_SQL[f.op]} %s::jsonb)",
        [f.field, Json(f.value), f.field, Json(f.value)],
    )


def _order_clause(descending: bool) -> str:
    """ORDER BY fragment for one document field; missing values sort lowest."""
    if descending:
        return "ORDER BY data -> %s DESC NULLS LAST, doc_id DESC"
    return "ORDER BY data -> %s ASC NULLS FIRST, doc_id ASC"


class PostgresItemStore(ItemStore):
    """
    psycopg2-backed document store with a simple connection pool.
    """

    def __init__(
        self,
        db_url: Optional[str] = None,
        max_batch_size: Optional[int] = None,
        minconn: int = 1,
        maxconn: int = 10
    ):
        """
        Args:
            db_url: PostgreSQL connection string. Falls back to settings.
            max_batch_size: Per-commit operation cap. Falls back to settings.
            minconn: Minimum connections in pool
            maxconn: Maximum connections in pool

        Raises:
            ValueError: If no connection string is available
        """
        settings = get_settings()
        self.db_url = db_url or settings.database_url
        if not self.db_url:
            raise ValueError(
                "Missing database connection string. Pass db_url or set "
                "BOMTRAIL_DB_URL (or DATABASE_URL)."
            )
        self.max_batch_size = max_batch_size or settings.max_batch_size or DEFAULT_MAX_BATCH_SIZE
        self.minconn = minconn
        self.maxconn = maxconn
        self._pool = None

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    def _get_connection_pool(self) -> SimpleConnectionPool:
        if self._pool is None:
            self._pool = SimpleConnectionPool(self.minconn, self.maxconn, dsn=self.db_url)
            if not self._pool:
                raise StoreError("Failed to create database connection pool")
        return self._pool

    def _get_connection(self):
        return self._get_connection_pool().getconn()

    def _return_connection(self, conn):
        self._get_connection_pool().putconn(conn)

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None

    def ensure_schema(self) -> None:
        """Create the documents table and index if they do not exist."""
        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            try:
                cursor.execute(SCHEMA_SQL)
                conn.commit()
            finally:
                cursor.close()
        except psycopg2.Error as e:
            conn.rollback()
            raise StoreError(f"Failed to create schema: {e}") from e
        finally:
            self._return_connection(conn)

    def _fetch(self, sql: str, params: List[Any]) -> List[Dict[str, Any]]:
        conn = self._get_connection()
        try:
            cursor = conn.cursor(cursor_factory=RealDictCursor)
            try:
                cursor.execute(sql, params)
                rows = cursor.fetchall()
            finally:
                cursor.close()
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            raise StoreError(f"Query failed: {e}") from e
        finally:
            self._return_connection(conn)

        results = []
        for row in rows:
            doc = dict(row["data"] or {})
            doc["id"] = row["doc_id"]
            results.append(doc)
        return results

    # =========================================================================
    # READS
    # =========================================================================

    def get(
        self,
        project_id: str,
        collection: str,
        doc_id: str
    ) -> Optional[Dict[str, Any]]:
        rows = self._fetch(
            f"""
            SELECT doc_id, data FROM {TABLE_NAME}
            WHERE project_id = %s AND collection = %s AND doc_id = %s
            LIMIT 1
            """,
            [project_id, collection, str(doc_id)],
        )
        return rows[0] if rows else None

    def query(
        self,
        project_id: str,
        collection: str,
        filters: Optional[Iterable[Filter]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        clauses = ["project_id = %s", "collection = %s"]
        params: List[Any] = [project_id, collection]

        for f in filters or []:
            clause, clause_params = _filter_clause(f)
            clauses.append(clause)
            params.extend(clause_params)

        sql = f"SELECT doc_id, data FROM {TABLE_NAME} WHERE " + " AND ".join(clauses)

        if order_by:
            sql += " " + _order_clause(descending)
            params.append(order_by)
        else:
            sql += " ORDER BY doc_id"

        if limit is not None:
            sql += " LIMIT %s"
            params.append(int(limit))

        return self._fetch(sql, params)

    # =========================================================================
    # WRITES
    # =========================================================================

    def commit(self, batch: WriteBatch) -> None:
        if len(batch) > self.max_batch_size:
            raise BatchLimitExceeded(
                f"Batch of {len(batch)} operations exceeds cap of {self.max_batch_size}"
            )
        if not batch.operations:
            return

        project = batch.project_id
        conn = self._get_connection()
        try:
            conn.autocommit = False
            cursor = conn.cursor()
            try:
                for op in batch.operations:
                    data = {k: v for k, v in (op.data or {}).items() if k != "id"}

                    if op.kind == SET:
                        cursor.execute(
                            f"""
                            INSERT INTO {TABLE_NAME} (project_id, collection, doc_id, data, updated_at)
                            VALUES (%s, %s, %s, %s, NOW())
                            ON CONFLICT (project_id, collection, doc_id)
                            DO UPDATE SET data = EXCLUDED.data, updated_at = NOW()
                            """,
                            (project, op.collection, op.doc_id, Json(data)),
                        )
                    elif op.kind == UPDATE:
                        cursor.execute(
                            f"""
                            UPDATE {TABLE_NAME}
                            SET data = data || %s::jsonb, updated_at = NOW()
                            WHERE project_id = %s AND collection = %s AND doc_id = %s
                            """,
                            (Json(data), project, op.collection, op.doc_id),
                        )
                        if cursor.rowcount == 0:
                            raise DocumentNotFoundError(project, op.collection, op.doc_id)
                    elif op.kind == DELETE:
                        cursor.execute(
                            f"""
                            DELETE FROM {TABLE_NAME}
                            WHERE project_id = %s AND collection = %s AND doc_id = %s
                            """,
                            (project, op.collection, op.doc_id),
                        )
            finally:
                cursor.close()
            conn.commit()
        except DocumentNotFoundError:
            conn.rollback()
            raise
        except psycopg2.Error as e:
            conn.rollback()
            logger.error(f"Commit of {len(batch)} operations failed for project {project}", exc_info=True)
            raise StoreWriteError(f"Commit failed: {e}") from e
        finally:
            self._return_connection(conn)
