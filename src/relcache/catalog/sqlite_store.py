"""SQLite-backed document store with a patch audit trail.

SqliteDocumentStore implements the DocumentStore protocol using stdlib
sqlite3. Each commit runs inside a single ``BEGIN IMMEDIATE`` transaction,
so either every patch of a batch lands or none does. Every applied patch is
also recorded in the ``patch_log`` table for inspection.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, cast

from relcache.catalog.errors import CommitError, QueryLimitError
from relcache.catalog.patches import apply_patch, encode_fields
from relcache.catalog.store import (
    DEFAULT_IN_QUERY_LIMIT,
    DEFAULT_MAX_BATCH_OPERATIONS,
    SubscriptionRegistry,
    check_patch_preconditions,
    server_now,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from datetime import datetime

    from relcache.catalog.patches import Patch
    from relcache.catalog.store import Document

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    doc_id     TEXT NOT NULL,
    data       JSON NOT NULL,
    PRIMARY KEY (collection, doc_id)
);

CREATE TABLE IF NOT EXISTS patch_log (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    committed_at TEXT NOT NULL,
    collection   TEXT NOT NULL,
    doc_id       TEXT NOT NULL,
    kind         TEXT NOT NULL,
    reason       TEXT NOT NULL DEFAULT '',
    fields       JSON
);
CREATE INDEX IF NOT EXISTS idx_patch_log_target ON patch_log(collection, doc_id);
"""


class SqliteDocumentStore(SubscriptionRegistry):
    """SQLite-backed document store.

    The connection is shared between threads (chunked reads run in worker
    threads) and serialized with a lock.
    """

    def __init__(
        self,
        db_path: str | Path = ":memory:",
        *,
        in_query_limit: int = DEFAULT_IN_QUERY_LIMIT,
        max_batch_operations: int = DEFAULT_MAX_BATCH_OPERATIONS,
        clock: Callable[[], datetime] = server_now,
    ) -> None:
        """Open or create a SQLite document database.

        Args:
            db_path: Path to ``.db`` file, or ``":memory:"`` for in-memory.
            in_query_limit: Maximum ids per :meth:`get_many` call.
            max_batch_operations: Maximum patches per commit.
            clock: Server clock used to stamp commits.
        """
        super().__init__()
        self._db_path = str(db_path) if isinstance(db_path, Path) else db_path
        self._conn = sqlite3.connect(
            self._db_path,
            isolation_level=None,  # explicit BEGIN IMMEDIATE per commit
            check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.executescript(_SCHEMA)
        self._lock = threading.RLock()

        self.in_query_limit = in_query_limit
        self.max_batch_operations = max_batch_operations
        self._clock = clock

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    # -- Reads -----------------------------------------------------------------

    def get(self, collection: str, doc_id: str) -> Document | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, doc_id),
            ).fetchone()
        if row is None:
            return None
        return cast("Document", json.loads(row["data"]))

    def get_many(self, collection: str, doc_ids: Sequence[str]) -> dict[str, Document]:
        if len(doc_ids) > self.in_query_limit:
            raise QueryLimitError(requested=len(doc_ids), limit=self.in_query_limit)
        if not doc_ids:
            return {}
        placeholders = ", ".join("?" for _ in doc_ids)
        with self._lock:
            rows = self._conn.execute(
                f"SELECT doc_id, data FROM documents "
                f"WHERE collection = ? AND doc_id IN ({placeholders})",
                (collection, *doc_ids),
            ).fetchall()
        return {row["doc_id"]: json.loads(row["data"]) for row in rows}

    def get_all(self, collection: str) -> dict[str, Document]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT doc_id, data FROM documents WHERE collection = ? ORDER BY doc_id",
                (collection,),
            ).fetchall()
        return {row["doc_id"]: json.loads(row["data"]) for row in rows}

    # -- Writes ----------------------------------------------------------------

    def commit(self, patches: Sequence[Patch]) -> datetime:
        committed_at = self._clock()
        now = committed_at.isoformat()

        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                staged: dict[tuple[str, str], Document] = {}
                for patch in patches:
                    key = patch.target
                    current = staged[key] if key in staged else self._read_locked(*key)
                    check_patch_preconditions(patch, current)
                    staged[key] = apply_patch(current, patch, now)
                    self._conn.execute(
                        "INSERT INTO patch_log "
                        "(committed_at, collection, doc_id, kind, reason, fields) "
                        "VALUES (?, ?, ?, ?, ?, ?)",
                        (
                            now,
                            patch.collection,
                            patch.doc_id,
                            patch.kind.value,
                            patch.reason.value,
                            json.dumps(encode_fields(patch.fields)),
                        ),
                    )

                self._conn.executemany(
                    "INSERT OR REPLACE INTO documents (collection, doc_id, data) VALUES (?, ?, ?)",
                    [(c, d, json.dumps(doc)) for (c, d), doc in staged.items()],
                )
                self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._conn.execute("ROLLBACK")
                raise CommitError(f"SQLite commit failed: {e}") from e
            except Exception:
                self._conn.execute("ROLLBACK")
                raise

        self._publish(staged, self.get)
        return committed_at

    def _read_locked(self, collection: str, doc_id: str) -> Document | None:
        row = self._conn.execute(
            "SELECT data FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, doc_id),
        ).fetchone()
        return json.loads(row["data"]) if row is not None else None

    # -- Subscriptions ---------------------------------------------------------

    def subscribe(
        self,
        collection: str,
        doc_id: str,
        listener: Callable[[Document | None], None],
    ) -> Callable[[], None]:
        unsubscribe = self._add_listener(collection, doc_id, listener)
        listener(self.get(collection, doc_id))
        return unsubscribe

    # -- Audit trail -----------------------------------------------------------

    def query_patch_log(
        self,
        *,
        collection: str | None = None,
        doc_id: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Return recorded patches, most recent first.

        Args:
            collection: Filter by collection.
            doc_id: Filter by document id.
            limit: Maximum number of results.
        """
        clauses: list[str] = []
        params: list[Any] = []
        if collection is not None:
            clauses.append("collection = ?")
            params.append(collection)
        if doc_id is not None:
            clauses.append("doc_id = ?")
            params.append(doc_id)

        # WHERE clause is built from hardcoded column names; values are parameterized.
        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        params.append(limit)
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, committed_at, collection, doc_id, kind, reason, fields "
                f"FROM patch_log{where} ORDER BY id DESC LIMIT ?",
                params,
            ).fetchall()

        results: list[dict[str, Any]] = []
        for row in rows:
            entry = dict(row)
            entry["fields"] = json.loads(entry["fields"]) if entry["fields"] else {}
            results.append(entry)
        return results
