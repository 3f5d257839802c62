"""SQLite connection management, table layout and transaction helpers."""

from __future__ import annotations

import contextlib
import logging
import random
import sqlite3
import threading
import time
import uuid
from typing import Any, Callable, Iterator, TypeVar

from syncstore.config import SyncStoreConfig
from syncstore.errors import TransientTransactionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Parent/child relations use native ON DELETE CASCADE; deleting a user_collections
# row removes its bsos and batches, and deleting a batch removes its batch_bsos.
SCHEMA = """
CREATE TABLE IF NOT EXISTS collections (
    collection_id  INTEGER PRIMARY KEY,
    name           TEXT NOT NULL CHECK (length(name) BETWEEN 1 AND 32)
);

CREATE UNIQUE INDEX IF NOT EXISTS CollectionName ON collections(name);

CREATE TABLE IF NOT EXISTS user_collections (
    fxa_uid        TEXT NOT NULL,
    fxa_kid        TEXT NOT NULL,
    collection_id  INTEGER NOT NULL REFERENCES collections(collection_id),
    modified       INTEGER NOT NULL,
    count          INTEGER,
    total_bytes    INTEGER,
    PRIMARY KEY (fxa_uid, fxa_kid, collection_id)
);

CREATE TABLE IF NOT EXISTS bsos (
    fxa_uid        TEXT NOT NULL,
    fxa_kid        TEXT NOT NULL,
    collection_id  INTEGER NOT NULL,
    bso_id         TEXT NOT NULL,
    sortindex      INTEGER,
    payload        TEXT NOT NULL,
    modified       INTEGER NOT NULL,
    expiry         INTEGER NOT NULL,
    PRIMARY KEY (fxa_uid, fxa_kid, collection_id, bso_id),
    FOREIGN KEY (fxa_uid, fxa_kid, collection_id)
        REFERENCES user_collections(fxa_uid, fxa_kid, collection_id) ON DELETE CASCADE,
    CHECK (expiry > modified)
);

CREATE INDEX IF NOT EXISTS BsoModified
    ON bsos(fxa_uid, fxa_kid, collection_id, modified DESC);

CREATE INDEX IF NOT EXISTS BsoExpiry ON bsos(expiry);

CREATE TABLE IF NOT EXISTS batches (
    fxa_uid        TEXT NOT NULL,
    fxa_kid        TEXT NOT NULL,
    collection_id  INTEGER NOT NULL,
    batch_id       TEXT NOT NULL,
    expiry         INTEGER NOT NULL,
    PRIMARY KEY (fxa_uid, fxa_kid, collection_id, batch_id),
    FOREIGN KEY (fxa_uid, fxa_kid, collection_id)
        REFERENCES user_collections(fxa_uid, fxa_kid, collection_id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS BatchExpireId ON batches(expiry);

CREATE TABLE IF NOT EXISTS batch_bsos (
    fxa_uid        TEXT NOT NULL,
    fxa_kid        TEXT NOT NULL,
    collection_id  INTEGER NOT NULL,
    batch_id       TEXT NOT NULL,
    batch_bso_id   TEXT NOT NULL,
    sortindex      INTEGER,
    payload        TEXT,
    ttl            INTEGER,
    PRIMARY KEY (fxa_uid, fxa_kid, collection_id, batch_id, batch_bso_id),
    FOREIGN KEY (fxa_uid, fxa_kid, collection_id, batch_id)
        REFERENCES batches(fxa_uid, fxa_kid, collection_id, batch_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS storage_meta (
    key    TEXT PRIMARY KEY,
    value  TEXT NOT NULL
);
"""

TABLES = ("collections", "user_collections", "bsos", "batches", "batch_bsos")


def is_transient(exc: sqlite3.OperationalError) -> bool:
    """True for lock/busy contention that is worth retrying."""
    msg = str(exc).lower()
    return "locked" in msg or "busy" in msg


class Database:
    """Per-thread SQLite connections over one database file.

    Every logical operation runs in its own ``BEGIN IMMEDIATE`` transaction, so
    writers are serialized by the engine and readers never see partial writes.
    """

    def __init__(self, db_path: str, config: SyncStoreConfig | None = None) -> None:
        self.db_path = db_path
        self.config = config or SyncStoreConfig()
        if db_path == ":memory:":
            # Threads must share one in-memory database, so use a named shared cache.
            self._uri = f"file:syncstore-{uuid.uuid4().hex}?mode=memory&cache=shared"
        else:
            self._uri = None
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._conn_lock = threading.Lock()
        self._closed = False
        # Keeps a shared in-memory database alive for the lifetime of this object.
        self._anchor = self.connection()
        self._create_tables()

    def _connect(self) -> sqlite3.Connection:
        timeout = self.config.busy_timeout_ms / 1000.0
        if self._uri is not None:
            conn = sqlite3.connect(
                self._uri, uri=True, timeout=timeout, isolation_level=None, check_same_thread=False
            )
        else:
            conn = sqlite3.connect(
                self.db_path, timeout=timeout, isolation_level=None, check_same_thread=False
            )
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def connection(self) -> sqlite3.Connection:
        """Return this thread's connection, opening it on first use."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            if self._closed:
                raise sqlite3.ProgrammingError("Cannot operate on a closed database.")
            conn = self._connect()
            self._local.conn = conn
            with self._conn_lock:
                self._connections.append(conn)
        return conn

    def _create_tables(self) -> None:
        conn = self.connection()
        conn.executescript(SCHEMA)
        conn.execute(
            "INSERT OR REPLACE INTO storage_meta (key, value) VALUES ('schema_version', '1')"
        )

    def close(self) -> None:
        self._closed = True
        with self._conn_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()

    # --- Transaction helpers ---

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed block in one immediate (write-locking) transaction."""
        conn = self.connection()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.commit()
        except BaseException:
            if conn.in_transaction:
                conn.rollback()
            raise

    def run_in_transaction(self, func: Callable[[sqlite3.Connection], T]) -> T:
        """Call ``func`` inside a transaction, retrying on engine contention.

        ``func`` must be safe to re-run: any failed attempt is fully rolled back.
        """
        attempts = max(1, self.config.max_transaction_attempts)
        base = self.config.retry_backoff_base_ms / 1000.0
        for attempt in range(1, attempts + 1):
            try:
                with self.transaction() as conn:
                    return func(conn)
            except sqlite3.OperationalError as e:
                if not is_transient(e):
                    raise
                if attempt >= attempts:
                    raise TransientTransactionError(attempts, str(e)) from e
                delay = base * (2 ** (attempt - 1)) + random.uniform(0, base)
                logger.warning(
                    "Transaction contention (%s); retry %d/%d in %.3fs",
                    e,
                    attempt,
                    attempts - 1,
                    delay,
                )
                time.sleep(delay)
        raise AssertionError("unreachable")

    def read(self, sql: str, params: tuple[Any, ...] | list[Any] = ()) -> list[tuple[Any, ...]]:
        """Run a read-only query outside an explicit transaction."""
        return self.connection().execute(sql, params).fetchall()

    def table_counts(self) -> dict[str, int]:
        return {
            table: int(self.read(f"SELECT COUNT(*) FROM {table}")[0][0]) for table in TABLES
        }
