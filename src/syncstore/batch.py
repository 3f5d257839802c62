"""Batch uploads: stage items under a batch id, then apply them atomically."""

from __future__ import annotations

import logging
import sqlite3
import uuid
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from syncstore import metadata
from syncstore.errors import (
    BatchCommitFailedError,
    BatchExpiredError,
    BatchNotFoundError,
    SyncStoreError,
    ValidationError,
)
from syncstore.db import is_transient
from syncstore.types import Batch, BatchBso, BatchItem, CommitResult, Tenant, parse_item

if TYPE_CHECKING:
    from syncstore.storage import SyncStorage

logger = logging.getLogger(__name__)


class BatchEngine:
    """Open -> (append)* -> commit | abort, with expiry enforced on every step.

    Staged rows live in ``batch_bsos`` and never touch ``bsos`` until commit, which
    copies them over in one transaction under a single shared timestamp.
    """

    def __init__(self, storage: SyncStorage) -> None:
        self._storage = storage

    def _batch_row(
        self, conn: sqlite3.Connection, tenant: Tenant, collection_id: int, batch_id: str
    ) -> Batch:
        row = conn.execute(
            "SELECT expiry FROM batches "
            "WHERE fxa_uid = ? AND fxa_kid = ? AND collection_id = ? AND batch_id = ?",
            (tenant.fxa_uid, tenant.fxa_kid, collection_id, batch_id),
        ).fetchone()
        if row is None:
            raise BatchNotFoundError(batch_id)
        return Batch(tenant=tenant, collection_id=collection_id, batch_id=batch_id, expiry=int(row[0]))

    def _open_batch(
        self, conn: sqlite3.Connection, tenant: Tenant, collection_id: int, batch_id: str, now_ms: int
    ) -> Batch:
        batch = self._batch_row(conn, tenant, collection_id, batch_id)
        if now_ms >= batch.expiry:
            raise BatchExpiredError(batch_id, batch.expiry)
        return batch

    def _collection_id(self, collection: str, batch_id: str) -> int:
        try:
            return self._storage.registry.resolve(collection)
        except SyncStoreError:
            raise BatchNotFoundError(batch_id)

    def open(self, tenant: Tenant, collection: str, ttl: int | None = None) -> str:
        """Start a batch; returns its id. ``ttl`` is in seconds."""
        ttl = self._storage.config.batch_ttl_seconds if ttl is None else ttl
        if ttl <= 0:
            raise ValidationError("Batch ttl must be positive")
        collection_id = self._storage.registry.ensure(collection)
        batch_id = uuid.uuid4().hex

        def _create(conn: sqlite3.Connection) -> None:
            now_ms = self._storage.now_ms()
            # Batches hang off the user collection, so make sure it exists.
            conn.execute(
                "INSERT OR IGNORE INTO user_collections "
                "(fxa_uid, fxa_kid, collection_id, modified, count, total_bytes) "
                "VALUES (?, ?, ?, ?, 0, 0)",
                (tenant.fxa_uid, tenant.fxa_kid, collection_id, now_ms),
            )
            conn.execute(
                "INSERT INTO batches (fxa_uid, fxa_kid, collection_id, batch_id, expiry) "
                "VALUES (?, ?, ?, ?, ?)",
                (tenant.fxa_uid, tenant.fxa_kid, collection_id, batch_id, now_ms + ttl * 1000),
            )

        self._storage.db.run_in_transaction(_create)
        logger.debug("Opened batch %s for %s/%s (ttl %ds)", batch_id, tenant, collection, ttl)
        return batch_id

    def get(self, tenant: Tenant, collection: str, batch_id: str) -> Batch:
        """Return an open batch; expired batches raise BatchExpiredError."""
        collection_id = self._collection_id(collection, batch_id)
        return self._open_batch(
            self._storage.db.connection(), tenant, collection_id, batch_id, self._storage.now_ms()
        )

    def append(
        self,
        tenant: Tenant,
        collection: str,
        batch_id: str,
        items: Iterable[BatchItem | Mapping[str, Any]],
    ) -> int:
        """Stage items in an open batch; returns the number of items staged.

        Fields given again for an already-staged id replace the staged values;
        fields left out keep them.
        """
        config = self._storage.config
        parsed = [parse_item(item) for item in items]
        if len(parsed) > config.max_post_records:
            raise ValidationError(f"At most {config.max_post_records} records may be posted at once")
        for item in parsed:
            self._storage.check_payload(item.payload)
        collection_id = self._collection_id(collection, batch_id)

        def _append(conn: sqlite3.Connection) -> int:
            self._open_batch(conn, tenant, collection_id, batch_id, self._storage.now_ms())
            staged = conn.execute(
                "SELECT COUNT(*) FROM batch_bsos "
                "WHERE fxa_uid = ? AND fxa_kid = ? AND collection_id = ? AND batch_id = ?",
                (tenant.fxa_uid, tenant.fxa_kid, collection_id, batch_id),
            ).fetchone()[0]
            new_ids = {item.id for item in parsed}
            if new_ids:
                marks = ", ".join("?" for _ in new_ids)
                already = conn.execute(
                    "SELECT COUNT(*) FROM batch_bsos "
                    "WHERE fxa_uid = ? AND fxa_kid = ? AND collection_id = ? AND batch_id = ? "
                    f"AND batch_bso_id IN ({marks})",
                    (tenant.fxa_uid, tenant.fxa_kid, collection_id, batch_id, *new_ids),
                ).fetchone()[0]
                if staged + len(new_ids) - already > config.max_batch_records:
                    raise ValidationError(
                        f"Batch may hold at most {config.max_batch_records} records"
                    )
            for item in parsed:
                conn.execute(
                    "INSERT INTO batch_bsos "
                    "(fxa_uid, fxa_kid, collection_id, batch_id, batch_bso_id, sortindex, payload, ttl) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
                    "ON CONFLICT(fxa_uid, fxa_kid, collection_id, batch_id, batch_bso_id) "
                    "DO UPDATE SET "
                    "sortindex = COALESCE(excluded.sortindex, batch_bsos.sortindex), "
                    "payload = COALESCE(excluded.payload, batch_bsos.payload), "
                    "ttl = COALESCE(excluded.ttl, batch_bsos.ttl)",
                    (
                        tenant.fxa_uid,
                        tenant.fxa_kid,
                        collection_id,
                        batch_id,
                        item.id,
                        item.sortindex,
                        item.payload,
                        item.ttl,
                    ),
                )
            return len(parsed)

        count = self._storage.db.run_in_transaction(_append)
        logger.debug("Appended %d item(s) to batch %s", count, batch_id)
        return count

    def staged_items(self, tenant: Tenant, collection: str, batch_id: str) -> list[BatchBso]:
        collection_id = self._collection_id(collection, batch_id)
        conn = self._storage.db.connection()
        self._batch_row(conn, tenant, collection_id, batch_id)
        return _load_staged(conn, tenant, collection_id, batch_id)

    def commit(self, tenant: Tenant, collection: str, batch_id: str) -> CommitResult:
        """Apply every staged item as a BSO write and close the batch.

        Either all staged items become BSOs sharing one ``modified`` timestamp
        and the batch disappears, or nothing changes at all.
        """
        collection_id = self._collection_id(collection, batch_id)

        def _commit(conn: sqlite3.Connection) -> CommitResult:
            now_ms = self._storage.now_ms()
            self._open_batch(conn, tenant, collection_id, batch_id, now_ms)
            staged = _load_staged(conn, tenant, collection_id, batch_id)
            pairs = [(item.id, _staged_fields(item)) for item in staged]
            try:
                if pairs:
                    ts = self._storage.write_items(
                        conn, tenant, collection, collection_id, pairs, now_ms
                    )
                else:
                    ts = metadata.lock_for_write(conn, tenant, collection_id, now_ms).timestamp
                    metadata.apply_delta(
                        conn, tenant, collection_id, count_delta=0, bytes_delta=0, modified=ts
                    )
                conn.execute(
                    "DELETE FROM batches "
                    "WHERE fxa_uid = ? AND fxa_kid = ? AND collection_id = ? AND batch_id = ?",
                    (tenant.fxa_uid, tenant.fxa_kid, collection_id, batch_id),
                )
            except sqlite3.OperationalError as e:
                # Lock contention goes back to run_in_transaction for a retry.
                if is_transient(e):
                    raise
                raise BatchCommitFailedError(batch_id, str(e)) from e
            except Exception as e:
                raise BatchCommitFailedError(batch_id, str(e)) from e
            return CommitResult(committed_count=len(pairs), modified=ts)

        result = self._storage.db.run_in_transaction(_commit)
        logger.debug(
            "Committed batch %s: %d item(s) at %d", batch_id, result.committed_count, result.modified
        )
        return result

    def abort(self, tenant: Tenant, collection: str, batch_id: str) -> bool:
        """Discard a batch without applying it; False if it did not exist."""
        try:
            collection_id = self._storage.registry.resolve(collection)
        except SyncStoreError:
            return False

        def _abort(conn: sqlite3.Connection) -> int:
            return conn.execute(
                "DELETE FROM batches "
                "WHERE fxa_uid = ? AND fxa_kid = ? AND collection_id = ? AND batch_id = ?",
                (tenant.fxa_uid, tenant.fxa_kid, collection_id, batch_id),
            ).rowcount

        removed = self._storage.db.run_in_transaction(_abort)
        if removed:
            logger.debug("Aborted batch %s", batch_id)
        return bool(removed)


def _load_staged(
    conn: sqlite3.Connection, tenant: Tenant, collection_id: int, batch_id: str
) -> list[BatchBso]:
    rows = conn.execute(
        "SELECT batch_bso_id, sortindex, payload, ttl FROM batch_bsos "
        "WHERE fxa_uid = ? AND fxa_kid = ? AND collection_id = ? AND batch_id = ? "
        "ORDER BY batch_bso_id",
        (tenant.fxa_uid, tenant.fxa_kid, collection_id, batch_id),
    ).fetchall()
    return [BatchBso(id=str(r[0]), sortindex=r[1], payload=r[2], ttl=r[3]) for r in rows]


def _staged_fields(item: BatchBso) -> dict[str, Any]:
    """Null staged columns mean "not supplied", so they are left out."""
    out: dict[str, Any] = {}
    if item.sortindex is not None:
        out["sortindex"] = item.sortindex
    if item.payload is not None:
        out["payload"] = item.payload
    if item.ttl is not None:
        out["ttl"] = item.ttl
    return out
