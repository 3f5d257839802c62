"""Background removal of expired BSOs and abandoned batches."""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

from syncstore import metadata
from syncstore.types import Tenant

if TYPE_CHECKING:
    from syncstore.storage import SyncStorage

logger = logging.getLogger(__name__)


@dataclass
class ReapResult:
    bsos_deleted: int = 0
    batches_deleted: int = 0
    collections_recomputed: int = 0
    chunks: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "bsos_deleted": self.bsos_deleted,
            "batches_deleted": self.batches_deleted,
            "collections_recomputed": self.collections_recomputed,
            "chunks": self.chunks,
        }


class ExpiryReaper:
    """Deletes rows whose expiry has passed, one bounded chunk per transaction.

    Only rows already past their expiry are touched, and a concurrent write to an
    expired id replaces it with a fresh row, so running alongside live traffic
    is safe. A pass that finds nothing does nothing.
    """

    def __init__(self, storage: SyncStorage) -> None:
        self._storage = storage

    def _reap_bso_chunk(self, conn: sqlite3.Connection, now_ms: int, limit: int) -> tuple[int, int]:
        rows = conn.execute(
            "SELECT fxa_uid, fxa_kid, collection_id, bso_id FROM bsos INDEXED BY BsoExpiry "
            "WHERE expiry <= ? ORDER BY expiry LIMIT ?",
            (now_ms, limit),
        ).fetchall()
        affected: set[tuple[str, str, int]] = set()
        for fxa_uid, fxa_kid, collection_id, bso_id in rows:
            conn.execute(
                "DELETE FROM bsos WHERE fxa_uid = ? AND fxa_kid = ? AND collection_id = ? "
                "AND bso_id = ? AND expiry <= ?",
                (fxa_uid, fxa_kid, collection_id, bso_id, now_ms),
            )
            affected.add((fxa_uid, fxa_kid, int(collection_id)))
        for fxa_uid, fxa_kid, collection_id in affected:
            metadata.recompute(conn, Tenant(fxa_uid, fxa_kid), collection_id)
        return len(rows), len(affected)

    def _reap_batch_chunk(self, conn: sqlite3.Connection, now_ms: int, limit: int) -> int:
        rows = conn.execute(
            "SELECT fxa_uid, fxa_kid, collection_id, batch_id FROM batches INDEXED BY BatchExpireId "
            "WHERE expiry <= ? ORDER BY expiry LIMIT ?",
            (now_ms, limit),
        ).fetchall()
        for row in rows:
            conn.execute(
                "DELETE FROM batches WHERE fxa_uid = ? AND fxa_kid = ? AND collection_id = ? "
                "AND batch_id = ?",
                row,
            )
        return len(rows)

    def run_pass(self, max_chunks: int | None = None) -> ReapResult:
        """Sweep expired BSOs, then expired batches.

        ``max_chunks`` caps the number of transactions per table for one pass.
        """
        storage = self._storage
        limit = max(1, storage.config.reaper_chunk_size)
        now_ms = storage.now_ms()
        result = ReapResult()

        chunks = 0
        while max_chunks is None or chunks < max_chunks:
            deleted, recomputed = storage.db.run_in_transaction(
                lambda conn: self._reap_bso_chunk(conn, now_ms, limit)
            )
            chunks += 1
            result.bsos_deleted += deleted
            result.collections_recomputed += recomputed
            if deleted < limit:
                break
        result.chunks += chunks

        chunks = 0
        while max_chunks is None or chunks < max_chunks:
            deleted = storage.db.run_in_transaction(
                lambda conn: self._reap_batch_chunk(conn, now_ms, limit)
            )
            chunks += 1
            result.batches_deleted += deleted
            if deleted < limit:
                break
        result.chunks += chunks

        if result.bsos_deleted or result.batches_deleted:
            logger.info(
                "Reaped %d expired item(s) and %d expired batch(es) in %d chunk(s)",
                result.bsos_deleted,
                result.batches_deleted,
                result.chunks,
            )
        return result


class ReaperThread:
    """Daemon thread that runs a reaper pass periodically until stopped."""

    def __init__(self, reaper: ExpiryReaper, interval_s: float) -> None:
        self._reaper = reaper
        self._interval_s = interval_s
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.passes = 0

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name="syncstore-reaper", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self._reaper.run_pass()
            except Exception:
                logger.exception("Reaper pass failed")
            self.passes += 1
            if self._stop_event.wait(timeout=self._interval_s):
                break

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
