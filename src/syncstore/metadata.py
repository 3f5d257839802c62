"""Per-tenant collection aggregates (count, total_bytes, modified).

All writers go through these helpers from inside the transaction that mutates
the underlying rows, so aggregates and rows can never drift apart.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass

from syncstore.types import Tenant, UserCollection


@dataclass(frozen=True)
class WriteLock:
    """Snapshot of a user collection taken at the start of a write transaction."""

    timestamp: int
    exists: bool
    count: int
    total_bytes: int
    modified: int


def lock_for_write(
    conn: sqlite3.Connection, tenant: Tenant, collection_id: int, now_ms: int
) -> WriteLock:
    """Read the aggregate row and pick the transaction timestamp.

    The timestamp always moves past the collection's last modification, so
    ``modified`` strictly increases per collection even if the clock steps back.
    """
    row = conn.execute(
        "SELECT modified, COALESCE(count, 0), COALESCE(total_bytes, 0) FROM user_collections "
        "WHERE fxa_uid = ? AND fxa_kid = ? AND collection_id = ?",
        (tenant.fxa_uid, tenant.fxa_kid, collection_id),
    ).fetchone()
    if row is None:
        return WriteLock(timestamp=now_ms, exists=False, count=0, total_bytes=0, modified=0)
    modified = int(row[0])
    return WriteLock(
        timestamp=max(now_ms, modified + 1),
        exists=True,
        count=int(row[1]),
        total_bytes=int(row[2]),
        modified=modified,
    )


def apply_delta(
    conn: sqlite3.Connection,
    tenant: Tenant,
    collection_id: int,
    *,
    count_delta: int,
    bytes_delta: int,
    modified: int,
) -> None:
    """Create or adjust the aggregate row with a single upsert."""
    conn.execute(
        "INSERT INTO user_collections "
        "(fxa_uid, fxa_kid, collection_id, modified, count, total_bytes) "
        "VALUES (?, ?, ?, ?, ?, ?) "
        "ON CONFLICT(fxa_uid, fxa_kid, collection_id) DO UPDATE SET "
        "modified = excluded.modified, "
        "count = COALESCE(user_collections.count, 0) + excluded.count, "
        "total_bytes = COALESCE(user_collections.total_bytes, 0) + excluded.total_bytes",
        (tenant.fxa_uid, tenant.fxa_kid, collection_id, modified, count_delta, bytes_delta),
    )


def recompute(conn: sqlite3.Connection, tenant: Tenant, collection_id: int) -> None:
    """Recount aggregates from the stored rows, leaving ``modified`` untouched."""
    conn.execute(
        "UPDATE user_collections SET "
        "count = (SELECT COUNT(*) FROM bsos b WHERE b.fxa_uid = user_collections.fxa_uid "
        "AND b.fxa_kid = user_collections.fxa_kid "
        "AND b.collection_id = user_collections.collection_id), "
        "total_bytes = (SELECT COALESCE(SUM(length(CAST(b.payload AS BLOB))), 0) FROM bsos b "
        "WHERE b.fxa_uid = user_collections.fxa_uid AND b.fxa_kid = user_collections.fxa_kid "
        "AND b.collection_id = user_collections.collection_id) "
        "WHERE fxa_uid = ? AND fxa_kid = ? AND collection_id = ?",
        (tenant.fxa_uid, tenant.fxa_kid, collection_id),
    )


def get_user_collection(
    conn: sqlite3.Connection, tenant: Tenant, collection_id: int
) -> UserCollection | None:
    row = conn.execute(
        "SELECT modified, COALESCE(count, 0), COALESCE(total_bytes, 0) FROM user_collections "
        "WHERE fxa_uid = ? AND fxa_kid = ? AND collection_id = ?",
        (tenant.fxa_uid, tenant.fxa_kid, collection_id),
    ).fetchone()
    if row is None:
        return None
    return UserCollection(
        tenant=tenant,
        collection_id=collection_id,
        modified=int(row[0]),
        count=int(row[1]),
        total_bytes=int(row[2]),
    )


def list_user_collections(conn: sqlite3.Connection, tenant: Tenant) -> list[UserCollection]:
    rows = conn.execute(
        "SELECT collection_id, modified, COALESCE(count, 0), COALESCE(total_bytes, 0) "
        "FROM user_collections WHERE fxa_uid = ? AND fxa_kid = ? ORDER BY collection_id",
        (tenant.fxa_uid, tenant.fxa_kid),
    ).fetchall()
    return [
        UserCollection(
            tenant=tenant,
            collection_id=int(r[0]),
            modified=int(r[1]),
            count=int(r[2]),
            total_bytes=int(r[3]),
        )
        for r in rows
    ]
