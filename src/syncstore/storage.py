"""Object store: per-tenant collections of BSOs on the relational layout."""

from __future__ import annotations

import logging
import os
import sqlite3
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping
from urllib.parse import urlparse

from syncstore import metadata
from syncstore.batch import BatchEngine
from syncstore.config import SyncStoreConfig
from syncstore.db import Database
from syncstore.errors import (
    CollectionNotFoundError,
    ItemNotFoundError,
    QuotaExceededError,
    StorageBackendError,
    ValidationError,
)
from syncstore.query import BsoQuery, Page, compile_query, decode_offset, encode_next_offset
from syncstore.reaper import ExpiryReaper
from syncstore.registry import CollectionRegistry
from syncstore.types import (
    BatchItem,
    Bso,
    BsoFields,
    Tenant,
    UserCollection,
    parse_fields,
    parse_item,
    payload_size,
    validate_bso_id,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class StorageTarget:
    """Resolved storage target from db_path and URI forms."""

    backend: str
    uri: str
    db_path: str


def parse_storage_target(
    db_path: str | None = None,
    storage_uri: str | None = None,
) -> StorageTarget:
    """Resolve backend target from db_path and ``sqlite://`` URI forms."""
    if storage_uri is None:
        path = db_path or "syncstore.db"
        return StorageTarget(backend="sqlite", uri=f"sqlite:///{path}", db_path=path)

    parsed = urlparse(storage_uri)
    if parsed.scheme != "sqlite":
        raise StorageBackendError(
            "parse_storage_uri",
            f"Unsupported storage URI scheme '{parsed.scheme}' for '{storage_uri}'",
        )
    sqlite_path = parsed.path
    if parsed.netloc:
        sqlite_path = f"{parsed.netloc}{sqlite_path}"
    elif sqlite_path.startswith("//"):
        # sqlite:////abs/path -> /abs/path
        sqlite_path = sqlite_path[1:]
    if sqlite_path == "/:memory:":
        sqlite_path = ":memory:"
    if not sqlite_path:
        raise StorageBackendError("parse_storage_uri", f"Invalid sqlite URI: {storage_uri}")
    if db_path is not None and os.path.abspath(db_path) != os.path.abspath(sqlite_path):
        raise StorageBackendError(
            "parse_storage_uri",
            f"Conflicting db_path '{db_path}' and storage_uri '{storage_uri}'",
        )
    return StorageTarget(backend="sqlite", uri=storage_uri, db_path=sqlite_path)


@dataclass(frozen=True)
class _Row:
    payload: str
    sortindex: int | None
    expiry: int


class SyncStorage:
    """Hierarchical BSO store with transactional collection aggregates.

    Every mutating call is a single transaction covering both the BSO rows and
    the owning ``user_collections`` aggregate row.
    """

    def __init__(
        self,
        db_path: str,
        *,
        config: SyncStoreConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config or SyncStoreConfig()
        self.clock: Clock = clock or time.time
        self.db = Database(db_path, self.config)
        self.registry = CollectionRegistry(self.db)
        if self.config.seed_standard_collections:
            self.registry.seed_standard()
        self.batches = BatchEngine(self)
        self.reaper = ExpiryReaper(self)

    @property
    def db_path(self) -> str:
        return self.db.db_path

    def now_ms(self) -> int:
        return int(self.clock() * 1000)

    def close(self) -> None:
        self.db.close()

    def __enter__(self) -> SyncStorage:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # --- Write path shared with batch commit ---

    def check_payload(self, payload: str | None) -> None:
        if payload is not None and payload_size(payload) > self.config.max_payload_bytes:
            raise ValidationError(
                f"Payload exceeds maximum size of {self.config.max_payload_bytes} bytes"
            )

    def _load_rows(
        self, conn: sqlite3.Connection, tenant: Tenant, collection_id: int, ids: list[str]
    ) -> dict[str, _Row]:
        out: dict[str, _Row] = {}
        # Stay well below SQLite's bound-parameter limit.
        for start in range(0, len(ids), 500):
            chunk = ids[start : start + 500]
            marks = ", ".join("?" for _ in chunk)
            rows = conn.execute(
                "SELECT bso_id, payload, sortindex, expiry FROM bsos "
                f"WHERE fxa_uid = ? AND fxa_kid = ? AND collection_id = ? AND bso_id IN ({marks})",
                (tenant.fxa_uid, tenant.fxa_kid, collection_id, *chunk),
            ).fetchall()
            for bso_id, payload, sortindex, expiry in rows:
                out[str(bso_id)] = _Row(payload=str(payload), sortindex=sortindex, expiry=int(expiry))
        return out

    def write_items(
        self,
        conn: sqlite3.Connection,
        tenant: Tenant,
        collection: str,
        collection_id: int,
        items: Iterable[tuple[str, Mapping[str, Any]]],
        now_ms: int,
    ) -> int:
        """Upsert ``(bso_id, supplied_fields)`` pairs under one timestamp.

        Must be called inside a transaction. Returns the timestamp assigned to
        every written row. Aggregates are adjusted once for the whole set.
        """
        lock = metadata.lock_for_write(conn, tenant, collection_id, now_ms)
        ts = lock.timestamp
        # Later entries for the same id win, field by field.
        merged: dict[str, dict[str, Any]] = {}
        for bso_id, supplied in items:
            merged.setdefault(bso_id, {}).update(supplied)

        existing = self._load_rows(conn, tenant, collection_id, list(merged))
        count_delta = 0
        bytes_delta = 0
        planned: list[tuple[str, str, int | None, int]] = []
        for bso_id, supplied in merged.items():
            self.check_payload(supplied.get("payload"))
            old = existing.get(bso_id)
            # A row that is already expired is replaced as if it were new.
            live = old is not None and old.expiry > ts
            payload = supplied.get("payload")
            if payload is None:
                payload = old.payload if live and old is not None else ""
            if "sortindex" in supplied:
                sortindex = supplied["sortindex"]
            else:
                sortindex = old.sortindex if live and old is not None else None
            ttl = supplied.get("ttl")
            if ttl is not None:
                expiry = ts + int(ttl) * 1000
            elif "ttl" not in supplied and live and old is not None:
                expiry = old.expiry
            else:
                expiry = ts + self.config.default_ttl_seconds * 1000

            if old is None:
                count_delta += 1
                bytes_delta += payload_size(payload)
            else:
                bytes_delta += payload_size(payload) - payload_size(old.payload)
            planned.append((bso_id, payload, sortindex, expiry))

        quota = self.config.quota_bytes
        if quota is not None and bytes_delta > 0 and lock.total_bytes + bytes_delta > quota:
            raise QuotaExceededError(collection, lock.total_bytes + bytes_delta, quota)

        metadata.apply_delta(
            conn,
            tenant,
            collection_id,
            count_delta=count_delta,
            bytes_delta=bytes_delta,
            modified=ts,
        )
        for bso_id, payload, sortindex, expiry in planned:
            conn.execute(
                "INSERT INTO bsos "
                "(fxa_uid, fxa_kid, collection_id, bso_id, sortindex, payload, modified, expiry) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(fxa_uid, fxa_kid, collection_id, bso_id) DO UPDATE SET "
                "sortindex = excluded.sortindex, payload = excluded.payload, "
                "modified = excluded.modified, expiry = excluded.expiry",
                (
                    tenant.fxa_uid,
                    tenant.fxa_kid,
                    collection_id,
                    bso_id,
                    sortindex,
                    payload,
                    ts,
                    expiry,
                ),
            )
        logger.debug(
            "Wrote %d item(s) to %s/%s at %d (count %+d, bytes %+d)",
            len(planned),
            tenant,
            collection,
            ts,
            count_delta,
            bytes_delta,
        )
        return ts

    # --- Object operations ---

    def put(
        self,
        tenant: Tenant,
        collection: str,
        bso_id: str,
        fields: BsoFields | Mapping[str, Any],
    ) -> int:
        """Create or update one BSO; return its new ``modified`` timestamp."""
        validate_bso_id(bso_id)
        supplied = parse_fields(fields).supplied()
        self.check_payload(supplied.get("payload"))
        collection_id = self.registry.ensure(collection)
        return self.db.run_in_transaction(
            lambda conn: self.write_items(
                conn, tenant, collection, collection_id, [(bso_id, supplied)], self.now_ms()
            )
        )

    def put_many(
        self,
        tenant: Tenant,
        collection: str,
        items: Iterable[BatchItem | Mapping[str, Any]],
    ) -> int:
        """Write several BSOs atomically; all of them share one timestamp."""
        parsed = [parse_item(item) for item in items]
        if len(parsed) > self.config.max_post_records:
            raise ValidationError(
                f"At most {self.config.max_post_records} records may be written at once"
            )
        pairs = [(item.id, item.supplied()) for item in parsed]
        for _, supplied in pairs:
            self.check_payload(supplied.get("payload"))
        collection_id = self.registry.ensure(collection)
        return self.db.run_in_transaction(
            lambda conn: self.write_items(
                conn, tenant, collection, collection_id, pairs, self.now_ms()
            )
        )

    def get(self, tenant: Tenant, collection: str, bso_id: str) -> Bso:
        """Return one live BSO or raise ItemNotFoundError."""
        try:
            collection_id = self.registry.resolve(collection)
        except CollectionNotFoundError:
            raise ItemNotFoundError(collection, bso_id)
        rows = self.db.read(
            "SELECT bso_id, sortindex, payload, modified, expiry FROM bsos "
            "WHERE fxa_uid = ? AND fxa_kid = ? AND collection_id = ? AND bso_id = ? "
            "AND expiry > ?",
            (tenant.fxa_uid, tenant.fxa_kid, collection_id, bso_id, self.now_ms()),
        )
        if not rows:
            raise ItemNotFoundError(collection, bso_id)
        return _row_to_bso(rows[0])

    def _resolve_existing(self, tenant: Tenant, collection: str) -> int:
        """Resolve a collection the tenant has written to, else CollectionNotFoundError."""
        collection_id = self.registry.resolve(collection)
        rows = self.db.read(
            "SELECT 1 FROM user_collections "
            "WHERE fxa_uid = ? AND fxa_kid = ? AND collection_id = ?",
            (tenant.fxa_uid, tenant.fxa_kid, collection_id),
        )
        if not rows:
            raise CollectionNotFoundError(collection)
        return collection_id

    def list_bsos(
        self,
        tenant: Tenant,
        collection: str,
        query: BsoQuery | None = None,
    ) -> Page:
        """List live BSOs matching ``query``.

        When more rows remain past ``limit``, ``Page.next_offset`` holds the
        token to pass back as ``offset`` for the next page.
        """
        query = query or BsoQuery()
        collection_id = self._resolve_existing(tenant, collection)
        window = decode_offset(query)
        sql, params = compile_query(window, tenant, collection_id, self.now_ms())
        items = [_row_to_bso(r) for r in self.db.read(sql, params)]
        next_offset = None
        if query.limit is not None and len(items) > query.limit:
            items = items[: query.limit]
            if items:
                next_offset = encode_next_offset(window, items)
        return Page(items=items, next_offset=next_offset)

    def list_ids(
        self,
        tenant: Tenant,
        collection: str,
        query: BsoQuery | None = None,
    ) -> tuple[list[str], str | None]:
        page = self.list_bsos(tenant, collection, query)
        return [b.id for b in page.items], page.next_offset

    def _delete_ids(
        self,
        conn: sqlite3.Connection,
        tenant: Tenant,
        collection_id: int,
        ids: list[str],
        now_ms: int,
    ) -> int:
        lock = metadata.lock_for_write(conn, tenant, collection_id, now_ms)
        existing = self._load_rows(conn, tenant, collection_id, ids)
        live = {bso_id: row for bso_id, row in existing.items() if row.expiry > now_ms}
        if not live:
            return 0
        for bso_id in live:
            conn.execute(
                "DELETE FROM bsos "
                "WHERE fxa_uid = ? AND fxa_kid = ? AND collection_id = ? AND bso_id = ?",
                (tenant.fxa_uid, tenant.fxa_kid, collection_id, bso_id),
            )
        metadata.apply_delta(
            conn,
            tenant,
            collection_id,
            count_delta=-len(live),
            bytes_delta=-sum(payload_size(r.payload) for r in live.values()),
            modified=lock.timestamp,
        )
        return len(live)

    def delete(self, tenant: Tenant, collection: str, bso_id: str) -> bool:
        """Delete one BSO. Returns False (and changes nothing) if it is absent."""
        try:
            collection_id = self.registry.resolve(collection)
        except CollectionNotFoundError:
            return False
        deleted = self.db.run_in_transaction(
            lambda conn: self._delete_ids(conn, tenant, collection_id, [bso_id], self.now_ms())
        )
        return deleted > 0

    def delete_many(self, tenant: Tenant, collection: str, ids: list[str]) -> int:
        """Delete several BSOs atomically; returns how many were removed."""
        for bso_id in ids:
            validate_bso_id(bso_id)
        try:
            collection_id = self.registry.resolve(collection)
        except CollectionNotFoundError:
            return 0
        return self.db.run_in_transaction(
            lambda conn: self._delete_ids(conn, tenant, collection_id, list(ids), self.now_ms())
        )

    # --- Collection operations ---

    def get_collection(self, tenant: Tenant, collection: str) -> UserCollection:
        collection_id = self.registry.resolve(collection)
        info = metadata.get_user_collection(self.db.connection(), tenant, collection_id)
        if info is None:
            raise CollectionNotFoundError(collection)
        return info

    def delete_collection(self, tenant: Tenant, collection: str) -> None:
        """Delete a tenant collection; its BSOs and batches go with it."""
        collection_id = self.registry.resolve(collection)

        def _delete(conn: sqlite3.Connection) -> int:
            return conn.execute(
                "DELETE FROM user_collections "
                "WHERE fxa_uid = ? AND fxa_kid = ? AND collection_id = ?",
                (tenant.fxa_uid, tenant.fxa_kid, collection_id),
            ).rowcount

        if not self.db.run_in_transaction(_delete):
            raise CollectionNotFoundError(collection)
        logger.info("Deleted collection %s/%s", tenant, collection)

    def delete_storage(self, tenant: Tenant) -> int:
        """Remove every collection of a tenant; returns the number removed."""

        def _delete(conn: sqlite3.Connection) -> int:
            return conn.execute(
                "DELETE FROM user_collections WHERE fxa_uid = ? AND fxa_kid = ?",
                (tenant.fxa_uid, tenant.fxa_kid),
            ).rowcount

        removed = self.db.run_in_transaction(_delete)
        logger.info("Deleted storage for %s (%d collection(s))", tenant, removed)
        return removed

    # --- Tenant-level reads ---

    def _by_name(self, tenant: Tenant, value: Callable[[UserCollection], int]) -> dict[str, int]:
        collections = metadata.list_user_collections(self.db.connection(), tenant)
        names = self.registry.names_of([c.collection_id for c in collections])
        return {names[c.collection_id]: value(c) for c in collections}

    def get_collection_timestamps(self, tenant: Tenant) -> dict[str, int]:
        return self._by_name(tenant, lambda c: c.modified)

    def get_collection_counts(self, tenant: Tenant) -> dict[str, int]:
        return self._by_name(tenant, lambda c: c.count)

    def get_collection_sizes(self, tenant: Tenant) -> dict[str, int]:
        return self._by_name(tenant, lambda c: c.total_bytes)

    def get_storage_timestamp(self, tenant: Tenant) -> int:
        rows = self.db.read(
            "SELECT MAX(modified) FROM user_collections WHERE fxa_uid = ? AND fxa_kid = ?",
            (tenant.fxa_uid, tenant.fxa_kid),
        )
        return int(rows[0][0] or 0)

    def get_total_size(self, tenant: Tenant) -> int:
        rows = self.db.read(
            "SELECT COALESCE(SUM(total_bytes), 0) FROM user_collections "
            "WHERE fxa_uid = ? AND fxa_kid = ?",
            (tenant.fxa_uid, tenant.fxa_kid),
        )
        return int(rows[0][0])

    def storage_info(self) -> dict[str, Any]:
        """Return backend info for operator commands."""
        return {
            "backend": "sqlite",
            "db_path": self.db_path,
            "schema_version": self.db.read(
                "SELECT value FROM storage_meta WHERE key = 'schema_version'"
            )[0][0],
        }


def _row_to_bso(row: tuple[Any, ...]) -> Bso:
    bso_id, sortindex, payload, modified, expiry = row
    return Bso(
        id=str(bso_id),
        sortindex=None if sortindex is None else int(sortindex),
        payload=str(payload),
        modified=int(modified),
        expiry=int(expiry),
    )


def open_storage(
    db_path: str | None = None,
    *,
    storage_uri: str | None = None,
    config: SyncStoreConfig | None = None,
    clock: Clock | None = None,
) -> SyncStorage:
    """Open a store from a file path or ``sqlite://`` URI."""
    target = parse_storage_target(db_path=db_path, storage_uri=storage_uri)
    return SyncStorage(target.db_path, config=config, clock=clock)


__all__ = [
    "SyncStorage",
    "StorageTarget",
    "parse_storage_target",
    "open_storage",
]
