"""Collection registry: stable numeric ids for collection names."""

from __future__ import annotations

import logging
import re
import sqlite3
import threading

from syncstore.db import Database
from syncstore.errors import CollectionNotFoundError, ConflictError, ValidationError
from syncstore.types import Collection

logger = logging.getLogger(__name__)

STANDARD_COLLECTIONS: dict[int, str] = {
    1: "clients",
    2: "crypto",
    3: "forms",
    4: "history",
    5: "keys",
    6: "meta",
    7: "bookmarks",
    8: "prefs",
    9: "tabs",
    10: "passwords",
    11: "addons",
    12: "addresses",
    13: "creditcards",
}

# Ids below this are reserved for standard collections.
FIRST_CUSTOM_COLLECTION_ID = 101

MAX_COLLECTIONS_CACHE_SIZE = 1000

_NAME_RE = re.compile(r"^[A-Za-z0-9._-]{1,32}$")


def validate_collection_name(name: str) -> str:
    if not isinstance(name, str) or not _NAME_RE.match(name):
        raise ValidationError(f"Invalid collection name {name!r}")
    return name


class CollectionRegistry:
    """Append-only name <-> id mapping backed by the ``collections`` table.

    Lookups are cached in memory; ids never change once assigned, so cached
    entries never need invalidation.
    """

    def __init__(self, db: Database, *, max_insert_attempts: int = 5) -> None:
        self._db = db
        self._max_insert_attempts = max_insert_attempts
        self._by_name: dict[str, int] = {}
        self._by_id: dict[int, str] = {}
        self._lock = threading.Lock()

    def _cache(self, collection_id: int, name: str) -> None:
        with self._lock:
            if name in self._by_name:
                return
            if len(self._by_name) >= MAX_COLLECTIONS_CACHE_SIZE:
                logger.warning(
                    "More than %d collections have been created, refusing to cache them all",
                    MAX_COLLECTIONS_CACHE_SIZE,
                )
                return
            self._by_name[name] = collection_id
            self._by_id[collection_id] = name

    def _lookup(self, name: str) -> int | None:
        cached = self._by_name.get(name)
        if cached is not None:
            return cached
        rows = self._db.read("SELECT collection_id FROM collections WHERE name = ?", (name,))
        if not rows:
            return None
        collection_id = int(rows[0][0])
        self._cache(collection_id, name)
        return collection_id

    def resolve(self, name: str) -> int:
        """Return the id for ``name``; raise CollectionNotFoundError if unknown."""
        collection_id = self._lookup(validate_collection_name(name))
        if collection_id is None:
            raise CollectionNotFoundError(name)
        return collection_id

    def ensure(self, name: str) -> int:
        """Get-or-create the id for ``name``.

        Concurrent callers racing to create the same name both end up with the
        id of whichever insert committed first.
        """
        validate_collection_name(name)
        for attempt in range(1, self._max_insert_attempts + 1):
            collection_id = self._lookup(name)
            if collection_id is not None:
                return collection_id
            try:
                collection_id = self._db.run_in_transaction(lambda conn: self._insert(conn, name))
            except sqlite3.IntegrityError as e:
                logger.debug("Collection insert conflict for %r (attempt %d): %s", name, attempt, e)
                continue
            logger.info("Created collection %r with id %d", name, collection_id)
            self._cache(collection_id, name)
            return collection_id
        raise ConflictError(f"Could not register collection {name!r}")

    @staticmethod
    def _insert(conn: sqlite3.Connection, name: str) -> int:
        row = conn.execute("SELECT collection_id FROM collections WHERE name = ?", (name,)).fetchone()
        if row is not None:
            return int(row[0])
        max_id = conn.execute("SELECT MAX(collection_id) FROM collections").fetchone()[0]
        collection_id = max((max_id or 0) + 1, FIRST_CUSTOM_COLLECTION_ID)
        conn.execute(
            "INSERT INTO collections (collection_id, name) VALUES (?, ?)",
            (collection_id, name),
        )
        return collection_id

    def name_of(self, collection_id: int) -> str:
        cached = self._by_id.get(collection_id)
        if cached is not None:
            return cached
        rows = self._db.read(
            "SELECT name FROM collections WHERE collection_id = ?", (collection_id,)
        )
        if not rows:
            raise CollectionNotFoundError(collection_id)
        name = str(rows[0][0])
        self._cache(collection_id, name)
        return name

    def names_of(self, collection_ids: list[int]) -> dict[int, str]:
        """Bulk id -> name lookup using a single query for uncached ids."""
        names: dict[int, str] = {}
        uncached: list[int] = []
        for cid in collection_ids:
            if cid in self._by_id:
                names[cid] = self._by_id[cid]
            else:
                uncached.append(cid)
        if uncached:
            marks = ", ".join("?" for _ in uncached)
            rows = self._db.read(
                f"SELECT collection_id, name FROM collections WHERE collection_id IN ({marks})",
                uncached,
            )
            for cid, name in rows:
                names[int(cid)] = str(name)
                self._cache(int(cid), str(name))
        for cid in collection_ids:
            if cid not in names:
                raise CollectionNotFoundError(cid)
        return names

    def list_collections(self) -> list[Collection]:
        rows = self._db.read("SELECT collection_id, name FROM collections ORDER BY collection_id")
        return [Collection(collection_id=int(r[0]), name=str(r[1])) for r in rows]

    def seed_standard(self) -> int:
        """Insert any missing standard collections; return how many were added."""

        def _seed(conn: sqlite3.Connection) -> int:
            added = 0
            for cid, name in STANDARD_COLLECTIONS.items():
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO collections (collection_id, name) VALUES (?, ?)",
                    (cid, name),
                )
                added += cursor.rowcount
            return added

        added = self._db.run_in_transaction(_seed)
        if added:
            logger.info("Seeded %d standard collection(s)", added)
        return added
