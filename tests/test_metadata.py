"""Tests for collection aggregate helpers."""

from __future__ import annotations

from syncstore import metadata


def _cid(storage, name="bookmarks"):
    return storage.registry.resolve(name)


class TestLockForWrite:
    def test_missing_row(self, storage, tenant):
        with storage.db.transaction() as conn:
            lock = metadata.lock_for_write(conn, tenant, _cid(storage), 1000)
        assert lock.exists is False
        assert lock.timestamp == 1000
        assert (lock.count, lock.total_bytes) == (0, 0)

    def test_timestamp_moves_past_last_modification(self, storage, tenant):
        ts = storage.put(tenant, "bookmarks", "a", {"payload": "abc"})
        with storage.db.transaction() as conn:
            stale = metadata.lock_for_write(conn, tenant, _cid(storage), ts - 5000)
            fresh = metadata.lock_for_write(conn, tenant, _cid(storage), ts + 5000)
        assert stale.timestamp == ts + 1
        assert fresh.timestamp == ts + 5000
        assert (stale.count, stale.total_bytes, stale.modified) == (1, 3, ts)


class TestApplyDelta:
    def test_creates_then_adjusts(self, storage, tenant):
        cid = _cid(storage)
        with storage.db.transaction() as conn:
            metadata.apply_delta(conn, tenant, cid, count_delta=2, bytes_delta=10, modified=5)
        with storage.db.transaction() as conn:
            metadata.apply_delta(conn, tenant, cid, count_delta=-1, bytes_delta=-4, modified=9)
        info = metadata.get_user_collection(storage.db.connection(), tenant, cid)
        assert (info.count, info.total_bytes, info.modified) == (1, 6, 9)

    def test_rollback_discards_delta(self, storage, tenant):
        cid = _cid(storage)
        try:
            with storage.db.transaction() as conn:
                metadata.apply_delta(conn, tenant, cid, count_delta=1, bytes_delta=1, modified=5)
                raise RuntimeError("abort")
        except RuntimeError:
            pass
        assert metadata.get_user_collection(storage.db.connection(), tenant, cid) is None


class TestRecompute:
    def test_recompute_repairs_drift(self, storage, tenant):
        storage.put_many(tenant, "bookmarks", [{"id": "a", "payload": "ab"}, {"id": "b", "payload": "é"}])
        cid = _cid(storage)
        modified = storage.get_collection(tenant, "bookmarks").modified
        storage.db.connection().execute(
            "UPDATE user_collections SET count = 99, total_bytes = 99 WHERE collection_id = ?", (cid,)
        )
        with storage.db.transaction() as conn:
            metadata.recompute(conn, tenant, cid)
        info = storage.get_collection(tenant, "bookmarks")
        assert (info.count, info.total_bytes, info.modified) == (2, 4, modified)

    def test_list_user_collections(self, storage, tenant, other_tenant):
        storage.put(tenant, "tabs", "a", {"payload": "x"})
        storage.put(tenant, "bookmarks", "a", {"payload": "x"})
        storage.put(other_tenant, "forms", "a", {"payload": "x"})
        rows = metadata.list_user_collections(storage.db.connection(), tenant)
        assert [r.collection_id for r in rows] == [7, 9]
