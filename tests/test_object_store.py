"""Tests for BSO reads, writes and deletes and their collection aggregates."""

from __future__ import annotations

import pytest

from syncstore import (
    CollectionNotFoundError,
    ItemNotFoundError,
    QuotaExceededError,
    SyncStoreConfig,
    Tenant,
    ValidationError,
)
from syncstore.config import MAX_TTL
from syncstore.storage import SyncStorage
from tests.conftest import START

NOW_MS = int(START * 1000)


class TestPutGet:
    def test_round_trip(self, storage, tenant):
        ts = storage.put(tenant, "bookmarks", "a", {"payload": "hello", "sortindex": 5})
        bso = storage.get(tenant, "bookmarks", "a")
        assert bso.id == "a"
        assert bso.payload == "hello"
        assert bso.sortindex == 5
        assert bso.modified == ts == NOW_MS
        assert bso.expiry == NOW_MS + MAX_TTL * 1000

    def test_ttl_sets_expiry(self, storage, tenant):
        ts = storage.put(tenant, "tabs", "a", {"payload": "x", "ttl": 60})
        assert storage.get(tenant, "tabs", "a").expiry == ts + 60_000

    def test_put_creates_custom_collection(self, storage, tenant):
        storage.put(tenant, "mycoll", "a", {"payload": "x"})
        assert storage.registry.resolve("mycoll") >= 101
        assert storage.get_collection(tenant, "mycoll").count == 1

    def test_partial_update_keeps_other_fields(self, storage, tenant, clock):
        storage.put(tenant, "bookmarks", "a", {"payload": "hello", "sortindex": 5, "ttl": 3600})
        expiry = storage.get(tenant, "bookmarks", "a").expiry
        clock.advance(1)
        ts = storage.put(tenant, "bookmarks", "a", {"sortindex": 9})
        bso = storage.get(tenant, "bookmarks", "a")
        assert bso.payload == "hello"
        assert bso.sortindex == 9
        assert bso.expiry == expiry
        assert bso.modified == ts

    def test_new_item_without_payload_is_empty(self, storage, tenant):
        storage.put(tenant, "bookmarks", "a", {"sortindex": 1})
        assert storage.get(tenant, "bookmarks", "a").payload == ""

    def test_get_missing(self, storage, tenant):
        storage.put(tenant, "bookmarks", "a", {"payload": "x"})
        with pytest.raises(ItemNotFoundError):
            storage.get(tenant, "bookmarks", "b")

    def test_get_unknown_collection(self, storage, tenant):
        with pytest.raises(ItemNotFoundError):
            storage.get(tenant, "never-created", "a")

    def test_tenants_are_isolated(self, storage, tenant, other_tenant):
        storage.put(tenant, "bookmarks", "a", {"payload": "mine"})
        with pytest.raises(ItemNotFoundError):
            storage.get(other_tenant, "bookmarks", "a")
        same_uid = Tenant(tenant.fxa_uid, "another-kid")
        with pytest.raises(ItemNotFoundError):
            storage.get(same_uid, "bookmarks", "a")

    def test_expired_item_is_invisible(self, storage, tenant, clock):
        storage.put(tenant, "tabs", "a", {"payload": "x", "ttl": 10})
        clock.advance(10)
        with pytest.raises(ItemNotFoundError):
            storage.get(tenant, "tabs", "a")

    def test_write_over_expired_item_starts_fresh(self, storage, tenant, clock):
        storage.put(tenant, "tabs", "a", {"payload": "old", "sortindex": 3, "ttl": 10})
        clock.advance(20)
        storage.put(tenant, "tabs", "a", {"ttl": 100})
        bso = storage.get(tenant, "tabs", "a")
        assert bso.payload == ""
        assert bso.sortindex is None
        info = storage.get_collection(tenant, "tabs")
        assert info.count == 1
        assert info.total_bytes == 0

    @pytest.mark.parametrize(
        "fields",
        [
            {"sortindex": 1_000_000_000},
            {"ttl": 0},
            {"ttl": MAX_TTL + 1},
            {"payload": 5},
            {"unknown": "x"},
        ],
    )
    def test_invalid_fields(self, storage, tenant, fields):
        with pytest.raises(ValidationError):
            storage.put(tenant, "bookmarks", "a", fields)

    @pytest.mark.parametrize("bso_id", ["", "x" * 65, "tab\there", "é"])
    def test_invalid_ids(self, storage, tenant, bso_id):
        with pytest.raises(ValidationError):
            storage.put(tenant, "bookmarks", bso_id, {"payload": "x"})

    def test_payload_limit(self, tmp_db, tenant):
        s = SyncStorage(tmp_db, config=SyncStoreConfig(max_payload_bytes=4))
        try:
            s.put(tenant, "bookmarks", "a", {"payload": "abcd"})
            with pytest.raises(ValidationError):
                s.put(tenant, "bookmarks", "b", {"payload": "abcde"})
        finally:
            s.close()


class TestTimestamps:
    def test_modified_strictly_increases_within_collection(self, storage, tenant):
        # The clock does not move between writes.
        t1 = storage.put(tenant, "bookmarks", "a", {"payload": "1"})
        t2 = storage.put(tenant, "bookmarks", "b", {"payload": "2"})
        t3 = storage.put(tenant, "bookmarks", "a", {"payload": "3"})
        assert t1 < t2 < t3
        assert storage.get_collection(tenant, "bookmarks").modified == t3

    def test_clock_going_backwards(self, storage, tenant, clock):
        t1 = storage.put(tenant, "bookmarks", "a", {"payload": "1"})
        clock.rewind(60)
        t2 = storage.put(tenant, "bookmarks", "a", {"payload": "2"})
        assert t2 > t1

    def test_put_many_shares_one_timestamp(self, storage, tenant):
        ts = storage.put_many(
            tenant,
            "history",
            [{"id": "a", "payload": "1"}, {"id": "b", "payload": "2"}, {"id": "c", "payload": "3"}],
        )
        assert {storage.get(tenant, "history", i).modified for i in "abc"} == {ts}

    def test_storage_timestamp_is_max_over_collections(self, storage, tenant, clock):
        storage.put(tenant, "bookmarks", "a", {"payload": "1"})
        clock.advance(5)
        t2 = storage.put(tenant, "tabs", "a", {"payload": "1"})
        assert storage.get_storage_timestamp(tenant) == t2
        assert storage.get_collection_timestamps(tenant) == {
            "bookmarks": NOW_MS,
            "tabs": t2,
        }

    def test_empty_tenant(self, storage, tenant):
        assert storage.get_storage_timestamp(tenant) == 0
        assert storage.get_total_size(tenant) == 0
        assert storage.get_collection_counts(tenant) == {}


class TestAggregates:
    def test_count_after_puts_and_deletes(self, storage, tenant):
        storage.put_many(tenant, "forms", [{"id": str(i), "payload": "xx"} for i in range(10)])
        assert storage.delete_many(tenant, "forms", ["0", "1", "2"]) == 3
        info = storage.get_collection(tenant, "forms")
        assert info.count == 7
        assert info.total_bytes == 14

    def test_bytes_track_overwrites(self, storage, tenant):
        storage.put(tenant, "forms", "a", {"payload": "abc"})
        storage.put(tenant, "forms", "a", {"payload": "abcdef"})
        storage.put(tenant, "forms", "b", {"payload": "é"})
        assert storage.get_collection_sizes(tenant) == {"forms": 8}
        assert storage.get_collection_counts(tenant) == {"forms": 2}
        assert storage.get_total_size(tenant) == 8

    def test_duplicate_ids_in_one_call_count_once(self, storage, tenant):
        storage.put_many(
            tenant,
            "forms",
            [{"id": "a", "payload": "x", "sortindex": 1}, {"id": "a", "payload": "yy"}],
        )
        bso = storage.get(tenant, "forms", "a")
        assert bso.payload == "yy"
        assert bso.sortindex == 1
        assert storage.get_collection(tenant, "forms").count == 1

    def test_aggregates_match_rows(self, storage, tenant):
        storage.put_many(tenant, "forms", [{"id": f"i{i}", "payload": "p" * i} for i in range(20)])
        storage.delete(tenant, "forms", "i3")
        storage.put(tenant, "forms", "i4", {"payload": ""})
        rows = storage.db.read(
            "SELECT COUNT(*), SUM(length(CAST(payload AS BLOB))) FROM bsos "
            "WHERE fxa_uid = ? AND fxa_kid = ?",
            (tenant.fxa_uid, tenant.fxa_kid),
        )
        info = storage.get_collection(tenant, "forms")
        assert (info.count, info.total_bytes) == (rows[0][0], rows[0][1])

    def test_put_many_limit(self, tmp_db, tenant):
        s = SyncStorage(tmp_db, config=SyncStoreConfig(max_post_records=2))
        try:
            with pytest.raises(ValidationError):
                s.put_many(tenant, "forms", [{"id": str(i)} for i in range(3)])
        finally:
            s.close()

    def test_put_many_is_atomic(self, storage, tenant):
        storage.put(tenant, "forms", "keep", {"payload": "x"})
        with pytest.raises(ValidationError):
            storage.put_many(tenant, "forms", [{"id": "a", "payload": "x"}, {"id": "b", "ttl": -1}])
        with pytest.raises(ItemNotFoundError):
            storage.get(tenant, "forms", "a")
        assert storage.get_collection(tenant, "forms").count == 1


class TestQuota:
    @pytest.fixture
    def config(self):
        return SyncStoreConfig(quota_bytes=10)

    def test_quota_blocks_growth(self, storage, tenant):
        storage.put(tenant, "forms", "a", {"payload": "x" * 8})
        with pytest.raises(QuotaExceededError) as exc:
            storage.put(tenant, "forms", "b", {"payload": "x" * 3})
        assert exc.value.quota_bytes == 10
        info = storage.get_collection(tenant, "forms")
        assert (info.count, info.total_bytes) == (1, 8)

    def test_shrinking_writes_are_allowed(self, storage, tenant):
        storage.put(tenant, "forms", "a", {"payload": "x" * 10})
        storage.put(tenant, "forms", "a", {"payload": "x" * 2})
        assert storage.get_collection(tenant, "forms").total_bytes == 2

    def test_quota_is_per_collection(self, storage, tenant):
        storage.put(tenant, "forms", "a", {"payload": "x" * 10})
        storage.put(tenant, "tabs", "a", {"payload": "x" * 10})
        assert storage.get_total_size(tenant) == 20


class TestDelete:
    def test_delete_then_get(self, storage, tenant):
        storage.put(tenant, "bookmarks", "a", {"payload": "x"})
        assert storage.delete(tenant, "bookmarks", "a") is True
        with pytest.raises(ItemNotFoundError):
            storage.get(tenant, "bookmarks", "a")

    def test_delete_is_idempotent(self, storage, tenant):
        storage.put(tenant, "bookmarks", "a", {"payload": "x"})
        storage.put(tenant, "bookmarks", "b", {"payload": "y"})
        assert storage.delete(tenant, "bookmarks", "a") is True
        before = storage.get_collection(tenant, "bookmarks")
        assert storage.delete(tenant, "bookmarks", "a") is False
        after = storage.get_collection(tenant, "bookmarks")
        assert after == before
        assert after.count == 1

    def test_delete_bumps_modified(self, storage, tenant, clock):
        storage.put(tenant, "bookmarks", "a", {"payload": "x"})
        clock.advance(1)
        storage.delete(tenant, "bookmarks", "a")
        assert storage.get_collection(tenant, "bookmarks").modified == NOW_MS + 1000

    def test_delete_in_unknown_collection(self, storage, tenant):
        assert storage.delete(tenant, "never-created", "a") is False

    def test_delete_expired_item(self, storage, tenant, clock):
        storage.put(tenant, "tabs", "a", {"payload": "x", "ttl": 1})
        clock.advance(2)
        assert storage.delete(tenant, "tabs", "a") is False

    def test_delete_many_skips_missing(self, storage, tenant):
        storage.put_many(tenant, "forms", [{"id": "a"}, {"id": "b"}])
        assert storage.delete_many(tenant, "forms", ["a", "zzz"]) == 1
        assert storage.get_collection(tenant, "forms").count == 1

    def test_delete_many_in_unwritten_collection(self, storage, tenant):
        assert storage.delete_many(tenant, "forms", ["a"]) == 0
        assert storage.delete_many(tenant, "never-created", ["a"]) == 0
        assert storage.get_collection_timestamps(tenant) == {}
        with pytest.raises(CollectionNotFoundError):
            storage.get_collection(tenant, "forms")


class TestCollectionDeletion:
    def test_delete_collection_cascades(self, storage, tenant):
        storage.put_many(tenant, "bookmarks", [{"id": "a"}, {"id": "b"}])
        batch_id = storage.batches.open(tenant, "bookmarks")
        storage.batches.append(tenant, "bookmarks", batch_id, [{"id": "c", "payload": "z"}])

        storage.delete_collection(tenant, "bookmarks")

        with pytest.raises(CollectionNotFoundError):
            storage.get_collection(tenant, "bookmarks")
        with pytest.raises(ItemNotFoundError):
            storage.get(tenant, "bookmarks", "a")
        counts = storage.db.table_counts()
        assert counts["bsos"] == 0
        assert counts["batches"] == 0
        assert counts["batch_bsos"] == 0
        # The name stays registered.
        assert storage.registry.resolve("bookmarks") == 7

    def test_delete_collection_leaves_others(self, storage, tenant, other_tenant):
        storage.put(tenant, "bookmarks", "a", {"payload": "x"})
        storage.put(tenant, "tabs", "a", {"payload": "x"})
        storage.put(other_tenant, "bookmarks", "a", {"payload": "x"})
        storage.delete_collection(tenant, "bookmarks")
        assert storage.get_collection_counts(tenant) == {"tabs": 1}
        assert storage.get(other_tenant, "bookmarks", "a").payload == "x"

    def test_delete_missing_collection(self, storage, tenant):
        with pytest.raises(CollectionNotFoundError):
            storage.delete_collection(tenant, "bookmarks")

    def test_delete_storage(self, storage, tenant, other_tenant):
        storage.put(tenant, "bookmarks", "a", {"payload": "x"})
        storage.put(tenant, "tabs", "a", {"payload": "x"})
        storage.put(other_tenant, "tabs", "a", {"payload": "x"})
        assert storage.delete_storage(tenant) == 2
        assert storage.get_collection_timestamps(tenant) == {}
        assert storage.get_storage_timestamp(tenant) == 0
        assert storage.get_collection_counts(other_tenant) == {"tabs": 1}
        assert storage.delete_storage(tenant) == 0

    def test_write_after_delete_recreates(self, storage, tenant):
        storage.put(tenant, "bookmarks", "a", {"payload": "x"})
        storage.delete_collection(tenant, "bookmarks")
        storage.put(tenant, "bookmarks", "b", {"payload": "yy"})
        info = storage.get_collection(tenant, "bookmarks")
        assert (info.count, info.total_bytes) == (1, 2)


class TestMemoryDatabase:
    def test_in_memory_store(self, tenant):
        with SyncStorage(":memory:") as s:
            s.put(tenant, "bookmarks", "a", {"payload": "x"})
            assert s.get(tenant, "bookmarks", "a").payload == "x"
            assert s.storage_info()["db_path"] == ":memory:"
