"""Example 02: Batch uploads and expiry.

This example demonstrates:
- Opening a batch, appending items in several calls and committing atomically
- Aborting a batch
- Items with a ttl disappearing from reads, then being reaped
- Running the reaper in a background thread
"""

import time

from syncstore import (
    BatchNotFoundError,
    ReaperThread,
    SyncStorage,
    SyncStoreConfig,
    Tenant,
    configure_logging,
)


def main():
    """Run the batch and expiry example."""
    print("=" * 80)
    print("SYNCSTORE BATCHES AND EXPIRY EXAMPLE")
    print("=" * 80)

    configure_logging("INFO")
    store = SyncStorage(":memory:", config=SyncStoreConfig(reaper_chunk_size=100))
    bob = Tenant(fxa_uid="bob-uid", fxa_kid="5678-ef01")

    # Section 1: Batch upload
    print("\n[Batch]")
    batch_id = store.batches.open(bob, "history", ttl=600)
    store.batches.append(bob, "history", batch_id, [{"id": "h1", "payload": "one"}])
    store.batches.append(
        bob, "history", batch_id, [{"id": "h2", "payload": "two"}, {"id": "h3", "payload": "three"}]
    )
    print(f"  staged: {[item.id for item in store.batches.staged_items(bob, 'history', batch_id)]}")
    result = store.batches.commit(bob, "history", batch_id)
    print(f"  committed {result.committed_count} item(s) at {result.modified}")
    print(f"  counts: {store.get_collection_counts(bob)}")

    # Section 2: Abort
    print("\n[Abort]")
    discarded = store.batches.open(bob, "history")
    store.batches.append(bob, "history", discarded, [{"id": "h4", "payload": "never"}])
    store.batches.abort(bob, "history", discarded)
    try:
        store.batches.commit(bob, "history", discarded)
    except BatchNotFoundError as e:
        print(f"  {e}")

    # Section 3: Expiry
    print("\n[Expiry]")
    store.put(bob, "tabs", "t1", {"payload": "short-lived", "ttl": 1})
    print(f"  tabs before expiry: {store.list_ids(bob, 'tabs')[0]}")
    time.sleep(1.1)
    print(f"  tabs after expiry:  {store.list_ids(bob, 'tabs')[0]}")
    print(f"  physical rows still counted: {store.get_collection(bob, 'tabs').count}")

    reaper = ReaperThread(store.reaper, interval_s=0.1)
    reaper.start()
    time.sleep(0.3)
    reaper.stop()
    print(f"  after reaping: {store.get_collection(bob, 'tabs').count}")

    store.close()


if __name__ == "__main__":
    main()
