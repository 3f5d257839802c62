"""Example 01: Basic Usage - syncstore Fundamentals.

This example demonstrates the fundamental operations:
- Opening a store and addressing a tenant by (fxa_uid, fxa_kid)
- Writing and reading BSOs with put() / get()
- Listing a collection newest-first with pagination tokens
- Reading per-collection aggregates and the storage timestamp
"""

from syncstore import BsoQuery, ItemNotFoundError, SyncStorage, Tenant


def main():
    """Run the basic usage example."""
    print("=" * 80)
    print("SYNCSTORE BASIC USAGE EXAMPLE")
    print("=" * 80)

    # Step 1: Open the store
    # ":memory:" keeps everything in process; pass a file path to persist.
    store = SyncStorage(":memory:")
    alice = Tenant(fxa_uid="alice-uid", fxa_kid="1234-abcd")

    # Step 2: Write some bookmarks
    print("\n[Write]")
    for n in range(5):
        ts = store.put(
            alice,
            "bookmarks",
            f"bm{n}",
            {"payload": f'{{"title": "Bookmark {n}"}}', "sortindex": n * 10},
        )
        print(f"  bm{n} written at {ts}")

    # Step 3: Read one back
    print("\n[Read]")
    bso = store.get(alice, "bookmarks", "bm3")
    print(f"  {bso.id}: {bso.payload} (sortindex={bso.sortindex}, modified={bso.modified})")

    # Step 4: Page through the collection two at a time
    print("\n[List newest first, 2 per page]")
    query = BsoQuery(limit=2)
    page_no = 1
    while True:
        page = store.list_bsos(alice, "bookmarks", query)
        print(f"  page {page_no}: {[b.id for b in page.items]}")
        if page.next_offset is None:
            break
        query = BsoQuery(limit=2, offset=page.next_offset)
        page_no += 1

    # Step 5: Delete and check aggregates
    print("\n[Delete]")
    store.delete(alice, "bookmarks", "bm0")
    try:
        store.get(alice, "bookmarks", "bm0")
    except ItemNotFoundError as e:
        print(f"  {e}")

    info = store.get_collection(alice, "bookmarks")
    print(f"\n[Aggregates] count={info.count} total_bytes={info.total_bytes}")
    print(f"  collection timestamps: {store.get_collection_timestamps(alice)}")
    print(f"  storage timestamp: {store.get_storage_timestamp(alice)}")

    store.close()


if __name__ == "__main__":
    main()
