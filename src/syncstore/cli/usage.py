"""syncstore usage: per-collection counts, sizes and timestamps for one tenant."""

from __future__ import annotations

import typer

from syncstore.cli import _exitcodes as ec
from syncstore.cli._output import format_ts, print_error, print_json, print_table
from syncstore.cli._storage import open_store, tenant_from_options
from syncstore.errors import ValidationError


def usage_cmd(
    uid: str = typer.Option(..., "--uid", help="Account uid (fxa_uid)"),
    kid: str = typer.Option(..., "--kid", help="Key id (fxa_kid)"),
) -> None:
    """Show storage usage for one tenant."""
    from syncstore.cli import state

    try:
        tenant = tenant_from_options(uid, kid)
    except ValidationError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        store = open_store()
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.DATABASE_ERROR)

    try:
        timestamps = store.get_collection_timestamps(tenant)
        counts = store.get_collection_counts(tenant)
        sizes = store.get_collection_sizes(tenant)
        total = store.get_total_size(tenant)
        modified = store.get_storage_timestamp(tenant)
        names = sorted(timestamps)

        if state.json_output:
            print_json(
                {
                    "tenant": str(tenant),
                    "modified": modified,
                    "total_bytes": total,
                    "collections": {
                        name: {
                            "modified": timestamps[name],
                            "count": counts[name],
                            "total_bytes": sizes[name],
                        }
                        for name in names
                    },
                }
            )
            return

        print(f"Tenant: {tenant}")
        print(f"Last modified: {format_ts(modified)}")
        print(f"Total size: {total:,} bytes\n")
        print_table(
            ["collection", "count", "bytes", "modified"],
            [[name, counts[name], sizes[name], format_ts(timestamps[name])] for name in names],
        )
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        store.close()
