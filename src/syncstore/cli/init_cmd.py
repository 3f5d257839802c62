"""syncstore init: create the schema and seed the standard collections."""

from __future__ import annotations

import typer

from syncstore.cli import _exitcodes as ec
from syncstore.cli._output import print_error, print_object
from syncstore.cli._storage import open_store, resolve_target


def init_cmd(
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview initialization only"),
    no_seed: bool = typer.Option(
        False, "--no-seed", help="Do not insert the standard collections"
    ),
) -> None:
    """Initialize the selected storage backend."""
    from syncstore.cli import state

    json_mode = state.json_output
    try:
        target = resolve_target()
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    if dry_run:
        print_object(
            {"backend": target.backend, "db_path": target.db_path, "status": "dry_run"},
            json_mode=json_mode,
        )
        return

    try:
        store = open_store(create=True, seed=False)
    except Exception as e:
        print_error(f"Cannot open storage backend: {e}")
        raise typer.Exit(ec.DATABASE_ERROR)

    try:
        seeded = 0 if no_seed else store.registry.seed_standard()
        data = {
            **store.storage_info(),
            "collections": len(store.registry.list_collections()),
            "seeded": seeded,
            "status": "initialized",
        }
        print_object(data, json_mode=json_mode)
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        store.close()
