"""syncstore info: show database status and table statistics."""

from __future__ import annotations

import os
from typing import Any

import typer

from syncstore.cli import _exitcodes as ec
from syncstore.cli._output import print_error, print_object
from syncstore.cli._storage import open_store


def info_cmd(
    stats: bool = typer.Option(False, "--stats", help="Show row counts per table"),
) -> None:
    """Show database status and high-level metadata."""
    from syncstore.cli import state

    json_mode = state.json_output
    try:
        store = open_store()
    except FileNotFoundError as e:
        print_error(str(e))
        raise typer.Exit(ec.DATABASE_ERROR)
    except Exception as e:
        print_error(f"Cannot open storage backend: {e}")
        raise typer.Exit(ec.DATABASE_ERROR)

    try:
        data: dict[str, Any] = store.storage_info()
        db_path = str(data.get("db_path"))
        if db_path != ":memory:" and os.path.exists(db_path):
            data["file_size_bytes"] = os.path.getsize(db_path)
        data["collections"] = len(store.registry.list_collections())

        if json_mode:
            if stats:
                data["table_counts"] = store.db.table_counts()
            print_object(data, json_mode=True)
            return

        print(f"Backend: {data['backend']}")
        print(f"Database: {db_path}")
        if "file_size_bytes" in data:
            print(f"File size: {int(data['file_size_bytes']):,} bytes")
        print(f"Schema version: {data['schema_version']}")
        print(f"Registered collections: {data['collections']}")
        if stats:
            print("\nTable counts:")
            for table, count in store.db.table_counts().items():
                print(f"  {table}: {count}")
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        store.close()
