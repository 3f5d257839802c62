"""syncstore reap: remove expired items and batches."""

from __future__ import annotations

from typing import Optional

import typer

from syncstore.cli import _exitcodes as ec
from syncstore.cli._output import print_error, print_object
from syncstore.cli._storage import open_store


def reap_cmd(
    max_chunks: Optional[int] = typer.Option(
        None, "--max-chunks", min=1, help="Stop after this many chunks per table"
    ),
) -> None:
    """Run one expiry pass over the whole store."""
    from syncstore.cli import state

    try:
        store = open_store()
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.DATABASE_ERROR)

    try:
        result = store.reaper.run_pass(max_chunks=max_chunks)
        print_object(result.to_dict(), json_mode=state.json_output)
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        store.close()
