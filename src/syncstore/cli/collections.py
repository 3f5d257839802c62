"""syncstore collections: inspect and extend the collection registry."""

from __future__ import annotations

import typer

from syncstore.cli import _exitcodes as ec
from syncstore.cli._output import print_error, print_object, print_table
from syncstore.cli._storage import open_store
from syncstore.errors import CollectionNotFoundError, ValidationError
from syncstore.registry import FIRST_CUSTOM_COLLECTION_ID

app = typer.Typer(no_args_is_help=True)


@app.command(name="list")
def collections_list_cmd(
    custom: bool = typer.Option(False, "--custom", help="Only show non-standard collections"),
) -> None:
    """List registered collections and their ids."""
    from syncstore.cli import state

    try:
        store = open_store()
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.DATABASE_ERROR)

    try:
        collections = store.registry.list_collections()
        if custom:
            collections = [c for c in collections if c.collection_id >= FIRST_CUSTOM_COLLECTION_ID]
        print_table(
            ["id", "name"],
            [[c.collection_id, c.name] for c in collections],
            json_mode=state.json_output,
        )
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        store.close()


@app.command(name="resolve")
def collections_resolve_cmd(
    name: str = typer.Argument(..., help="Collection name"),
) -> None:
    """Print the id registered for a collection name."""
    from syncstore.cli import state

    try:
        store = open_store()
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.DATABASE_ERROR)

    try:
        collection_id = store.registry.resolve(name)
        print_object({"name": name, "id": collection_id}, json_mode=state.json_output)
    except ValidationError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)
    except CollectionNotFoundError as e:
        print_error(str(e))
        raise typer.Exit(ec.NOT_FOUND)
    finally:
        store.close()


@app.command(name="ensure")
def collections_ensure_cmd(
    name: str = typer.Argument(..., help="Collection name"),
) -> None:
    """Register a collection name, returning its existing id if already known."""
    from syncstore.cli import state

    try:
        store = open_store()
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.DATABASE_ERROR)

    try:
        collection_id = store.registry.ensure(name)
        print_object({"name": name, "id": collection_id}, json_mode=state.json_output)
    except ValidationError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        store.close()
