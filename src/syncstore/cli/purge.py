"""syncstore purge: delete one collection or all stored data for a tenant."""

from __future__ import annotations

from typing import Optional

import typer

from syncstore.cli import _exitcodes as ec
from syncstore.cli._output import print_error, print_object
from syncstore.cli._storage import open_store, tenant_from_options
from syncstore.errors import CollectionNotFoundError, ValidationError


def purge_cmd(
    uid: str = typer.Option(..., "--uid", help="Account uid (fxa_uid)"),
    kid: str = typer.Option(..., "--kid", help="Key id (fxa_kid)"),
    collection: Optional[str] = typer.Option(
        None, "--collection", help="Only delete this collection"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete a tenant's data, with its batches, in one transaction."""
    from syncstore.cli import state

    try:
        tenant = tenant_from_options(uid, kid)
    except ValidationError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    what = f"collection {collection!r}" if collection else "all collections"
    if not yes and not typer.confirm(f"Delete {what} for {tenant}?"):
        print_error("Aborted")
        raise typer.Exit(ec.EXECUTION_FAILURE)

    try:
        store = open_store()
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.DATABASE_ERROR)

    try:
        if collection:
            store.delete_collection(tenant, collection)
            data = {"tenant": str(tenant), "collection": collection, "status": "deleted"}
        else:
            removed = store.delete_storage(tenant)
            data = {"tenant": str(tenant), "collections_deleted": removed, "status": "deleted"}
        print_object(data, json_mode=state.json_output)
    except CollectionNotFoundError as e:
        print_error(str(e))
        raise typer.Exit(ec.NOT_FOUND)
    except ValidationError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        store.close()
