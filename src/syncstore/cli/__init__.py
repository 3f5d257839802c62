"""syncstore CLI: operator console for inspecting and maintaining a sync store."""

from __future__ import annotations

from typing import Optional

import typer

from syncstore.cli import collections, info, init_cmd, purge, reap, usage
from syncstore.log import configure_logging

app = typer.Typer(
    name="syncstore",
    help="syncstore CLI: operator console for inspecting and maintaining a sync store.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    db: str = "syncstore.db"
    storage_uri: str | None = None
    config: str | None = None
    json_output: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        try:
            from importlib.metadata import version

            v = version("syncstore")
        except Exception:
            v = "unknown"
        print(f"syncstore {v}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    db: Optional[str] = typer.Option(
        None,
        "--db",
        envvar="SYNCSTORE_DB",
        help="SQLite database file path (default: syncstore.db)",
    ),
    storage_uri: Optional[str] = typer.Option(
        None,
        "--storage-uri",
        envvar="SYNCSTORE_STORAGE_URI",
        help="Backend storage URI (e.g. sqlite:///var/lib/syncstore.db)",
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="SYNCSTORE_CONFIG",
        help="YAML config file path",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output when supported"),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="More log output (-vv for debug)"),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all syncstore commands."""
    from syncstore.storage import parse_storage_target

    if storage_uri:
        try:
            parse_storage_target(db_path=db, storage_uri=storage_uri)
        except Exception as e:
            raise typer.BadParameter(str(e))

    configure_logging({0: "WARNING", 1: "INFO"}.get(verbose, "DEBUG"))
    state.db = db or "syncstore.db"
    state.storage_uri = storage_uri
    state.config = config
    state.json_output = json_output
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


# Register subcommand groups
app.add_typer(collections.app, name="collections", help="Inspect and extend the collection registry")

# Register top-level commands
app.command(name="init")(init_cmd.init_cmd)
app.command(name="info")(info.info_cmd)
app.command(name="usage")(usage.usage_cmd)
app.command(name="purge")(purge.purge_cmd)
app.command(name="reap")(reap.reap_cmd)


def main() -> None:
    """Entry point for the syncstore CLI."""
    app()
