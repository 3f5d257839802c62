"""Shared fixtures for CLI tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from syncstore import Tenant
from syncstore.cli import app
from syncstore.storage import SyncStorage

if TYPE_CHECKING:
    from click.testing import Result

TENANT = Tenant("cli-uid", "cli-kid")


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def cli_db(tmp_path):
    """Create a temp DB path and set it as the CLI state."""
    db_path = str(tmp_path / "cli_test.db")
    return db_path


@pytest.fixture
def seeded_db(cli_db):
    """Create a DB with some seed data."""
    with SyncStorage(cli_db) as store:
        store.put_many(
            TENANT,
            "bookmarks",
            [{"id": "b1", "payload": "abc"}, {"id": "b2", "payload": "de"}],
        )
        store.put(TENANT, "tabs", "t1", {"payload": "x", "ttl": 1})
        store.put(TENANT, "mycoll", "m1", {"payload": "mm"})
    return cli_db


def invoke(runner: CliRunner, args: list[str], db_path: str | None = None) -> "Result":
    """Invoke CLI with proper state setup."""
    if db_path:
        # Inject --db before subcommand
        args = ["--db", db_path] + args
    result = runner.invoke(app, args, catch_exceptions=False)
    return result
