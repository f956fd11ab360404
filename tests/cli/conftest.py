"""Shared fixtures for CLI tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from kvindex.cli import app
from kvindex.storage import IndexStore
from kvindex.types import Location
from tests.conftest import USERS

if TYPE_CHECKING:
    from click.testing import Result


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def cli_db(tmp_path):
    """Temp DB path for the CLI's --db option."""
    return str(tmp_path / "cli_test.db")


@pytest.fixture
def seeded_db(cli_db):
    """A DB with six users indexed by email and age."""
    store = IndexStore(cli_db)
    for i in range(6):
        store.put(
            Location(USERS, f"user{i}"),
            {"email_bin": [f"user{i}@example.com"], "age_int": [30 + i]},
        )
    store.close()
    return cli_db


def invoke(runner: CliRunner, args: list[str], db_path: str | None = None) -> "Result":
    """Invoke CLI with proper state setup."""
    if db_path:
        args = ["--db", db_path] + args
    return runner.invoke(app, args, catch_exceptions=False)
