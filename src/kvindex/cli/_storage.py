"""CLI helpers for store and client construction."""

from __future__ import annotations

from kvindex.client import IndexClient
from kvindex.config import KvIndexConfig, config_from_env
from kvindex.storage import IndexStore, open_store


def _config() -> KvIndexConfig:
    """Runtime config from the environment, with the CLI's --db applied."""
    from kvindex.cli import state

    config = config_from_env()
    config.db_path = state.db
    return config


def open_client() -> IndexClient:
    """Open a client over the store selected by the global CLI options."""
    config = _config()
    return IndexClient.local(config.db_path, config)


def open_cli_store() -> IndexStore:
    """Open the store selected by the global CLI options for writes."""
    from kvindex.cli import state

    return open_store(state.db)
