"""Configuration for kvindex clients and transports."""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass
class KvIndexConfig:
    """Configuration for index query execution."""

    default_bucket_type: str = "default"
    prefetch_batches: int = 2
    page_size: int = 1000
    consumer_poll_interval_s: float = 0.1
    cancel_wait_timeout_s: float = 5.0
    db_path: str = "kvindex.db"


def config_from_env() -> KvIndexConfig:
    """Build a config, overriding defaults from ``KVINDEX_*`` environment variables."""
    config = KvIndexConfig()
    db_path = os.getenv("KVINDEX_DB")
    if db_path:
        config.db_path = db_path
    page_size = os.getenv("KVINDEX_PAGE_SIZE")
    if page_size:
        config.page_size = int(page_size)
    prefetch = os.getenv("KVINDEX_PREFETCH_BATCHES")
    if prefetch:
        config.prefetch_batches = int(prefetch)
    return config
