"""Memgraph connection configuration."""

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class MemgraphConfig:
    url: str = "bolt://127.0.0.1:7687"
    user: str = ""
    password: str = ""
    database: str = ""  # empty = server default
    timeout_ms: int = 10_000
    max_pool_size: int = 20


def load_memgraph_config() -> MemgraphConfig:
    """Load Memgraph config from environment variables."""
    return MemgraphConfig(
        url=os.getenv("KGM_MEMGRAPH_URL", "bolt://127.0.0.1:7687"),
        user=os.getenv("KGM_MEMGRAPH_USER", ""),
        password=os.getenv("KGM_MEMGRAPH_PASSWORD", ""),
        database=os.getenv("KGM_MEMGRAPH_DATABASE", ""),
        timeout_ms=int(os.getenv("KGM_MEMGRAPH_TIMEOUT_MS", "10000")),
        max_pool_size=int(os.getenv("KGM_MEMGRAPH_MAX_POOL_SIZE", "20")),
    )
