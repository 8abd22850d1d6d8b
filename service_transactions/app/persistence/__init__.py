"""
Persistence package for the Transaction Proxy Service.

Holds the record store contract and its backends:

- contracts: CacheEntry and the TransactionStore protocol
- postgres: asyncpg-backed store (production)
- memory: dict-backed store (local runs and tests)

Stores guarantee insert-if-absent per transaction id; an existing entry is
never overwritten.
"""

from .contracts import CacheEntry, TransactionStore
from .memory import MemoryTransactionStore
from .postgres import PostgresTransactionStore

__all__ = [
    "CacheEntry",
    "TransactionStore",
    "MemoryTransactionStore",
    "PostgresTransactionStore",
    "create_store",
]


def create_store(config) -> TransactionStore:
    """Build the store selected by ``config.store_backend``."""
    backend = config.store_backend.lower()
    if backend == "memory":
        return MemoryTransactionStore()
    if backend == "postgres":
        return PostgresTransactionStore(
            config.postgres_dsn,
            min_size=config.postgres_min_pool_size,
            max_size=config.postgres_max_pool_size,
            command_timeout=config.postgres_command_timeout
        )
    raise ValueError(f"Unknown store backend: {config.store_backend}")
