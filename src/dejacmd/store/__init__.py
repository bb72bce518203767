"""
Storage module for dejacmd.

Every store holds one append-only `history` table with the same logical
columns; each SQL dialect gets its own adapter:

    - SQLiteAdapter: the default local store, a single file
    - PostgresAdapter: psycopg 3
    - MySQLAdapter: PyMySQL, also used for MariaDB

The adapter is chosen once from the URL scheme by create_adapter(); callers
never branch on the dialect themselves. Server drivers are imported only
when a store of that dialect is opened, so the live shell hook pays for
SQLite alone.
"""

from collections.abc import Callable
from typing import Any

from dejacmd.schema import Dialect, StoreConfig
from dejacmd.store.base import BackendAdapter, RowStream, SearchHit, escape_like
from dejacmd.store.sqlite import SQLiteAdapter


def adapter_class(dialect: Dialect) -> type[BackendAdapter]:
    """Adapter class for a dialect."""
    if dialect == Dialect.POSTGRES:
        from dejacmd.store.postgres import PostgresAdapter

        return PostgresAdapter
    if dialect == Dialect.MYSQL:
        from dejacmd.store.mysql import MySQLAdapter

        return MySQLAdapter
    return SQLiteAdapter


def create_adapter(
    config: StoreConfig,
    connect: Callable[[], Any] | None = None,
) -> BackendAdapter:
    """
    Build the adapter for a resolved store configuration.

    The adapter does not connect until first use.

    Args:
        config: Resolved connection descriptor
        connect: Optional DB-API connection factory overriding the driver's
    """
    return adapter_class(config.dialect)(config, connect=connect)


__all__ = [
    "BackendAdapter",
    "RowStream",
    "SQLiteAdapter",
    "SearchHit",
    "adapter_class",
    "create_adapter",
    "escape_like",
]
