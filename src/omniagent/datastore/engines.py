"""Database engine factories — PostgreSQL, SQLite.

- PostgreSQL (asyncpg driver)
- SQLite (aiosqlite driver); in-memory DSNs share one connection
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

if TYPE_CHECKING:
    from omniagent.config.settings import DatabaseConfig


def create_engine(config: DatabaseConfig) -> AsyncEngine:
    """Create an async SQLAlchemy engine from database configuration.

    Args:
        config: Database configuration with DSN, pool settings, etc.

    Returns:
        A configured ``AsyncEngine`` ready for use.
    """
    kwargs: dict[str, Any] = {
        "echo": config.debug_sql,
    }

    if "sqlite" in config.dsn:
        # Every session must see the same in-memory database.
        if ":memory:" in config.dsn:
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_size"] = config.max_idle_connections
        kwargs["max_overflow"] = config.max_open_connections - config.max_idle_connections
        kwargs["pool_pre_ping"] = True

    return create_async_engine(config.dsn, **kwargs)
