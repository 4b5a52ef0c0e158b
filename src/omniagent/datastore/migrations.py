"""Auto-migration support.

``create_all`` for development and tests; production deployments run the
Alembic scripts under ``alembic/``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from omniagent.models.base import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


async def run_auto_migrate(engine: AsyncEngine) -> None:
    """Create all tables defined by ORM models.

    Args:
        engine: The async SQLAlchemy engine to migrate.
    """
    # Import all models to register them with Base.metadata
    import omniagent.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_all_tables(engine: AsyncEngine) -> None:
    """Drop all tables (test/dev utility only).

    Args:
        engine: The async SQLAlchemy engine.
    """
    import omniagent.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
