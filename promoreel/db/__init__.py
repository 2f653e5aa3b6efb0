"""
Database module for promoreel.

Provides async SQLAlchemy engine with SQLite WAL mode,
session management, and schema initialization.
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from promoreel.db.engine import (
    async_session,
    build_engine,
    build_session_factory,
    engine,
    shutdown,
    sqlite_database_path,
)
from promoreel.db.models import Base, ProjectRecord, StylePackRecord

logger = logging.getLogger(__name__)


async def init_database(target: Optional[AsyncEngine] = None):
    """Initialize database schema on first run."""
    target = target or engine
    db_path = sqlite_database_path(str(target.url))
    if db_path is not None:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database ready at {target.url}")


__all__ = [
    "Base",
    "ProjectRecord",
    "StylePackRecord",
    "engine",
    "async_session",
    "build_engine",
    "build_session_factory",
    "shutdown",
    "init_database",
]
