"""Database engine and session factory."""

import logging
from pathlib import Path
from typing import Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from autoflow.config import Settings, get_settings

logger = logging.getLogger(__name__)


def create_engine_for_url(database_url: str, settings: Optional[Settings] = None) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    SQLite doesn't support connection pooling parameters.
    """
    settings = settings or get_settings()
    echo = settings.LOG_LEVEL == "DEBUG"

    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo)

    # PostgreSQL and other databases with connection pooling
    return create_async_engine(
        database_url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,  # Verify connections before using
        echo=echo,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


def ensure_sqlite_directory(database_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    url = make_url(database_url)
    if not url.drivername.startswith("sqlite") or not url.database or url.database == ":memory:":
        return
    data_dir = Path(url.database).parent
    if not data_dir.exists():
        logger.info(f"📁 Creating data directory: {data_dir}")
        data_dir.mkdir(parents=True, exist_ok=True)
