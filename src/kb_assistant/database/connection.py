"""Database engine creation and lifecycle."""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from kb_assistant.config import Settings, get_settings
from kb_assistant.database.models import Base

logger = logging.getLogger(__name__)

# Global engine instance
_engine: Optional[AsyncEngine] = None


def enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    """Turn on foreign key enforcement so ON DELETE CASCADE works on SQLite."""

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_engine(settings: Optional[Settings] = None) -> AsyncEngine:
    """Create and configure the SQLAlchemy async engine."""
    settings = settings or get_settings()
    db_url = settings.database.async_url

    engine_kwargs: Dict[str, Any] = {"echo": settings.database.echo}
    if settings.database.is_sqlite:
        _ensure_sqlite_directory(db_url)
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    else:
        engine_kwargs.update(
            pool_size=settings.database.pool_size,
            max_overflow=settings.database.max_overflow,
            pool_pre_ping=True,  # Verify connections before using them
        )

    engine = create_async_engine(db_url, **engine_kwargs)
    if settings.database.is_sqlite:
        enable_sqlite_foreign_keys(engine)

    logger.info(f"Database engine created: driver={engine.url.drivername}")
    return engine


def _ensure_sqlite_directory(db_url: str) -> None:
    # sqlite+aiosqlite:///./data/x.db -> ./data/x.db
    _, _, path = db_url.partition(":///")
    if not path or path.startswith(":memory:"):
        return
    Path(path).parent.mkdir(parents=True, exist_ok=True)


def get_engine() -> AsyncEngine:
    """Get or create the global database engine."""
    global _engine
    if _engine is None:
        _engine = create_engine()
    return _engine


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema initialized")


async def check_connection(engine: Optional[AsyncEngine] = None) -> bool:
    """Check if database connection is available."""
    try:
        engine = engine or get_engine()
        async with engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            row = result.fetchone()
            return row is not None and row[0] == 1
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False


async def close_engine(engine: Optional[AsyncEngine] = None) -> None:
    """Dispose of an engine, the global one by default."""
    global _engine
    if engine is None or engine is _engine:
        engine, _engine = _engine, None
    if engine is not None:
        await engine.dispose()
        logger.info("Database engine closed")
