"""Async engine and sessions for the review queue database."""
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from backend.config.settings import get_settings
from backend.config.logging_config import get_logger

logger = get_logger(__name__)

# Engine and session factory (initialized lazily)
_engine = None
_async_session_factory = None

_ASYNC_DRIVERS = {
    "postgresql://": "postgresql+asyncpg://",
    "postgres://": "postgresql+asyncpg://",
    "sqlite://": "sqlite+aiosqlite://",
}


def _async_url(db_url: str) -> str:
    """Swap a sync driver prefix for its async driver."""
    for prefix, async_prefix in _ASYNC_DRIVERS.items():
        if db_url.startswith(prefix):
            return async_prefix + db_url[len(prefix):]
    return db_url


def _sqlite_file(db_url: str) -> Optional[Path]:
    if not db_url.startswith("sqlite") or ":///" not in db_url:
        return None
    db_path = db_url.split(":///", 1)[1]
    if not db_path or db_path == ":memory:":
        return None
    return Path(db_path)


def _engine_options(db_url: str, echo: bool) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": echo, "future": True}
    if not db_url.startswith("sqlite"):
        options.update(pool_pre_ping=True, pool_size=10, max_overflow=20)
    return options


def get_engine(database_url: Optional[str] = None):
    """
    Get or create the database engine.

    Args:
        database_url: Overrides settings.database_url on first creation only
    """
    global _engine
    if _engine is None:
        settings = get_settings()
        db_url = _async_url(database_url or settings.database_url)

        sqlite_file = _sqlite_file(db_url)
        if sqlite_file is not None:
            sqlite_file.parent.mkdir(parents=True, exist_ok=True)

        _engine = create_async_engine(db_url, **_engine_options(db_url, settings.app_env == "development"))
        logger.info("Database engine created", db_type=db_url.split("://")[0])
    return _engine


def get_session_factory():
    """Get or create the session factory."""
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False
        )
    return _async_session_factory


async def init_db() -> None:
    """Create the review tables if they do not exist."""
    from backend.storage.models import Base

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database initialized")


async def dispose_engine() -> None:
    """Close pooled connections and forget the engine, so the next call rebuilds it."""
    global _engine, _async_session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _async_session_factory = None


@asynccontextmanager
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Session that commits on success and rolls back on error.

    Usage:
        async with get_db() as db:
            db.add(row)
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error("Database session error", error=str(e))
            raise
