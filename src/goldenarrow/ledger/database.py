"""Database connection and session management."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from goldenarrow.config import get_settings
from goldenarrow.ledger.models import Base

# SQLite waits this long on a locked database before raising
SQLITE_BUSY_TIMEOUT = 15

# Global engine and session factory
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def normalize_database_url(db_url: str) -> str:
    """Convert sqlite:/// to sqlite+aiosqlite:/// if needed."""
    if db_url.startswith("sqlite:///") and "aiosqlite" not in db_url:
        return db_url.replace("sqlite:///", "sqlite+aiosqlite:///")
    return db_url


def build_engine(db_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for a database URL."""
    db_url = normalize_database_url(db_url)
    connect_args = {}
    if db_url.startswith("sqlite"):
        connect_args["timeout"] = SQLITE_BUSY_TIMEOUT
    return create_async_engine(db_url, echo=echo, connect_args=connect_args)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_engine() -> AsyncEngine:
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(
            settings.database_url,
            echo=settings.debug and not settings.is_production,
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


@asynccontextmanager
async def get_db(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Get a database session that commits on success and rolls back on error."""
    session_factory = session_factory or get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """Initialize the database by creating all tables."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
