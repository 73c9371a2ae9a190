"""Database connection and session management."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from bridgeroute.config import get_settings
from bridgeroute.ledger.models import Base

# Global engine and session factory
_engine: Optional[AsyncEngine] = None
_engine_url: Optional[str] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _normalize_url(db_url: str) -> str:
    # Convert sqlite:/// to sqlite+aiosqlite:/// if needed
    if db_url.startswith("sqlite:///") and "aiosqlite" not in db_url:
        db_url = db_url.replace("sqlite:///", "sqlite+aiosqlite:///")
    return db_url


def get_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Get or create the database engine.

    Raises:
        RuntimeError: the engine is already bound to a different URL
    """
    global _engine, _engine_url
    if _engine is not None:
        if database_url is not None and _normalize_url(database_url) != _engine_url:
            raise RuntimeError("Database engine is bound to another URL; call close_db() first")
        return _engine

    settings = get_settings()
    db_url = _normalize_url(database_url or settings.database_url)

    kwargs = {}
    if ":memory:" in db_url:
        # One shared connection, otherwise every session sees an empty database
        kwargs = {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}

    _engine = create_async_engine(
        db_url,
        echo=settings.debug and not settings.is_production,
        **kwargs,
    )
    _engine_url = db_url
    return _engine


def get_session_factory(database_url: Optional[str] = None) -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory."""
    global _session_factory
    engine = get_engine(database_url)
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


@asynccontextmanager
async def get_db(database_url: Optional[str] = None) -> AsyncGenerator[AsyncSession, None]:
    """Get a database session context manager."""
    session_factory = get_session_factory(database_url)
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(database_url: Optional[str] = None) -> None:
    """Initialize the database by creating all tables."""
    if database_url is None:
        database_url = get_settings().database_url
    if database_url.startswith("sqlite") and ":memory:" not in database_url:
        # aiosqlite does not create missing parent directories
        path = database_url.split(":///", 1)[-1]
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    engine = get_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    global _engine, _engine_url, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _engine_url = None
        _session_factory = None
