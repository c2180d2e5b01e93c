"""
Async SQLAlchemy engine for booth apps, leads and (behind
FF_USE_DATABASE_SESSIONS) conversation sessions.
"""

import logging
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import get_settings

logger = logging.getLogger(__name__)

_ASYNC_DRIVERS = {
    "postgresql://": "postgresql+asyncpg://",
    "postgres://": "postgresql+asyncpg://",
    "sqlite:///": "sqlite+aiosqlite:///",
}


class Base(DeclarativeBase):
    pass


_engine = None
_session_factory = None


def async_url(url: str) -> str:
    """Plain DATABASE_URLs (as hosting providers hand them out) get an async driver."""
    for prefix, replacement in _ASYNC_DRIVERS.items():
        if url.startswith(prefix):
            return replacement + url[len(prefix):]
    return url


def get_engine():
    global _engine
    if _engine is None:
        settings = get_settings()
        url = async_url(settings.database_url)
        backend = url.split(":", 1)[0]

        kwargs = {"echo": settings.debug}
        if not backend.startswith("sqlite"):
            # Sessions table sees a burst of short writes per booth visitor
            kwargs.update(pool_size=10, max_overflow=10, pool_pre_ping=True)

        _engine = create_async_engine(url, **kwargs)
        logger.info("Database engine created (%s)", backend)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


async def get_db() -> AsyncSession:
    """Request-scoped session; commits when the route returns cleanly."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    """Create the sessions, booth app and lead tables if missing."""
    from .. import models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Tables ready: %s", ", ".join(sorted(Base.metadata.tables)))


async def close_db():
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _session_factory = None
