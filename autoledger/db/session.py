"""
Database engine and session management.

One async engine per process.  Each request gets its own ``AsyncSession``
through the :func:`get_db` dependency; services decide where its
transactions begin and end.
"""

from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from autoledger.core.config import settings


def enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    """Turn on FK enforcement for every new SQLite connection.

    The listener is attached to the sync engine because aiosqlite drives a
    sync DB-API connection underneath.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_sqlite_engine(url: str = "sqlite+aiosqlite://", echo: bool = False) -> AsyncEngine:
    """In-memory SQLite engine where every session shares one connection.

    Without ``StaticPool`` each connection would open its own empty
    in-memory database.
    """
    sqlite_engine = create_async_engine(
        url,
        echo=echo,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(sqlite_engine)
    return sqlite_engine


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: attribute access after commit would otherwise
    # trigger a lazy load, which async sessions cannot perform implicitly.
    return async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False)


if settings.USE_SQLITE:
    engine = create_sqlite_engine(settings.DATABASE_URL, echo=settings.DEBUG)
else:
    engine = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
    )

AsyncSessionLocal = make_session_factory(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a request-scoped session, closed afterwards."""
    async with AsyncSessionLocal() as session:
        yield session
