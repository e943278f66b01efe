"""SendSafe database module.

SQLAlchemy 2.x async engine over psycopg 3, created lazily from the
application settings. The ORM models live in ``sendsafe.db.models`` and
the Alembic migrations in ``sendsafe.db.migrations``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sendsafe.core.config import DatabaseSettings

ASYNC_DRIVER = "postgresql+psycopg"

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def to_psycopg_url(url: str) -> str:
    """Point a PostgreSQL URL at the psycopg 3 driver, keeping everything else."""
    parsed = make_url(url)
    if parsed.get_backend_name() == "postgresql":
        parsed = parsed.set(drivername=ASYNC_DRIVER)
    return parsed.render_as_string(hide_password=False)


def _create_engine(settings: DatabaseSettings) -> AsyncEngine:
    return create_async_engine(
        to_psycopg_url(str(settings.url)),
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout,
        pool_pre_ping=True,
        echo=settings.echo,
    )


def _get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _engine, _session_factory

    if _session_factory is None:
        from sendsafe.core.settings import get_settings

        _engine = _create_engine(get_settings().database)
        # Objects returned by the repository stay readable after each commit
        _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _session_factory


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Open a session for one request or one sweep.

    The repository commits after every write; anything still pending when
    an exception escapes is rolled back.

    Usage:
        async with get_async_session() as session:
            store = SqlDeliveryRepository(session)
    """
    session = _get_session_factory()()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def close_engine() -> None:
    """Dispose of the engine's connection pool on shutdown."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
