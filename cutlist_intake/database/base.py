"""SQLAlchemy base, engine and session factory."""

from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from cutlist_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def create_session_factory(
    database_url: str,
    echo: bool = False,
) -> Tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create an async engine and its session factory.

    Args:
        database_url: SQLAlchemy async URL (e.g. ``sqlite+aiosqlite:///./cutlist_intake.db``)
        echo: Log emitted SQL

    Returns:
        The engine and an ``async_sessionmaker`` bound to it
    """
    engine = create_async_engine(database_url, echo=echo, future=True)
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return engine, session_maker


async def init_database(engine: AsyncEngine) -> None:
    """Create missing tables."""
    # Registers the models on Base.metadata
    from cutlist_intake.database import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    LOGGER.info("Database tables ensured", extra={"url": str(engine.url.render_as_string(hide_password=True))})


async def close_database(engine: Optional[AsyncEngine]) -> None:
    if engine is not None:
        await engine.dispose()
