"""Database connection and session management."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from trondeposit.config import get_settings
from trondeposit.ledger.models import Base

SessionFactory = async_sessionmaker[AsyncSession]

# Global engine and session factory
_engine = None
_session_factory: Optional[SessionFactory] = None


def get_engine():
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        # Convert sqlite:/// to sqlite+aiosqlite:/// if needed
        db_url = settings.database_url
        if db_url.startswith("sqlite:///") and "aiosqlite" not in db_url:
            db_url = db_url.replace("sqlite:///", "sqlite+aiosqlite:///")

        _engine = create_async_engine(
            db_url,
            echo=settings.debug and not settings.is_production,
            future=True,
        )
    return _engine


def create_session_factory(engine) -> SessionFactory:
    """Build a session factory bound to ``engine``."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_session_factory() -> SessionFactory:
    """Get or create the global session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


@asynccontextmanager
async def get_db(
    session_factory: Optional[SessionFactory] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Get a database session that commits on success and rolls back on error.

    Everything done inside one ``async with get_db()`` block is a single
    transaction.
    """
    session_factory = session_factory or get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise


async def init_db() -> None:
    """Initialize the database by creating all tables."""
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
