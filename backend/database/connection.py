from typing import Optional
import logging

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
)
from sqlalchemy.orm import DeclarativeBase

from config import get_settings

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


class Base(DeclarativeBase):
    pass


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory used by the API and by tests against their own engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


def get_engine() -> AsyncEngine:
    """Create the async engine on first use from DATABASE_URL."""
    global _engine, _session_factory

    if _engine is None:
        settings = get_settings()
        if not settings.DATABASE_URL:
            raise ValueError("DATABASE_URL environment variable is not set")

        connect_args = {}
        if settings.DB_SSL_REQUIRED and settings.DATABASE_URL.startswith("postgresql+asyncpg"):
            connect_args["ssl"] = "require"

        _engine = create_async_engine(
            settings.DATABASE_URL,
            echo=False,
            pool_pre_ping=True,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            connect_args=connect_args
        )
        _session_factory = build_session_factory(_engine)

    return _engine


def get_session_factory() -> async_sessionmaker:
    get_engine()
    return _session_factory


async def get_db():
    """Dependency to get database session"""
    async with get_session_factory()() as session:
        try:
            yield session
        finally:
            await session.close()


async def create_tables(engine: Optional[AsyncEngine] = None):
    """Create the finance tables if they do not exist yet."""
    # Registers the finance models on Base.metadata
    import database.finance_models  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db():
    """Initialize database connection and verify the finance tables exist"""
    try:
        async with get_engine().begin() as conn:
            await conn.execute(text("SELECT 1"))
            logger.info("Database connection successful")

            tables = await conn.run_sync(
                lambda sync_conn: set(Base.metadata.tables) & set(inspect(sync_conn).get_table_names())
            )
            logger.info(f"Finance tables present: {sorted(tables)}")

            return True
    except Exception as e:
        logger.error(f"Database initialization error: {e}")
        raise
