"""
lms/database.py
Async engine, session factory and schema bootstrap
"""
import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker, AsyncEngine

from lms.config.settings import get_settings
from lms.orm.base import Base
import lms.orm  # registers every model on Base.metadata

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> AsyncEngine:
    """
    Create the async engine with pool settings suited to the dialect.

    SQLite gets a busy timeout for concurrent writers; server databases
    get a larger pool and connection recycling.
    """
    if "sqlite" in database_url.lower():
        connect_args = {"timeout": 30.0}
        if ":memory:" in database_url:
            return create_async_engine(database_url, echo=False, connect_args=connect_args)
        return create_async_engine(
            database_url,
            echo=False,
            pool_pre_ping=True,
            connect_args=connect_args,
        )

    return create_async_engine(
        database_url,
        echo=False,
        pool_pre_ping=True,
        pool_size=20,
        max_overflow=30,
        pool_timeout=30,
        pool_recycle=3600,
    )


def build_sessionmaker(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(get_settings().database_url)
AsyncSessionLocal = build_sessionmaker(engine)


async def get_db():
    """Dependency for getting async database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(bind: AsyncEngine = None):
    """Create all tables that do not exist yet."""
    bind = bind or engine
    logger.info("Initializing database...")

    try:
        logger.info(f"Database dialect: {bind.url.get_backend_name()}")
        if bind.url.get_backend_name() == "sqlite":
            logger.warning("Running on SQLite, JSONB downgraded to JSON.")

        async with bind.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("Database initialization complete")

    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}")
        raise


async def close_db(bind: AsyncEngine = None):
    """Close database connection"""
    await (bind or engine).dispose()
    logger.info("Database connection closed")
