from loguru import logger
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from formsync.core.config import get_database_url, get_settings
from formsync.models import Base


def create_engine_for_url(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create the async engine with dialect-specific pool configuration
    """
    settings = get_settings()

    if database_url.startswith("sqlite"):
        # SQLite configuration for development and tests
        engine = create_async_engine(
            database_url,
            connect_args={"timeout": 30},
            echo=echo,
        )

        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

    elif database_url.startswith("postgresql"):
        # PostgreSQL configuration for production
        engine = create_async_engine(
            database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            pool_recycle=settings.database_pool_recycle,
            pool_pre_ping=True,  # Verify connections before use
            echo=echo,
            connect_args={"server_settings": {"application_name": "formsync"}},
        )
    else:
        engine = create_async_engine(database_url, echo=echo, pool_pre_ping=True)

    @event.listens_for(engine.sync_engine, "invalidate")
    def receive_invalidate(dbapi_connection, connection_record, exception):
        """Handle database connection invalidation"""
        logger.warning(f"Database connection invalidated: {exception}")

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = create_engine_for_url(get_database_url(), echo=get_settings().database_echo)
AsyncSessionLocal = create_session_factory(engine)


async def init_db(bind: AsyncEngine = None) -> None:
    """
    Create tables if they don't exist
    """
    bind = bind or engine
    try:
        async with bind.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database tables: {e}")
        raise


async def close_db(bind: AsyncEngine = None) -> None:
    """Close database connections."""
    await (bind or engine).dispose()


async def check_database_connection(bind: AsyncEngine = None) -> bool:
    """Check if database connection is healthy"""
    try:
        async with (bind or engine).connect() as connection:
            result = await connection.execute(text("SELECT 1"))
            return result.scalar() == 1
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
