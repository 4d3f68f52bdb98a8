"""PostgreSQL (Supabase) database connection"""
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from typing import AsyncGenerator
import logging
import asyncio
import ssl

from app.core.config import settings

logger = logging.getLogger(__name__)

# Base for SQLAlchemy models
Base = declarative_base()

# Engine and session factory
engine = None
async_session_maker = None


def to_async_url(database_url: str) -> str:
    """Strip query parameters and switch the driver to asyncpg"""
    if "?" in database_url:
        # SSL is configured through connect_args instead
        database_url = database_url.split("?")[0]

    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgresql+psycopg://"):
        return database_url.replace("postgresql+psycopg://", "postgresql+asyncpg://", 1)
    return database_url


async def init_db():
    """Initialize the database engine"""
    global engine, async_session_maker

    if engine is not None:
        logger.warning("Database engine already initialized, skipping...")
        return

    database_url = to_async_url(settings.DATABASE_URL)
    logger.info(f"Initializing database connection to: {database_url.split('@')[1] if '@' in database_url else database_url}")

    is_supabase = "supabase.com" in database_url or "supabase.co" in database_url

    connect_args = {}
    if is_supabase:
        logger.info("Detected Supabase connection, configuring search_path and SSL")
        ssl_context = ssl.create_default_context()
        ssl_context.check_hostname = False
        ssl_context.verify_mode = ssl.CERT_NONE

        connect_args = {
            "ssl": ssl_context,
            "server_settings": {
                "search_path": "public",
                "jit": "off"
            },
            "command_timeout": 60,
            "timeout": 60,
        }

    engine = create_async_engine(
        database_url,
        echo=settings.APP_ENV == "debug",
        connect_args=connect_args,
        pool_pre_ping=True,
        pool_recycle=180 if is_supabase else 300,  # Supabase pooler drops idle connections sooner
        pool_timeout=30,
        pool_size=3 if is_supabase else 5,
        max_overflow=5 if is_supabase else 10,
    )

    async_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    logger.info("Database engine initialized successfully")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency yielding a database session, retrying transient connection errors.

    DNS/socket failures (OSError) are retried with exponential backoff;
    anything else is raised immediately.
    """
    if async_session_maker is None:
        logger.error("Database not initialized! Call init_db() first.")
        raise RuntimeError("Database not initialized. Please check application startup.")

    max_retries = 3
    retry_delay = 0.5
    last_exception = None

    for attempt in range(max_retries):
        try:
            async with async_session_maker() as session:
                yield session
                return
        except OSError as e:
            last_exception = e
            if attempt < max_retries - 1:
                delay = retry_delay * (2 ** attempt)
                logger.warning(
                    f"Database connection error (attempt {attempt + 1}/{max_retries}): {type(e).__name__}: {e}. "
                    f"Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)
            else:
                logger.error(f"Database connection failed after {max_retries} attempts: {e}")

    raise last_exception or RuntimeError("Database connection failed")


async def close_db():
    """Close database connections"""
    global engine, async_session_maker
    if engine:
        logger.info("Closing database connections...")
        await engine.dispose()
        engine = None
        async_session_maker = None
        logger.info("Database connections closed")
