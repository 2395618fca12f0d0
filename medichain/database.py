"""Database connection management for PostgreSQL and Redis."""
import asyncio
import logging
import random
import time
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from redis.asyncio import Redis

from .config import settings

logger = logging.getLogger(__name__)


def _calculate_backoff_delay(attempt: int) -> float:
    """Calculate bounded exponential backoff delay with optional jitter."""
    base_delay = settings.retry_initial_delay
    delay = base_delay * (settings.retry_exponential_base ** (attempt - 1))
    delay = min(delay, settings.retry_max_delay)

    if settings.retry_jitter:
        delay += random.uniform(0, base_delay)

    return delay


async def _retry_async(operation_name: str, operation, fatal_exceptions: tuple = ()):
    """Run an async operation with bounded retries and backoff."""
    last_error = None
    max_attempts = settings.retry_max_attempts

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except fatal_exceptions as exc:  # type: ignore[misc]
            logger.error(
                "Fatal error while performing %s: %s", operation_name, exc,
                exc_info=True,
            )
            raise
        except Exception as exc:
            last_error = exc
            delay = _calculate_backoff_delay(attempt)
            logger.warning(
                "Attempt %s/%s for %s failed: %s", attempt, max_attempts, operation_name, exc,
                exc_info=settings.log_level.upper() == "DEBUG",
            )

            if attempt >= max_attempts:
                break

            await asyncio.sleep(delay)

    raise RuntimeError(f"{operation_name} failed after {max_attempts} attempts") from last_error


# SQLAlchemy Base for ORM models
Base = declarative_base()

# Global database connections
_engine = None
_session_maker = None
_redis_client = None


def get_engine():
    """
    Get or create the async engine.

    Pool sizing depends on whether PgBouncer sits in front of PostgreSQL:
    - PgBouncer (port 6432 or host "pgbouncer"): 5 + 5 overflow
    - Direct PostgreSQL: 10 + 20 overflow
    Non-PostgreSQL URLs (sqlite for local development) use the driver defaults.
    """
    global _engine
    if _engine is None:
        url = settings.postgres_url
        if not url.startswith("postgresql"):
            _engine = create_async_engine(url, echo=settings.log_level == "DEBUG")
            logger.info("Database engine created for %s", url.split("://", 1)[0])
            return _engine

        if settings.postgres_port == 6432 or settings.postgres_host == "pgbouncer":
            pool_size = 5
            max_overflow = 5
            logger.info("Using PgBouncer - configuring small application connection pool")
        else:
            pool_size = 10
            max_overflow = 20
            logger.info("Direct PostgreSQL connection - using standard connection pool")

        try:
            _engine = create_async_engine(
                url,
                echo=settings.log_level == "DEBUG",
                pool_pre_ping=True,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_recycle=3600,
                pool_timeout=30,
            )
        except ArgumentError as exc:
            logger.critical(
                "Failed to initialize PostgreSQL engine for %s:%s/%s: %s",
                settings.postgres_host,
                settings.postgres_port,
                settings.postgres_db,
                exc,
            )
            raise
        logger.info(
            "PostgreSQL engine created: %s:%s (pool_size=%s, max_overflow=%s)",
            settings.postgres_host,
            settings.postgres_port,
            pool_size,
            max_overflow,
        )
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get or create the session maker."""
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_maker


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for FastAPI to get a request-scoped database session.

    Usage:
        @router.get("/endpoint")
        async def endpoint(db: AsyncSession = Depends(get_session)):
            ...
    """
    session_maker = get_session_maker()
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def ping_database() -> float:
    """Execute a lightweight connectivity probe and return its latency in ms."""
    session_maker = get_session_maker()
    start = time.time()
    async with session_maker() as session:
        result = await session.execute(text("SELECT 1"))
        result.scalar_one()
    return round((time.time() - start) * 1000, 2)


async def ensure_database_ready() -> None:
    """Ensure the database is reachable with bounded retries."""
    try:
        latency_ms = await _retry_async(
            "Database connectivity",
            ping_database,
            fatal_exceptions=(ArgumentError,),
        )
        logger.info("Database ready (%.2fms)", latency_ms)
    except Exception as exc:
        logger.critical(
            "Database unreachable at %s:%s/%s after %s attempts: %s",
            settings.postgres_host,
            settings.postgres_port,
            settings.postgres_db,
            settings.retry_max_attempts,
            exc,
        )
        raise


async def create_tables():
    """Create all tables known to the ORM metadata."""
    from . import db_models  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")


async def init_database():
    """Initialize and verify the database connection."""
    logger.info("Initializing database connection...")
    await ensure_database_ready()
    if settings.auto_create_tables:
        await create_tables()
    logger.info("Database connection initialized and verified")


async def close_database():
    """Close database connections."""
    global _engine, _session_maker
    if _engine:
        await _engine.dispose()
        _engine = None
        _session_maker = None
        logger.info("Database connections closed")


# ============================================================================
# Redis Connection Management
# ============================================================================

def get_redis_client() -> Redis:
    """Get or create the Redis client backing the rate limiter."""
    global _redis_client
    if _redis_client is None:
        _redis_client = Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            max_connections=50,
        )
        logger.info(
            "Redis client created: %s:%s (db=%s)",
            settings.redis_host,
            settings.redis_port,
            settings.redis_db,
        )
    return _redis_client


async def close_redis():
    """Close Redis connections."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.close()
        _redis_client = None
        logger.info("Redis connections closed")
