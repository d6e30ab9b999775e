"""
Persistence handles owned by the process: the SQLAlchemy engine and session
factory for user/OTP records, and the Redis client behind token revocation.
"""
from typing import AsyncGenerator

import redis.asyncio as redis
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from authcore.core.config import settings
from authcore.core.logging import get_logger
from authcore.models import Base

logger = get_logger(__name__)


def build_engine(url: str = None, echo: bool = None) -> AsyncEngine:
    return create_async_engine(
        url or settings.DATABASE_URL,
        echo=settings.DATABASE_ECHO if echo is None else echo,
        pool_pre_ping=True,
    )


engine = build_engine()

# Objects stay readable after commit; workflows return them to the routers
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """One session per request; anything left uncommitted is rolled back."""
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def get_redis() -> redis.Redis:
    return redis_client


async def check_database(session: AsyncSession) -> bool:
    try:
        await session.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as exc:
        logger.error(f"health_check_failed | component=database error={type(exc).__name__}")
        return False


async def check_redis(client: redis.Redis) -> bool:
    try:
        return bool(await client.ping())
    except (RedisError, OSError) as exc:
        logger.error(f"health_check_failed | component=redis error={type(exc).__name__}")
        return False


async def init_db():
    """Create missing tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_ready")


async def close_db():
    await engine.dispose()
    await redis_client.aclose()
