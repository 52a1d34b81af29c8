from __future__ import annotations
from typing import AsyncGenerator, Optional
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from redis.asyncio import Redis, ConnectionPool
from ordersync.config import settings
from ordersync.utils.logger import get_loggers
logger = get_loggers("Database")


class Base(DeclarativeBase):
    pass


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = create_async_engine(
            settings.DATABASE_URL,
            echo=settings.ECHO_SQL,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
            pool_recycle=settings.DB_POOL_RECYCLE,
        )
        logger.info("Database engine initialized")
    return _engine


def get_session_factory() -> async_sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
            autocommit=False,
        )
    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            await session.close()


async def create_tables():
    # models must be imported so their tables are registered on Base.metadata
    from ordersync.models import integrations, orders  # noqa: F401
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")


class RedisClient:
    pool: Optional[ConnectionPool] = None
    client: Optional[Redis] = None

    @classmethod
    def get_pool(cls) -> ConnectionPool:
        if cls.pool is None:
            cls.pool = ConnectionPool.from_url(
                settings.REDIS_URL,
                socket_timeout=5,
                socket_connect_timeout=5,
                decode_responses=True,
                encoding="utf-8",
            )
            logger.info("Redis connection pool initialized")
        return cls.pool

    @classmethod
    def get_client(cls) -> Optional[Redis]:
        if not settings.REDIS_URL:
            return None
        if cls.client is None:
            cls.client = Redis(connection_pool=cls.get_pool())
            logger.info("Redis client initialized")
        return cls.client

    @classmethod
    async def close(cls):
        if cls.client:
            await cls.client.aclose()
            cls.client = None
        if cls.pool:
            await cls.pool.aclose()
            cls.pool = None
            logger.info("Redis connection closed")


async def check_postgres_health() -> bool:
    try:
        async with get_engine().begin() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"PostgreSQL health check failed: {e}")
        return False


async def check_redis_health() -> Optional[bool]:
    redis = RedisClient.get_client()
    if redis is None:
        return None
    try:
        await redis.ping()
        return True
    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        return False


async def check_all_databases() -> dict:
    return {
        "postgres": await check_postgres_health(),
        "redis": await check_redis_health(),
    }


async def shutdown_databases():
    global _engine, _session_factory
    logger.info("Closing database connections...")
    await RedisClient.close()
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
    logger.info("All database connections closed")
