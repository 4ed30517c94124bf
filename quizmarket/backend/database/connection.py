"""
QuizMarket Attempt Service
Database connection and session management
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import event, select, func, text
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine
)
from sqlalchemy.pool import StaticPool

from .models import Base
from ..utils.helpers import get_database_url
from ...config import get_settings

# Configure logging
logger = logging.getLogger(__name__)

# Global variables
async_engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker] = None


def get_async_database_url(database_url: str) -> str:
    """Convert sync database URL to async version"""
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return database_url


def create_async_engine_instance(database_url: Optional[str] = None) -> AsyncEngine:
    """Create asynchronous SQLAlchemy engine"""
    settings = get_settings()
    database_url = get_async_database_url(database_url or get_database_url())

    engine_kwargs = {
        "echo": settings.DB_ECHO,
    }

    if database_url.startswith("sqlite"):
        # SQLite specific configuration
        engine_kwargs.update({
            "poolclass": StaticPool,
            "connect_args": {
                "check_same_thread": False,
                "timeout": 20
            }
        })
    else:
        # PostgreSQL specific configuration
        engine_kwargs.update({
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_timeout": 30,
            "pool_recycle": 3600,
            "pool_pre_ping": True
        })

    engine = create_async_engine(database_url, **engine_kwargs)
    setup_event_listeners(engine)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=True,
    )


async def init_database():
    """Initialize database engine and create tables"""
    global async_engine, AsyncSessionLocal

    logger.info("Initializing database connections...")

    try:
        async_engine = create_async_engine_instance()
        AsyncSessionLocal = create_session_factory(async_engine)

        await test_async_connection()
        await create_tables(async_engine)

        if get_settings().SEED_DEMO_DATA:
            await initialize_default_data()

        logger.info("✅ Database initialized successfully")

    except Exception as e:
        logger.error(f"❌ Database initialization failed: {e}")
        raise


async def test_async_connection():
    """Test async database connection"""
    try:
        async with async_engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("✅ Async database connection successful")
    except Exception as e:
        logger.error(f"❌ Async database connection failed: {e}")
        raise


async def create_tables(engine: AsyncEngine):
    """Create database tables"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("✅ Database tables created successfully")


async def initialize_default_data():
    """Seed a demo learner and a published demo quiz on an empty database"""
    from .models import User
    from .seed import create_demo_data

    async with get_async_session() as session:
        result = await session.execute(select(func.count(User.id)))
        if (result.scalar() or 0) > 0:
            return

        await create_demo_data(session)
        await session.commit()
        logger.info("✅ Demo data initialized")


def setup_event_listeners(engine: AsyncEngine):
    """Set up database event listeners"""

    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        """Enforce foreign keys on SQLite connections"""
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# Session management functions
@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Get async database session with automatic cleanup"""
    if not AsyncSessionLocal:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


# Dependency for FastAPI
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions"""
    async with get_async_session() as session:
        yield session


# Health check functions
async def check_database_health() -> dict:
    """Check database connection health"""
    try:
        async with get_async_session() as session:
            result = await session.execute(text("SELECT 1 AS health_check"))
            if result.scalar() == 1:
                return {"status": "healthy", "database": "connected"}
            return {"status": "unhealthy", "database": "query_failed"}

    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        return {
            "status": "unhealthy",
            "database": "connection_failed",
            "error": str(e)
        }


# Cleanup functions
async def close_database_connections():
    """Close all database connections"""
    global async_engine

    if async_engine:
        await async_engine.dispose()
        async_engine = None
        logger.info("✅ Async database engine disposed")


# Export main functions
__all__ = [
    "init_database",
    "create_async_engine_instance",
    "create_session_factory",
    "create_tables",
    "get_async_session",
    "get_db",
    "check_database_health",
    "close_database_connections",
]
