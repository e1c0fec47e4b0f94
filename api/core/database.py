"""
Database configuration and connection management
"""
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from core.config import settings
from database.models import Base


def to_async_url(url: str) -> str:
    """Convert postgresql:// to postgresql+asyncpg:// for async support"""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


DATABASE_URL = to_async_url(settings.database_url)


def build_engine(url: str = DATABASE_URL, **kwargs) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to server databases"""
    if url.startswith("postgresql"):
        kwargs.setdefault("pool_size", settings.database_pool_size)
        kwargs.setdefault("max_overflow", settings.database_max_overflow)
    return create_async_engine(url, echo=settings.debug, **kwargs)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


# Create async engine
engine = build_engine()

# Create async session factory
AsyncSessionLocal = build_session_factory(engine)


async def create_tables(bind: AsyncEngine = None):
    """Create all database tables"""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def get_db_session(session_factory: async_sessionmaker = None):
    """Get async database session"""
    factory = session_factory or AsyncSessionLocal
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
