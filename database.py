"""
Database Connection
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

from config import get_settings
from models import Base

settings = get_settings()


def _engine_options(url: str) -> dict:
    # SQLite (local dev / tests) does not accept pool sizing arguments
    if url.startswith("sqlite"):
        return {"echo": False}
    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "echo": False,
    }


# Create async engine
engine = create_async_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

# Async session factory
AsyncSessionLocal = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False
)


async def init_db():
    """Create all tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db():
    """Dependency for getting DB session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
