"""
Database initialization and session management
"""
from typing import AsyncGenerator
import os
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from api.config import settings
from api.models.video import Base

# Configure engine based on database type
if "sqlite" in settings.database_url_async:
    connect_args = {"check_same_thread": False}
    poolclass = StaticPool if ":memory:" in settings.database_url_async else NullPool
    engine = create_async_engine(
        settings.database_url_async,
        connect_args=connect_args,
        poolclass=poolclass,
    )
else:
    engine_kwargs = {"pool_pre_ping": True}
    if settings.TESTING:
        engine_kwargs["poolclass"] = NullPool
    else:
        engine_kwargs["pool_size"] = settings.DATABASE_POOL_SIZE
        engine_kwargs["max_overflow"] = settings.DATABASE_MAX_OVERFLOW
    engine = create_async_engine(settings.database_url_async, **engine_kwargs)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db() -> None:
    """Create the tables."""
    if "sqlite" in settings.database_url_async and ":memory:" not in settings.DATABASE_URL:
        db_path = settings.DATABASE_URL.split("///", 1)[-1]
        db_dir = os.path.dirname(db_path)
        if db_dir:
            Path(db_dir).mkdir(parents=True, exist_ok=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
