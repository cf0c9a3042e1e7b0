# cargodesk/db/session.py
from __future__ import annotations

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cargodesk.core.config import settings


def to_sync_url(async_url: str) -> str:
    """Same database through a sync driver (migrations and the notification worker)."""
    if async_url.startswith("postgresql+asyncpg://"):
        return "postgresql+psycopg2://" + async_url[len("postgresql+asyncpg://") :]
    if async_url.startswith("sqlite+aiosqlite://"):
        return "sqlite://" + async_url[len("sqlite+aiosqlite://") :]
    return async_url


engine = create_async_engine(settings.database_url, pool_pre_ping=True, future=True)

# objects stay usable after commit: services hand them to serializers
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with AsyncSessionLocal() as session:
        yield session
