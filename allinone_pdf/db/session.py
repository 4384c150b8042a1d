from __future__ import annotations

from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from ..server.settings import settings
from .models import Base


def get_async_engine() -> AsyncEngine:
    kwargs: Dict[str, Any] = {}
    if settings.DATABASE_URL.startswith("sqlite"):
        # aiosqlite connections are bound to the loop that opened them
        kwargs["poolclass"] = NullPool
    return create_async_engine(settings.DATABASE_URL, echo=False, **kwargs)


engine: AsyncEngine = get_async_engine()

SessionFactory: async_sessionmaker[AsyncSession] = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autoflush=False,
)


async def create_tables() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
