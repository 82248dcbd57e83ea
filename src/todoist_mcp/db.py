from __future__ import annotations

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from todoist_mcp.config import settings
from todoist_mcp.db_urls import normalize_database_url_for_async


def _create_async_engine(database_url: str) -> AsyncEngine:
    url = normalize_database_url_for_async(database_url)
    return create_async_engine(url, echo=False, pool_pre_ping=True)


@lru_cache(maxsize=4)
def get_engine() -> AsyncEngine:
    # Tests swap settings.database_url and call reset_engine_cache() to rebuild.
    return _create_async_engine(settings.database_url)


def reset_engine_cache() -> None:
    get_engine.cache_clear()


def dispose_engine_cache() -> None:
    if get_engine.cache_info().currsize == 0:
        return
    # Sync pool disposal; stops aiosqlite worker threads from keeping the process alive.
    get_engine().sync_engine.dispose()
    get_engine.cache_clear()


async def init_db() -> None:
    # Local/test bootstrap only; deployments run Alembic migrations.
    from todoist_mcp import models  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    session_maker = async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session
