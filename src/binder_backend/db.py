from __future__ import annotations

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from binder_backend.config import settings
from binder_backend.db_urls import ensure_sqlite_parent_dir, normalize_database_url_for_async


def _create_async_engine(database_url: str) -> AsyncEngine:
    # 运行时统一走异步 driver（aiosqlite / psycopg）
    ensure_sqlite_parent_dir(database_url)
    url = normalize_database_url_for_async(database_url)
    return create_async_engine(url, echo=False, pool_pre_ping=True)


@lru_cache(maxsize=4)
def get_engine() -> AsyncEngine:
    # 测试/部署覆写 settings.database_url 后需清缓存重建 engine
    return _create_async_engine(settings.database_url)


def reset_engine_cache() -> None:
    get_engine.cache_clear()


def dispose_engine_cache() -> None:
    """
    丢弃已缓存 engine 的连接池并清空缓存。

    连接只解除引用、不关闭；异步场景应先 await ``engine.dispose()``。
    """

    if get_engine.cache_info().currsize:
        get_engine().sync_engine.dispose(close=False)
    get_engine.cache_clear()


async def init_db() -> None:
    # 仅用于本地/测试兜底建表；部署环境以 Alembic 迁移为准
    from binder_backend import models  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


def _session_maker() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    async with _session_maker()() as session:
        yield session


async def get_session() -> AsyncIterator[AsyncSession]:
    # FastAPI 依赖
    async with _session_maker()() as session:
        yield session
