"""SQLAlchemy async engine and session utilities for the SQL-backed store."""
from __future__ import annotations

from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from dracopanel.core.config import Settings

_ENGINES: list[AsyncEngine] = []


@lru_cache
def _get_async_engine(database_url: str, database_echo: bool) -> AsyncEngine:
    connect_args: dict = {}
    if database_url.startswith("sqlite"):
        # several requests write at once; let SQLite wait for the file lock
        connect_args["timeout"] = 30
    engine = create_async_engine(database_url, echo=database_echo, connect_args=connect_args)
    _ENGINES.append(engine)
    return engine


@lru_cache
def _get_session_maker(database_url: str, database_echo: bool) -> async_sessionmaker:
    engine = _get_async_engine(database_url, database_echo)
    return async_sessionmaker(engine, expire_on_commit=False)


def get_session_maker(settings: Settings) -> async_sessionmaker:
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL is not configured")
    return _get_session_maker(settings.database_url, settings.database_echo)


async def dispose_engines() -> None:
    """Close every engine created so far; called on application shutdown."""

    while _ENGINES:
        await _ENGINES.pop().dispose()
    _get_session_maker.cache_clear()
    _get_async_engine.cache_clear()
