from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from drledger.core.config import get_settings
from drledger.domain.models import Base


@dataclass(frozen=True)
class Store:
    # Explicit store handle so callers and tests choose the database per orchestrator.
    engine: AsyncEngine
    sessionmaker: async_sessionmaker[AsyncSession]

    def session(self) -> AsyncSession:
        return self.sessionmaker()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        # Commit on success, roll back on any error, always close.
        async with self.sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_schema(self) -> None:
        # Dev/test bootstrap; production schemas come from Alembic.
        async with self.engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


def _engine_kwargs(database_url: str) -> dict[str, Any]:
    settings = get_settings()
    kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        # In-memory SQLite must share one connection or every session sees an empty DB.
        if ":memory:" in database_url or database_url.rstrip("/").endswith("sqlite+aiosqlite:"):
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        return kwargs
    # Configure bounded asyncpg pools for predictable latency under load.
    kwargs["pool_size"] = max(1, int(settings.api_db_pool_size))
    kwargs["max_overflow"] = max(0, int(settings.api_db_max_overflow))
    kwargs["pool_timeout"] = 30
    kwargs["pool_recycle"] = 1800
    if settings.api_db_statement_timeout_ms > 0:
        kwargs["connect_args"] = {
            "server_settings": {"statement_timeout": str(int(settings.api_db_statement_timeout_ms))}
        }
    return kwargs


def create_store(database_url: str | None = None, **engine_overrides: Any) -> Store:
    url = database_url or get_settings().database_url
    kwargs = _engine_kwargs(url)
    kwargs.update(engine_overrides)
    engine = create_async_engine(url, **kwargs)
    return Store(engine=engine, sessionmaker=async_sessionmaker(engine, expire_on_commit=False))


@lru_cache
def get_store() -> Store:
    # Process-wide default store for scripts; library code takes the handle explicitly.
    return create_store()
