from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from drledger.core.config import get_settings
from drledger.core.errors import ConflictError
from drledger.domain.normalization import coerce_positive_integer
from drledger.persistence.db import Store


def utc_now() -> datetime:
    # Use UTC timestamps for every lifecycle transition.
    return datetime.now(timezone.utc)


@asynccontextmanager
async def managed_session(store: Store, session: AsyncSession | None = None) -> AsyncIterator[AsyncSession]:
    # Join the caller's transaction when given; otherwise own commit/rollback.
    if session is not None:
        if session.in_transaction():
            # Use a savepoint so a failed write leaves the caller's earlier work intact.
            async with session.begin_nested():
                yield session
        else:
            yield session
        return
    async with store.transaction() as managed:
        yield managed


def resolve_limit(value: Any) -> int:
    settings = get_settings()
    limit = coerce_positive_integer(value, settings.backup_list_default_limit)
    return min(limit, max(1, settings.backup_list_max_limit))


def require_transition(entity: str, current: str, allowed: Iterable[str], action: str) -> None:
    if current not in set(allowed):
        raise ConflictError(f"Cannot {action} a {entity} in status '{current}'.")
