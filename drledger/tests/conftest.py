from __future__ import annotations

from typing import AsyncIterator, Iterator

import pytest

from drledger.core.config import get_settings
from drledger.persistence.db import Store, create_store
from drledger.services.recovery import BackupRecoveryOrchestrator


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Iterator[None]:
    # Keep env overrides from one test out of the cached settings of the next.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def store() -> AsyncIterator[Store]:
    # Fresh in-memory database per test so lifecycle state never leaks.
    test_store = create_store("sqlite+aiosqlite://")
    await test_store.create_schema()
    yield test_store
    await test_store.dispose()


@pytest.fixture
def orchestrator(store: Store) -> BackupRecoveryOrchestrator:
    return BackupRecoveryOrchestrator(store)


@pytest.fixture
def audit_context() -> dict:
    return {
        "actor": {"id": 7, "email": "ops@example.com", "name": "Ops", "role": "admin"},
        "source": "api",
        "channel": "http",
    }
