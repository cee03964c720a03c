"""Shared test fixtures for the roadbook test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite
import pytest
from support import ORIGIN, PRECACHE, FakeNetwork, precache_network

from roadbook.cache import CacheStorage
from roadbook.lifecycle import OfflineWorker
from roadbook.models.cache import CacheGenerations

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@pytest.fixture()
async def storage() -> AsyncGenerator[CacheStorage, None]:
    """CacheStorage over an in-memory SQLite database."""
    async with aiosqlite.connect(":memory:") as db:
        cache_storage = CacheStorage(db)
        await cache_storage.init_db()
        yield cache_storage


@pytest.fixture()
def network() -> FakeNetwork:
    return precache_network()


@pytest.fixture()
def generations() -> CacheGenerations:
    return CacheGenerations(general="v1-general", images="v1-images")


@pytest.fixture()
async def worker(
    storage: CacheStorage, network: FakeNetwork, generations: CacheGenerations
) -> AsyncGenerator[OfflineWorker, None]:
    """Uninstalled worker for ORIGIN with the test manifest."""
    offline_worker = OfflineWorker(
        storage,
        network,
        generations=generations,
        origin=ORIGIN,
        precache=PRECACHE,
        offline_url="/offline.html",
    )
    yield offline_worker
    await offline_worker.close()
