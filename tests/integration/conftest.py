"""Integration test fixtures.

Wires the real stack in-process: the journal app behind httpx.ASGITransport,
the SQLite cache storage in memory, the offline worker and the proxy app.
The only doubles are the media host and an offline switch on the network.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite
import httpx
import pytest
from support import INDEX_HTML, OFFLINE_HTML, FakeMediaHost

from roadbook.cache import CacheStorage
from roadbook.config import Settings
from roadbook.errors import ErrorCode, RoadbookError
from roadbook.journal.backends import LocalJournalBackend
from roadbook.journal.routes import build_journal_app
from roadbook.journal.stores import JsonDocumentStore
from roadbook.lifecycle import OfflineWorker, WorkerRegistration
from roadbook.models.cache import CacheGenerations
from roadbook.network import LOCAL_ORIGIN, Network, build_http_client
from roadbook.proxy import build_proxy_app
from roadbook.state import AppState

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from roadbook.models.cache import CachedResponse, InterceptedRequest

PROXY_BASE = "http://proxy.test"


class SwitchableNetwork:
    """Real Network that can be taken offline mid-test."""

    def __init__(self, network: Network) -> None:
        self._network = network
        self.offline = False

    async def fetch(self, request: InterceptedRequest) -> CachedResponse:
        if self.offline:
            raise RoadbookError(
                code=ErrorCode.NETWORK_FAILURE,
                message=f"Network error fetching {request.url}: offline",
                suggestion="",
                recoverable=True,
            )
        return await self._network.fetch(request)


@pytest.fixture()
def static_dir(tmp_path: Path) -> Path:
    public = tmp_path / "public"
    public.mkdir()
    (public / "index.html").write_bytes(INDEX_HTML)
    (public / "offline.html").write_bytes(OFFLINE_HTML)
    (public / "cover.png").write_bytes(b"\x89PNG v1")
    return public


@pytest.fixture()
def media() -> FakeMediaHost:
    return FakeMediaHost()


@pytest.fixture()
async def backend(tmp_path: Path, media: FakeMediaHost) -> LocalJournalBackend:
    store = JsonDocumentStore(tmp_path / "journal.json")
    await store.init()
    return LocalJournalBackend(store, media, folder="trip", tag="trip2026")


@pytest.fixture()
async def app_state(
    backend: LocalJournalBackend, static_dir: Path
) -> AsyncGenerator[AppState, None]:
    """Fully wired AppState with an installed, active worker."""
    journal_app = build_journal_app(backend, static_dir=str(static_dir))
    async with (
        aiosqlite.connect(":memory:") as db,
        build_http_client(journal_app) as http_client,
    ):
        storage = CacheStorage(db)
        await storage.init_db()
        network = SwitchableNetwork(Network(http_client))
        registration = WorkerRegistration(network)
        worker = OfflineWorker(
            storage,
            network,
            generations=CacheGenerations.for_version("v1"),
            origin=LOCAL_ORIGIN,
            precache=["/", "/index.html", "/offline.html"],
            offline_url="/offline.html",
        )
        await registration.register(worker)

        yield AppState(
            settings=Settings(),
            storage=storage,
            network=network,
            registration=registration,
            origin=LOCAL_ORIGIN,
            http_client=http_client,
            backend=backend,
        )
        await registration.close()


@pytest.fixture()
async def proxy(app_state: AppState) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Client for the proxy app, as a browser tab would see it."""
    app = build_proxy_app(state=app_state)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url=PROXY_BASE) as client:
        yield client
