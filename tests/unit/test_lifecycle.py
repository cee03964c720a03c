"""Unit tests for roadbook.lifecycle."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock

import pytest
from support import FONT_URL, OFFLINE_HTML, ORIGIN, PRECACHE, FakeNetwork, precache_network

from roadbook.config import WorkerSettings
from roadbook.errors import ErrorCode, RoadbookError
from roadbook.lifecycle import (
    SKIP_WAITING_MESSAGE,
    OfflineWorker,
    WorkerRegistration,
    WorkerState,
)
from roadbook.models.cache import CacheGenerations, CachedResponse, InterceptedRequest

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from roadbook.cache import CacheStorage

MOUNTED = "http://up.test/trip"

MANIFEST_KEYS = sorted(
    [
        f"GET {ORIGIN}/",
        f"GET {ORIGIN}/index.html",
        f"GET {ORIGIN}/offline.html",
        f"GET {FONT_URL}",
    ]
)


def _worker(
    storage: CacheStorage,
    network: FakeNetwork,
    version: str,
    *,
    skip_waiting_on_install: bool = True,
) -> OfflineWorker:
    return OfflineWorker(
        storage,
        network,
        generations=CacheGenerations(general=f"{version}-general", images=f"{version}-images"),
        origin=ORIGIN,
        precache=PRECACHE,
        offline_url="/offline.html",
        skip_waiting_on_install=skip_waiting_on_install,
    )


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestOfflineWorker:
    def test_manifest_resolved_against_origin(self, worker: OfflineWorker) -> None:
        assert worker.precache == [
            f"{ORIGIN}/",
            f"{ORIGIN}/index.html",
            f"{ORIGIN}/offline.html",
            FONT_URL,
        ]
        assert worker.offline_url == f"{ORIGIN}/offline.html"
        assert worker.state == WorkerState.UNINSTALLED

    def test_manifest_resolved_under_origin_base_path(
        self, storage: CacheStorage, network: FakeNetwork, generations: CacheGenerations
    ) -> None:
        mounted = OfflineWorker(
            storage,
            network,
            generations=generations,
            origin="http://up.test/trip/",
            precache=["/", "/index.html", "days/1.html", FONT_URL],
            offline_url="/offline.html",
        )

        assert mounted.precache == [
            "http://up.test/trip/",
            "http://up.test/trip/index.html",
            "http://up.test/trip/days/1.html",
            FONT_URL,
        ]
        assert mounted.offline_url == "http://up.test/trip/offline.html"

    def test_from_settings(self, storage: CacheStorage, network: FakeNetwork) -> None:
        settings = WorkerSettings(version="v7", precache=["/"], offline_url="/offline.html")
        built = OfflineWorker.from_settings(settings, storage, network, origin=ORIGIN)

        assert built.generations.general == "roadbook-v7"
        assert built.generations.images == "roadbook-images-v7"
        assert built.precache == [f"{ORIGIN}/"]
        assert built.skip_waiting_on_install is True

    def test_from_settings_with_explicit_generations(
        self, storage: CacheStorage, network: FakeNetwork, generations: CacheGenerations
    ) -> None:
        settings = WorkerSettings(version="v7")
        built = OfflineWorker.from_settings(
            settings, storage, network, origin=ORIGIN, generations=generations
        )
        assert built.generations == generations


# ---------------------------------------------------------------------------
# Install
# ---------------------------------------------------------------------------


class TestInstall:
    async def test_precaches_manifest(self, worker: OfflineWorker, storage: CacheStorage) -> None:
        await worker.on_install()

        store = await storage.open("v1-general")
        assert await store.keys() == MANIFEST_KEYS
        assert worker.state == WorkerState.WAITING
        assert worker.skip_waiting_requested is True

    async def test_reinstall_is_idempotent(
        self, worker: OfflineWorker, storage: CacheStorage
    ) -> None:
        await worker.on_install()
        await worker.on_install()

        store = await storage.open("v1-general")
        assert await store.keys() == MANIFEST_KEYS

    async def test_failure_marks_worker_redundant(
        self, worker: OfflineWorker, network: FakeNetwork, storage: CacheStorage
    ) -> None:
        network.fail_urls.add(FONT_URL)

        with pytest.raises(RoadbookError) as exc_info:
            await worker.on_install()

        assert exc_info.value.code == ErrorCode.INSTALL_FAILED
        assert worker.state == WorkerState.REDUNDANT
        store = await storage.open("v1-general")
        assert await store.keys() == []

    async def test_no_skip_waiting_when_disabled(
        self, storage: CacheStorage, network: FakeNetwork
    ) -> None:
        candidate = _worker(storage, network, "v2", skip_waiting_on_install=False)
        await candidate.on_install()
        assert candidate.state == WorkerState.WAITING
        assert candidate.skip_waiting_requested is False


# ---------------------------------------------------------------------------
# Activate
# ---------------------------------------------------------------------------


class TestActivate:
    async def test_prunes_stale_generations(
        self, worker: OfflineWorker, storage: CacheStorage
    ) -> None:
        for name in ("v1-general", "v1-images", "v0-general", "stale-other"):
            await storage.open(name)

        await worker.on_activate()

        assert await storage.keys() == frozenset({"v1-general", "v1-images"})
        assert worker.state == WorkerState.ACTIVE
        assert worker.clients_claimed is True
        assert await storage.active_generations() == worker.generations

    async def test_current_entries_survive(
        self, worker: OfflineWorker, storage: CacheStorage
    ) -> None:
        await worker.on_install()
        old = await storage.open("v0-general")
        await old.put(f"{ORIGIN}/", CachedResponse(status=200, body=b"old"))

        await worker.on_activate()

        current = await storage.open("v1-general")
        assert await current.keys() == MANIFEST_KEYS


# ---------------------------------------------------------------------------
# Fetch
# ---------------------------------------------------------------------------


class TestFetch:
    async def test_non_get_never_touches_cache(
        self,
        worker: OfflineWorker,
        storage: CacheStorage,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        await worker.on_install()
        await worker.on_activate()
        before = await storage.keys()
        store = await storage.open("v1-general")
        entries_before = await store.keys()
        spy = AsyncMock(wraps=storage.open)
        monkeypatch.setattr(storage, "open", spy)

        response = await worker.on_fetch(
            InterceptedRequest(method="POST", url=f"{ORIGIN}/api/journal", body=b"{}")
        )

        assert response is None
        spy.assert_not_called()
        assert await storage.keys() == before
        assert await store.keys() == entries_before

    async def test_api_request_uses_general_cache(
        self, worker: OfflineWorker, network: FakeNetwork, storage: CacheStorage
    ) -> None:
        network.respond(f"{ORIGIN}/api/stats", b'{"photos":1}')

        response = await worker.on_fetch(InterceptedRequest(url=f"{ORIGIN}/api/stats"))

        assert response is not None
        assert response.body == b'{"photos":1}'
        general = await storage.open("v1-general")
        assert await general.match(f"{ORIGIN}/api/stats") is not None

    async def test_image_request_uses_image_cache(
        self, worker: OfflineWorker, network: FakeNetwork, storage: CacheStorage
    ) -> None:
        url = "https://res.cloudinary.com/demo/image/upload/beach.jpg"
        network.respond(url, b"jpeg")

        await worker.on_fetch(InterceptedRequest(url=url, destination="image"))

        images = await storage.open("v1-images")
        general = await storage.open("v1-general")
        assert await images.match(url) is not None
        assert await general.match(url) is None

    async def test_cached_image_refreshed_then_drained(
        self, worker: OfflineWorker, network: FakeNetwork, storage: CacheStorage
    ) -> None:
        url = f"{ORIGIN}/cover.png"
        images = await storage.open("v1-images")
        await images.put(url, CachedResponse(status=200, body=b"old"))
        network.respond(url, b"new")

        response = await worker.on_fetch(InterceptedRequest(url=url))
        await worker.drain()

        assert response is not None
        assert response.body == b"old"
        refreshed = await images.match(url)
        assert refreshed is not None
        assert refreshed.body == b"new"

    async def test_offline_navigation_serves_offline_page(
        self, worker: OfflineWorker, network: FakeNetwork
    ) -> None:
        await worker.on_install()
        await worker.on_activate()
        network.offline = True

        response = await worker.on_fetch(
            InterceptedRequest(url=f"{ORIGIN}/day-3.html", mode="navigate")
        )

        assert response is not None
        assert response.body == OFFLINE_HTML

    async def test_precached_page_served_offline(
        self, worker: OfflineWorker, network: FakeNetwork
    ) -> None:
        await worker.on_install()
        network.offline = True

        response = await worker.on_fetch(InterceptedRequest(url=f"{ORIGIN}/index.html"))

        assert response is not None
        assert response.body == b"<html>home</html>"


class TestFetchUnderBasePath:
    @pytest.fixture()
    def mounted_network(self) -> FakeNetwork:
        fake = FakeNetwork()
        fake.respond(f"{MOUNTED}/", b"<html>home</html>")
        fake.respond(f"{MOUNTED}/offline.html", OFFLINE_HTML)
        return fake

    @pytest.fixture()
    async def mounted(
        self, storage: CacheStorage, mounted_network: FakeNetwork, generations: CacheGenerations
    ) -> AsyncGenerator[OfflineWorker, None]:
        offline_worker = OfflineWorker(
            storage,
            mounted_network,
            generations=generations,
            origin=MOUNTED,
            precache=["/", "/offline.html"],
            offline_url="/offline.html",
        )
        yield offline_worker
        await offline_worker.close()

    async def test_api_under_base_path_is_network_first(
        self, mounted: OfflineWorker, mounted_network: FakeNetwork
    ) -> None:
        url = f"{MOUNTED}/api/photos"
        mounted_network.respond(url, b"[]")
        await mounted.on_fetch(InterceptedRequest(url=url))
        mounted_network.respond(url, b'[{"id":"p1"}]')

        response = await mounted.on_fetch(InterceptedRequest(url=url))

        assert response is not None
        assert response.body == b'[{"id":"p1"}]'

    async def test_offline_page_matches_rebased_request(
        self, mounted: OfflineWorker, mounted_network: FakeNetwork
    ) -> None:
        await mounted.on_install()
        await mounted.on_activate()
        mounted_network.offline = True

        response = await mounted.on_fetch(
            InterceptedRequest(url=f"{MOUNTED}/day-3.html", mode="navigate")
        )

        assert response is not None
        assert response.body == OFFLINE_HTML


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class TestMessage:
    async def test_skip_waiting_message(self, storage: CacheStorage, network: FakeNetwork) -> None:
        candidate = _worker(storage, network, "v2", skip_waiting_on_install=False)
        await candidate.on_message(SKIP_WAITING_MESSAGE)
        assert candidate.skip_waiting_requested is True

    @pytest.mark.parametrize("payload", ["SKIPWAITING", {"type": "skipWaiting"}, None, 1])
    async def test_other_messages_ignored(
        self, storage: CacheStorage, network: FakeNetwork, payload: object
    ) -> None:
        candidate = _worker(storage, network, "v2", skip_waiting_on_install=False)
        await candidate.on_message(payload)
        assert candidate.skip_waiting_requested is False


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestWorkerRegistration:
    async def test_first_worker_activates(
        self, worker: OfflineWorker, network: FakeNetwork, storage: CacheStorage
    ) -> None:
        registration = WorkerRegistration(network)
        await registration.register(worker)

        assert registration.active is worker
        assert registration.waiting is None
        assert worker.state == WorkerState.ACTIVE

    async def test_skip_waiting_on_install_replaces_active(
        self, storage: CacheStorage, network: FakeNetwork
    ) -> None:
        registration = WorkerRegistration(network)
        v1 = _worker(storage, network, "v1")
        v2 = _worker(storage, network, "v2")
        await registration.register(v1)
        await registration.register(v2)

        assert registration.active is v2
        assert v1.state == WorkerState.REDUNDANT
        assert await storage.keys() == frozenset({"v2-general"})
        await registration.close()

    async def test_new_worker_waits_until_skip_waiting(
        self, storage: CacheStorage, network: FakeNetwork
    ) -> None:
        registration = WorkerRegistration(network)
        v1 = _worker(storage, network, "v1")
        v2 = _worker(storage, network, "v2", skip_waiting_on_install=False)
        await registration.register(v1)
        await registration.register(v2)

        assert registration.active is v1
        assert registration.waiting is v2
        assert v2.state == WorkerState.WAITING
        assert registration.status()["waiting"]["general_cache"] == "v2-general"

        await registration.post_message(SKIP_WAITING_MESSAGE)

        assert registration.active is v2
        assert registration.waiting is None
        assert v1.state == WorkerState.REDUNDANT
        assert "v1-general" not in await storage.keys()
        await registration.close()

    async def test_failed_install_keeps_active_worker(
        self, storage: CacheStorage, network: FakeNetwork
    ) -> None:
        registration = WorkerRegistration(network)
        v1 = _worker(storage, network, "v1")
        await registration.register(v1)

        broken = precache_network()
        broken.fail_urls.add(f"{ORIGIN}/offline.html")
        v2 = _worker(storage, broken, "v2")
        with pytest.raises(RoadbookError):
            await registration.register(v2)

        assert registration.active is v1
        assert registration.waiting is None
        assert v2.state == WorkerState.REDUNDANT
        current = await storage.open("v1-general")
        assert await current.keys() == MANIFEST_KEYS
        await registration.close()

    async def test_resume_serves_committed_generation(
        self, worker: OfflineWorker, storage: CacheStorage, network: FakeNetwork
    ) -> None:
        await worker.on_install()
        network.offline = True
        network.calls.clear()
        resumed = _worker(storage, network, "v1")
        registration = WorkerRegistration(network)

        await registration.resume(resumed)
        response = await registration.handle_fetch(
            InterceptedRequest(url=f"{ORIGIN}/day-3.html", mode="navigate")
        )

        assert registration.active is resumed
        assert resumed.state == WorkerState.ACTIVE
        assert response.body == OFFLINE_HTML
        assert network.urls() == [f"{ORIGIN}/day-3.html"]

    async def test_passthrough_without_active_worker(self, network: FakeNetwork) -> None:
        registration = WorkerRegistration(network)
        network.respond(f"{ORIGIN}/api/stats", b"{}")

        response = await registration.handle_fetch(InterceptedRequest(url=f"{ORIGIN}/api/stats"))

        assert response.body == b"{}"
        assert registration.status() == {"active": None, "waiting": None}

    async def test_bypassed_request_goes_to_network(
        self, worker: OfflineWorker, network: FakeNetwork
    ) -> None:
        registration = WorkerRegistration(network)
        await registration.register(worker)
        network.respond(f"{ORIGIN}/api/journal", b'{"id":"e1"}')
        network.calls.clear()

        response = await registration.handle_fetch(
            InterceptedRequest(method="POST", url=f"{ORIGIN}/api/journal")
        )

        assert response.body == b'{"id":"e1"}'
        assert network.urls() == [f"{ORIGIN}/api/journal"]

    async def test_message_without_worker_is_dropped(self, network: FakeNetwork) -> None:
        registration = WorkerRegistration(network)
        await registration.post_message(SKIP_WAITING_MESSAGE)
        assert registration.active is None
