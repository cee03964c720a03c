"""Offline worker lifecycle: install, activate, fetch and message handling.

``OfflineWorker`` is the event-handler interface, one coroutine per event
type. ``WorkerRegistration`` is the runtime around it: it awaits each
handler before it considers the event resolved and decides which worker is
active.

    uninstalled → installing → waiting-to-activate → activating → active
                      │                                              │
                      └──────────── redundant ◄── superseded ────────┘

A failed install leaves the worker redundant and the previously active
worker in place, so a half-written cache generation is never served. The
active generation is recorded in cache storage; after a restart whose
install fails, ``WorkerRegistration.resume`` puts it back in service.
"""

from __future__ import annotations

import asyncio
from enum import StrEnum
from typing import TYPE_CHECKING, Any
from urllib.parse import urljoin, urlsplit

import structlog

from roadbook.classifier import Strategy, classify
from roadbook.errors import RoadbookError
from roadbook.models.cache import CacheGenerations
from roadbook.strategies import (
    cache_first_revalidate,
    cache_first_with_fallback,
    network_first,
)

if TYPE_CHECKING:
    from collections.abc import Coroutine, Sequence

    from roadbook.config import WorkerSettings
    from roadbook.models.cache import CachedResponse, InterceptedRequest
    from roadbook.protocols import CacheStorageProtocol, NetworkProtocol

log = structlog.get_logger()

SKIP_WAITING_MESSAGE = "skipWaiting"


class WorkerState(StrEnum):
    UNINSTALLED = "uninstalled"
    INSTALLING = "installing"
    WAITING = "waiting-to-activate"
    ACTIVATING = "activating"
    ACTIVE = "active"
    REDUNDANT = "redundant"


class OfflineWorker:
    """Caching policy for one deployed version of the front end."""

    def __init__(
        self,
        storage: CacheStorageProtocol,
        network: NetworkProtocol,
        *,
        generations: CacheGenerations,
        origin: str,
        precache: Sequence[str] = (),
        offline_url: str = "/offline.html",
        api_prefix: str = "/api/",
        skip_waiting_on_install: bool = True,
    ) -> None:
        self._storage = storage
        self._network = network
        self.generations = generations
        self.origin = origin
        self.precache = [self.resolve(url) for url in precache]
        self.offline_url = self.resolve(offline_url)
        self.api_prefix = api_prefix
        # Requests arrive rebased onto the origin, base path included
        self._api_path = urlsplit(origin).path.rstrip("/") + api_prefix
        self.skip_waiting_on_install = skip_waiting_on_install

        self.state = WorkerState.UNINSTALLED
        self.skip_waiting_requested = False
        self.clients_claimed = False
        self._background_tasks: set[asyncio.Task[None]] = set()

    @classmethod
    def from_settings(
        cls,
        settings: WorkerSettings,
        storage: CacheStorageProtocol,
        network: NetworkProtocol,
        *,
        origin: str,
        generations: CacheGenerations | None = None,
    ) -> OfflineWorker:
        if generations is None:
            generations = CacheGenerations.for_version(settings.version, settings.app_name)
        return cls(
            storage,
            network,
            generations=generations,
            origin=origin,
            precache=settings.precache,
            offline_url=settings.offline_url,
            api_prefix=settings.api_prefix,
            skip_waiting_on_install=settings.skip_waiting_on_install,
        )

    def resolve(self, url: str) -> str:
        """Resolve a manifest URL against the origin; absolute URLs pass through.

        Rooted paths are appended to the origin, base path included, the same
        way the proxy rebases incoming requests.
        """
        if urlsplit(url).scheme:
            return url
        base = self.origin.rstrip("/")
        if url.startswith("/") and not url.startswith("//"):
            return base + url
        return urljoin(base + "/", url)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def on_install(self) -> None:
        """Precache the manifest into the general generation as one batch."""
        self.state = WorkerState.INSTALLING
        install_log = log.bind(cache=self.generations.general)
        install_log.info("install_started", urls=len(self.precache))

        try:
            store = await self._storage.open(self.generations.general)
            await store.add_all(self.precache, self._network)
        except RoadbookError as exc:
            self.state = WorkerState.REDUNDANT
            install_log.error("install_failed", code=exc.code, message=exc.message)
            raise

        self.state = WorkerState.WAITING
        if self.skip_waiting_on_install:
            self.skip_waiting()
        install_log.info("install_complete", skip_waiting=self.skip_waiting_requested)

    async def on_activate(self) -> None:
        """Delete every cache generation that is not current, then claim clients."""
        self.state = WorkerState.ACTIVATING
        stale = sorted(await self._storage.keys() - self.generations.names)
        for name in stale:
            await self._storage.delete(name)
            log.info("cache_deleted", cache=name)

        self.state = WorkerState.ACTIVE
        self.clients_claimed = True
        await self._storage.record_active(self.generations)
        log.info("activate_complete", pruned=len(stale), caches=sorted(self.generations.names))

    async def on_fetch(self, request: InterceptedRequest) -> CachedResponse | None:
        """Answer a request, or return ``None`` to let it pass to the network untouched."""
        strategy = classify(request, self._api_path)
        if strategy is None:
            return None

        if strategy == Strategy.API:
            cache = await self._storage.open(self.generations.general)
            return await network_first(request, cache=cache, network=self._network)

        if strategy == Strategy.IMAGE:
            cache = await self._storage.open(self.generations.images)
            return await cache_first_revalidate(
                request, cache=cache, network=self._network, spawn=self._spawn
            )

        cache = await self._storage.open(self.generations.general)
        return await cache_first_with_fallback(
            request, cache=cache, network=self._network, offline_url=self.offline_url
        )

    async def on_message(self, data: Any) -> None:
        """Handle a control message. Only ``"skipWaiting"`` is recognised."""
        if data == SKIP_WAITING_MESSAGE:
            self.skip_waiting()
            return
        log.debug("message_ignored", payload=repr(data)[:100])

    def skip_waiting(self) -> None:
        self.skip_waiting_requested = True

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def drain(self) -> None:
        """Wait for in-flight background revalidations to finish."""
        while self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    async def close(self) -> None:
        """Cancel in-flight background revalidations."""
        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


class WorkerRegistration:
    """Owns the active and waiting workers and routes every request."""

    def __init__(self, network: NetworkProtocol) -> None:
        self._network = network
        self.active: OfflineWorker | None = None
        self.waiting: OfflineWorker | None = None

    async def register(self, worker: OfflineWorker) -> None:
        """Install a worker and activate it when allowed.

        Resolves only after install (and activation, if it happens) has
        completed. Install failures propagate; the active worker is kept.
        """
        await worker.on_install()

        if self.waiting is not None and self.waiting is not worker:
            self.waiting.state = WorkerState.REDUNDANT
        self.waiting = worker

        if worker.skip_waiting_requested or self.active is None:
            await self._promote()
        else:
            log.info("worker_waiting", cache=worker.generations.general)

    async def resume(self, worker: OfflineWorker) -> None:
        """Put a worker whose generation is already committed back in service.

        Used at startup when a fresh install fails. Nothing is fetched or
        pruned: the generation's entries are served as they are.
        """
        previous = self.active
        worker.state = WorkerState.ACTIVE
        worker.clients_claimed = True
        self.active = worker
        if previous is not None and previous is not worker:
            previous.state = WorkerState.REDUNDANT
            await previous.close()
        log.info("worker_resumed", cache=worker.generations.general)

    async def post_message(self, data: Any) -> None:
        """Deliver a control message to the newest worker."""
        target = self.waiting or self.active
        if target is None:
            log.debug("message_dropped", reason="no_worker")
            return
        await target.on_message(data)
        if target is self.waiting and target.skip_waiting_requested:
            await self._promote()

    async def handle_fetch(self, request: InterceptedRequest) -> CachedResponse:
        """Route a request through the active worker, or straight to the network."""
        if self.active is not None:
            response = await self.active.on_fetch(request)
            if response is not None:
                return response
        return await self._network.fetch(request)

    async def _promote(self) -> None:
        worker = self.waiting
        if worker is None:
            return
        self.waiting = None
        previous = self.active

        await worker.on_activate()
        self.active = worker

        if previous is not None:
            previous.state = WorkerState.REDUNDANT
            await previous.close()
        log.info("worker_activated", cache=worker.generations.general)

    def status(self) -> dict:
        def describe(worker: OfflineWorker | None) -> dict | None:
            if worker is None:
                return None
            return {
                "state": worker.state,
                "general_cache": worker.generations.general,
                "image_cache": worker.generations.images,
            }

        return {"active": describe(self.active), "waiting": describe(self.waiting)}

    async def close(self) -> None:
        for worker in (self.active, self.waiting):
            if worker is not None:
                await worker.close()
