"""Server entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Create AppState via the Starlette lifespan context manager
- Register the offline worker (install, then activate)
- Start uvicorn
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import httpx
import structlog

from roadbook import __version__
from roadbook.cache import CacheStorage
from roadbook.config import Settings
from roadbook.errors import RoadbookError
from roadbook.journal.backends import EdgeJournalBackend, LocalJournalBackend
from roadbook.journal.media import CloudinaryMediaHost
from roadbook.journal.routes import build_journal_app
from roadbook.journal.stores import JsonDocumentStore, KeyValueStore
from roadbook.lifecycle import OfflineWorker, WorkerRegistration
from roadbook.network import LOCAL_ORIGIN, Network, build_http_client
from roadbook.proxy import build_proxy_app
from roadbook.state import AppState
from roadbook.transport import run_http_server

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from starlette.applications import Starlette

    from roadbook.journal.backends import JournalBackend

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


async def _open_db(path: str) -> aiosqlite.Connection:
    db_path = Path(path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return await aiosqlite.connect(str(db_path))


async def _build_backend(
    settings: Settings, media_client: httpx.AsyncClient
) -> tuple[JournalBackend, aiosqlite.Connection | None]:
    """Create the configured journal backend and the KV connection it owns, if any."""
    media = CloudinaryMediaHost(media_client, settings.media)
    journal = settings.journal

    if journal.backend == "edge":
        kv_db = await _open_db(journal.kv_path)
        kv = KeyValueStore(kv_db)
        await kv.init_db()
        return EdgeJournalBackend(kv, media, tag=journal.tag), kv_db

    store = JsonDocumentStore(Path(journal.data_path).expanduser())
    await store.init()
    return LocalJournalBackend(store, media, folder=journal.folder, tag=journal.tag), None


async def _resume_committed(
    registration: WorkerRegistration,
    storage: CacheStorage,
    network: Network,
    settings: Settings,
    origin: str,
) -> None:
    """Fall back to the generation that was active before this start, if any."""
    generations = await storage.active_generations()
    if generations is None:
        # Stay up in passthrough mode; the next restart retries the install
        log.error("worker_registration_failed", passthrough=True)
        return
    worker = OfflineWorker.from_settings(
        settings.worker, storage, network, origin=origin, generations=generations
    )
    await registration.resume(worker)


def make_lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncGenerator[None, None]:
        """Create and tear down all shared resources for the server's lifetime."""
        log.info("server_starting", version=__version__, worker_version=settings.worker.version)

        db = await _open_db(settings.cache.db_path)
        storage = CacheStorage(db)
        await storage.init_db()

        media_client = httpx.AsyncClient(timeout=httpx.Timeout(settings.media.timeout_seconds))
        backend, kv_db = await _build_backend(settings, media_client)

        # No upstream configured: serve the journal app in-process
        if settings.worker.upstream_url:
            origin = settings.worker.upstream_url
            http_client = build_http_client()
        else:
            origin = LOCAL_ORIGIN
            journal_app = build_journal_app(backend, static_dir=settings.journal.static_dir)
            http_client = build_http_client(journal_app)

        network = Network(http_client)
        registration = WorkerRegistration(network)
        worker = OfflineWorker.from_settings(settings.worker, storage, network, origin=origin)
        try:
            await registration.register(worker)
        except RoadbookError:
            await _resume_committed(registration, storage, network, settings, origin)

        app.state.roadbook = AppState(
            settings=settings,
            storage=storage,
            network=network,
            registration=registration,
            origin=origin,
            http_client=http_client,
            backend=backend,
        )
        log.info(
            "server_started",
            origin=origin,
            backend=backend.name,
            worker=registration.status(),
        )

        try:
            yield
        finally:
            await registration.close()
            await http_client.aclose()
            await media_client.aclose()
            if kv_db is not None:
                await kv_db.close()
            await db.close()
            log.info("server_stopping")

    return lifespan


def create_app(settings: Settings) -> Starlette:
    return build_proxy_app(settings.worker.control_path, lifespan=make_lifespan(settings))


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    settings = Settings()
    _setup_logging(settings)
    run_http_server(create_app(settings), settings)


if __name__ == "__main__":
    main()
