"""Application state container.

AppState is created once at startup (inside the Starlette lifespan context
manager, or directly by tests) and attached to the proxy app as
``app.state.roadbook``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from roadbook.config import Settings
    from roadbook.journal.backends import JournalBackend
    from roadbook.lifecycle import WorkerRegistration
    from roadbook.protocols import CacheStorageProtocol, NetworkProtocol


@dataclass
class AppState:
    """Holds all shared runtime state for the proxy."""

    settings: Settings
    storage: CacheStorageProtocol
    network: NetworkProtocol
    registration: WorkerRegistration
    origin: str

    http_client: httpx.AsyncClient | None = None
    backend: JournalBackend | None = None
