"""Protocol interfaces for swappable components.

The worker, executors and AppState reference these protocols, not the
concrete implementations. This allows:
- Tests to use lightweight in-memory network doubles
- The cache backend or the journal persistence to be swapped without
  touching the caching policy
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Iterable

    from roadbook.models.cache import CacheGenerations, CachedResponse, InterceptedRequest


class NetworkProtocol(Protocol):
    """Live fetch path. Raises RoadbookError(NETWORK_FAILURE) when unreachable."""

    async def fetch(self, request: InterceptedRequest) -> CachedResponse: ...


class CacheStoreProtocol(Protocol):
    """One named cache generation."""

    name: str

    async def match(self, request: InterceptedRequest | str) -> CachedResponse | None: ...

    async def put(self, request: InterceptedRequest | str, response: CachedResponse) -> None: ...

    async def add_all(self, urls: Iterable[str], network: NetworkProtocol) -> None: ...

    async def keys(self) -> list[str]: ...


class CacheStorageProtocol(Protocol):
    """Registry of named cache generations."""

    async def open(self, name: str) -> CacheStoreProtocol: ...

    async def delete(self, name: str) -> bool: ...

    async def keys(self) -> frozenset[str]: ...

    async def record_active(self, generations: CacheGenerations) -> None: ...

    async def active_generations(self) -> CacheGenerations | None: ...
