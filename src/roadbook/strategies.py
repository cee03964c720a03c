"""Caching strategy executors.

Each executor implements one caching algorithm end to end against an
already-opened cache store and the shared network:

- ``network_first``              API data: live first, cache on failure
- ``cache_first_revalidate``     images: cached copy now, refresh in background
- ``cache_first_with_fallback``  everything else: cached copy, offline page

Only 2xx responses are ever written. Non-2xx live responses are returned to
the caller unmodified so the page sees the real error status.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from roadbook.errors import ErrorCode, RoadbookError
from roadbook.models.cache import CachedResponse

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine
    from typing import Any

    from roadbook.models.cache import InterceptedRequest
    from roadbook.protocols import CacheStoreProtocol, NetworkProtocol

    Spawn = Callable[[Coroutine[Any, Any, None]], None]

log = structlog.get_logger()

IMAGE_PLACEHOLDER_STATUS = 404
OFFLINE_STATUS = 503


async def network_first(
    request: InterceptedRequest,
    *,
    cache: CacheStoreProtocol,
    network: NetworkProtocol,
) -> CachedResponse:
    """Live fetch, falling back to the cached copy when the network is down.

    A cache miss while offline raises ``NOT_CACHED``, chained to the network
    failure: there is no synthetic payload for API calls.
    """
    try:
        response = await network.fetch(request)
    except RoadbookError as exc:
        if exc.code != ErrorCode.NETWORK_FAILURE:
            raise
        cached = await cache.match(request)
        if cached is None:
            log.info("cache_miss_offline", strategy="api", url=request.url)
            raise RoadbookError(
                code=ErrorCode.NOT_CACHED,
                message=f"Offline and no cached copy of {request.url}",
                suggestion="Load this data once while online to make it available offline.",
                recoverable=True,
            ) from exc
        log.info("cache_hit", strategy="api", url=request.url, offline=True)
        return cached

    if response.ok:
        await cache.put(request, response)
    return response


async def revalidate(
    request: InterceptedRequest,
    *,
    cache: CacheStoreProtocol,
    network: NetworkProtocol,
) -> None:
    """Refresh one cache entry from the network.

    Runs as an unawaited background task after a cached response has already
    been returned. Every failure is caught here and discarded; it must never
    reach the primary response path or alter the existing entry.
    """
    try:
        response = await network.fetch(request)
        if response.ok:
            await cache.put(request, response)
            log.debug("revalidate_complete", cache=cache.name, url=request.url)
        else:
            log.debug("revalidate_skipped", url=request.url, status=response.status)
    except Exception:
        log.debug("revalidate_failed", url=request.url, exc_info=True)


async def cache_first_revalidate(
    request: InterceptedRequest,
    *,
    cache: CacheStoreProtocol,
    network: NetworkProtocol,
    spawn: Spawn,
) -> CachedResponse:
    """Serve the cached image immediately and refresh it in the background.

    On a miss the image is fetched and stored; if the network is down the
    caller gets an empty 404 so a broken image degrades instead of failing.
    """
    cached = await cache.match(request)
    if cached is not None:
        log.debug("cache_hit", strategy="image", url=request.url)
        spawn(revalidate(request, cache=cache, network=network))
        return cached

    try:
        response = await network.fetch(request)
    except RoadbookError as exc:
        if exc.code != ErrorCode.NETWORK_FAILURE:
            raise
        log.info("image_placeholder_served", url=request.url)
        return CachedResponse(status=IMAGE_PLACEHOLDER_STATUS, url=request.url)

    if response.ok:
        await cache.put(request, response)
    return response


async def cache_first_with_fallback(
    request: InterceptedRequest,
    *,
    cache: CacheStoreProtocol,
    network: NetworkProtocol,
    offline_url: str,
) -> CachedResponse:
    """Serve from cache without revalidating; fetch and store on a miss.

    When the network is down, page navigations get the precached offline
    page and every other request an empty 503.
    """
    cached = await cache.match(request)
    if cached is not None:
        log.debug("cache_hit", strategy="generic", url=request.url)
        return cached

    try:
        response = await network.fetch(request)
    except RoadbookError as exc:
        if exc.code != ErrorCode.NETWORK_FAILURE:
            raise
        if request.is_navigation:
            offline_page = await cache.match(offline_url)
            if offline_page is not None:
                log.info("offline_page_served", url=request.url)
                return offline_page
            log.warning("offline_page_missing", offline_url=offline_url)
        return CachedResponse(status=OFFLINE_STATUS, url=request.url)

    if response.ok:
        await cache.put(request, response)
    return response
