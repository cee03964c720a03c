"""Live network fetches for the offline worker.

All network I/O, whether for a caching strategy, the precache manifest or a
bypassed passthrough request, goes through a single Network instance. The
Network receives an httpx.AsyncClient via constructor injection; the
lifespan owns the client lifecycle.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import structlog

from roadbook import __version__
from roadbook.errors import ErrorCode, RoadbookError
from roadbook.models.cache import CachedResponse

if TYPE_CHECKING:
    from collections.abc import Mapping

    from starlette.types import ASGIApp

    from roadbook.models.cache import InterceptedRequest

log = structlog.get_logger()

# Origin used when the journal app is served in-process instead of upstream
LOCAL_ORIGIN = "http://roadbook.local"

# Never forwarded in either direction: connection-scoped, or recomputed by httpx
_HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "content-encoding",
        "content-length",
        "host",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)


def build_http_client(local_app: ASGIApp | None = None) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup.

    When ``local_app`` is given, requests to LOCAL_ORIGIN are routed to it
    in-process; every other origin (external stylesheets in the precache
    manifest, for one) still goes over the real network.
    """
    mounts = {LOCAL_ORIGIN: httpx.ASGITransport(app=local_app)} if local_app is not None else None
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(30.0),
        headers={"User-Agent": f"roadbook/{__version__}"},
        limits=httpx.Limits(
            max_connections=20,
            max_keepalive_connections=10,
        ),
        mounts=mounts,
    )


def filter_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Lower-case header names and drop hop-by-hop headers.

    ``Set-Cookie`` is dropped as well: repeated values cannot be folded into
    one, so ``Network.fetch`` carries them separately and they are never
    written to a cache.
    """
    return {
        name.lower(): value
        for name, value in headers.items()
        if name.lower() not in _HOP_BY_HOP_HEADERS and name.lower() != "set-cookie"
    }


class Network:
    """Fetches intercepted requests and snapshots the response."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def fetch(self, request: InterceptedRequest) -> CachedResponse:
        """Perform the request as-is.

        Non-2xx responses are returned unmodified; only failures to reach
        the network at all raise ``RoadbookError(NETWORK_FAILURE)``.
        """
        try:
            response = await self._client.request(
                request.method,
                request.url,
                headers=filter_headers(request.headers),
                content=request.body or None,
            )
        except httpx.HTTPError as exc:
            log.info("fetch_failed", url=request.url, method=request.method, error=str(exc))
            raise RoadbookError(
                code=ErrorCode.NETWORK_FAILURE,
                message=f"Network error fetching {request.url}: {exc}",
                suggestion="The upstream may be unreachable; cached copies are used if present.",
                recoverable=True,
            ) from exc

        log.debug(
            "fetch_complete",
            url=request.url,
            method=request.method,
            status_code=response.status_code,
            content_length=len(response.content),
        )
        return CachedResponse(
            status=response.status_code,
            headers=filter_headers(response.headers),
            body=response.content,
            url=str(response.url),
            set_cookies=response.headers.get_list("set-cookie"),
        )
