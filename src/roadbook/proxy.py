"""Offline proxy: the ASGI face of the offline worker.

Every request that is not addressed to the control endpoints is rebased
onto the upstream origin, described as an InterceptedRequest and answered
by ``WorkerRegistration.handle_fetch``. Browsers report what a request is
for via ``Sec-Fetch-Dest`` and ``Sec-Fetch-Mode``; those become the
destination hint and the navigation flag.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import structlog
from starlette.applications import Starlette
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from roadbook.errors import RoadbookError
from roadbook.models.cache import InterceptedRequest
from roadbook.transport import roadbook_error_handler

if TYPE_CHECKING:
    from contextlib import AbstractAsyncContextManager
    from typing import Any, Callable

    from starlette.requests import Request

    from roadbook.state import AppState

log = structlog.get_logger()

PROXIED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _state(request: Request) -> AppState:
    return request.app.state.roadbook


def intercepted_from(request: Request, origin: str, body: bytes = b"") -> InterceptedRequest:
    """Describe an incoming request as the worker sees it, addressed to ``origin``."""
    url = origin.rstrip("/") + request.url.path
    if request.url.query:
        url = f"{url}?{request.url.query}"
    return InterceptedRequest(
        method=request.method,
        url=url,
        destination=request.headers.get("sec-fetch-dest", ""),
        mode=request.headers.get("sec-fetch-mode", "no-cors"),
        headers=dict(request.headers),
        body=body,
    )


def _parse_message(raw: bytes, content_type: str) -> Any:
    text = raw.decode("utf-8", errors="replace").strip()
    if content_type.startswith("application/json"):
        try:
            return json.loads(text)
        except ValueError:
            return text
    return text


async def post_message(request: Request) -> JSONResponse:
    state = _state(request)
    data = _parse_message(await request.body(), request.headers.get("content-type", ""))
    await state.registration.post_message(data)
    return JSONResponse(state.registration.status(), status_code=202)


async def worker_status(request: Request) -> JSONResponse:
    state = _state(request)
    status = state.registration.status()
    status["cache_names"] = sorted(await state.storage.keys())
    return JSONResponse(status)


async def intercept(request: Request) -> Response:
    state = _state(request)
    intercepted = intercepted_from(request, state.origin, await request.body())
    response = await state.registration.handle_fetch(intercepted)
    outgoing = Response(
        content=response.body,
        status_code=response.status,
        headers=response.headers,
    )
    for cookie in response.set_cookies:
        outgoing.headers.append("set-cookie", cookie)
    return outgoing


def build_proxy_app(
    control_path: str = "/_roadbook",
    *,
    state: AppState | None = None,
    lifespan: Callable[[Starlette], AbstractAsyncContextManager[None]] | None = None,
) -> Starlette:
    """Create the proxy app.

    Pass ``state`` to wire a prebuilt AppState (tests), or ``lifespan`` to
    build it at startup (server).
    """
    control_path = control_path.rstrip("/")
    routes = [
        Route(f"{control_path}/message", post_message, methods=["POST"]),
        Route(f"{control_path}/status", worker_status, methods=["GET"]),
        Route("/{path:path}", intercept, methods=PROXIED_METHODS),
    ]
    app = Starlette(
        routes=routes,
        exception_handlers={RoadbookError: roadbook_error_handler},
        lifespan=lifespan,
    )
    if state is not None:
        app.state.roadbook = state
    return app
