"""HTTP edge: error envelope handler and the uvicorn runner."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
import uvicorn
from starlette.responses import JSONResponse

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.types import ASGIApp

    from roadbook.config import Settings
    from roadbook.errors import RoadbookError

log = structlog.get_logger()


async def roadbook_error_handler(request: Request, exc: RoadbookError) -> JSONResponse:
    """Serialise RoadbookError into the JSON error envelope."""
    log.warning(
        "request_error",
        method=request.method,
        path=request.url.path,
        code=exc.code,
        message=exc.message,
        recoverable=exc.recoverable,
    )
    return JSONResponse(exc.to_dict(), status_code=exc.http_status)


def run_http_server(app: ASGIApp, settings: Settings) -> None:
    """Serve the proxy app with uvicorn."""
    log.info("http_server_starting", host=settings.server.host, port=settings.server.port)
    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,  # Disable uvicorn's default logging; structlog handles it
    )
