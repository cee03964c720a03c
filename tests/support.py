"""Test doubles and constants shared across the unit and integration suites."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from roadbook.errors import ErrorCode, RoadbookError
from roadbook.journal.models import MediaAsset
from roadbook.models.cache import CachedResponse

if TYPE_CHECKING:
    from roadbook.journal.models import PhotoUpload
    from roadbook.models.cache import InterceptedRequest

ORIGIN = "http://trip.test"
OFFLINE_HTML = b"<html><body>You are offline</body></html>"
INDEX_HTML = b"<html><body>Road trip</body></html>"
FONT_URL = "https://fonts.example.com/css2?family=Poppins"
PRECACHE = ["/", "/index.html", "/offline.html", FONT_URL]


class FakeNetwork:
    """In-memory NetworkProtocol double.

    Known URLs answer with their registered response, unknown URLs with an
    empty 404. ``offline`` (or a URL in ``fail_urls``) raises NETWORK_FAILURE;
    ``hang`` blocks forever, like a request that never resolves.
    """

    def __init__(self) -> None:
        self.routes: dict[str, CachedResponse] = {}
        self.calls: list[InterceptedRequest] = []
        self.fail_urls: set[str] = set()
        self.offline = False
        self.hang = False

    def respond(
        self,
        url: str,
        body: bytes = b"",
        *,
        status: int = 200,
        headers: dict[str, str] | None = None,
    ) -> CachedResponse:
        response = CachedResponse(status=status, body=body, headers=headers or {}, url=url)
        self.routes[url] = response
        return response

    async def fetch(self, request: InterceptedRequest) -> CachedResponse:
        self.calls.append(request)
        if self.hang:
            await asyncio.Event().wait()
        if self.offline or request.url in self.fail_urls:
            raise RoadbookError(
                code=ErrorCode.NETWORK_FAILURE,
                message=f"Network error fetching {request.url}: offline",
                suggestion="",
                recoverable=True,
            )
        return self.routes.get(request.url, CachedResponse(status=404, url=request.url))

    def urls(self) -> list[str]:
        return [call.url for call in self.calls]


def precache_network() -> FakeNetwork:
    """FakeNetwork with every PRECACHE URL online."""
    fake = FakeNetwork()
    fake.respond(f"{ORIGIN}/", b"<html>home</html>", headers={"content-type": "text/html"})
    fake.respond(f"{ORIGIN}/index.html", b"<html>home</html>")
    fake.respond(f"{ORIGIN}/offline.html", OFFLINE_HTML, headers={"content-type": "text/html"})
    fake.respond(FONT_URL, b"@font-face {}", headers={"content-type": "text/css"})
    return fake


class FakeMediaHost:
    """In-memory MediaHostProtocol double that records every call."""

    def __init__(self) -> None:
        self.assets: dict[str, MediaAsset] = {}
        self.uploads: list[dict] = []
        self.context_updates: list[tuple[str, dict[str, str]]] = []
        self.destroyed: list[str] = []
        self.fail = False
        self._counter = 0

    def _check(self, operation: str) -> None:
        if self.fail:
            raise RoadbookError(
                code=ErrorCode.MEDIA_HOST_ERROR,
                message=f"Media host {operation} failed with HTTP 500: ",
                suggestion="",
                recoverable=True,
            )

    async def upload(
        self, upload: PhotoUpload, *, folder: str, tags: list[str], context: dict[str, str]
    ) -> MediaAsset:
        self._check("upload")
        self._counter += 1
        resource_type = "video" if upload.is_video else "image"
        public_id = f"{folder}/asset{self._counter}"
        asset = MediaAsset(
            public_id=public_id,
            secure_url=f"https://media.test/{resource_type}/upload/{public_id}",
            resource_type=resource_type,
            created_at="2026-03-01T10:00:00Z",
            context=dict(context),
        )
        self.assets[public_id] = asset
        self.uploads.append({"filename": upload.filename, "folder": folder, "tags": tags})
        return asset

    async def update_context(
        self, public_id: str, context: dict[str, str], *, resource_type: str = "image"
    ) -> None:
        self._check("explicit")
        self.context_updates.append((public_id, dict(context)))
        if public_id in self.assets:
            self.assets[public_id] = self.assets[public_id].model_copy(
                update={"context": dict(context)}
            )

    async def destroy(self, public_id: str, *, resource_type: str = "image") -> None:
        self._check("destroy")
        self.destroyed.append(public_id)
        self.assets.pop(public_id, None)

    async def list_by_tag(self, tag: str, *, max_results: int = 100) -> list[MediaAsset]:
        self._check("list")
        return list(self.assets.values())[:max_results]
