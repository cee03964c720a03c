"""Media host client (Cloudinary-compatible REST API).

Write operations (upload, context update, destroy) are signed: the
key-sorted ``k=v`` parameters are joined with ``&``, the API secret is
appended, and the SHA-1 hex digest is sent as ``signature``. Listing uses
HTTP Basic auth with the API key and secret.
"""

from __future__ import annotations

import hashlib
import time
from typing import TYPE_CHECKING, Any, Protocol

import httpx
import structlog

from roadbook.errors import ErrorCode, RoadbookError
from roadbook.journal.models import MediaAsset

if TYPE_CHECKING:
    from roadbook.config import MediaSettings
    from roadbook.journal.models import PhotoUpload

log = structlog.get_logger()

LIST_MAX_RESULTS = 100
IMAGE_TRANSFORMATION = "q_auto,f_auto"


class MediaHostProtocol(Protocol):
    async def upload(
        self, upload: PhotoUpload, *, folder: str, tags: list[str], context: dict[str, str]
    ) -> MediaAsset: ...

    async def update_context(
        self, public_id: str, context: dict[str, str], *, resource_type: str = "image"
    ) -> None: ...

    async def destroy(self, public_id: str, *, resource_type: str = "image") -> None: ...

    async def list_by_tag(
        self, tag: str, *, max_results: int = LIST_MAX_RESULTS
    ) -> list[MediaAsset]: ...


def sign_params(params: dict[str, str], api_secret: str) -> str:
    """SHA-1 request signature over the non-empty params."""
    to_sign = "&".join(f"{key}={value}" for key, value in sorted(params.items()) if value != "")
    return hashlib.sha1((to_sign + api_secret).encode("utf-8")).hexdigest()


def encode_context(context: dict[str, str]) -> str:
    """Pipe-separated ``key=value`` pairs with ``|`` and ``=`` escaped in values."""

    def escape(value: str) -> str:
        return value.replace("\\", "\\\\").replace("|", "\\|").replace("=", "\\=")

    return "|".join(f"{key}={escape(value)}" for key, value in context.items())


def _asset_from_payload(payload: dict[str, Any], resource_type: str = "image") -> MediaAsset:
    custom = (payload.get("context") or {}).get("custom") or {}
    return MediaAsset(
        public_id=payload["public_id"],
        secure_url=payload["secure_url"],
        resource_type=payload.get("resource_type", resource_type),
        created_at=payload.get("created_at", ""),
        context={key: str(value) for key, value in custom.items()},
    )


class CloudinaryMediaHost:
    """Media host client. Receives the shared httpx.AsyncClient via injection."""

    def __init__(self, client: httpx.AsyncClient, settings: MediaSettings) -> None:
        self._client = client
        self._settings = settings

    def _url(self, *parts: str) -> str:
        return "/".join([self._settings.api_base.rstrip("/"), self._settings.cloud_name, *parts])

    def _signed(self, params: dict[str, str]) -> dict[str, str]:
        params = {**params, "timestamp": str(int(time.time()))}
        return {
            **params,
            "signature": sign_params(params, self._settings.api_secret),
            "api_key": self._settings.api_key,
        }

    async def _send(
        self, operation: str, request: httpx.Request, *, auth: httpx.Auth | None = None
    ) -> dict[str, Any]:
        try:
            response = await self._client.send(request, auth=auth)
        except httpx.HTTPError as exc:
            raise RoadbookError(
                code=ErrorCode.MEDIA_HOST_ERROR,
                message=f"Media host unreachable during {operation}: {exc}",
                suggestion="Check connectivity to the media host and retry.",
                recoverable=True,
            ) from exc

        if not response.is_success:
            try:
                detail = response.json().get("error", {}).get("message", "")
            except ValueError:
                detail = ""
            log.warning(
                "media_host_error", operation=operation, status_code=response.status_code
            )
            raise RoadbookError(
                code=ErrorCode.MEDIA_HOST_ERROR,
                message=f"Media host {operation} failed with HTTP {response.status_code}: {detail}",
                suggestion="Check the media host credentials and cloud name.",
                recoverable=response.status_code >= 500,
            )
        return response.json()

    async def upload(
        self, upload: PhotoUpload, *, folder: str, tags: list[str], context: dict[str, str]
    ) -> MediaAsset:
        resource_type = "video" if upload.is_video else "image"
        params = {"folder": folder, "tags": ",".join(tags), "context": encode_context(context)}
        if not upload.is_video:
            params["transformation"] = IMAGE_TRANSFORMATION

        request = self._client.build_request(
            "POST",
            self._url(resource_type, "upload"),
            data=self._signed(params),
            files={"file": (upload.filename, upload.data, upload.content_type)},
            timeout=self._settings.timeout_seconds,
        )
        payload = await self._send("upload", request)
        log.info("media_uploaded", public_id=payload.get("public_id"), resource_type=resource_type)
        return _asset_from_payload(payload, resource_type)

    async def update_context(
        self, public_id: str, context: dict[str, str], *, resource_type: str = "image"
    ) -> None:
        params = {"public_id": public_id, "type": "upload", "context": encode_context(context)}
        request = self._client.build_request(
            "POST", self._url(resource_type, "explicit"), data=self._signed(params)
        )
        await self._send("explicit", request)

    async def destroy(self, public_id: str, *, resource_type: str = "image") -> None:
        request = self._client.build_request(
            "POST",
            self._url(resource_type, "destroy"),
            data=self._signed({"public_id": public_id}),
        )
        payload = await self._send("destroy", request)
        result = payload.get("result")
        if result not in ("ok", "not found"):
            raise RoadbookError(
                code=ErrorCode.MEDIA_HOST_ERROR,
                message=f"Media host refused to destroy {public_id}: {result!r}",
                suggestion="Retry the delete; the asset was left in place.",
                recoverable=True,
            )
        log.info("media_destroyed", public_id=public_id, result=result)

    async def list_by_tag(
        self, tag: str, *, max_results: int = LIST_MAX_RESULTS
    ) -> list[MediaAsset]:
        request = self._client.build_request(
            "GET",
            self._url("resources", "image", "tags", tag),
            params={"max_results": min(max_results, LIST_MAX_RESULTS), "context": "true"},
        )
        auth = httpx.BasicAuth(self._settings.api_key, self._settings.api_secret)
        payload = await self._send("list", request, auth=auth)
        return [_asset_from_payload(resource) for resource in payload.get("resources", [])]
