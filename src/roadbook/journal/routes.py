"""Starlette routes for the journal REST API.

Handlers validate input, delegate to the configured JournalBackend
(``request.app.state.backend``) and serialise pydantic models to JSON.
RoadbookError is turned into the JSON error envelope by the shared handler
from ``roadbook.transport``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ValidationError
from starlette.applications import Starlette
from starlette.datastructures import UploadFile
from starlette.endpoints import HTTPEndpoint
from starlette.responses import JSONResponse
from starlette.routing import Mount, Route
from starlette.staticfiles import StaticFiles

from roadbook.errors import ErrorCode, RoadbookError
from roadbook.journal.models import NewJournalEntry, NewReaction, PhotoUpdate, PhotoUpload
from roadbook.transport import roadbook_error_handler

if TYPE_CHECKING:
    from starlette.requests import Request

    from roadbook.journal.backends import JournalBackend

M = TypeVar("M", bound=BaseModel)


def _invalid(message: str, suggestion: str) -> RoadbookError:
    return RoadbookError(
        code=ErrorCode.INVALID_INPUT,
        message=message,
        suggestion=suggestion,
        recoverable=False,
    )


def _backend(request: Request) -> JournalBackend:
    return request.app.state.backend


def _day_param(request: Request) -> int | None:
    raw = request.query_params.get("day")
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise _invalid(f"Invalid day: {raw!r}", "Pass 'day' as an integer.") from exc


async def _json_body(request: Request, model: type[M]) -> M:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise _invalid("Request body is not valid JSON.", "Send a JSON object.") from exc
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise _invalid(str(exc), "Check the required fields and their types.") from exc


def _dump(items: list[BaseModel] | BaseModel) -> Any:
    if isinstance(items, BaseModel):
        return items.model_dump(mode="json")
    return [item.model_dump(mode="json") for item in items]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


class PhotosEndpoint(HTTPEndpoint):
    async def get(self, request: Request) -> JSONResponse:
        photos = await _backend(request).list_photos(_day_param(request))
        return JSONResponse(_dump(photos))

    async def post(self, request: Request) -> JSONResponse:
        async with request.form() as form:
            file = form.get("file")
            if not isinstance(file, UploadFile):
                raise _invalid("No file uploaded", "Send the media as multipart field 'file'.")
            try:
                upload = PhotoUpload(
                    data=await file.read(),
                    filename=file.filename or "upload",
                    content_type=file.content_type or "",
                    caption=str(form.get("caption") or ""),
                    uploaded_by=form.get("uploaded_by") or None,
                    day_number=form.get("day_number") or None,
                )
            except ValidationError as exc:
                raise _invalid(
                    str(exc), "Upload a JPEG, PNG, GIF, WebP, MP4, MOV or WebM file up to 100 MB."
                ) from exc

        photo = await _backend(request).upload_photo(upload)
        return JSONResponse(_dump(photo))


class PhotoEndpoint(HTTPEndpoint):
    async def patch(self, request: Request) -> JSONResponse:
        update = await _json_body(request, PhotoUpdate)
        photo = await _backend(request).update_photo(request.path_params["photo_id"], update)
        return JSONResponse(_dump(photo))

    async def delete(self, request: Request) -> JSONResponse:
        await _backend(request).delete_photo(request.path_params["photo_id"])
        return JSONResponse({"success": True})


class JournalEndpoint(HTTPEndpoint):
    async def get(self, request: Request) -> JSONResponse:
        entries = await _backend(request).list_entries(_day_param(request))
        return JSONResponse(_dump(entries))

    async def post(self, request: Request) -> JSONResponse:
        new_entry = await _json_body(request, NewJournalEntry)
        entry = await _backend(request).add_entry(new_entry)
        return JSONResponse(_dump(entry))


class JournalEntryEndpoint(HTTPEndpoint):
    async def delete(self, request: Request) -> JSONResponse:
        await _backend(request).delete_entry(request.path_params["entry_id"])
        return JSONResponse({"success": True})


class ReactionsEndpoint(HTTPEndpoint):
    async def post(self, request: Request) -> JSONResponse:
        new_reaction = await _json_body(request, NewReaction)
        reaction = await _backend(request).add_reaction(new_reaction)
        return JSONResponse(_dump(reaction))


class ReactionSummaryEndpoint(HTTPEndpoint):
    async def get(self, request: Request) -> JSONResponse:
        summary = await _backend(request).reaction_summary(
            request.path_params["target_type"], request.path_params["target_id"]
        )
        return JSONResponse(_dump(summary))


class StatsEndpoint(HTTPEndpoint):
    async def get(self, request: Request) -> JSONResponse:
        return JSONResponse(_dump(await _backend(request).stats()))


def build_journal_app(backend: JournalBackend, *, static_dir: str | None = None) -> Starlette:
    """Create the journal API app, optionally serving the front end from ``static_dir``."""
    routes: list[Route | Mount] = [
        Route("/api/photos", PhotosEndpoint),
        Route("/api/photos/{photo_id}", PhotoEndpoint),
        Route("/api/journal", JournalEndpoint),
        Route("/api/journal/{entry_id}", JournalEntryEndpoint),
        Route("/api/reactions", ReactionsEndpoint),
        Route("/api/reactions/{target_type}/{target_id}", ReactionSummaryEndpoint),
        Route("/api/stats", StatsEndpoint),
    ]
    if static_dir is not None:
        routes.append(Mount("/", app=StaticFiles(directory=static_dir, html=True)))

    app = Starlette(routes=routes, exception_handlers={RoadbookError: roadbook_error_handler})
    app.state.backend = backend
    return app
