"""Journal backends: two deployment targets behind one interface.

``LocalJournalBackend`` is the persistent server: a JSON document plus the
media host, with the full feature set (upload, caption edit, signed delete,
reactions, stats). ``EdgeJournalBackend`` is the edge-function variant:
photos are listed straight from the media host by tag and journal entries
live in a key-value store. Operations it does not offer raise
``UNSUPPORTED_OPERATION``; the variants are not reconciled.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from typing import TYPE_CHECKING, Protocol

import structlog

from roadbook.errors import ErrorCode, RoadbookError
from roadbook.journal.models import (
    JournalEntry,
    Photo,
    Reaction,
    ReactionCount,
    Stats,
    generate_id,
)

if TYPE_CHECKING:
    from roadbook.journal.media import MediaHostProtocol
    from roadbook.journal.models import (
        NewJournalEntry,
        NewReaction,
        PhotoUpdate,
        PhotoUpload,
    )
    from roadbook.journal.stores import JsonDocumentStore, KeyValueStore

log = structlog.get_logger()

KV_ENTRIES_KEY = "entries"


class JournalBackend(Protocol):
    name: str

    async def list_photos(self, day: int | None = None) -> list[Photo]: ...

    async def upload_photo(self, upload: PhotoUpload) -> Photo: ...

    async def update_photo(self, photo_id: str, update: PhotoUpdate) -> Photo: ...

    async def delete_photo(self, photo_id: str) -> None: ...

    async def list_entries(self, day: int | None = None) -> list[JournalEntry]: ...

    async def add_entry(self, entry: NewJournalEntry) -> JournalEntry: ...

    async def delete_entry(self, entry_id: str) -> None: ...

    async def add_reaction(self, reaction: NewReaction) -> Reaction: ...

    async def reaction_summary(self, target_type: str, target_id: str) -> list[ReactionCount]: ...

    async def stats(self) -> Stats: ...


def _photo_not_found(photo_id: str) -> RoadbookError:
    return RoadbookError(
        code=ErrorCode.NOT_FOUND,
        message=f"Photo '{photo_id}' not found.",
        suggestion="List photos to find a valid ID.",
        recoverable=False,
    )


def _media_context(photo: Photo) -> dict[str, str]:
    return {
        "caption": photo.caption,
        "uploaded_by": photo.uploaded_by,
        "day_number": "" if photo.day_number is None else str(photo.day_number),
    }


class LocalJournalBackend:
    """JSON document store + media host. Full feature set."""

    name = "local"

    def __init__(
        self,
        store: JsonDocumentStore,
        media: MediaHostProtocol,
        *,
        folder: str,
        tag: str,
    ) -> None:
        self._store = store
        self._media = media
        self._folder = folder
        self._tag = tag
        # Serialises read-modify-write cycles on the single document
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Photos
    # ------------------------------------------------------------------

    async def list_photos(self, day: int | None = None) -> list[Photo]:
        data = await self._store.read()
        if day is None:
            return data.photos
        return [photo for photo in data.photos if photo.day_number == day]

    async def upload_photo(self, upload: PhotoUpload) -> Photo:
        draft = Photo(
            id=generate_id(),
            url="",
            caption=upload.caption,
            uploaded_by=upload.uploaded_by or "Anonymous",
            day_number=upload.day_number,
            type="video" if upload.is_video else "image",
        )
        asset = await self._media.upload(
            upload, folder=self._folder, tags=[self._tag], context=_media_context(draft)
        )
        photo = draft.model_copy(update={"url": asset.secure_url, "public_id": asset.public_id})

        async with self._lock:
            data = await self._store.read()
            data.photos.insert(0, photo)
            await self._store.write(data)

        log.info("photo_uploaded", photo_id=photo.id, type=photo.type)
        return photo

    async def update_photo(self, photo_id: str, update: PhotoUpdate) -> Photo:
        async with self._lock:
            data = await self._store.read()
            for index, photo in enumerate(data.photos):
                if photo.id == photo_id:
                    break
            else:
                raise _photo_not_found(photo_id)

            updated = photo.model_copy(update={"caption": update.caption})
            if updated.public_id:
                await self._media.update_context(
                    updated.public_id, _media_context(updated), resource_type=updated.type
                )
            data.photos[index] = updated
            await self._store.write(data)

        log.info("photo_updated", photo_id=photo_id)
        return updated

    async def delete_photo(self, photo_id: str) -> None:
        async with self._lock:
            data = await self._store.read()
            photo = next((p for p in data.photos if p.id == photo_id), None)
            if photo is None:
                raise _photo_not_found(photo_id)

            if photo.public_id:
                await self._media.destroy(photo.public_id, resource_type=photo.type)
            data.photos = [p for p in data.photos if p.id != photo_id]
            await self._store.write(data)

        log.info("photo_deleted", photo_id=photo_id)

    # ------------------------------------------------------------------
    # Journal
    # ------------------------------------------------------------------

    async def list_entries(self, day: int | None = None) -> list[JournalEntry]:
        data = await self._store.read()
        if day is None:
            return data.journal
        return [entry for entry in data.journal if entry.day_number == day]

    async def add_entry(self, entry: NewJournalEntry) -> JournalEntry:
        if not entry.author:
            raise RoadbookError(
                code=ErrorCode.INVALID_INPUT,
                message="Author and content required",
                suggestion="Provide both 'author' and 'content'.",
                recoverable=False,
            )
        created = JournalEntry(
            id=generate_id(),
            author=entry.author,
            content=entry.content,
            day_number=entry.day_number,
        )
        async with self._lock:
            data = await self._store.read()
            data.journal.insert(0, created)
            await self._store.write(data)
        return created

    async def delete_entry(self, entry_id: str) -> None:
        async with self._lock:
            data = await self._store.read()
            data.journal = [entry for entry in data.journal if entry.id != entry_id]
            await self._store.write(data)

    # ------------------------------------------------------------------
    # Reactions and stats
    # ------------------------------------------------------------------

    async def add_reaction(self, reaction: NewReaction) -> Reaction:
        created = Reaction(
            id=generate_id(),
            target_type=reaction.target_type,
            target_id=reaction.target_id,
            emoji=reaction.emoji,
            author=reaction.author or "Anonymous",
        )
        async with self._lock:
            data = await self._store.read()
            data.reactions.append(created)
            await self._store.write(data)
        return created

    async def reaction_summary(self, target_type: str, target_id: str) -> list[ReactionCount]:
        """Reaction counts for one target, grouped by emoji in first-seen order."""
        data = await self._store.read()
        counts = Counter(
            r.emoji
            for r in data.reactions
            if r.target_type == target_type and r.target_id == target_id
        )
        return [ReactionCount(emoji=emoji, count=count) for emoji, count in counts.items()]

    async def stats(self) -> Stats:
        data = await self._store.read()
        return Stats(
            photos=len(data.photos),
            journal_entries=len(data.journal),
            reactions=len(data.reactions),
        )


class EdgeJournalBackend:
    """Media-host tag listing + key-value journal. Read-mostly subset."""

    name = "edge"

    def __init__(self, kv: KeyValueStore, media: MediaHostProtocol, *, tag: str) -> None:
        self._kv = kv
        self._media = media
        self._tag = tag
        self._lock = asyncio.Lock()

    def _unsupported(self, operation: str) -> RoadbookError:
        return RoadbookError(
            code=ErrorCode.UNSUPPORTED_OPERATION,
            message=f"'{operation}' is not available on the edge backend.",
            suggestion="Use the local backend for uploads, edits, deletes and reactions.",
            recoverable=False,
        )

    async def list_photos(self, day: int | None = None) -> list[Photo]:
        assets = await self._media.list_by_tag(self._tag)
        photos = [
            Photo(
                id=asset.public_id,
                url=asset.secure_url,
                public_id=asset.public_id,
                created_at=asset.created_at,
                caption=asset.context.get("caption", ""),
                uploaded_by=asset.context.get("uploaded_by", ""),
                day_number=asset.context.get("day_number"),
            )
            for asset in assets
        ]
        if day is None:
            return photos
        return [photo for photo in photos if photo.day_number == day]

    async def upload_photo(self, upload: PhotoUpload) -> Photo:
        raise self._unsupported("upload_photo")

    async def update_photo(self, photo_id: str, update: PhotoUpdate) -> Photo:
        raise self._unsupported("update_photo")

    async def delete_photo(self, photo_id: str) -> None:
        raise self._unsupported("delete_photo")

    async def _read_entries(self) -> list[JournalEntry]:
        raw = await self._kv.get_json(KV_ENTRIES_KEY) or []
        return [JournalEntry.model_validate(item) for item in raw]

    async def list_entries(self, day: int | None = None) -> list[JournalEntry]:
        entries = await self._read_entries()
        if day is None:
            return entries
        return [entry for entry in entries if entry.day_number == day]

    async def add_entry(self, entry: NewJournalEntry) -> JournalEntry:
        created = JournalEntry(
            id=generate_id(),
            author=entry.author or "Anonymous",
            content=entry.content,
            day_number=entry.day_number,
        )
        async with self._lock:
            entries = await self._read_entries()
            entries.insert(0, created)
            await self._kv.put_json(
                KV_ENTRIES_KEY, [item.model_dump(mode="json") for item in entries]
            )
        return created

    async def delete_entry(self, entry_id: str) -> None:
        raise self._unsupported("delete_entry")

    async def add_reaction(self, reaction: NewReaction) -> Reaction:
        raise self._unsupported("add_reaction")

    async def reaction_summary(self, target_type: str, target_id: str) -> list[ReactionCount]:
        raise self._unsupported("reaction_summary")

    async def stats(self) -> Stats:
        raise self._unsupported("stats")
