from __future__ import annotations

import secrets
import string
import time
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

_BASE36 = string.digits + string.ascii_lowercase

ALLOWED_MEDIA_TYPES: frozenset[str] = frozenset(
    {
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "video/mp4",
        "video/quicktime",
        "video/webm",
    }
)
MAX_UPLOAD_BYTES = 100 * 1024 * 1024


def _to_base36(value: int) -> str:
    digits = ""
    while value:
        value, rem = divmod(value, 36)
        digits = _BASE36[rem] + digits
    return digits or "0"


def generate_id() -> str:
    """Millisecond timestamp in base 36 followed by random base-36 characters."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(10))
    return _to_base36(time.time_ns() // 1_000_000) + suffix


def utc_now() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


def _blank_to_none(v: object) -> object:
    if isinstance(v, str) and not v.strip():
        return None
    return v


class Photo(BaseModel):
    """A photo or video record. ``public_id`` addresses the asset at the media host."""

    id: str
    url: str
    public_id: str = ""
    caption: str = ""
    uploaded_by: str = "Anonymous"
    day_number: int | None = None
    type: Literal["image", "video"] = "image"
    created_at: str = Field(default_factory=utc_now)

    normalise_day = field_validator("day_number", mode="before")(_blank_to_none)


class JournalEntry(BaseModel):
    # Older edge deployments stored numeric timestamp IDs
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    author: str
    content: str
    day_number: int | None = None
    created_at: str = Field(default_factory=utc_now)

    normalise_day = field_validator("day_number", mode="before")(_blank_to_none)


class Reaction(BaseModel):
    id: str
    target_type: str
    target_id: str
    emoji: str
    author: str = "Anonymous"
    created_at: str = Field(default_factory=utc_now)


class ReactionCount(BaseModel):
    emoji: str
    count: int


class Stats(BaseModel):
    photos: int
    journal_entries: int
    reactions: int


class JournalData(BaseModel):
    """Whole-document contents of the local JSON store."""

    photos: list[Photo] = []
    journal: list[JournalEntry] = []
    reactions: list[Reaction] = []


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class NewJournalEntry(BaseModel):
    author: str | None = None
    content: str = Field(min_length=1, max_length=20_000)
    day_number: int | None = None

    normalise_day = field_validator("day_number", mode="before")(_blank_to_none)


class NewReaction(BaseModel):
    target_type: str = Field(min_length=1, max_length=32)
    target_id: str = Field(min_length=1, max_length=128)
    emoji: str = Field(min_length=1, max_length=32)
    author: str | None = None


class PhotoUpdate(BaseModel):
    caption: str = Field(max_length=2_000)


class PhotoUpload(BaseModel):
    """A validated multipart upload, ready for the media host."""

    data: bytes
    filename: str = "upload"
    content_type: str
    caption: str = ""
    uploaded_by: str | None = None
    day_number: int | None = None

    normalise_day = field_validator("day_number", mode="before")(_blank_to_none)

    @field_validator("content_type")
    @classmethod
    def validate_content_type(cls, v: str) -> str:
        if v not in ALLOWED_MEDIA_TYPES:
            raise ValueError(f"Unsupported media type: {v!r}")
        return v

    @field_validator("data")
    @classmethod
    def validate_size(cls, v: bytes) -> bytes:
        if not v:
            raise ValueError("Uploaded file is empty")
        if len(v) > MAX_UPLOAD_BYTES:
            raise ValueError(f"Uploaded file exceeds {MAX_UPLOAD_BYTES // (1024 * 1024)} MB")
        return v

    @property
    def is_video(self) -> bool:
        return self.content_type.startswith("video/")


class MediaAsset(BaseModel):
    """An asset as reported by the media host."""

    public_id: str
    secure_url: str
    resource_type: str = "image"
    created_at: str = ""
    context: dict[str, str] = {}
