from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from urllib.parse import urldefrag, urlsplit

from pydantic import BaseModel, field_validator


def request_identity(url: str, method: str = "GET") -> str:
    """Cache key for a request: upper-cased method plus the URL without fragment."""
    return f"{method.upper()} {urldefrag(url).url}"


class InterceptedRequest(BaseModel):
    """A request seen by the offline worker before it reaches the network."""

    method: str = "GET"
    url: str
    destination: str = ""  # "document" | "image" | "style" | "" ...
    mode: str = "no-cors"  # "navigate" for top-level page loads
    headers: dict[str, str] = {}
    body: bytes = b""

    @field_validator("method")
    @classmethod
    def normalise_method(cls, v: str) -> str:
        return v.upper()

    @property
    def scheme(self) -> str:
        return urlsplit(self.url).scheme.lower()

    @property
    def path(self) -> str:
        return urlsplit(self.url).path or "/"

    @property
    def is_navigation(self) -> bool:
        return self.mode == "navigate"

    @property
    def identity(self) -> str:
        return request_identity(self.url, self.method)


class CachedResponse(BaseModel):
    """Response snapshot as returned by the network or stored in a cache."""

    status: int
    headers: dict[str, str] = {}
    body: bytes = b""
    url: str = ""
    stored_at: datetime | None = None  # Set only on entries read back from a store
    # Passed through to the client, never stored
    set_cookies: list[str] = []

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class CacheGenerations:
    """The two cache-store names that are live for one worker version."""

    general: str
    images: str

    @classmethod
    def for_version(cls, version: str, app_name: str = "roadbook") -> CacheGenerations:
        return cls(general=f"{app_name}-{version}", images=f"{app_name}-images-{version}")

    @property
    def names(self) -> frozenset[str]:
        return frozenset({self.general, self.images})
