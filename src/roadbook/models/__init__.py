from __future__ import annotations

from roadbook.models.cache import (
    CachedResponse,
    CacheGenerations,
    InterceptedRequest,
    request_identity,
)

__all__ = [
    "CachedResponse",
    "CacheGenerations",
    "InterceptedRequest",
    "request_identity",
]
