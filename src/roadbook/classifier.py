"""Request classification: which caching strategy (if any) handles a request.

Evaluated per request, first match wins:
  1. Non-GET                         → bypass (straight to network)
  2. Non-http(s) scheme              → bypass
  3. Path under the API prefix       → network-first
  4. Image destination or extension  → cache-first with background revalidation
  5. Anything else                   → cache-first with offline fallback

API paths are checked before images so JSON from the API is never served
stale-first, even when the path happens to end in an image extension.
"""

from __future__ import annotations

import re
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from roadbook.models.cache import InterceptedRequest

IMAGE_PATH_PATTERN = re.compile(r"\.(jpg|jpeg|png|gif|webp|svg)$", re.IGNORECASE)


class Strategy(StrEnum):
    API = "api"
    IMAGE = "image"
    GENERIC = "generic"


def classify(request: InterceptedRequest, api_prefix: str = "/api/") -> Strategy | None:
    """Return the strategy for a request, or ``None`` when it must bypass caching."""
    if request.method != "GET":
        return None
    if request.scheme not in ("http", "https"):
        return None

    path = request.path
    if path.startswith(api_prefix):
        return Strategy.API
    if request.destination == "image" or IMAGE_PATH_PATTERN.search(path):
        return Strategy.IMAGE
    return Strategy.GENERIC
