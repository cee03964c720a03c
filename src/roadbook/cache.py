"""SQLite-backed cache storage: named generations of request → response snapshots.

Mirrors the browser Cache Storage contract: ``CacheStorage.open(name)``
creates a store on demand, stores map a normalized GET request identity to a
response snapshot, and whole stores are deleted by name when a generation is
superseded.

Single-entry reads and writes catch ``aiosqlite.Error`` internally and
degrade gracefully: read failures return ``None`` (treated as cache miss by
the executors), write failures are logged and ignored (the live response is
still returned). ``add_all`` is the exception: it backs the install step,
which must fail as a whole, so it raises ``RoadbookError(INSTALL_FAILED)``
and commits nothing.
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import aiosqlite
import structlog

from roadbook.errors import ErrorCode, RoadbookError
from roadbook.models.cache import (
    CacheGenerations,
    CachedResponse,
    InterceptedRequest,
    request_identity,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from roadbook.protocols import NetworkProtocol

log = structlog.get_logger()

_CREATE_STORES_TABLE = """
CREATE TABLE IF NOT EXISTS cache_stores (
    name       TEXT PRIMARY KEY,
    created_at TEXT NOT NULL
)
"""

_CREATE_ENTRIES_TABLE = """
CREATE TABLE IF NOT EXISTS cache_entries (
    cache_name  TEXT NOT NULL REFERENCES cache_stores(name) ON DELETE CASCADE,
    request_key TEXT NOT NULL,
    url         TEXT NOT NULL,
    status      INTEGER NOT NULL,
    headers     TEXT NOT NULL DEFAULT '{}',
    body        BLOB NOT NULL,
    stored_at   TEXT NOT NULL,
    PRIMARY KEY (cache_name, request_key)
)
"""

_CREATE_ACTIVE_TABLE = """
CREATE TABLE IF NOT EXISTS active_generation (
    slot         INTEGER PRIMARY KEY CHECK (slot = 0),
    general      TEXT NOT NULL,
    images       TEXT NOT NULL,
    activated_at TEXT NOT NULL
)
"""

_INSERT_STORE = "INSERT OR IGNORE INTO cache_stores (name, created_at) VALUES (?, ?)"

_UPSERT_ENTRY = (
    "INSERT OR REPLACE INTO cache_entries "
    "(cache_name, request_key, url, status, headers, body, stored_at) "
    "VALUES (?, ?, ?, ?, ?, ?, ?)"
)


def _key_and_url(request: InterceptedRequest | str) -> tuple[str, str]:
    if isinstance(request, InterceptedRequest):
        return request.identity, request.url
    return request_identity(request), request


def _entry_row(
    cache_name: str, key: str, url: str, response: CachedResponse, stored_at: str
) -> tuple:
    return (
        cache_name,
        key,
        response.url or url,
        response.status,
        json.dumps(response.headers, sort_keys=True),
        response.body,
        stored_at,
    )


class CacheStore:
    """One named cache generation. Obtained from ``CacheStorage.open``."""

    def __init__(self, db: aiosqlite.Connection, name: str) -> None:
        self._db = db
        self.name = name

    async def match(self, request: InterceptedRequest | str) -> CachedResponse | None:
        """Look up a stored response. Returns ``None`` on miss or read failure."""
        key, _ = _key_and_url(request)
        try:
            cursor = await self._db.execute(
                "SELECT url, status, headers, body, stored_at FROM cache_entries "
                "WHERE cache_name = ? AND request_key = ?",
                (self.name, key),
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return CachedResponse(
                url=row[0],
                status=row[1],
                headers=json.loads(row[2]),
                body=bytes(row[3]),
                stored_at=datetime.fromisoformat(row[4]),
            )
        except aiosqlite.Error:
            log.warning("cache_read_error", cache=self.name, key=key, exc_info=True)
            return None

    async def put(self, request: InterceptedRequest | str, response: CachedResponse) -> None:
        """Store (or overwrite) a successful response. Non-fatal on failure."""
        key, url = _key_and_url(request)
        if not key.startswith("GET ") or not response.ok:
            log.debug("cache_put_rejected", cache=self.name, key=key, status=response.status)
            return
        try:
            now = datetime.now(UTC).isoformat()
            await self._db.execute(_INSERT_STORE, (self.name, now))
            await self._db.execute(_UPSERT_ENTRY, _entry_row(self.name, key, url, response, now))
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_write_error", cache=self.name, key=key, exc_info=True)

    async def add_all(self, urls: Iterable[str], network: NetworkProtocol) -> None:
        """Fetch every URL and commit them as one batch.

        Any network failure or non-2xx response aborts the whole batch
        before anything is written. Duplicate URLs collapse to one entry.
        """
        unique = {req.identity: req for req in (InterceptedRequest(url=url) for url in urls)}
        requests = list(unique.values())

        try:
            responses = await asyncio.gather(*(network.fetch(req) for req in requests))
        except RoadbookError as exc:
            raise RoadbookError(
                code=ErrorCode.INSTALL_FAILED,
                message=f"Precache fetch failed: {exc.message}",
                suggestion="Check that every precache URL is reachable, then reinstall.",
                recoverable=exc.recoverable,
            ) from exc

        for req, response in zip(requests, responses, strict=True):
            if not response.ok:
                cause = RoadbookError(
                    code=ErrorCode.NON_OK_RESPONSE,
                    message=f"HTTP {response.status} from {req.url}",
                    suggestion="Non-2xx responses are never cached.",
                )
                raise RoadbookError(
                    code=ErrorCode.INSTALL_FAILED,
                    message=f"HTTP {response.status} precaching {req.url}",
                    suggestion="Every precache URL must answer 2xx without authentication.",
                    recoverable=False,
                ) from cause

        now = datetime.now(UTC).isoformat()
        try:
            await self._db.execute(_INSERT_STORE, (self.name, now))
            await self._db.executemany(
                _UPSERT_ENTRY,
                [
                    _entry_row(self.name, req.identity, req.url, response, now)
                    for req, response in zip(requests, responses, strict=True)
                ],
            )
            await self._db.commit()
        except aiosqlite.Error as exc:
            await self._db.rollback()
            raise RoadbookError(
                code=ErrorCode.INSTALL_FAILED,
                message=f"Could not write precache batch to '{self.name}': {exc}",
                suggestion="Check that the cache database path is writable.",
                recoverable=True,
            ) from exc

        log.info("cache_batch_stored", cache=self.name, entries=len(requests))

    async def keys(self) -> list[str]:
        """Request identities held by this store. Empty list on read failure."""
        try:
            cursor = await self._db.execute(
                "SELECT request_key FROM cache_entries WHERE cache_name = ? "
                "ORDER BY request_key",
                (self.name,),
            )
            return [row[0] for row in await cursor.fetchall()]
        except aiosqlite.Error:
            log.warning("cache_read_error", cache=self.name, key="*", exc_info=True)
            return []

    async def delete(self, request: InterceptedRequest | str) -> bool:
        """Remove one entry. Returns True when something was deleted."""
        key, _ = _key_and_url(request)
        try:
            cursor = await self._db.execute(
                "DELETE FROM cache_entries WHERE cache_name = ? AND request_key = ?",
                (self.name, key),
            )
            await self._db.commit()
            return cursor.rowcount > 0
        except aiosqlite.Error:
            log.warning("cache_write_error", cache=self.name, key=key, exc_info=True)
            return False


class CacheStorage:
    """SQLite-backed registry of cache generations implementing CacheStorageProtocol."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.execute(_CREATE_STORES_TABLE)
        await self._db.execute(_CREATE_ENTRIES_TABLE)
        await self._db.execute(_CREATE_ACTIVE_TABLE)
        await self._db.commit()

    async def open(self, name: str) -> CacheStore:
        """Return the named store, creating it if absent. Idempotent."""
        try:
            await self._db.execute(_INSERT_STORE, (name, datetime.now(UTC).isoformat()))
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_open_error", cache=name, exc_info=True)
        return CacheStore(self._db, name)

    async def delete(self, name: str) -> bool:
        """Drop a store and all its entries. Returns True if it existed."""
        try:
            await self._db.execute("DELETE FROM cache_entries WHERE cache_name = ?", (name,))
            cursor = await self._db.execute("DELETE FROM cache_stores WHERE name = ?", (name,))
            await self._db.commit()
            return cursor.rowcount > 0
        except aiosqlite.Error:
            log.warning("cache_delete_error", cache=name, exc_info=True)
            return False

    async def keys(self) -> frozenset[str]:
        """Names of every existing store. Empty on read failure."""
        try:
            cursor = await self._db.execute("SELECT name FROM cache_stores")
            return frozenset(row[0] for row in await cursor.fetchall())
        except aiosqlite.Error:
            log.warning("cache_list_error", exc_info=True)
            return frozenset()

    async def record_active(self, generations: CacheGenerations) -> None:
        """Remember which generation is active so a restart can resume it."""
        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO active_generation (slot, general, images, activated_at) "
                "VALUES (0, ?, ?, ?)",
                (generations.general, generations.images, datetime.now(UTC).isoformat()),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_write_error", cache=generations.general, key="active", exc_info=True)

    async def active_generations(self) -> CacheGenerations | None:
        """The generation last recorded as active, if its general store still exists."""
        try:
            cursor = await self._db.execute(
                "SELECT general, images FROM active_generation "
                "WHERE slot = 0 AND general IN (SELECT name FROM cache_stores)"
            )
            row = await cursor.fetchone()
        except aiosqlite.Error:
            log.warning("cache_read_error", cache="*", key="active", exc_info=True)
            return None
        if row is None:
            return None
        return CacheGenerations(general=row[0], images=row[1])
