"""Journal persistence: a whole-document JSON file and a key-value table.

Both are read-all / write-all stores. The backends read the full document,
change it in memory, and write it back; there is no partial update.
"""

from __future__ import annotations

import json
import os
import sys
from contextlib import suppress
from typing import TYPE_CHECKING, Any

import structlog

from roadbook.journal.models import JournalData

if TYPE_CHECKING:
    from pathlib import Path

    import aiosqlite

log = structlog.get_logger()

_CREATE_KV_TABLE = """
CREATE TABLE IF NOT EXISTS kv_store (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL
)
"""


class JsonDocumentStore:
    """The local backend's ``{photos, journal, reactions}`` document on disk."""

    def __init__(self, path: Path) -> None:
        self._path = path

    async def init(self) -> None:
        """Create the document with empty collections if it does not exist yet."""
        if not self._path.is_file():
            await self.write(JournalData())
            log.info("journal_store_created", path=str(self._path))

    async def read(self) -> JournalData:
        if not self._path.is_file():
            return JournalData()
        return JournalData.model_validate_json(self._path.read_bytes())

    async def write(self, data: JournalData) -> None:
        """Persist the document with atomic replace semantics."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            _write_bytes_fsync(tmp_path, data.model_dump_json(indent=2).encode("utf-8"))
            os.replace(tmp_path, self._path)
            _fsync_directory(self._path.parent)
        finally:
            with suppress(OSError):
                tmp_path.unlink(missing_ok=True)


class KeyValueStore:
    """JSON values under string keys, as used by the edge backend."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        await self._db.execute(_CREATE_KV_TABLE)
        await self._db.commit()

    async def get_json(self, key: str) -> Any | None:
        cursor = await self._db.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    async def put_json(self, key: str, value: Any) -> None:
        await self._db.execute(
            "INSERT OR REPLACE INTO kv_store (key, value) VALUES (?, ?)",
            (key, json.dumps(value)),
        )
        await self._db.commit()


def _write_bytes_fsync(path: Path, data: bytes) -> None:
    with path.open("wb") as file_obj:
        file_obj.write(data)
        file_obj.flush()
        os.fsync(file_obj.fileno())


def _fsync_directory(path: Path) -> None:
    if sys.platform == "win32":
        return  # Windows does not support fsync on directory handles
    directory_fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(directory_fd)
    finally:
        os.close(directory_fd)
