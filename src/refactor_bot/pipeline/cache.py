"""Cache backends for memoized pipeline steps."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import sqlite3
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Protocol, Tuple, runtime_checkable

DEFAULT_CACHE_PATH = Path(".refactor-bot/cache.sqlite")
LOGGER = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS step_results (
    key TEXT PRIMARY KEY,
    output TEXT NOT NULL,
    metadata TEXT NOT NULL,
    created_at TEXT NOT NULL
)
"""


def _utc(moment: datetime) -> datetime:
    return moment.replace(tzinfo=timezone.utc) if moment.tzinfo is None else moment.astimezone(timezone.utc)


@dataclass(slots=True)
class CacheEntry:
    """Persisted output of a single step execution."""

    key: str
    output: Any
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@runtime_checkable
class CacheBackend(Protocol):
    """Minimal storage interface used by :class:`~refactor_bot.pipeline.step.PipelineStep`."""

    def get(self, key: str) -> CacheEntry | None: ...

    def put(self, entry: CacheEntry) -> None: ...

    def has(self, key: str) -> bool: ...


class InMemoryCache:
    """Process-local cache; entries disappear with the process."""

    def __init__(self) -> None:
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    def put(self, entry: CacheEntry) -> None:
        self._entries[entry.key] = entry

    def has(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


def _can_write(path: Path) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False
    return os.access(path if path.exists() else path.parent, os.W_OK)


def writable_cache_path(requested: Path | str) -> Path:
    """Return ``requested`` if it can be written, else a stable spot under the temp dir.

    The temp location is derived from the requested path, so every process
    that asks for the same unwritable file shares one fallback database.
    """
    wanted = Path(requested).resolve()
    if _can_write(wanted):
        return wanted
    digest = hashlib.sha1(wanted.as_posix().encode("utf-8")).hexdigest()[:12]
    substitute = Path(tempfile.gettempdir()) / "refactor-bot" / "cache" / digest / wanted.name
    if not _can_write(substitute):
        raise OSError(f"No writable location for cache {requested}")
    LOGGER.warning("Cache path %s is not writable; using %s", wanted, substitute)
    return substitute


class SqliteCache:
    """SQLite-backed cache that survives process restarts."""

    def __init__(self, db_path: Path | str = DEFAULT_CACHE_PATH) -> None:
        self.db_path = writable_cache_path(db_path)
        self._conn: sqlite3.Connection | None = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        with self._transaction() as conn:
            conn.execute(_SCHEMA)

    def __enter__(self) -> "SqliteCache":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            conn.close()

    @property
    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Cache connection is closed.")
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connection
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        conn.commit()

    def get(self, key: str) -> CacheEntry | None:
        row = self._connection.execute("SELECT * FROM step_results WHERE key = ?", (key,)).fetchone()
        return None if row is None else self._decode(row)

    def has(self, key: str) -> bool:
        row = self._connection.execute("SELECT 1 FROM step_results WHERE key = ?", (key,)).fetchone()
        return row is not None

    def put(self, entry: CacheEntry) -> None:
        values = (
            entry.key,
            json.dumps(entry.output),
            json.dumps(entry.metadata or {}),
            _utc(entry.created_at).isoformat(),
        )
        with self._transaction() as conn:
            conn.execute("INSERT OR REPLACE INTO step_results VALUES (?, ?, ?, ?)", values)

    def list_entries(self, prefix: str = "") -> List[CacheEntry]:
        """Entries whose key starts with ``prefix``, oldest first."""
        where, params = self._prefix_filter(prefix)
        rows = self._connection.execute(
            f"SELECT * FROM step_results{where} ORDER BY created_at", params
        ).fetchall()
        return [self._decode(row) for row in rows]

    def clear(self, prefix: str = "") -> int:
        """Delete entries whose key starts with ``prefix`` and return the count."""
        where, params = self._prefix_filter(prefix)
        with self._transaction() as conn:
            return conn.execute(f"DELETE FROM step_results{where}", params).rowcount

    @staticmethod
    def _prefix_filter(prefix: str) -> Tuple[str, Tuple[Any, ...]]:
        # substr() rather than LIKE so "_" and "%" in step codes stay literal.
        if not prefix:
            return "", ()
        return " WHERE substr(key, 1, ?) = ?", (len(prefix), prefix)

    @staticmethod
    def _decode(row: sqlite3.Row) -> CacheEntry:
        output = json.loads(row["output"]) if row["output"] else None
        metadata = json.loads(row["metadata"]) if row["metadata"] else None
        return CacheEntry(
            key=row["key"],
            output=output,
            metadata=metadata or {},
            created_at=datetime.fromisoformat(row["created_at"]),
        )


__all__ = [
    "CacheBackend",
    "CacheEntry",
    "DEFAULT_CACHE_PATH",
    "InMemoryCache",
    "SqliteCache",
    "writable_cache_path",
]
