"""SQLite-backed :class:`~scrapecore.cache.ScrapeStore`."""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Optional

from scrapecore.cache import CacheEntry
from scrapecore.db.connection import get_connection
from scrapecore.db.migrations import init_db

_COLUMNS = "identity, url, created_at, data, metadata, content, status_code, tier, tracked_json, hidden, warning"


def _row_to_entry(row: sqlite3.Row) -> CacheEntry:
    return CacheEntry(
        identity=row["identity"],
        url=row["url"],
        created_at=row["created_at"],
        data=json.loads(row["data"]),
        metadata=json.loads(row["metadata"]),
        content=row["content"],
        status_code=row["status_code"],
        tier=row["tier"],
        tracked_json=json.loads(row["tracked_json"]) if row["tracked_json"] else None,
        hidden=bool(row["hidden"]),
        warning=row["warning"],
    )


class SqliteScrapeStore:
    """Scrape history persisted in a SQLite file.

    One connection is shared by all threads; a lock serializes access to it.
    """

    def __init__(self, conn: Optional[sqlite3.Connection] = None, db_path: Optional[Path] = None) -> None:
        self._conn = conn if conn is not None else get_connection(db_path)
        self._lock = threading.Lock()
        init_db(self._conn)

    @classmethod
    def open(cls, db_path: Optional[Path] = None) -> "SqliteScrapeStore":
        return cls(db_path=db_path)

    def close(self) -> None:
        self._conn.close()

    def get(self, identity: str) -> Optional[CacheEntry]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM scrapes WHERE identity = ? "
                "ORDER BY created_at DESC, id DESC LIMIT 1",
                (identity,),
            ).fetchone()
        return _row_to_entry(row) if row else None

    def put(self, identity: str, entry: CacheEntry) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                f"INSERT INTO scrapes ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    identity,
                    entry.url,
                    entry.created_at,
                    json.dumps(entry.data),
                    json.dumps(entry.metadata),
                    entry.content,
                    entry.status_code,
                    entry.tier,
                    json.dumps(entry.tracked_json) if entry.tracked_json is not None else None,
                    int(entry.hidden),
                    entry.warning,
                ),
            )

    def previous(self, identity: str, before: int) -> Optional[CacheEntry]:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM scrapes WHERE identity = ? AND created_at < ? "
                "ORDER BY created_at DESC, id DESC LIMIT 1",
                (identity, before),
            ).fetchone()
        return _row_to_entry(row) if row else None

    def clear(self) -> int:
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM scrapes")
            self._conn.execute("UPDATE cache_counters SET value = 0")
        return cursor.rowcount

    def prune(self, older_than: int) -> int:
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM scrapes WHERE created_at < ?", (older_than,))
        return cursor.rowcount

    def count(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(*) FROM scrapes").fetchone()
        return row[0]

    def record_lookup(self, hit: bool) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE cache_counters SET value = value + 1 WHERE name = ?",
                ("hits" if hit else "misses",),
            )

    def lookup_counts(self) -> tuple[int, int]:
        with self._lock:
            rows = {
                row["name"]: row["value"]
                for row in self._conn.execute("SELECT name, value FROM cache_counters")
            }
        return rows.get("hits", 0), rows.get("misses", 0)
