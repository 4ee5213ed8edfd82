"""Tests for the SQLite-backed scrape store."""

from __future__ import annotations

import pytest

from scrapecore.cache import CacheEntry
from scrapecore.db import SqliteScrapeStore, get_connection, init_db
from scrapecore.db.migrations import MIGRATIONS, current_version


@pytest.fixture
def store():
    s = SqliteScrapeStore(conn=get_connection(":memory:"))
    yield s
    s.close()


def _entry(created_at: int, **fields) -> CacheEntry:
    values = {
        "identity": "id",
        "url": "https://example.com/",
        "created_at": created_at,
        "data": {"markdown": "Hello", "links": ["https://example.com/a"]},
        "metadata": {"title": "Hello", "statusCode": 200},
        "content": "Hello",
    }
    values.update(fields)
    return CacheEntry(**values)


class TestSqliteScrapeStore:
    def test_round_trip(self, store) -> None:
        entry = _entry(1000, tracked_json={"price": 1}, hidden=True, warning="summary failed", tier="stealth")
        store.put("id", entry)
        assert store.get("id") == entry

    def test_latest_and_previous(self, store) -> None:
        store.put("id", _entry(1000, content="old"))
        store.put("id", _entry(2000, content="new"))
        assert store.get("id").content == "new"
        assert store.previous("id", 2000).content == "old"
        assert store.previous("id", 1000) is None
        assert store.get("other") is None

    def test_prune(self, store) -> None:
        store.put("id", _entry(1000))
        store.put("id", _entry(3000))
        assert store.prune(2000) == 1
        assert store.count() == 1

    def test_counters_and_clear(self, store) -> None:
        store.record_lookup(True)
        store.record_lookup(False)
        store.record_lookup(False)
        assert store.lookup_counts() == (1, 2)
        store.put("id", _entry(1000))
        assert store.clear() == 1
        assert store.count() == 0
        assert store.lookup_counts() == (0, 0)

    def test_open_creates_database_file(self, tmp_path) -> None:
        path = tmp_path / "nested" / "scrapes.db"
        s = SqliteScrapeStore.open(path)
        s.put("id", _entry(1000))
        s.close()
        assert path.exists()
        reopened = SqliteScrapeStore.open(path)
        assert reopened.count() == 1
        reopened.close()


class TestMigrations:
    def test_init_db_is_idempotent(self) -> None:
        conn = get_connection(":memory:")
        init_db(conn)
        init_db(conn)
        assert current_version(conn) == MIGRATIONS[-1][0]
        tables = {row["name"] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
        assert {"scrapes", "cache_counters", "schema_version"} <= tables
        conn.close()
