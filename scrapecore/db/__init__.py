"""Database layer package.

Public re-exports so callers can write::

    from scrapecore.db import SqliteScrapeStore, get_connection, init_db
"""

from scrapecore.db.connection import get_connection
from scrapecore.db.migrations import init_db, migrate
from scrapecore.db.store import SqliteScrapeStore

__all__ = ["SqliteScrapeStore", "get_connection", "init_db", "migrate"]
