"""Freshness cache and scrape history.

Storage is an injected :class:`ScrapeStore` so tests can use
:class:`MemoryScrapeStore` while the CLI persists to SQLite
(:class:`scrapecore.db.store.SqliteScrapeStore`).  Entries are immutable:
``put`` appends to the history of an identity and ``get`` returns the newest
one, so concurrent writers simply race to be the latest (last writer wins).
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from scrapecore.schemas import ScrapeRequest

logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"http": 80, "https": 443}


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class CacheEntry:
    """One stored scrape of an identity."""

    identity: str
    url: str
    created_at: int
    data: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    content: str = ""
    status_code: int = 200
    tier: str = "basic"
    tracked_json: Optional[dict[str, Any]] = None
    hidden: bool = False
    warning: Optional[str] = None


@dataclass
class CacheStats:
    entries: int = 0
    hits: int = 0
    misses: int = 0

    @property
    def lookups(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Fraction of lookups served from the cache (0.0 when none yet)."""
        return self.hits / self.lookups if self.lookups else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "entries": self.entries,
            "hits": self.hits,
            "misses": self.misses,
            "hitRate": round(self.hit_rate, 4),
        }


class ScrapeStore(Protocol):
    """Storage capability for cache entries and lookup counters."""

    def get(self, identity: str) -> Optional[CacheEntry]: ...

    def put(self, identity: str, entry: CacheEntry) -> None: ...

    def previous(self, identity: str, before: int) -> Optional[CacheEntry]: ...

    def clear(self) -> int: ...

    def prune(self, older_than: int) -> int: ...

    def count(self) -> int: ...

    def record_lookup(self, hit: bool) -> None: ...

    def lookup_counts(self) -> tuple[int, int]: ...


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

def normalize_url(url: str) -> str:
    """Canonical form of *url* used for cache identity.

    Scheme and host are lowercased, the default port is dropped, the
    fragment is removed, an empty path becomes ``/`` and query parameters
    are sorted.
    """
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if ":" in host:
        host = f"[{host}]"
    netloc = host
    if parts.port is not None and parts.port != _DEFAULT_PORTS.get(scheme):
        netloc = f"{host}:{parts.port}"
    if parts.username:
        userinfo = parts.username + (f":{parts.password}" if parts.password else "")
        netloc = f"{userinfo}@{netloc}"
    query = urlencode(sorted(parse_qsl(parts.query, keep_blank_values=True)))
    return urlunsplit((scheme, netloc, parts.path or "/", query, ""))


def cache_identity(request: ScrapeRequest) -> str:
    """Return the sha256 identity of the cache-relevant parts of *request*."""
    formats = sorted(
        (fmt.model_dump(mode="json", by_alias=True, exclude_none=True) for fmt in request.formats),
        key=lambda f: f["type"],
    )
    payload = {
        "url": normalize_url(request.url),
        "formats": formats,
        "includeTags": sorted(request.include_tags or ()),
        "excludeTags": sorted(request.exclude_tags or ()),
        "onlyMainContent": request.only_main_content,
        "parsers": sorted(request.parsers),
        "mobile": request.mobile,
        "removeBase64Images": request.remove_base64_images,
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------

class MemoryScrapeStore:
    """Thread-safe in-process store: a dict of per-identity history lists."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._history: dict[str, list[CacheEntry]] = {}
        self._hits = 0
        self._misses = 0

    def get(self, identity: str) -> Optional[CacheEntry]:
        with self._lock:
            history = self._history.get(identity)
            return history[-1] if history else None

    def put(self, identity: str, entry: CacheEntry) -> None:
        with self._lock:
            history = self._history.setdefault(identity, [])
            history.append(entry)
            history.sort(key=lambda e: e.created_at)

    def previous(self, identity: str, before: int) -> Optional[CacheEntry]:
        with self._lock:
            for entry in reversed(self._history.get(identity, [])):
                if entry.created_at < before:
                    return entry
        return None

    def clear(self) -> int:
        with self._lock:
            removed = sum(len(h) for h in self._history.values())
            self._history.clear()
            return removed

    def prune(self, older_than: int) -> int:
        removed = 0
        with self._lock:
            for identity in list(self._history):
                kept = [e for e in self._history[identity] if e.created_at >= older_than]
                removed += len(self._history[identity]) - len(kept)
                if kept:
                    self._history[identity] = kept
                else:
                    del self._history[identity]
        return removed

    def count(self) -> int:
        with self._lock:
            return sum(len(h) for h in self._history.values())

    def record_lookup(self, hit: bool) -> None:
        with self._lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1

    def lookup_counts(self) -> tuple[int, int]:
        with self._lock:
            return self._hits, self._misses


# ---------------------------------------------------------------------------
# Freshness policy
# ---------------------------------------------------------------------------

class FreshnessCache:
    """Freshness decisions and statistics on top of a :class:`ScrapeStore`."""

    def __init__(self, store: ScrapeStore, clock: Callable[[], int] = now_ms) -> None:
        self.store = store
        self.clock = clock

    def is_fresh(self, entry: CacheEntry, max_age: int) -> bool:
        """``maxAge`` 0 never matches; otherwise ``age <= maxAge``."""
        return max_age > 0 and self.clock() - entry.created_at <= max_age

    def lookup(self, identity: str, max_age: int) -> Optional[CacheEntry]:
        """Return a fresh entry for *identity*, or ``None`` (counted as a miss)."""
        entry = self.store.get(identity)
        if entry is not None and self.is_fresh(entry, max_age):
            self.store.record_lookup(True)
            logger.debug("cache hit %s (age %d ms)", identity[:12], self.clock() - entry.created_at)
            return entry
        self.store.record_lookup(False)
        logger.debug("cache miss %s", identity[:12])
        return None

    def latest(self, identity: str) -> Optional[CacheEntry]:
        return self.store.get(identity)

    def before(self, identity: str, timestamp: int) -> Optional[CacheEntry]:
        return self.store.previous(identity, timestamp)

    def write(self, entry: CacheEntry) -> None:
        self.store.put(entry.identity, entry)

    def prune_expired(self, max_age: int) -> int:
        """Drop every entry older than *max_age* milliseconds."""
        removed = self.store.prune(self.clock() - max_age)
        logger.info("pruned %d cache entries older than %d ms", removed, max_age)
        return removed

    def clear(self) -> int:
        return self.store.clear()

    def stats(self) -> CacheStats:
        hits, misses = self.store.lookup_counts()
        return CacheStats(entries=self.store.count(), hits=hits, misses=misses)
