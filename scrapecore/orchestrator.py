"""Single-URL scrape orchestration.

Control flow::

    validate → cache lookup (fresh hit → replay entry)
             → proxy escalation → derive formats → change tracking
             → billing → cache write → envelope
"""

from __future__ import annotations

import copy
import logging
import uuid
from typing import Any, Optional, Union

from scrapecore.billing import CACHE_HIT_CREDITS, calculate_credits
from scrapecore.cache import CacheEntry, FreshnessCache, ScrapeStore, cache_identity, now_ms
from scrapecore.changes import iso_timestamp, track
from scrapecore.config import settings
from scrapecore.errors import InternalFailureError, ScrapeError
from scrapecore.formats.pipeline import derive_formats
from scrapecore.llm import Extractor
from scrapecore.models import ScrapeResult
from scrapecore.schemas import ChangeTrackingFormat, ScrapeRequest, parse_request
from scrapecore.scraper.proxy import Attempt, fetch_with_proxy
from scrapecore.scraper.session import Deadline

logger = logging.getLogger(__name__)

# Per-request metadata that is never persisted with a cache entry.
_VOLATILE_METADATA = ("scrapeId", "creditsUsed", "cacheState", "cachedAt", "proxyUsed")


def _change_tracking(
    cache: FreshnessCache,
    request: ScrapeRequest,
    identity: str,
    content: str,
    *,
    status_code: int,
    tracked_json: Optional[dict[str, Any]],
    hidden: bool,
    before: Optional[int] = None,
) -> Optional[dict[str, Any]]:
    fmt = request.get_format("changeTracking")
    if not isinstance(fmt, ChangeTrackingFormat):
        return None
    record = track(
        cache.store,
        identity,
        content,
        before=before,
        status_code=status_code,
        modes=fmt.modes,
        tracked_json=tracked_json,
        hidden=hidden,
    )
    return record.to_dict()


def _from_cache(
    cache: FreshnessCache, request: ScrapeRequest, identity: str, entry: CacheEntry
) -> ScrapeResult:
    data = copy.deepcopy(entry.data)
    tracking = _change_tracking(
        cache,
        request,
        identity,
        entry.content,
        status_code=entry.status_code,
        tracked_json=entry.tracked_json,
        hidden=entry.hidden,
        before=entry.created_at,
    )
    if tracking is not None:
        data["changeTracking"] = tracking

    metadata = copy.deepcopy(entry.metadata)
    metadata.update(
        {
            "proxyUsed": entry.tier,
            "cacheState": "hit",
            "cachedAt": iso_timestamp(entry.created_at),
            "creditsUsed": CACHE_HIT_CREDITS,
            "scrapeId": str(uuid.uuid4()),
        }
    )
    logger.info("served %s from cache (stored %s)", request.url, metadata["cachedAt"])
    return ScrapeResult(data=data, metadata=metadata, warning=entry.warning)


def _scrape(
    cache: FreshnessCache,
    request: ScrapeRequest,
    attempt: Optional[Attempt],
    extractor: Optional[Extractor],
) -> ScrapeResult:
    deadline = Deadline(request.timeout_ms)
    identity = cache_identity(request)
    caching = settings.cache_enabled and not request.cache_bypassed

    if caching:
        entry = cache.lookup(identity, request.max_age)
        if entry is not None:
            return _from_cache(cache, request, identity, entry)

    if attempt is not None:
        page, tier = fetch_with_proxy(request, deadline, attempt)
    else:
        page, tier = fetch_with_proxy(request, deadline)

    derivation = derive_formats(page, request, deadline, extractor)
    hidden = derivation.noindex or derivation.restricted

    data = dict(derivation.data)
    tracking = _change_tracking(
        cache,
        request,
        identity,
        derivation.content,
        status_code=page.status_code,
        tracked_json=derivation.tracked_json,
        hidden=hidden,
    )
    if tracking is not None:
        data["changeTracking"] = tracking

    credits = calculate_credits(
        tier, request.parsers, derivation.num_pages, len(request.actions)
    )

    created_at = cache.clock()
    if caching and request.cache_writable:
        stored = {k: v for k, v in derivation.data.items() if k not in ("changeTracking", "actions")}
        cache.write(
            CacheEntry(
                identity=identity,
                url=page.url,
                created_at=created_at,
                data=copy.deepcopy(stored),
                metadata={
                    k: v for k, v in derivation.metadata.items() if k not in _VOLATILE_METADATA
                },
                content=derivation.content,
                status_code=page.status_code,
                tier=tier,
                tracked_json=derivation.tracked_json,
                hidden=hidden,
                warning=derivation.warning,
            )
        )

    metadata = dict(derivation.metadata)
    metadata.update(
        {
            "proxyUsed": tier,
            "cacheState": "miss",
            "creditsUsed": credits,
            "scrapeId": str(uuid.uuid4()),
        }
    )
    logger.info(
        "scraped %s: status=%s tier=%s credits=%d actions=%d",
        request.url,
        page.status_code,
        tier,
        credits,
        len(request.actions),
    )
    return ScrapeResult(data=data, metadata=metadata, warning=derivation.warning)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def scrape(
    store: Union[ScrapeStore, FreshnessCache],
    request: Union[ScrapeRequest, dict[str, Any]],
    *,
    attempt: Optional[Attempt] = None,
    extractor: Optional[Extractor] = None,
) -> ScrapeResult:
    """Scrape one URL.

    Args:
        store:     Cache / history store (or a :class:`FreshnessCache`
                   wrapping one).
        request:   A :class:`ScrapeRequest` or its wire-format dict.
        attempt:   Override of the single-attempt fetch (tests inject
                   fakes here).  Defaults to a real httpx / Playwright fetch.
        extractor: LLM capability for ``summary`` / ``json``.

    Returns:
        The :class:`ScrapeResult`.  Exactly one cache entry is written per
        successful non-cached scrape when caching is allowed.

    Raises:
        InvalidRequestError:   Malformed request; nothing was fetched.
        FetchFailureError:     Terminal transport failure or block.
        ActionTimeoutError:    The request deadline expired.
        ElementNotFoundError:  An action selector matched nothing.
        UpstreamOverloadError: The site rate-limited every attempt.
        InternalFailureError:  Any unexpected fault.
    """
    request = parse_request(request)
    cache = store if isinstance(store, FreshnessCache) else FreshnessCache(store, now_ms)
    try:
        return _scrape(cache, request, attempt, extractor)
    except ScrapeError as exc:
        logger.warning("scrape of %s failed: %s (%s)", request.url, exc.message, exc.kind.value)
        raise
    except Exception as exc:
        logger.exception("unexpected failure scraping %s", request.url)
        raise InternalFailureError(f"Unexpected engine failure: {exc}") from exc
