"""Human-readable rendering of scrape results and cache statistics."""

from __future__ import annotations

from typing import Any, List

from scrapecore.cache import CacheStats
from scrapecore.models import ScrapeResult

_FORMAT_LABELS = [
    ("markdown", "Markdown"),
    ("html", "HTML"),
    ("rawHtml", "Raw HTML"),
    ("screenshot", "Screenshot"),
    ("summary", "Summary"),
    ("json", "JSON"),
    ("branding", "Branding"),
    ("images", "Images"),
    ("changeTracking", "Change tracking"),
]


def render_summary(result: ScrapeResult) -> str:
    """Render a short overview of *result*: page facts, formats and counts."""
    meta = result.metadata
    data = result.data
    lines: List[str] = ["📄 Scrape result:"]

    for key, label in (
        ("url", "URL"),
        ("title", "Title"),
        ("description", "Description"),
        ("language", "Language"),
    ):
        if meta.get(key):
            lines.append(f"  {label}: {meta[key]}")

    status = meta.get("statusCode")
    if status is not None:
        error = f" ({meta['error']})" if meta.get("error") else ""
        lines.append(f"  Status: {status}{error}")

    available = [label for key, label in _FORMAT_LABELS if key in data]
    if available:
        lines.append(f"  Available formats: {', '.join(available)}")

    if "links" in data:
        lines.append(f"  Links found: {len(data['links'])}")

    actions: dict[str, Any] = data.get("actions") or {}
    if actions:
        counts = ", ".join(f"{name}: {len(items)}" for name, items in actions.items() if items)
        lines.append(f"  Action outputs: {counts or 'none'}")

    tracking = data.get("changeTracking")
    if tracking:
        lines.append(f"  Change status: {tracking['changeStatus']} ({tracking['visibility']})")

    lines.append(
        f"  Proxy: {meta.get('proxyUsed', '?')}  Cache: {meta.get('cacheState', '?')}  "
        f"Credits: {meta.get('creditsUsed', 0)}"
    )
    if result.warning:
        lines.append(f"  ⚠️  Warning: {result.warning}")
    return "\n".join(lines)


def render_stats(stats: CacheStats) -> str:
    """Render cache statistics as aligned ``key: value`` lines."""
    return "\n".join(
        [
            f"  Entries  : {stats.entries}",
            f"  Hits     : {stats.hits}",
            f"  Misses   : {stats.misses}",
            f"  Hit rate : {stats.hit_rate:.1%}",
        ]
    )
