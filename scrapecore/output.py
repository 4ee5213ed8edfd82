"""Saving scrape results to disk as Markdown, HTML or JSON files."""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from scrapecore.models import ScrapeResult

OUTPUT_FORMATS = ("markdown", "html", "json")

_EXTENSIONS = {"markdown": "md", "html": "html", "json": "json"}


class OutputError(Exception):
    """The requested file format cannot be produced from the result."""


def slugify(text: str, max_length: int = 80) -> str:
    """``"https://Example.com/a b"`` → ``"https-example-com-a-b"``."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:max_length].rstrip("-") or "page"


def _stem(result: ScrapeResult, url: str) -> str:
    title = result.metadata.get("title")
    return slugify(title) if title else slugify(url)


def render_markdown(result: ScrapeResult, url: str, now: Optional[datetime] = None) -> str:
    """Markdown document with a title / source / timestamp header."""
    now = now or datetime.now(timezone.utc)
    title = result.metadata.get("title") or "Untitled"
    body = result.data.get("markdown") or "No content available"
    return (
        f"# {title}\n\n"
        f"**Source:** {url}\n\n"
        f"**Timestamp:** {now.strftime('%Y-%m-%d %H:%M:%S UTC')}\n\n"
        f"---\n\n{body}"
    )


def save_result(
    result: ScrapeResult,
    url: str,
    output_dir: Path,
    fmt: str = "markdown",
) -> Path:
    """Write *result* into *output_dir* and return the file path.

    Args:
        result:     A successful scrape.
        url:        The scraped URL, used for the header and as a filename
                    fallback when the page has no title.
        output_dir: Target directory; created if missing.
        fmt:        ``markdown``, ``html`` or ``json`` (the whole envelope).

    Raises:
        OutputError: *fmt* is unknown or the result lacks the needed content.
    """
    if fmt not in _EXTENSIONS:
        raise OutputError(f"Unknown output format {fmt!r}; choose one of {', '.join(OUTPUT_FORMATS)}")

    if fmt == "markdown":
        content = render_markdown(result, url)
    elif fmt == "html":
        content = result.data.get("html") or result.data.get("rawHtml")
        if not content:
            raise OutputError("HTML content not available; request the 'html' or 'rawHtml' format")
    else:
        content = json.dumps(result.to_dict(), indent=2, ensure_ascii=False)

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"{_stem(result, url)}.{_EXTENSIONS[fmt]}"
    path.write_text(content, encoding="utf-8")
    return path
