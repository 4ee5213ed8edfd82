"""Page-level facts: metadata, links, images and robots directives."""

from __future__ import annotations

import re
from typing import Any, List, Mapping
from urllib.parse import urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup

_SKIPPED_SCHEMES = ("javascript:", "mailto:", "tel:", "data:")


def _meta(soup: BeautifulSoup, *, name: str | None = None, prop: str | None = None) -> str | None:
    attrs = {"name": name} if name else {"property": prop}
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return None
    content = tag.get("content")
    return content.strip() if content else None


def _camel_meta_key(key: str) -> str:
    """``og:image:width`` → ``ogImageWidth``."""
    parts = [p for p in re.split(r"[:_\-.]", key) if p]
    return parts[0].lower() + "".join(p[:1].upper() + p[1:] for p in parts[1:])


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def extract_metadata(soup: BeautifulSoup, url: str) -> dict[str, Any]:
    """Return the document metadata of *soup*.

    Always present: ``title``, ``description``, ``language``, ``keywords``,
    ``ogLocaleAlternate`` (possibly empty).  Every other ``<meta>`` tag with a
    ``name`` or ``property`` is added under its camelCase key, and
    ``canonicalUrl`` is added when the page declares one.
    """
    title_tag = soup.find("title")
    title = title_tag.get_text(strip=True) if title_tag else ""
    if not title:
        title = _meta(soup, prop="og:title") or ""

    html_tag = soup.find("html")
    language = html_tag.get("lang") if html_tag is not None else None

    metadata: dict[str, Any] = {}
    for tag in soup.find_all("meta"):
        key = tag.get("name") or tag.get("property")
        content = tag.get("content")
        if key and content and key.lower() != "og:locale:alternate":
            metadata.setdefault(_camel_meta_key(key), content.strip())

    metadata.update(
        {
            "title": title,
            "description": _meta(soup, name="description") or _meta(soup, prop="og:description") or "",
            "language": language or None,
            "keywords": _meta(soup, name="keywords") or "",
            "ogLocaleAlternate": [
                t["content"].strip()
                for t in soup.find_all("meta", attrs={"property": "og:locale:alternate"})
                if t.get("content")
            ],
        }
    )

    canonical = soup.find("link", rel="canonical")
    if canonical is not None and canonical.get("href"):
        metadata["canonicalUrl"] = urljoin(url, canonical["href"])
    return metadata


def extract_links(soup: BeautifulSoup, base_url: str) -> List[str]:
    """Return absolute, deduplicated ``<a href>`` targets in document order.

    Fragment-only, ``javascript:``, ``mailto:`` and ``tel:`` links are
    skipped; fragments are dropped before deduplication.
    """
    seen: set[str] = set()
    links: List[str] = []
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.startswith("#") or href.lower().startswith(_SKIPPED_SCHEMES):
            continue
        absolute, _ = urldefrag(urljoin(base_url, href))
        if urlparse(absolute).scheme not in ("http", "https"):
            continue
        if absolute not in seen:
            seen.add(absolute)
            links.append(absolute)
    return links


def extract_images(soup: BeautifulSoup, base_url: str) -> List[str]:
    """Return absolute, deduplicated image URLs (``<img src>``) in document order."""
    seen: set[str] = set()
    images: List[str] = []
    for img in soup.find_all("img"):
        src = (img.get("src") or img.get("data-src") or "").strip()
        if not src or src.lower().startswith("data:"):
            continue
        absolute = urljoin(base_url, src)
        if absolute not in seen:
            seen.add(absolute)
            images.append(absolute)
    return images


def is_noindex(soup: BeautifulSoup | None, headers: Mapping[str, str]) -> bool:
    """Return ``True`` if robots directives forbid indexing the page."""
    directives = [d.strip() for d in headers.get("x-robots-tag", "").lower().split(",")]
    if "noindex" in directives or "none" in directives:
        return True
    if soup is None:
        return False
    for name in ("robots", "googlebot"):
        directive = _meta(soup, name=name)
        if directive and "noindex" in directive.lower():
            return True
    return False
