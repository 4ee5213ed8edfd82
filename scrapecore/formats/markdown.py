"""HTML cleaning and HTML → Markdown conversion.

``trafilatura`` is tried first for main-content extraction; a BeautifulSoup
walker converts the filtered document when trafilatura returns nothing or
when the whole page (``onlyMainContent=false``) is wanted.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional
from urllib.parse import urljoin

import trafilatura
from bs4 import BeautifulSoup, Comment, NavigableString, Tag

BASE64_PLACEHOLDER = "<Base64-Image-Removed>"

# Always stripped before producing html / markdown.
_NOISE_TAGS = ["script", "style", "noscript", "template", "iframe", "object", "embed"]

# Page chrome removed when only the main content is wanted.
_NON_MAIN_SELECTORS = [
    "header", "footer", "nav", "aside",
    ".header", ".navbar", "#header", ".footer", "#footer",
    ".sidebar", "#sidebar", ".modal", ".popup", "#modal", ".overlay",
    ".ad", ".ads", ".advert", "#ad",
    ".lang-selector", ".language", "#language-selector",
    ".social", ".social-media", ".social-links", "#social",
    ".menu", ".navigation", "#nav", ".breadcrumbs", "#breadcrumbs",
    ".share", "#share", ".widget", "#widget", ".cookie", "#cookie",
]

_URL_ATTRS = {"a": "href", "img": "src", "link": "href", "source": "src", "video": "src", "audio": "src"}

_MD_BASE64_IMAGE = re.compile(r"!\[([^\]]*)\]\(data:image/[^)]*\)")
_NESTED_ITEM = re.compile(r"\s+(?:-|\d+\.) ")
_HEADINGS = {"h1": 1, "h2": 2, "h3": 3, "h4": 4, "h5": 5, "h6": 6}
_BLOCKS = {
    "div", "section", "article", "main", "header", "footer", "nav", "aside",
    "figure", "figcaption", "form", "fieldset", "dl", "dt", "dd", "address", "body",
}


# ---------------------------------------------------------------------------
# HTML cleaning
# ---------------------------------------------------------------------------

def _select_all(soup: BeautifulSoup, selectors: Iterable[str]) -> list[Tag]:
    found: list[Tag] = []
    for selector in selectors:
        found.extend(soup.select(selector))
    return found


def _drop(elements: Iterable[Tag]) -> None:
    for element in elements:
        # Nested matches are already gone with their ancestor.
        if not element.decomposed:
            element.decompose()


def clean_html(
    html: str,
    base_url: str,
    *,
    include_tags: Optional[Iterable[str]] = None,
    exclude_tags: Optional[Iterable[str]] = None,
    only_main_content: bool = True,
) -> BeautifulSoup:
    """Return a sanitized copy of *html* as a soup.

    Scripts and styles are removed, ``include_tags`` narrows the document to
    the matching elements, ``exclude_tags`` and (when requested) page chrome
    are removed, and link / image URLs are made absolute against
    *base_url*.  Tags are CSS selectors (``p``, ``.article``, ``#main``).
    """
    soup = BeautifulSoup(html, "html.parser")
    _drop(soup(_NOISE_TAGS))
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()

    if include_tags:
        kept = _select_all(soup, include_tags)
        narrowed = BeautifulSoup("<html><body></body></html>", "html.parser")
        for element in kept:
            narrowed.body.append(element.extract())
        soup = narrowed

    if exclude_tags:
        _drop(_select_all(soup, exclude_tags))

    if only_main_content:
        _drop(_select_all(soup, _NON_MAIN_SELECTORS))

    for tag_name, attr in _URL_ATTRS.items():
        for element in soup.find_all(tag_name):
            value = element.get(attr)
            if value and not value.startswith(("data:", "javascript:", "#", "mailto:")):
                element[attr] = urljoin(base_url, value)

    return soup


# ---------------------------------------------------------------------------
# Markdown conversion
# ---------------------------------------------------------------------------

def _inline(text: str) -> str:
    return re.sub(r"\s+", " ", text)


def _children(node: Tag) -> str:
    return "".join(_convert(child) for child in node.children)


def _list(node: Tag, depth: int = 0) -> str:
    ordered = node.name == "ol"
    lines: list[str] = []
    for index, item in enumerate(node.find_all("li", recursive=False), start=1):
        marker = f"{index}." if ordered else "-"
        text_parts: list[str] = []
        nested: list[str] = []
        for child in item.children:
            if isinstance(child, Tag) and child.name in ("ul", "ol"):
                nested.append(_list(child, depth + 1))
            else:
                text_parts.append(_convert(child))
        text = _inline("".join(text_parts)).strip()
        lines.append(f"{'  ' * depth}{marker} {text}")
        lines.extend(nested)
    return "\n".join(lines)


def _table(node: Tag) -> str:
    rows = []
    for tr in node.find_all("tr"):
        cells = [c.get_text(" ", strip=True).replace("|", "\\|") for c in tr.find_all(["th", "td"])]
        if cells:
            rows.append(cells)
    if not rows:
        return ""
    width = max(len(r) for r in rows)
    rows = [r + [""] * (width - len(r)) for r in rows]
    out = ["| " + " | ".join(rows[0]) + " |", "| " + " | ".join(["---"] * width) + " |"]
    out.extend("| " + " | ".join(r) + " |" for r in rows[1:])
    return "\n".join(out)


def _convert(node) -> str:  # noqa: C901
    if isinstance(node, Comment):
        return ""
    if isinstance(node, NavigableString):
        return _inline(str(node))
    if not isinstance(node, Tag):
        return ""

    name = node.name
    if name in ("head", "title", "meta", "link", *_NOISE_TAGS):
        return ""
    if name in _HEADINGS:
        text = _inline(_children(node)).strip()
        return f"\n\n{'#' * _HEADINGS[name]} {text}\n\n" if text else ""
    if name == "p":
        text = _children(node).strip()
        return f"\n\n{text}\n\n" if text else ""
    if name == "br":
        return "  \n"
    if name == "hr":
        return "\n\n---\n\n"
    if name in ("strong", "b"):
        text = _children(node).strip()
        return f"**{text}**" if text else ""
    if name in ("em", "i"):
        text = _children(node).strip()
        return f"*{text}*" if text else ""
    if name == "pre":
        return f"\n\n```\n{node.get_text().strip(chr(10))}\n```\n\n"
    if name == "code":
        return f"`{node.get_text()}`"
    if name == "a":
        text = _inline(_children(node)).strip()
        href = node.get("href")
        if not href or not text:
            return text
        return f"[{text}]({href})"
    if name == "img":
        src = node.get("src")
        if not src:
            return ""
        return f"![{node.get('alt', '').strip()}]({src})"
    if name in ("ul", "ol"):
        return f"\n\n{_list(node)}\n\n"
    if name == "blockquote":
        body = _children(node).strip()
        quoted = "\n".join(f"> {line}" if line else ">" for line in body.splitlines())
        return f"\n\n{quoted}\n\n"
    if name == "table":
        return f"\n\n{_table(node)}\n\n"
    if name in _BLOCKS or name == "li":
        return f"\n{_children(node)}\n"
    return _children(node)


def _tidy(markdown: str) -> str:
    lines = [
        line.rstrip() if _NESTED_ITEM.match(line) else line.strip()
        for line in markdown.splitlines()
    ]
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def soup_to_markdown(soup: BeautifulSoup) -> str:
    """Convert a (cleaned) soup to Markdown with the BeautifulSoup walker."""
    root = soup.body or soup
    return _tidy(_convert(root))


def remove_base64_images(markdown: str) -> str:
    """Replace inline ``data:image`` payloads with a placeholder."""
    return _MD_BASE64_IMAGE.sub(lambda m: f"![{m.group(1)}]({BASE64_PLACEHOLDER})", markdown)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def html_to_markdown(
    html: str,
    base_url: str,
    *,
    include_tags: Optional[Iterable[str]] = None,
    exclude_tags: Optional[Iterable[str]] = None,
    only_main_content: bool = True,
    strip_base64_images: bool = True,
) -> str:
    """Return the Markdown rendition of *html*.

    With *only_main_content* (and no explicit ``include_tags``) trafilatura
    picks the main content of the filtered page.  The BeautifulSoup walker
    is used when trafilatura finds nothing or the full page is wanted.
    """
    soup = clean_html(
        html,
        base_url,
        include_tags=include_tags,
        exclude_tags=exclude_tags,
        only_main_content=only_main_content,
    )

    markdown: str | None = None
    if only_main_content and not include_tags:
        markdown = trafilatura.extract(
            str(soup),
            output_format="markdown",
            include_links=True,
            include_images=True,
            include_tables=True,
            url=base_url,
        )

    if not markdown:
        markdown = soup_to_markdown(soup)

    if strip_base64_images:
        markdown = remove_base64_images(markdown)
    return markdown.strip()
