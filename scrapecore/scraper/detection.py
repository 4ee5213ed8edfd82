"""Bot-defense classification of fetched pages."""

from __future__ import annotations

import re
from typing import Optional

from bs4 import BeautifulSoup

# Phrases that only show up on challenge / interstitial pages.
_CHALLENGE_PATTERNS = [
    "attention required",
    "just a moment",
    "checking your browser",
    "please wait while we verify",
    "verify you are human",
    "verify you're human",
    "are you a robot",
    "not a robot",
    "unusual traffic",
    "automated access",
    "performance & security by cloudflare",
    "enable javascript and cookies to continue",
]

# Weaker signals, trusted only on short pages with a defensive status code.
# Stock "403 Forbidden" / "503 Service Unavailable" pages carry none of them.
_BLOCK_PATTERNS = _CHALLENGE_PATTERNS + [
    "captcha",
    "access denied",
    "bot detection",
    "request blocked",
    "ray id",
]

_DEFENSIVE_STATUSES = {403, 503}
_SHORT_PAGE_CHARS = 3000


def _visible_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    root = soup.body or soup
    return re.sub(r"\s+", " ", root.get_text(" ")).strip().lower()


def block_reason(html: str, status_code: int) -> Optional[str]:
    """Return why *html* looks like a bot-defense page, or ``None``.

    A 429 is always treated as a block.  403 and 503 responses count only
    when a short page carries block phrasing; an empty body or a stock
    error page is an ordinary non-2xx response.  Any other status counts
    only when a short page contains unambiguous challenge wording.
    """
    if status_code == 429:
        return "rate limited (429)"
    if not html:
        return None

    text = _visible_text(html)
    if len(text) > _SHORT_PAGE_CHARS:
        return None
    head = html[:5000].lower()

    patterns = _BLOCK_PATTERNS if status_code in _DEFENSIVE_STATUSES else _CHALLENGE_PATTERNS
    for pattern in patterns:
        if pattern in text or pattern in head:
            if status_code in _DEFENSIVE_STATUSES:
                return f"{status_code} with block signal {pattern!r}"
            return f"challenge page ({pattern!r})"
    return None


def looks_blocked(html: str, status_code: int) -> bool:
    """Return ``True`` if the page is a bot challenge or defensive refusal."""
    return block_reason(html, status_code) is not None
