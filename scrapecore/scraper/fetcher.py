"""One fetch attempt at a given proxy tier.

Uses ``httpx`` for standard pages.  Switches to a headless Playwright
browser when the request needs one (actions, a screenshot, ``waitFor``) or
when a JavaScript SPA fingerprint is detected in the plain response.
"""

from __future__ import annotations

import logging
import re

from scrapecore.schemas import ScrapeRequest
from scrapecore.scraper.actions import data_uri, run_actions, screenshot_mime
from scrapecore.scraper.models import RawPageState
from scrapecore.scraper.session import Deadline, SessionOpener, open_session

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# SPA / JS-rendered page detection heuristics
# ---------------------------------------------------------------------------
_SPA_PATTERNS = [
    re.compile(r'<div[^>]+id=["\'](?:root|app|__next)["\'][^>]*>\s*</div>', re.IGNORECASE),
    re.compile(r"window\.__NEXT_DATA__", re.IGNORECASE),
    re.compile(r"ng-version=", re.IGNORECASE),
    re.compile(r"data-reactroot", re.IGNORECASE),
]


def _is_spa(html: str) -> bool:
    """Return ``True`` if *html* looks like a JavaScript SPA that needs rendering."""
    for pattern in _SPA_PATTERNS:
        if pattern.search(html):
            return True
    # Very little visible text relative to total HTML size.  Script and style
    # bodies are not visible text.
    no_scripts = re.sub(
        r"<(script|style)[^>]*>.*?</(script|style)>", "", html, flags=re.IGNORECASE | re.DOTALL
    )
    stripped = re.sub(r"<[^>]+>", "", no_scripts).strip()
    return len(html) > 2000 and len(stripped) < 200


def _needs_browser(request: ScrapeRequest) -> bool:
    return bool(request.actions) or request.wants("screenshot") or request.wait_for > 0


def _attempt(
    request: ScrapeRequest,
    tier: str,
    deadline: Deadline,
    opener: SessionOpener,
    browser: bool,
) -> RawPageState:
    deadline.check("opening a session")
    session = opener(tier, request, browser)
    try:
        nav = session.goto(request.url, deadline.remaining_ms())
        if nav.body is not None:
            return RawPageState(
                url=nav.url,
                html="",
                status_code=nav.status_code,
                headers=nav.headers,
                content_type=nav.content_type,
                document=nav.body,
                transport=session.transport,
            )

        if request.wait_for:
            deadline.check("waiting for the page to settle")
            session.wait(min(request.wait_for, deadline.remaining_ms()))

        actions = run_actions(session, request.actions, deadline) if request.actions else None

        screenshot = None
        fmt = request.get_format("screenshot")
        if fmt is not None:
            deadline.check("capturing the page screenshot")
            image = session.screenshot(
                fmt.full_page, fmt.quality, fmt.viewport, deadline.remaining_ms()
            )
            screenshot = data_uri(image, screenshot_mime(fmt.quality))

        return RawPageState(
            url=session.current_url(),
            html=session.content(),
            status_code=nav.status_code,
            headers=nav.headers,
            content_type=nav.content_type,
            screenshot=screenshot,
            actions=actions,
            transport=session.transport,
        )
    finally:
        session.close()


def fetch_page(
    request: ScrapeRequest,
    tier: str,
    deadline: Deadline,
    opener: SessionOpener = open_session,
) -> RawPageState:
    """Run a single fetch attempt for *request* at *tier*.

    Args:
        request:  The validated request.
        tier:     ``"basic"`` or ``"stealth"``.
        deadline: Request-wide budget bounding navigation, waits and actions.
        opener:   Session factory; tests inject fakes here.

    Returns:
        The :class:`RawPageState` of the loaded page.  Non-2xx statuses are
        returned, not raised.

    Raises:
        ActionTimeoutError:   Navigation or an action ran past the deadline.
        ElementNotFoundError: An action selector matched nothing.
        TransportError:       The connection itself failed.
    """
    browser = _needs_browser(request)
    raw = _attempt(request, tier, deadline, opener, browser)

    if (
        not browser
        and raw.transport == "http"
        and raw.document is None
        and 200 <= raw.status_code < 300
        and _is_spa(raw.html)
    ):
        logger.info("SPA fingerprint on %s; re-rendering in a browser", raw.url)
        raw = _attempt(request, tier, deadline, opener, True)

    return raw
