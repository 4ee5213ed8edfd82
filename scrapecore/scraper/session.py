"""Session capabilities driven by the fetch attempt and the action executor.

Two transports are provided:

``HttpxSession``
    A plain HTTP fetch.  Cheap, no JavaScript, no interactions.

``PlaywrightSession``
    A headless Chromium page.  Supports every action kind, screenshots and
    PDF rendering.  In the ``stealth`` tier it also hides the usual
    automation fingerprints.

Both translate their library's failures into the engine's vocabulary:
timeouts become :class:`~scrapecore.errors.ActionTimeoutError`, network
failures become :class:`TransportError`, missing selectors become
:class:`~scrapecore.errors.ElementNotFoundError` and malformed ones
:class:`~scrapecore.errors.InvalidRequestError`.
"""

from __future__ import annotations

import contextlib
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional, Protocol

import httpx
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from scrapecore.config import settings
from scrapecore.errors import ActionTimeoutError, ElementNotFoundError, InvalidRequestError
from scrapecore.schemas import ScrapeRequest, Viewport

logger = logging.getLogger(__name__)

_MOBILE_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
_MOBILE_VIEWPORT = {"width": 390, "height": 844}

_STEALTH_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
Object.defineProperty(navigator, 'plugins', {get: () => [1, 2, 3, 4, 5]});
window.chrome = window.chrome || {runtime: {}};
"""

_SCRIPT_TIMEOUT_MARKER = "scrapecore: script budget exceeded"

# Evaluates the user script with indirect eval and races it against the
# remaining budget.
_BOUNDED_SCRIPT = """(async () => {
  let timer;
  const expired = new Promise((_, reject) => {
    timer = setTimeout(() => reject(new Error(%(marker)s)), %(budget)d);
  });
  try {
    return await Promise.race([Promise.resolve((0, eval)(%(source)s)), expired]);
  } finally {
    clearTimeout(timer);
  }
})()"""

_AD_HOST_MARKERS = (
    "doubleclick.net",
    "googlesyndication.com",
    "adservice.google.",
    "amazon-adsystem.com",
    "adnxs.com",
    "taboola.com",
    "outbrain.com",
    "criteo.com",
    "scorecardresearch.com",
    "cookielaw.org",
)


class TransportError(Exception):
    """Network-level failure (DNS, connection reset, TLS, browser crash)."""


class ScriptError(Exception):
    """A script run through :meth:`PlaywrightSession.evaluate` threw."""


# ---------------------------------------------------------------------------
# Deadline
# ---------------------------------------------------------------------------

class Deadline:
    """The overall request budget shared by every suspension point."""

    def __init__(self, timeout_ms: int, clock: Callable[[], float] = time.monotonic) -> None:
        self.timeout_ms = timeout_ms
        self._clock = clock
        self._expires_at = clock() + timeout_ms / 1000

    def remaining_ms(self) -> int:
        return max(0, int((self._expires_at - self._clock()) * 1000))

    @property
    def expired(self) -> bool:
        return self.remaining_ms() <= 0

    def share(self, fraction: float) -> Deadline:
        """A sub-budget of at most *fraction* of the full timeout, on the same clock."""
        return Deadline(min(self.remaining_ms(), int(self.timeout_ms * fraction)), clock=self._clock)

    def check(self, doing: str) -> None:
        """Raise :class:`ActionTimeoutError` if the budget is spent."""
        if self.expired:
            raise ActionTimeoutError(
                f"Request timed out after {self.timeout_ms} ms while {doing}"
            )


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

@dataclass
class Navigation:
    """What a ``goto`` produced."""

    url: str
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    content_type: str = "text/html"
    body: Optional[bytes] = None


class Session(Protocol):
    transport: str

    def goto(self, url: str, timeout_ms: int) -> Navigation: ...

    def content(self) -> str: ...

    def current_url(self) -> str: ...

    def wait(self, milliseconds: int) -> None: ...

    def close(self) -> None: ...


class BrowserSession(Session, Protocol):
    def wait_for_selector(self, selector: str, timeout_ms: int) -> None: ...

    def click(self, selector: str, timeout_ms: int) -> None: ...

    def write(self, text: str, selector: Optional[str], timeout_ms: int) -> None: ...

    def press(self, key: str, timeout_ms: int) -> None: ...

    def scroll(self, direction: str, selector: Optional[str], timeout_ms: int) -> None: ...

    def screenshot(
        self,
        full_page: bool,
        quality: Optional[int],
        viewport: Optional[Viewport],
        timeout_ms: int,
    ) -> bytes: ...

    def evaluate(self, script: str, timeout_ms: int) -> Any: ...

    def pdf(self, paper_format: str, landscape: bool, scale: float, timeout_ms: int) -> bytes: ...


SessionOpener = Callable[[str, ScrapeRequest, bool], Session]


def _accept_language(request: ScrapeRequest) -> str:
    if request.location.languages:
        return ",".join(request.location.languages)
    return f"en-{request.location.country.upper()},en;q=0.9"


def _is_document(content_type: str) -> bool:
    return "application/pdf" in content_type.lower()


# ---------------------------------------------------------------------------
# httpx transport
# ---------------------------------------------------------------------------

class HttpxSession:
    """Plain HTTP session.  Only navigation and fixed waits are supported."""

    transport = "http"

    def __init__(self, request: ScrapeRequest, proxy_url: Optional[str] = None) -> None:
        headers = {
            "User-Agent": _MOBILE_USER_AGENT if request.mobile else settings.user_agent,
            "Accept-Language": _accept_language(request),
        }
        headers.update(request.headers)
        self._client = httpx.Client(
            headers=headers,
            follow_redirects=True,
            verify=not request.skip_tls_verification,
            proxy=proxy_url,
        )
        self._url = request.url
        self._html = ""

    def goto(self, url: str, timeout_ms: int) -> Navigation:
        try:
            response = self._client.get(url, timeout=timeout_ms / 1000)
        except httpx.TimeoutException as exc:
            raise ActionTimeoutError(f"Navigation to {url} timed out") from exc
        except httpx.TransportError as exc:
            raise TransportError(f"HTTP transport failure for {url}: {exc}") from exc

        content_type = response.headers.get("content-type", "text/html")
        self._url = str(response.url)
        body: Optional[bytes] = None
        if _is_document(content_type):
            body = response.content
            self._html = ""
        else:
            self._html = response.text

        return Navigation(
            url=self._url,
            status_code=response.status_code,
            headers={k.lower(): v for k, v in response.headers.items()},
            content_type=content_type,
            body=body,
        )

    def content(self) -> str:
        return self._html

    def current_url(self) -> str:
        return self._url

    def wait(self, milliseconds: int) -> None:
        time.sleep(milliseconds / 1000)

    def close(self) -> None:
        self._client.close()


# ---------------------------------------------------------------------------
# Playwright transport
# ---------------------------------------------------------------------------

class PlaywrightSession:
    """Headless Chromium session.

    The browser is started in the constructor and torn down by
    :meth:`close`; callers must always close it, success or failure.
    """

    transport = "browser"

    def __init__(
        self,
        request: ScrapeRequest,
        proxy_url: Optional[str] = None,
        stealth: bool = False,
    ) -> None:
        self._pw = None
        self._browser = None
        self._context = None
        try:
            self._pw = sync_playwright().start()
            launch_args = ["--disable-blink-features=AutomationControlled"] if stealth else []
            self._browser = self._pw.chromium.launch(
                headless=True,
                proxy={"server": proxy_url} if proxy_url else None,
                args=launch_args,
            )
            context_kwargs: dict[str, Any] = {
                "ignore_https_errors": request.skip_tls_verification,
                "bypass_csp": True,
                "user_agent": settings.user_agent,
                "locale": (request.location.languages or ("en-US",))[0],
                "extra_http_headers": {
                    "Accept-Language": _accept_language(request),
                    **request.headers,
                },
            }
            if request.mobile:
                context_kwargs.update(
                    viewport=_MOBILE_VIEWPORT,
                    user_agent=_MOBILE_USER_AGENT,
                    is_mobile=True,
                    has_touch=True,
                )
            self._context = self._browser.new_context(**context_kwargs)
            if stealth:
                self._context.add_init_script(_STEALTH_INIT_SCRIPT)
            if request.block_ads:
                self._context.route("**/*", self._route_blocking_ads)
            self._page = self._context.new_page()
            self._cdp = self._context.new_cdp_session(self._page)
        except PlaywrightError as exc:
            self.close()
            raise TransportError(f"Browser failed to start: {exc}") from exc

    @staticmethod
    def _route_blocking_ads(route: Any) -> None:
        url = route.request.url
        if any(marker in url for marker in _AD_HOST_MARKERS):
            route.abort()
        else:
            route.continue_()

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------
    def goto(self, url: str, timeout_ms: int) -> Navigation:
        try:
            response = self._page.goto(url, timeout=timeout_ms, wait_until="domcontentloaded")
        except PlaywrightTimeoutError as exc:
            raise ActionTimeoutError(f"Navigation to {url} timed out") from exc
        except PlaywrightError as exc:
            # Chromium refuses to render documents it would download.
            if "Download is starting" in str(exc) or "ERR_ABORTED" in str(exc):
                return self._fetch_document(url, timeout_ms)
            raise TransportError(f"Browser navigation failed for {url}: {exc}") from exc

        # Give client-side rendering a moment to settle; not reaching
        # network idle is normal for pages with long-polling.
        with contextlib.suppress(PlaywrightTimeoutError):
            self._page.wait_for_load_state("networkidle", timeout=min(3000, timeout_ms))

        if response is None:
            return Navigation(url=self._page.url, status_code=0)

        headers = {k.lower(): v for k, v in response.headers.items()}
        content_type = headers.get("content-type", "text/html")
        return Navigation(
            url=self._page.url,
            status_code=response.status,
            headers=headers,
            content_type=content_type,
            body=response.body() if _is_document(content_type) else None,
        )

    def _fetch_document(self, url: str, timeout_ms: int) -> Navigation:
        try:
            response = self._context.request.get(url, timeout=timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise ActionTimeoutError(f"Document download from {url} timed out") from exc
        except PlaywrightError as exc:
            raise TransportError(f"Document download failed for {url}: {exc}") from exc
        headers = {k.lower(): v for k, v in response.headers.items()}
        return Navigation(
            url=response.url,
            status_code=response.status,
            headers=headers,
            content_type=headers.get("content-type", "application/pdf"),
            body=response.body(),
        )

    def content(self) -> str:
        return self._page.content()

    def current_url(self) -> str:
        return self._page.url

    # ------------------------------------------------------------------
    # Interactions
    # ------------------------------------------------------------------
    @contextlib.contextmanager
    def _bounded(self, timeout_ms: int, doing: str) -> Iterator[None]:
        """Cap every Playwright call inside the block at *timeout_ms*."""
        # Playwright treats a timeout of 0 as "no timeout".
        self._page.set_default_timeout(max(1, timeout_ms))
        try:
            yield
        except PlaywrightTimeoutError as exc:
            raise ActionTimeoutError(f"{doing} timed out after {timeout_ms} ms") from exc

    def _require(self, selector: str) -> None:
        try:
            found = self._page.query_selector(selector)
        except PlaywrightError as exc:
            raise InvalidRequestError(f"Invalid selector {selector!r}: {exc}") from exc
        if found is None:
            raise ElementNotFoundError(f"Element not found for selector {selector!r}")

    def wait(self, milliseconds: int) -> None:
        self._page.wait_for_timeout(milliseconds)

    def wait_for_selector(self, selector: str, timeout_ms: int) -> None:
        try:
            self._page.wait_for_selector(selector, state="attached", timeout=max(1, timeout_ms))
        except PlaywrightTimeoutError as exc:
            raise ActionTimeoutError(
                f"Selector {selector!r} did not appear within {timeout_ms} ms"
            ) from exc
        except PlaywrightError as exc:
            raise InvalidRequestError(f"Invalid selector {selector!r}: {exc}") from exc

    def click(self, selector: str, timeout_ms: int) -> None:
        self._require(selector)
        with self._bounded(timeout_ms, f"Click on {selector!r}"):
            self._page.click(selector)

    def write(self, text: str, selector: Optional[str], timeout_ms: int) -> None:
        if selector:
            self.click(selector, timeout_ms)
        with self._bounded(timeout_ms, "Typing"):
            self._page.keyboard.type(text)

    def press(self, key: str, timeout_ms: int) -> None:
        with self._bounded(timeout_ms, f"Pressing {key!r}"):
            self._page.keyboard.press(key)

    def scroll(self, direction: str, selector: Optional[str], timeout_ms: int) -> None:
        viewport = self._page.viewport_size or {"height": 800}
        delta = viewport["height"] if direction == "down" else -viewport["height"]
        with self._bounded(timeout_ms, "Scrolling"):
            if selector:
                self._require(selector)
                self._page.eval_on_selector(selector, "(el, dy) => el.scrollBy(0, dy)", delta)
            else:
                self._page.mouse.wheel(0, delta)

    def screenshot(
        self,
        full_page: bool,
        quality: Optional[int],
        viewport: Optional[Viewport],
        timeout_ms: int,
    ) -> bytes:
        with self._bounded(timeout_ms, "Screenshot"):
            if viewport is not None:
                self._page.set_viewport_size({"width": viewport.width, "height": viewport.height})
            if quality is not None:
                return self._page.screenshot(full_page=full_page, type="jpeg", quality=quality)
            return self._page.screenshot(full_page=full_page, type="png")

    def evaluate(self, script: str, timeout_ms: int) -> Any:
        """Run *script* in the page and return its value.

        The DevTools ``timeout`` terminates synchronous work such as a busy
        loop; the race inside :data:`_BOUNDED_SCRIPT` ends pending promises.
        """
        budget = max(1, timeout_ms)
        expression = _BOUNDED_SCRIPT % {
            "source": json.dumps(script),
            "marker": json.dumps(_SCRIPT_TIMEOUT_MARKER),
            "budget": budget,
        }
        params = {
            "expression": expression,
            "awaitPromise": True,
            "returnByValue": True,
            "timeout": budget,
        }
        try:
            reply = self._cdp.send("Runtime.evaluate", params)
        except PlaywrightTimeoutError as exc:
            raise ActionTimeoutError(f"Script did not finish within {timeout_ms} ms") from exc
        except PlaywrightError as exc:
            if "terminated" in str(exc).lower():
                raise ActionTimeoutError(f"Script did not finish within {timeout_ms} ms") from exc
            raise ScriptError(str(exc)) from exc

        details = reply.get("exceptionDetails")
        if details:
            message = (details.get("exception") or {}).get("description") or details.get("text", "")
            if _SCRIPT_TIMEOUT_MARKER in message or "terminated" in message.lower():
                raise ActionTimeoutError(f"Script did not finish within {timeout_ms} ms")
            raise ScriptError(message)
        return (reply.get("result") or {}).get("value")

    def pdf(self, paper_format: str, landscape: bool, scale: float, timeout_ms: int) -> bytes:
        with self._bounded(timeout_ms, "PDF rendering"):
            return self._page.pdf(format=paper_format, landscape=landscape, scale=scale)

    def close(self) -> None:
        for handle in (self._context, self._browser):
            if handle is not None:
                with contextlib.suppress(PlaywrightError):
                    handle.close()
        self._context = None
        self._browser = None
        if self._pw is not None:
            self._pw.stop()
            self._pw = None


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def open_session(tier: str, request: ScrapeRequest, browser: bool) -> Session:
    """Open a session for *tier*.

    The ``stealth`` tier always drives a browser with fingerprint hiding;
    ``basic`` uses plain HTTP unless *browser* is requested.
    """
    proxy_url = settings.stealth_proxy_url if tier == "stealth" else settings.basic_proxy_url
    if tier == "stealth" or browser:
        logger.debug("Opening browser session (tier=%s)", tier)
        return PlaywrightSession(request, proxy_url=proxy_url, stealth=tier == "stealth")
    logger.debug("Opening HTTP session (tier=%s)", tier)
    return HttpxSession(request, proxy_url=proxy_url)
