"""Shared fakes for the scrape engine tests.

No test drives a real browser or network:

- ``FakeBrowserSession`` stands in for a Playwright page and records every
  call made against it.
- ``FakeHttpSession`` stands in for the plain httpx transport.
- ``FakeExtractor`` replaces the LangChain-backed summary / JSON extractor.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

import pytest

from scrapecore.errors import ElementNotFoundError, ExtractionFailureError
from scrapecore.scraper.session import Navigation, ScriptError


class FakeHttpSession:
    transport = "http"

    def __init__(
        self,
        html: str = "<html><body><p>Hello</p></body></html>",
        url: str = "https://example.com/",
        status_code: int = 200,
        headers: Optional[dict[str, str]] = None,
        content_type: str = "text/html",
        body: Optional[bytes] = None,
    ) -> None:
        self.html = html
        self.url = url
        self.status_code = status_code
        self.headers = headers or {}
        self.content_type = content_type
        self.body = body
        self.calls: list[tuple] = []
        self.closed = False

    def goto(self, url: str, timeout_ms: int) -> Navigation:
        self.calls.append(("goto", url))
        return Navigation(
            url=self.url,
            status_code=self.status_code,
            headers=self.headers,
            content_type=self.content_type,
            body=self.body,
        )

    def content(self) -> str:
        return self.html

    def current_url(self) -> str:
        return self.url

    def wait(self, milliseconds: int) -> None:
        self.calls.append(("wait", milliseconds))

    def close(self) -> None:
        self.closed = True


class FakeBrowserSession(FakeHttpSession):
    """Browser double.

    ``selectors`` lists the CSS selectors present on the page; anything else
    raises :class:`ElementNotFoundError`.  ``on_click`` maps a selector to
    the HTML the page shows after it is clicked.
    """

    transport = "browser"

    def __init__(
        self,
        html: str = "<html><body><p>Hello</p></body></html>",
        *,
        selectors: tuple[str, ...] = (),
        on_click: Optional[dict[str, str]] = None,
        scripts: Optional[dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(html, **kwargs)
        self.selectors = set(selectors)
        self.on_click = on_click or {}
        self.scripts = scripts or {}

    def _require(self, selector: str) -> None:
        if selector not in self.selectors:
            raise ElementNotFoundError(f"No element matches selector {selector!r}")

    def wait_for_selector(self, selector: str, timeout_ms: int) -> None:
        self.calls.append(("wait_for_selector", selector))
        self._require(selector)

    def click(self, selector: str, timeout_ms: int) -> None:
        self._require(selector)
        self.calls.append(("click", selector))
        if selector in self.on_click:
            self.html = self.on_click[selector]

    def write(self, text: str, selector: Optional[str], timeout_ms: int) -> None:
        if selector is not None:
            self._require(selector)
        self.calls.append(("write", text, selector))

    def press(self, key: str, timeout_ms: int) -> None:
        self.calls.append(("press", key))

    def scroll(self, direction: str, selector: Optional[str], timeout_ms: int) -> None:
        self.calls.append(("scroll", direction, selector))

    def screenshot(
        self, full_page: bool, quality: Optional[int], viewport: Any, timeout_ms: int
    ) -> bytes:
        self.calls.append(("screenshot", full_page, quality))
        return b"IMG"

    def evaluate(self, script: str, timeout_ms: int) -> Any:
        self.calls.append(("evaluate", script))
        value = self.scripts.get(script)
        if isinstance(value, Exception):
            raise ScriptError(str(value))
        return value

    def pdf(self, paper_format: str, landscape: bool, scale: float, timeout_ms: int) -> bytes:
        self.calls.append(("pdf", paper_format, landscape, scale))
        return b"%PDF-1.4"


class FakeExtractor:
    """Extractor double returning canned values (or raising when given one)."""

    def __init__(self, summary: Any = "A short summary.", extracted: Any = None) -> None:
        self.summary = summary
        self.extracted = extracted if extracted is not None else {"title": "Hello"}
        self.calls: list[tuple] = []

    def summarize(self, markdown: str, deadline: Any) -> str:
        self.calls.append(("summarize", markdown))
        if isinstance(self.summary, Exception):
            raise self.summary
        return self.summary

    def extract_json(self, content: str, schema: Any, prompt: Any, deadline: Any) -> dict:
        self.calls.append(("extract_json", schema, prompt))
        if isinstance(self.extracted, Exception):
            raise self.extracted
        return self.extracted


class Clock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def browser_session() -> Callable[..., FakeBrowserSession]:
    return FakeBrowserSession


@pytest.fixture
def http_session() -> Callable[..., FakeHttpSession]:
    return FakeHttpSession


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def failing_extractor() -> FakeExtractor:
    return FakeExtractor(
        summary=ExtractionFailureError("model unavailable"),
        extracted=ExtractionFailureError("model unavailable"),
    )


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture(autouse=True)
def isolated_workspace(tmp_path, monkeypatch):
    """Point the workspace and output directories at a per-test temp dir."""
    monkeypatch.setattr("scrapecore.config.settings.workspace_dir", tmp_path / "workspace")
    monkeypatch.setattr("scrapecore.config.settings.output_dir", tmp_path / "output")
    monkeypatch.setattr("scrapecore.config.settings.cache_enabled", True)
    return tmp_path


@pytest.fixture
def make_extractor() -> Callable[..., FakeExtractor]:
    return FakeExtractor
