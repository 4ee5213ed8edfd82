"""Data models for the fetch side of the scrape pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class PageSnapshot:
    """URL + markup captured by a ``scrape`` action."""

    url: str
    html: str


@dataclass(frozen=True)
class JavascriptReturn:
    """Typed return value of an ``executeJavascript`` action.

    ``type`` is the JavaScript ``typeof`` name, or ``"error"`` when the
    script threw (``value`` then holds the error message).
    """

    type: str
    value: Any


@dataclass
class SessionState:
    """Side effects accumulated by one attempt's action script.

    Owned by exactly one in-flight attempt and dropped with it when the
    attempt fails.
    """

    screenshots: list[str] = field(default_factory=list)
    scrapes: list[PageSnapshot] = field(default_factory=list)
    javascript_returns: list[JavascriptReturn] = field(default_factory=list)
    pdfs: list[str] = field(default_factory=list)
    actions_run: int = 0

    def is_empty(self) -> bool:
        return not (self.screenshots or self.scrapes or self.javascript_returns or self.pdfs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "screenshots": list(self.screenshots),
            "scrapes": [{"url": s.url, "html": s.html} for s in self.scrapes],
            "javascriptReturns": [
                {"type": r.type, "value": r.value} for r in self.javascript_returns
            ],
            "pdfs": list(self.pdfs),
        }


@dataclass
class RawPageState:
    """Everything a successful fetch attempt hands to format derivation."""

    url: str
    html: str
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    content_type: str = "text/html"
    document: Optional[bytes] = None
    screenshot: Optional[str] = None
    actions: Optional[SessionState] = None
    transport: str = "http"

    @property
    def is_pdf(self) -> bool:
        return self.document is not None and "pdf" in self.content_type.lower()
