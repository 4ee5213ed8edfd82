"""Sequential execution of a pre-scrape action script against a browser page."""

from __future__ import annotations

import base64
import logging
from typing import Any, Sequence

from scrapecore.errors import ActionTimeoutError
from scrapecore.schemas import (
    ActionSpec,
    ClickAction,
    ExecuteJavascriptAction,
    GeneratePdfAction,
    PressAction,
    ScrapeAction,
    ScreenshotAction,
    ScrollAction,
    WaitAction,
    WriteAction,
)
from scrapecore.scraper.models import JavascriptReturn, PageSnapshot, SessionState
from scrapecore.scraper.session import BrowserSession, Deadline, ScriptError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def data_uri(payload: bytes, mime_type: str) -> str:
    """Encode *payload* as a ``data:`` URI."""
    return f"data:{mime_type};base64,{base64.b64encode(payload).decode('ascii')}"


def screenshot_mime(quality: int | None) -> str:
    return "image/jpeg" if quality is not None else "image/png"


def _js_type(value: Any) -> str:
    """Map a value returned from the page back to its JavaScript ``typeof``."""
    if value is None:
        return "undefined"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return "object"


def _wait(session: BrowserSession, action: WaitAction, deadline: Deadline) -> None:
    if action.selector is not None:
        session.wait_for_selector(action.selector, deadline.remaining_ms())
        return
    remaining = deadline.remaining_ms()
    if action.milliseconds > remaining:
        session.wait(remaining)
        raise ActionTimeoutError(
            f"wait of {action.milliseconds} ms exceeds the remaining "
            f"request budget of {remaining} ms"
        )
    session.wait(action.milliseconds)


def _run_one(
    session: BrowserSession, action: ActionSpec, deadline: Deadline, state: SessionState
) -> None:
    if isinstance(action, WaitAction):
        _wait(session, action, deadline)
    elif isinstance(action, ScreenshotAction):
        image = session.screenshot(
            action.full_page, action.quality, action.viewport, deadline.remaining_ms()
        )
        state.screenshots.append(data_uri(image, screenshot_mime(action.quality)))
    elif isinstance(action, ClickAction):
        session.click(action.selector, deadline.remaining_ms())
    elif isinstance(action, WriteAction):
        session.write(action.text, action.selector, deadline.remaining_ms())
    elif isinstance(action, PressAction):
        session.press(action.key, deadline.remaining_ms())
    elif isinstance(action, ScrollAction):
        session.scroll(action.direction, action.selector, deadline.remaining_ms())
    elif isinstance(action, ScrapeAction):
        state.scrapes.append(PageSnapshot(url=session.current_url(), html=session.content()))
    elif isinstance(action, ExecuteJavascriptAction):
        try:
            value = session.evaluate(action.script, deadline.remaining_ms())
        except ScriptError as exc:
            state.javascript_returns.append(JavascriptReturn(type="error", value=str(exc)))
        else:
            state.javascript_returns.append(JavascriptReturn(type=_js_type(value), value=value))
    elif isinstance(action, GeneratePdfAction):
        document = session.pdf(
            action.format, action.landscape, action.scale, deadline.remaining_ms()
        )
        state.pdfs.append(data_uri(document, "application/pdf"))
    else:  # pragma: no cover - the action union is closed
        raise TypeError(f"Unknown action type: {type(action).__name__}")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def run_actions(
    session: BrowserSession, actions: Sequence[ActionSpec], deadline: Deadline
) -> SessionState:
    """Run *actions* in order against *session* and collect their outputs.

    Each action starts only after the previous one completed.  A screenshot
    never mutates the page; a ``scrape`` snapshot reflects every action
    before it.

    Args:
        session:  An open browser session positioned on the target page.
        actions:  The validated action script.
        deadline: The request-wide budget; checked before every action.

    Returns:
        The accumulated :class:`SessionState`.

    Raises:
        ActionTimeoutError:   The deadline expired mid-script.
        ElementNotFoundError: An action's selector matched nothing.
    """
    state = SessionState()
    for index, action in enumerate(actions):
        deadline.check(f"starting action #{index} ({action.type})")
        logger.debug("Action #%d: %s", index, action.type)
        _run_one(session, action, deadline, state)
        state.actions_run += 1
    return state
