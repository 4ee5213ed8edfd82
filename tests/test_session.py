"""Tests for the Playwright session's error and budget mapping.

The session is built without launching a browser; its page and DevTools
session are ``MagicMock`` objects.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from scrapecore.errors import ActionTimeoutError, ElementNotFoundError, InvalidRequestError
from scrapecore.scraper.session import _SCRIPT_TIMEOUT_MARKER, PlaywrightSession, ScriptError


@pytest.fixture
def session() -> PlaywrightSession:
    s = PlaywrightSession.__new__(PlaywrightSession)
    s._page = MagicMock()
    s._cdp = MagicMock()
    return s


class TestEvaluate:
    def test_returns_the_value(self, session) -> None:
        session._cdp.send.return_value = {"result": {"type": "number", "value": 2}}
        assert session.evaluate("1 + 1", 4_000) == 2

        method, params = session._cdp.send.call_args.args
        assert method == "Runtime.evaluate"
        assert params["timeout"] == 4_000
        assert params["awaitPromise"] is True
        assert '"1 + 1"' in params["expression"]

    def test_undefined_is_none(self, session) -> None:
        session._cdp.send.return_value = {"result": {"type": "undefined"}}
        assert session.evaluate("void 0", 4_000) is None

    def test_thrown_error_is_a_script_error(self, session) -> None:
        session._cdp.send.return_value = {
            "result": {"type": "object"},
            "exceptionDetails": {"text": "Uncaught", "exception": {"description": "Error: x"}},
        }
        with pytest.raises(ScriptError, match="Error: x"):
            session.evaluate("throw new Error('x')", 4_000)

    def test_pending_promise_past_the_budget_times_out(self, session) -> None:
        session._cdp.send.return_value = {
            "exceptionDetails": {"exception": {"description": f"Error: {_SCRIPT_TIMEOUT_MARKER}"}},
        }
        with pytest.raises(ActionTimeoutError, match="4000 ms"):
            session.evaluate("new Promise(() => {})", 4_000)

    def test_terminated_busy_loop_times_out(self, session) -> None:
        session._cdp.send.side_effect = PlaywrightError("Execution was terminated")
        with pytest.raises(ActionTimeoutError):
            session.evaluate("while (true) {}", 4_000)

    def test_playwright_timeout_is_mapped(self, session) -> None:
        session._cdp.send.side_effect = PlaywrightTimeoutError("Timeout 4000ms exceeded")
        with pytest.raises(ActionTimeoutError):
            session.evaluate("1", 4_000)

    def test_zero_budget_is_never_unbounded(self, session) -> None:
        session._cdp.send.return_value = {"result": {"value": 1}}
        session.evaluate("1", 0)
        assert session._cdp.send.call_args.args[1]["timeout"] == 1


class TestBoundedInteractions:
    def test_press_sets_the_default_timeout(self, session) -> None:
        session.press("Enter", 2_500)
        session._page.set_default_timeout.assert_called_with(2_500)
        session._page.keyboard.press.assert_called_once_with("Enter")

    def test_pdf_timeout_is_mapped(self, session) -> None:
        session._page.pdf.side_effect = PlaywrightTimeoutError("Timeout 2500ms exceeded")
        with pytest.raises(ActionTimeoutError, match="PDF rendering"):
            session.pdf("A4", False, 1.0, 2_500)

    def test_screenshot_timeout_is_mapped(self, session) -> None:
        session._page.screenshot.side_effect = PlaywrightTimeoutError("Timeout exceeded")
        with pytest.raises(ActionTimeoutError):
            session.screenshot(True, None, None, 2_500)


class TestSelectors:
    def test_missing_element(self, session) -> None:
        session._page.query_selector.return_value = None
        with pytest.raises(ElementNotFoundError):
            session.click("#missing", 1_000)

    def test_malformed_selector_is_an_invalid_request(self, session) -> None:
        session._page.query_selector.side_effect = PlaywrightError(
            "SyntaxError: '#[oops' is not a valid selector"
        )
        with pytest.raises(InvalidRequestError, match="#\\[oops"):
            session.click("#[oops", 1_000)

    def test_malformed_selector_in_wait(self, session) -> None:
        session._page.wait_for_selector.side_effect = PlaywrightError("not a valid selector")
        with pytest.raises(InvalidRequestError):
            session.wait_for_selector("##", 1_000)
