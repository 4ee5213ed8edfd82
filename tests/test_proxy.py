"""Tests for proxy tier escalation.

Attempts are plain functions keyed on the tier, so no session is opened.
"""

from __future__ import annotations

import pytest

from scrapecore.errors import (
    ActionTimeoutError,
    ElementNotFoundError,
    FetchFailureError,
    UpstreamOverloadError,
)
from scrapecore.schemas import parse_request
from scrapecore.scraper.fetcher import fetch_page
from scrapecore.scraper.models import RawPageState
from scrapecore.scraper.proxy import (
    BASIC_BUDGET_SHARE,
    AttemptOutcome,
    EscalationState,
    ProxyEscalation,
    fetch_with_proxy,
)
from scrapecore.scraper.session import Deadline, TransportError

_OK = RawPageState(
    url="https://example.com/", html="<html><body><p>Real content</p></body></html>", status_code=200
)
_BLOCKED = RawPageState(
    url="https://example.com/", html="<html><body><h1>Access denied</h1></body></html>", status_code=403
)
_RATE_LIMITED = RawPageState(url="https://example.com/", html="Too many requests", status_code=429)


def _scripted(results: dict):
    """Attempt that returns (or raises) ``results[tier]`` and logs the tiers tried."""
    tried: list[str] = []

    def attempt(request, tier, deadline):
        tried.append(tier)
        outcome = results[tier]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    attempt.tried = tried
    return attempt


def _request(proxy: str = "auto"):
    return parse_request({"url": "https://example.com", "proxy": proxy})


def _deadline() -> Deadline:
    return Deadline(30_000)


class TestFetchWithProxy:
    def test_auto_basic_success_stays_basic(self) -> None:
        attempt = _scripted({"basic": _OK})
        page, tier = fetch_with_proxy(_request(), _deadline(), attempt)
        assert tier == "basic"
        assert page is _OK
        assert attempt.tried == ["basic"]

    def test_auto_escalates_on_block(self) -> None:
        attempt = _scripted({"basic": _BLOCKED, "stealth": _OK})
        page, tier = fetch_with_proxy(_request(), _deadline(), attempt)
        assert tier == "stealth"
        assert attempt.tried == ["basic", "stealth"]

    def test_auto_escalates_on_transport_failure(self) -> None:
        attempt = _scripted({"basic": TransportError("connection reset"), "stealth": _OK})
        _, tier = fetch_with_proxy(_request(), _deadline(), attempt)
        assert tier == "stealth"

    def test_auto_escalates_on_timeout(self) -> None:
        attempt = _scripted({"basic": ActionTimeoutError("slow"), "stealth": _OK})
        _, tier = fetch_with_proxy(_request(), _deadline(), attempt)
        assert tier == "stealth"

    def test_pinned_basic_never_escalates(self) -> None:
        attempt = _scripted({"basic": _BLOCKED})
        with pytest.raises(FetchFailureError, match="basic tier"):
            fetch_with_proxy(_request("basic"), _deadline(), attempt)
        assert attempt.tried == ["basic"]

    def test_pinned_stealth_goes_straight_to_stealth(self) -> None:
        attempt = _scripted({"stealth": _OK})
        _, tier = fetch_with_proxy(_request("stealth"), _deadline(), attempt)
        assert tier == "stealth"
        assert attempt.tried == ["stealth"]

    def test_non_defense_error_is_not_escalated(self) -> None:
        attempt = _scripted({"basic": ElementNotFoundError("no #btn"), "stealth": _OK})
        with pytest.raises(ElementNotFoundError):
            fetch_with_proxy(_request(), _deadline(), attempt)
        assert attempt.tried == ["basic"]

    def test_both_tiers_rate_limited(self) -> None:
        attempt = _scripted({"basic": _RATE_LIMITED, "stealth": _RATE_LIMITED})
        with pytest.raises(UpstreamOverloadError) as info:
            fetch_with_proxy(_request(), _deadline(), attempt)
        assert info.value.retryable is True

    def test_both_tiers_blocked(self) -> None:
        attempt = _scripted({"basic": _BLOCKED, "stealth": _BLOCKED})
        with pytest.raises(FetchFailureError, match="stealth tier") as info:
            fetch_with_proxy(_request(), _deadline(), attempt)
        assert info.value.retryable is False

    def test_transport_failure_is_retryable(self) -> None:
        attempt = _scripted({"basic": TransportError("dns"), "stealth": TransportError("dns")})
        with pytest.raises(FetchFailureError) as info:
            fetch_with_proxy(_request(), _deadline(), attempt)
        assert info.value.retryable is True

    def test_terminal_timeout_surfaces_as_timeout(self) -> None:
        attempt = _scripted({"basic": _BLOCKED, "stealth": ActionTimeoutError("too slow")})
        with pytest.raises(ActionTimeoutError, match="too slow"):
            fetch_with_proxy(_request(), _deadline(), attempt)

    def test_non_2xx_without_block_is_success(self) -> None:
        missing = RawPageState(
            url="https://example.com/", html="<html><body>Not found</body></html>", status_code=404
        )
        attempt = _scripted({"basic": missing})
        page, tier = fetch_with_proxy(_request(), _deadline(), attempt)
        assert page.status_code == 404
        assert tier == "basic"

    def test_unexpected_errors_propagate(self) -> None:
        attempt = _scripted({"basic": RuntimeError("bug")})
        with pytest.raises(RuntimeError):
            fetch_with_proxy(_request(), _deadline(), attempt)


class TestProxyEscalation:
    def test_transitions_are_recorded(self) -> None:
        machine = ProxyEscalation(preference="auto")
        machine.start()
        assert machine.state is EscalationState.ATTEMPTING_BASIC
        machine.advance(AttemptOutcome("basic", page=_BLOCKED, defense=True, reason="blocked"))
        assert machine.state is EscalationState.ATTEMPTING_STEALTH
        machine.advance(AttemptOutcome("stealth", page=_OK))
        assert machine.finished
        assert [(t.source, t.target) for t in machine.transitions] == [
            (EscalationState.IDLE, EscalationState.ATTEMPTING_BASIC),
            (EscalationState.ATTEMPTING_BASIC, EscalationState.ATTEMPTING_STEALTH),
            (EscalationState.ATTEMPTING_STEALTH, EscalationState.SUCCESS),
        ]

    def test_stealth_failure_is_final(self) -> None:
        machine = ProxyEscalation(preference="auto", state=EscalationState.ATTEMPTING_STEALTH)
        outcome = AttemptOutcome("stealth", page=_BLOCKED, defense=True)
        assert machine.next_state(outcome) is EscalationState.FAILED

    def test_current_tier(self) -> None:
        machine = ProxyEscalation(preference="stealth")
        machine.start()
        assert machine.current_tier == "stealth"


class TestEscalationBudget:
    """Attempts driven through ``fetch_page`` on a manually advanced clock."""

    @pytest.fixture
    def now(self) -> list[float]:
        return [0.0]

    @pytest.fixture
    def hanging_session(self, http_session, now):
        class HangingSession(http_session):
            def goto(self, url, timeout_ms):
                now[0] += timeout_ms / 1000
                raise ActionTimeoutError(f"Navigation to {url} timed out")

        return HangingSession

    def _attempt(self, sessions: dict, opened: list[str]):
        def opener(tier, request, browser):
            opened.append(tier)
            return sessions[tier]()

        return lambda request, tier, budget: fetch_page(request, tier, budget, opener)

    def test_basic_timeout_leaves_budget_for_stealth(self, now, hanging_session, browser_session) -> None:
        opened: list[str] = []
        deadline = Deadline(30_000, clock=lambda: now[0])
        attempt = self._attempt({"basic": hanging_session, "stealth": browser_session}, opened)

        page, tier = fetch_with_proxy(_request(), deadline, attempt)

        assert tier == "stealth"
        assert opened == ["basic", "stealth"]
        assert now[0] == pytest.approx(30 * BASIC_BUDGET_SHARE)
        assert deadline.remaining_ms() > 0

    def test_both_tiers_timing_out_is_terminal(self, now, hanging_session) -> None:
        opened: list[str] = []
        deadline = Deadline(30_000, clock=lambda: now[0])
        attempt = self._attempt({"basic": hanging_session, "stealth": hanging_session}, opened)

        with pytest.raises(ActionTimeoutError):
            fetch_with_proxy(_request(), deadline, attempt)
        assert opened == ["basic", "stealth"]
        assert deadline.expired

    def test_pinned_basic_gets_the_whole_budget(self, now, hanging_session) -> None:
        opened: list[str] = []
        deadline = Deadline(30_000, clock=lambda: now[0])
        attempt = self._attempt({"basic": hanging_session}, opened)

        with pytest.raises(ActionTimeoutError):
            fetch_with_proxy(_request("basic"), deadline, attempt)
        assert now[0] == pytest.approx(30.0)


class TestDeadlineShare:
    def test_share_is_capped_by_what_remains(self) -> None:
        now = [0.0]
        deadline = Deadline(10_000, clock=lambda: now[0])
        assert deadline.share(0.5).remaining_ms() == 5_000
        now[0] = 8.0
        assert deadline.share(0.5).remaining_ms() == 2_000
