"""Proxy tier escalation.

The ``auto`` preference is a two-state retry policy modelled as an explicit
state machine::

    Idle -> AttemptingBasic -> Success
                            -> AttemptingStealth -> Success | Failed
    Idle -> AttemptingBasic -> Failed                (pinned basic)
    Idle -> AttemptingStealth -> Success | Failed    (pinned stealth)

Each attempt is reduced to an :class:`AttemptOutcome`; the next state is a
pure function of the current state, the outcome and the preference, and
every transition is recorded so the billing tier stays auditable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from scrapecore.errors import (
    ActionTimeoutError,
    FetchFailureError,
    ScrapeError,
    UpstreamOverloadError,
)
from scrapecore.schemas import ScrapeRequest
from scrapecore.scraper.detection import block_reason
from scrapecore.scraper.fetcher import fetch_page
from scrapecore.scraper.models import RawPageState
from scrapecore.scraper.session import Deadline, TransportError

logger = logging.getLogger(__name__)

Attempt = Callable[[ScrapeRequest, str, Deadline], RawPageState]

# Under ``auto`` the basic attempt may use at most this share of the request
# timeout so a stealth retry still has budget left.
BASIC_BUDGET_SHARE = 0.5


class EscalationState(str, Enum):
    IDLE = "Idle"
    ATTEMPTING_BASIC = "AttemptingBasic"
    ATTEMPTING_STEALTH = "AttemptingStealth"
    SUCCESS = "Success"
    FAILED = "Failed"


_TIER_OF_STATE = {
    EscalationState.ATTEMPTING_BASIC: "basic",
    EscalationState.ATTEMPTING_STEALTH: "stealth",
}


@dataclass
class AttemptOutcome:
    """Result of one attempt, classified for the escalation decision."""

    tier: str
    page: Optional[RawPageState] = None
    error: Optional[Exception] = None
    defense: bool = False
    reason: str = ""

    @property
    def succeeded(self) -> bool:
        return self.page is not None and not self.defense


@dataclass
class Transition:
    source: EscalationState
    target: EscalationState
    reason: str = ""


@dataclass
class ProxyEscalation:
    """Drives attempts for one request until Success or Failed."""

    preference: str
    state: EscalationState = EscalationState.IDLE
    transitions: list[Transition] = field(default_factory=list)
    outcomes: list[AttemptOutcome] = field(default_factory=list)

    def _move(self, target: EscalationState, reason: str = "") -> None:
        logger.info("proxy: %s -> %s%s", self.state.value, target.value, f" ({reason})" if reason else "")
        self.transitions.append(Transition(self.state, target, reason))
        self.state = target

    def start(self) -> None:
        if self.preference == "stealth":
            self._move(EscalationState.ATTEMPTING_STEALTH, "stealth pinned")
        else:
            self._move(EscalationState.ATTEMPTING_BASIC, f"preference {self.preference}")

    def next_state(self, outcome: AttemptOutcome) -> EscalationState:
        if outcome.succeeded:
            return EscalationState.SUCCESS
        if (
            self.state is EscalationState.ATTEMPTING_BASIC
            and self.preference == "auto"
            and outcome.defense
        ):
            return EscalationState.ATTEMPTING_STEALTH
        return EscalationState.FAILED

    def advance(self, outcome: AttemptOutcome) -> None:
        self.outcomes.append(outcome)
        reason = "ok" if outcome.succeeded else outcome.reason
        self._move(self.next_state(outcome), reason)

    @property
    def can_escalate(self) -> bool:
        return self.state is EscalationState.ATTEMPTING_BASIC and self.preference == "auto"

    @property
    def current_tier(self) -> str:
        return _TIER_OF_STATE[self.state]

    @property
    def finished(self) -> bool:
        return self.state in (EscalationState.SUCCESS, EscalationState.FAILED)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _run_attempt(
    attempt: Attempt, request: ScrapeRequest, tier: str, deadline: Deadline
) -> AttemptOutcome:
    """Run one attempt and classify it.  Unexpected exceptions propagate."""
    try:
        page = attempt(request, tier, deadline)
    except ActionTimeoutError as exc:
        return AttemptOutcome(tier, error=exc, defense=True, reason=f"timeout: {exc.message}")
    except TransportError as exc:
        return AttemptOutcome(tier, error=exc, defense=True, reason=f"transport: {exc}")
    except ScrapeError as exc:
        return AttemptOutcome(tier, error=exc, reason=f"{exc.kind.value}: {exc.message}")

    reason = None if page.document is not None else block_reason(page.html, page.status_code)
    if reason:
        return AttemptOutcome(tier, page=page, defense=True, reason=f"blocked: {reason}")
    return AttemptOutcome(tier, page=page)


def _terminal_error(outcome: AttemptOutcome, url: str) -> ScrapeError:
    error = outcome.error
    if isinstance(error, ScrapeError):
        return error
    if isinstance(error, TransportError):
        return FetchFailureError(
            f"Could not reach {url} on the {outcome.tier} tier: {error}", retryable=True
        )
    if outcome.page is not None and outcome.page.status_code == 429:
        return UpstreamOverloadError(f"{url} is rate limiting requests (HTTP 429)")
    return FetchFailureError(
        f"{url} was blocked by bot defenses on the {outcome.tier} tier ({outcome.reason})"
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def fetch_with_proxy(
    request: ScrapeRequest,
    deadline: Deadline,
    attempt: Attempt = fetch_page,
) -> tuple[RawPageState, str]:
    """Fetch *request* honouring its proxy preference.

    Attempts run strictly one after another; the stealth retry under
    ``auto`` starts only after the basic attempt fully failed.  The basic
    attempt under ``auto`` runs on a share of the request budget, leaving
    the rest for the stealth retry.

    Returns:
        ``(page, tier_used)`` where *tier_used* is the tier of the attempt
        that succeeded.

    Raises:
        ActionTimeoutError:    Terminal timeout.
        UpstreamOverloadError: Terminal block with HTTP 429.
        FetchFailureError:     Any other terminal transport or block failure.
        ScrapeError:           Non-defense failures (e.g. element not found),
                               never escalated.
    """
    machine = ProxyEscalation(preference=request.proxy)
    machine.start()
    while not machine.finished:
        tier = machine.current_tier
        budget = deadline.share(BASIC_BUDGET_SHARE) if machine.can_escalate else deadline
        outcome = _run_attempt(attempt, request, tier, budget)
        machine.advance(outcome)

    last = machine.outcomes[-1]
    if machine.state is EscalationState.SUCCESS:
        return last.page, last.tier
    raise _terminal_error(last, request.url)
