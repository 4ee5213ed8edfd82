"""Scraper package: sessions, actions, fetch attempts and proxy escalation."""

from scrapecore.scraper.actions import run_actions
from scrapecore.scraper.detection import block_reason, looks_blocked
from scrapecore.scraper.fetcher import fetch_page
from scrapecore.scraper.models import RawPageState, SessionState
from scrapecore.scraper.proxy import EscalationState, fetch_with_proxy
from scrapecore.scraper.session import Deadline, open_session

__all__ = [
    "Deadline",
    "EscalationState",
    "RawPageState",
    "SessionState",
    "block_reason",
    "fetch_page",
    "fetch_with_proxy",
    "looks_blocked",
    "open_session",
    "run_actions",
]
