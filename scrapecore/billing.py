"""Credit accounting for a single scrape."""

from __future__ import annotations

from typing import Optional, Sequence

BASE_CREDITS = 1
STEALTH_CREDITS = 5
CACHE_HIT_CREDITS = 1


def calculate_credits(
    tier_used: str,
    parsers: Sequence[str],
    num_pages: Optional[int] = None,
    action_count: int = 0,
) -> int:
    """Return the credits charged for one successful scrape.

    The base component is 1 credit, or 5 when the ``stealth`` tier served
    the page.  A PDF parsed with the ``pdf`` parser costs 1 credit per page
    (at least 1) in place of the base credit, so a stealth-fetched parsed PDF
    costs ``pages + 4``.  With empty *parsers* a document is billed flat.
    Actions are recorded but add no credits.

    Args:
        tier_used:    Tier of the attempt that succeeded.
        parsers:      The request's ``parsers`` setting.
        num_pages:    Page count of a parsed document, ``None`` for HTML.
        action_count: Number of actions run (audit only).
    """
    per_document = BASE_CREDITS
    if num_pages is not None and "pdf" in parsers:
        per_document = max(1, num_pages)

    surcharge = STEALTH_CREDITS - BASE_CREDITS if tier_used == "stealth" else 0
    return per_document + surcharge
