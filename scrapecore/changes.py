"""Change tracking: compare a scrape against the previous stored scrape of its identity.

Tracking is read-then-compare.  Nothing here writes to the store; the new
scrape becomes history through the orchestrator's cache write.
"""

from __future__ import annotations

import difflib
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Sequence

from scrapecore.cache import CacheEntry, ScrapeStore

_REMOVED_STATUSES = {404, 410}


class ChangeStatus(str, Enum):
    NEW = "new"
    SAME = "same"
    CHANGED = "changed"
    REMOVED = "removed"


@dataclass(frozen=True)
class ChangeRecord:
    previous_scrape_at: Optional[str]
    change_status: ChangeStatus
    visibility: str
    diff: Optional[str] = None
    json: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "previousScrapeAt": self.previous_scrape_at,
            "changeStatus": self.change_status.value,
            "visibility": self.visibility,
            "diff": self.diff,
            "json": self.json,
        }


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def normalize_content(markdown: str) -> str:
    """Whitespace-insensitive form of *markdown* used for comparison."""
    lines = [line.rstrip() for line in markdown.replace("\r\n", "\n").split("\n")]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()


def iso_timestamp(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def unified_diff(previous: str, current: str) -> str:
    """Git-style unified diff of two normalized Markdown documents."""
    lines = difflib.unified_diff(
        previous.splitlines(),
        current.splitlines(),
        fromfile="previous",
        tofile="current",
        lineterm="",
    )
    return "\n".join(lines)


def json_delta(
    previous: Optional[dict[str, Any]], current: Optional[dict[str, Any]]
) -> dict[str, Any]:
    """Per-key ``{key: {"previous": ..., "current": ...}}`` for differing keys."""
    previous = previous or {}
    current = current or {}
    delta: dict[str, Any] = {}
    for key in list(previous) + [k for k in current if k not in previous]:
        before, after = previous.get(key), current.get(key)
        if before != after:
            delta[key] = {"previous": before, "current": after}
    return delta


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def track_changes(
    prior: Optional[CacheEntry],
    content: str,
    *,
    status_code: int,
    modes: Sequence[str] = ("git-diff",),
    tracked_json: Optional[dict[str, Any]] = None,
    hidden: bool = False,
) -> ChangeRecord:
    """Compare the current scrape against *prior*.

    Args:
        prior:        Newest stored scrape before this one, or ``None``.
        content:      Current Markdown content.
        status_code:  HTTP status of the current fetch.
        modes:        ``git-diff`` and/or ``json``.
        tracked_json: Current structured extraction, if any.
        hidden:       Page was noindex or refused access (401, 403, 451).

    Returns:
        A :class:`ChangeRecord`.  ``diff`` is ``None`` for ``new`` and
        ``same``; ``json`` is present only when both scrapes carry a
        structured extraction.
    """
    visibility = "hidden" if hidden else "visible"
    if prior is None:
        return ChangeRecord(None, ChangeStatus.NEW, visibility)

    previous_text = normalize_content(prior.content)
    current_text = normalize_content(content)

    if status_code in _REMOVED_STATUSES:
        status = ChangeStatus.REMOVED
    elif previous_text == current_text and (
        tracked_json is None or prior.tracked_json is None or tracked_json == prior.tracked_json
    ):
        status = ChangeStatus.SAME
    else:
        status = ChangeStatus.CHANGED

    diff = None
    if status is not ChangeStatus.SAME and "git-diff" in modes:
        diff = unified_diff(previous_text, "" if status is ChangeStatus.REMOVED else current_text)

    delta = None
    if tracked_json is not None and prior.tracked_json is not None:
        delta = json_delta(prior.tracked_json, tracked_json)

    return ChangeRecord(
        previous_scrape_at=iso_timestamp(prior.created_at),
        change_status=status,
        visibility=visibility,
        diff=diff,
        json=delta,
    )


def track(
    store: ScrapeStore,
    identity: str,
    content: str,
    *,
    before: Optional[int] = None,
    **kwargs: Any,
) -> ChangeRecord:
    """Look up the newest prior scrape of *identity* and compare against it.

    When *before* is given (a cache hit being replayed) the comparison is
    against the newest entry strictly older than that timestamp.
    """
    prior = store.get(identity) if before is None else store.previous(identity, before)
    return track_changes(prior, content, **kwargs)
