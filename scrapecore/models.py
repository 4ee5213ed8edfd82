"""Result envelope returned by :func:`scrapecore.orchestrator.scrape`."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class ScrapeResult:
    """A successful scrape.

    ``data`` holds only the requested formats (plus ``actions`` and
    ``changeTracking`` when applicable).  A non-2xx page is still a
    successful scrape; see ``metadata["statusCode"]`` and
    ``metadata["error"]``.
    """

    data: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    warning: Optional[str] = None

    @property
    def success(self) -> bool:
        return True

    @property
    def credits_used(self) -> int:
        return self.metadata.get("creditsUsed", 0)

    @property
    def cache_hit(self) -> bool:
        return self.metadata.get("cacheState") == "hit"

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the camelCase wire envelope."""
        envelope: dict[str, Any] = {
            "success": True,
            "data": self.data,
            "metadata": self.metadata,
        }
        if self.warning:
            envelope["warning"] = self.warning
        return envelope
