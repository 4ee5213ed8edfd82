"""Logging setup shared by the CLI and library entry points."""

from __future__ import annotations

import logging

from scrapecore.config import settings

_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level: str | int | None = None) -> None:
    """Configure the ``scrapecore`` logger hierarchy.

    ``level`` defaults to ``settings.log_level``.  Calling this more than once
    only adjusts the level; handlers are installed a single time.
    """
    resolved = level if level is not None else settings.log_level
    if isinstance(resolved, str):
        resolved = logging.getLevelName(resolved.upper())
        if not isinstance(resolved, int):
            resolved = logging.WARNING

    logger = logging.getLogger("scrapecore")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(resolved)
