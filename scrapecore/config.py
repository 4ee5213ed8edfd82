"""Centralised settings for the scrapecore engine.

All runtime configuration is resolved here in one place.  Values can be
overridden via environment variables or a `.env` file in the project root
(loaded automatically when this module is imported).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root (two levels up from this file)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=False)


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on", "enabled"}


@dataclass
class Settings:
    # ------------------------------------------------------------------
    # Workspace / storage
    # ------------------------------------------------------------------
    workspace_dir: Path = field(
        default_factory=lambda: Path(
            os.environ.get("SCRAPECORE_WORKSPACE", Path.home() / ".scrapecore")
        )
    )
    output_dir: Path = field(
        default_factory=lambda: Path(os.environ.get("SCRAPECORE_OUTPUT_DIR", "./output"))
    )

    @property
    def db_path(self) -> Path:
        """Absolute path to the SQLite cache / history database."""
        return self.workspace_dir / "scrapes.db"

    @property
    def schema_path(self) -> Path:
        """Absolute path to the schema SQL file bundled with the package."""
        return Path(__file__).resolve().parent / "db" / "schema.sql"

    # ------------------------------------------------------------------
    # Scrape defaults
    # ------------------------------------------------------------------
    default_timeout_ms: int = field(
        default_factory=lambda: int(os.environ.get("SCRAPE_TIMEOUT_MS", "30000"))
    )
    default_max_age_ms: int = field(
        default_factory=lambda: int(os.environ.get("SCRAPE_MAX_AGE_MS", "172800000"))
    )
    cache_enabled: bool = field(
        default_factory=lambda: _env_bool("SCRAPE_CACHE_ENABLED", "true")
    )
    user_agent: str = field(
        default_factory=lambda: os.environ.get(
            "SCRAPE_USER_AGENT",
            "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/124.0 Safari/537.36",
        )
    )

    # ------------------------------------------------------------------
    # Proxy tiers
    # ------------------------------------------------------------------
    basic_proxy_url: str | None = field(
        default_factory=lambda: os.environ.get("BASIC_PROXY_URL") or None
    )
    stealth_proxy_url: str | None = field(
        default_factory=lambda: os.environ.get("STEALTH_PROXY_URL") or None
    )

    # ------------------------------------------------------------------
    # Chat / extraction model
    # ------------------------------------------------------------------
    llm_provider: str = field(
        default_factory=lambda: os.environ.get("LLM_PROVIDER", "ollama")
    )
    ollama_base_url: str = field(
        default_factory=lambda: os.environ.get("OLLAMA_BASE_URL", "http://localhost:11434")
    )
    ollama_chat_model: str = field(
        default_factory=lambda: os.environ.get("OLLAMA_CHAT_MODEL", "ministral-3:8b")
    )
    openai_chat_model: str = field(
        default_factory=lambda: os.environ.get("OPENAI_CHAT_MODEL", "gpt-4o-mini")
    )
    extraction_max_chars: int = field(
        default_factory=lambda: int(os.environ.get("EXTRACTION_MAX_CHARS", "60000"))
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = field(
        default_factory=lambda: os.environ.get("LOG_LEVEL", "WARNING")
    )

    def ensure_workspace(self) -> None:
        """Create the workspace directory if it does not exist."""
        self.workspace_dir.mkdir(parents=True, exist_ok=True)


# Module-level singleton, import this everywhere:
#   from scrapecore.config import settings
settings = Settings()
