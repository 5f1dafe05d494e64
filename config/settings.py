"""Application settings: all configuration loaded from environment variables.

Usage:
    from config.settings import Settings
    settings = Settings()
    settings.validate()   # raises ConfigurationError if an API key is missing
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from research.errors import ConfigurationError


@dataclass
class Settings:
    """Centralised application configuration.

    All values are read from environment variables at instantiation time
    so that tests can override them by patching ``os.environ``.
    """

    # ── API Keys ────────────────────────────────────────────────────────────
    anthropic_api_key: str = field(
        default_factory=lambda: os.environ.get("ANTHROPIC_API_KEY", "")
    )
    firecrawl_api_key: str = field(
        default_factory=lambda: os.environ.get("FIRECRAWL_API_KEY", "")
    )
    firecrawl_base_url: str = field(
        default_factory=lambda: os.environ.get(
            "FIRECRAWL_BASE_URL", "https://api.firecrawl.dev/v1"
        )
    )

    # ── Admin / cron secrets ────────────────────────────────────────────────
    admin_api_key: str = field(
        default_factory=lambda: os.environ.get("ADMIN_API_KEY", "")
    )
    cron_secret: str = field(
        default_factory=lambda: os.environ.get("CRON_SECRET", "")
    )

    # ── Flask ───────────────────────────────────────────────────────────────
    debug: bool = field(
        default_factory=lambda: os.environ.get("FLASK_DEBUG", "0") == "1"
    )
    port: int = field(
        default_factory=lambda: int(os.environ.get("PORT", "5001"))
    )

    # ── Crawling ────────────────────────────────────────────────────────────
    request_timeout: float = field(
        default_factory=lambda: float(os.environ.get("REQUEST_TIMEOUT", "60"))
    )
    #: Documents requested when a source is crawled outside of a query run.
    crawl_limit: int = field(
        default_factory=lambda: int(os.environ.get("CRAWL_LIMIT", "5"))
    )

    # ── AI Models ───────────────────────────────────────────────────────────
    #: Model used for per-document analysis (summary, key points, score).
    analysis_model: str = field(
        default_factory=lambda: os.environ.get("ANALYSIS_MODEL", "claude-haiku-4-5")
    )
    analysis_max_tokens: int = 600

    def missing_keys(self) -> list[str]:
        """Return the names of required environment variables that are unset."""
        missing = []
        if not self.anthropic_api_key:
            missing.append("ANTHROPIC_API_KEY")
        if not self.firecrawl_api_key:
            missing.append("FIRECRAWL_API_KEY")
        return missing

    def validate(self) -> None:
        """Raise ``ConfigurationError`` if any required setting is missing."""
        missing = self.missing_keys()
        if missing:
            raise ConfigurationError(
                f"{', '.join(missing)} environment variable(s) not set. "
                "Copy .env.example to .env and add your keys."
            )
