"""Runtime settings — env-driven, per host.

Centralized settings using pydantic-settings.  Reads from a ``.env`` file
and ``DECKHAND_*`` environment variables.  Project-specific pipeline
layout (artifacts, services, health checks) lives in ``deckhand.toml``;
see ``deckhand.models.config``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class DeckhandSettings(BaseSettings):
    """Host-level settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export DECKHAND_LOG_LEVEL=DEBUG
        export DECKHAND_BUILD_ID=42
        export DECKHAND_WEBHOOK_URL=https://chat.example.com/hooks/abc

    Or via .env file::

        DECKHAND_NOTIFICATION_CHANNEL=#deployments
        DECKHAND_PIPELINE_TIMEOUT_SECONDS=1800
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="DECKHAND_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"

    # Local state (build counter, deployment history, report archive)
    state_dir: Path = Path(".deckhand")
    archive_reports: bool = True

    # Execution
    build_id: int | None = None  # CI build number; a local counter is used if unset
    max_build_workers: int = 8
    pipeline_timeout_seconds: float = 3600.0
    settle_delay_seconds: float = 10.0

    # Notification
    webhook_url: str = ""
    notification_channel: str = ""
    webhook_timeout_seconds: float = 10.0
    console_url: str = ""
    build_url: str = ""

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"
