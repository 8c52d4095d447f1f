"""Engine settings loaded from the environment.

``EngineSettings`` gathers every tunable of the engine: where the store
lives, how logs are rendered, and the run-level defaults (lookahead,
worker pool size, timeouts, polling cadence).

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not mid-run
    - **Environment-driven:** ``INSPECTION_SPINE_*`` env vars and ``.env``
    - **Sensible defaults:** Works out of the box against a local SQLite file

Examples:
    >>> import os
    >>> os.environ["INSPECTION_SPINE_ASSET_WORKERS"] = "8"
    >>> EngineSettings().asset_workers
    8

Tags:
    settings, configuration, pydantic, environment, inspection-spine

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Settings for runs, the scheduler service and the CLI.

    Fields
    ──────
    database_path              : SQLite file backing the store
    log_level                  : Structlog log level
    json_logs                  : JSON renderer instead of console renderer
    generate_ahead_days        : Default lookahead for new schedules
    asset_workers              : Thread pool size for per-asset candidates
    directory_timeout_seconds  : Asset directory lookup timeout
    persistence_timeout_seconds: SQLite busy timeout
    usage_poll_minutes         : next_run_at spacing for rolling/usage schedules
    tick_interval_seconds      : Scheduler service tick
    """

    model_config = SettingsConfigDict(
        env_prefix="INSPECTION_SPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    database_path: Path = Field(
        default_factory=lambda: Path.home() / ".inspection-spine" / "inspection.db",
        description="SQLite database file",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool = False

    # ── Run defaults ─────────────────────────────────────────────
    generate_ahead_days: int = Field(default=7, ge=0)
    asset_workers: int = Field(default=4, ge=1)
    directory_timeout_seconds: float = Field(default=10.0, gt=0)
    persistence_timeout_seconds: float = Field(default=5.0, gt=0)
    usage_poll_minutes: int = Field(default=60, ge=1)

    # ── Scheduler service ────────────────────────────────────────
    tick_interval_seconds: float = Field(default=60.0, gt=0)


@lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    """Process-wide settings instance (cached)."""
    return EngineSettings()


__all__ = ["EngineSettings", "get_settings"]
