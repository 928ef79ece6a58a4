"""Settings for curve-spine.

Configuration is explicit, validated and environment-driven: every field
can be overridden with a ``CURVESPINE_`` environment variable or a ``.env``
file.

Fields
──────
database_url           : SQLAlchemy URL of the transactional store
echo_sql               : Log every SQL statement
log_level              : structlog level
log_json               : JSON logs (None = auto-detect from TTY)
service_name           : ``service.name`` field on every log line
merge_rename_marker    : Marker inserted into labels renamed during a merge
health_history_window  : Number of most recent schedule runs scored for compliance
retry_max_attempts     : Attempts for transient store failures
retry_base_delay       : First back-off delay in seconds

Examples:
    >>> from curvespine.core.settings import get_settings
    >>> get_settings().database_url
    'sqlite:///curvespine.db'

Tags:
    settings, configuration, pydantic, environment, curve-spine
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CurveSpineSettings(BaseSettings):
    """Runtime settings for the curve ledger."""

    model_config = SettingsConfigDict(
        env_prefix="CURVESPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Store ────────────────────────────────────────────────────
    database_url: str = "sqlite:///curvespine.db"
    echo_sql: bool = False

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None
    service_name: str = "curve-spine"

    # ── Engine ───────────────────────────────────────────────────
    merge_rename_marker: str = Field(
        default="merged",
        description="Renamed labels look like '<label>-<marker>-<n>'",
    )
    health_history_window: int = Field(default=12, ge=1)
    retry_max_attempts: int = Field(default=3, ge=0)
    retry_base_delay: float = Field(default=0.5, ge=0.0)

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return level

    @field_validator("merge_rename_marker")
    @classmethod
    def _marker_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("merge_rename_marker must not be blank")
        return value.strip()


@lru_cache(maxsize=1)
def get_settings() -> CurveSpineSettings:
    """Return the process-wide settings (cached)."""
    return CurveSpineSettings()


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    get_settings.cache_clear()


__all__ = ["CurveSpineSettings", "get_settings", "reset_settings"]
