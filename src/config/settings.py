# src/config/settings.py - v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for orchestration limits, retry behaviour,
persistence and logging.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Batch processing ===
    batch_size: int = 3
    inter_batch_delay_s: float = 0.1

    # === Retry ===
    enable_error_recovery: bool = True
    max_retries: int = 3
    retry_delay_s: float = 2.0
    max_retry_delay_s: float = 30.0

    # === Document limits ===
    max_file_size_mb: float = 50
    supported_formats: str = "application/pdf"
    quality_threshold: float = 0.7

    # === Progress + persistence ===
    enable_progress_tracking: bool = True
    enable_state_persistence: bool = True
    state_dir: Path = Path("~/.quextractor/sessions")
    session_retention_hours: float = 24
    progress_retention_hours: float = 1

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path = Path("~/.quextractor/logs/orchestrator.log")
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("batch_size")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("batch_size must be >= 1")
        return v

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_retries must be >= 0")
        return v

    @field_validator(
        "retry_delay_s", "max_retry_delay_s", "inter_batch_delay_s", "max_file_size_mb"
    )
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("durations and limits must be >= 0")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.max_retry_delay_s and self.max_retry_delay_s < self.retry_delay_s:
            errors.append("MAX_RETRY_DELAY_S must be >= RETRY_DELAY_S")

        if not self.supported_formats_list:
            errors.append("SUPPORTED_FORMATS must list at least one MIME type")

        if not 0.0 <= self.quality_threshold <= 1.0:
            errors.append("QUALITY_THRESHOLD must be within [0, 1]")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def supported_formats_list(self) -> list[str]:
        """Parse comma-separated MIME types."""
        return [f.strip() for f in self.supported_formats.split(",") if f.strip()]


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-run config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
