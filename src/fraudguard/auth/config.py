"""Session engine configuration via environment variables."""

import sys
from datetime import timedelta
from typing import Optional

from loguru import logger
from pydantic import ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings

from .exceptions import ConfigurationError
from .models import ConflictPolicy


class SessionSettings(BaseSettings):
    """Engine settings loaded from ``FRAUDGUARD_*`` environment / .env file."""

    model_config = {
        "env_prefix": "FRAUDGUARD_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    # ── Timing ─────────────────────────────────────────────────
    inactivity_timeout_seconds: float = 30 * 60
    warning_seconds: float = 5 * 60
    session_ttl_seconds: float = 8 * 60 * 60
    remember_me_ttl_seconds: float = 30 * 24 * 60 * 60
    renewal_window_seconds: float = 30 * 60
    warning_retry_seconds: float = 30.0

    # ── Conflicts ──────────────────────────────────────────────
    conflict_policy: ConflictPolicy = ConflictPolicy.TERMINATE_EXISTING

    # ── Store ──────────────────────────────────────────────────
    store_path: Optional[str] = None
    store_timeout_seconds: float = 3.0
    store_retry_attempts: int = 3
    store_retry_backoff_seconds: float = 0.1
    store_retry_max_backoff_seconds: float = 1.0

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"

    @field_validator(
        "inactivity_timeout_seconds",
        "session_ttl_seconds",
        "remember_me_ttl_seconds",
        "renewal_window_seconds",
        "warning_retry_seconds",
        "store_timeout_seconds",
    )
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("store_retry_attempts")
    @classmethod
    def _at_least_one_attempt(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @model_validator(mode="after")
    def _warning_inside_windows(self) -> "SessionSettings":
        if self.warning_seconds < 0:
            raise ValueError("warning_seconds must not be negative")
        if self.warning_seconds >= self.inactivity_timeout_seconds:
            raise ValueError("warning_seconds must be shorter than the inactivity timeout")
        return self

    @property
    def inactivity_timeout(self) -> timedelta:
        return timedelta(seconds=self.inactivity_timeout_seconds)

    @property
    def warning_threshold(self) -> timedelta:
        return timedelta(seconds=self.warning_seconds)

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(seconds=self.session_ttl_seconds)

    @property
    def remember_me_ttl(self) -> timedelta:
        return timedelta(seconds=self.remember_me_ttl_seconds)

    @property
    def renewal_window(self) -> timedelta:
        return timedelta(seconds=self.renewal_window_seconds)

    @property
    def warning_retry(self) -> timedelta:
        return timedelta(seconds=self.warning_retry_seconds)


def load_settings(**overrides) -> SessionSettings:
    """
    Build settings, turning validation failures into ConfigurationError.

    Args:
        **overrides: Field values that take precedence over the environment

    Raises:
        ConfigurationError: If any value is invalid
    """
    try:
        return SessionSettings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid session settings: {e}") from e


def configure_logging(level: str = "INFO") -> None:
    """Replace loguru's default sink with one at ``level``."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper())
