"""
Configuration for docshape.

Uses pydantic-settings for environment variable loading. Every setting can
be overridden with a DOCSHAPE_ prefixed environment variable, e.g.
DOCSHAPE_STRICT_TOKENS=true.

Invariants:
    - All settings have defaults that reproduce the documented behavior
    - Synthesis constants (recent window, popularity threshold) live here,
      not as hidden constants in rules
"""

from __future__ import annotations

import logging
import threading
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings

_settings: Optional[Settings] = None
_settings_lock = threading.Lock()


class Settings(BaseSettings):
    """docshape configuration loaded from environment."""

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_format: Literal["text", "json"] = Field(default="text", description="Log line format")

    # Compiler
    strict_tokens: bool = Field(
        default=False,
        description="Reject unknown shorthand tokens instead of falling back to string",
    )
    timestamps: bool = Field(default=True, description="Add createdAt/updatedAt by default")
    serialize_identity_as: str = Field(default="id", description="Public alias of _id")
    strip_internal_fields: bool = Field(default=True, description="Drop _id/__v on output")

    # Synthesis
    recent_window_days: int = Field(default=7, ge=0, description="Window of the recent() helper")
    popular_threshold: int = Field(default=100, ge=0, description="Views needed for popular()")
    date_format: str = Field(default="%Y-%m-%d", description="Format of *Formatted virtuals")
    password_hash_rounds: int = Field(
        default=12, ge=4, le=31, description="bcrypt cost factor of the hashPassword hook"
    )

    model_config = {"env_prefix": "DOCSHAPE_"}


def get_settings() -> Settings:
    """Get the process settings, loading them from the environment once."""
    global _settings
    with _settings_lock:
        if _settings is None:
            _settings = Settings()
        return _settings


def reset_settings() -> None:
    """Drop cached settings (for testing only)."""
    global _settings
    with _settings_lock:
        _settings = None


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Configure root logging from settings.

    Args:
        settings: Settings to use (loaded from env if not provided)
    """
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter = logging.Formatter(
            '{"time":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","message":"%(message)s"}'
        )
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]
