"""Unified configuration schema for settings_sync.

Defines Pydantic models for the unified config structure with dedicated
sections for the tracked project, sync behaviour and logging.

Usage:
    from settings_sync.config_schema import UnifiedConfig, build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from .sync.envfile import DEFAULT_KEYED_PATTERNS

logger = logging.getLogger(__name__)

ConflictStrategy = Literal["interactive", "local-wins", "remote-wins"]


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class ProjectConfig(BaseModel):
    """Which files of the project are tracked.

    All fields have defaults to support zero-config.
    """

    project_name: str | None = Field(
        default=None,
        description="Remote project name (defaults to the directory name)",
    )
    pattern: str = Field(
        default=".env*", description="Glob of tracked files"
    )
    ignore: list[str] = Field(
        default_factory=list, description="Glob patterns to exclude"
    )

    model_config = {"frozen": True}

    @field_validator("pattern")
    @classmethod
    def _pattern_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("pattern cannot be empty")
        return value


class SyncConfig(BaseModel):
    """Reconciliation settings."""

    conflict_strategy: ConflictStrategy = Field(
        default="interactive",
        description="How open conflicts are resolved",
    )
    keyed_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_KEYED_PATTERNS),
        description="File name globs merged key by key",
    )
    state_dir: str = Field(
        default=".pss",
        description="Directory (relative to the project) holding the base snapshot",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully -- anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.

    Raises:
        pydantic.ValidationError: If a section holds invalid values.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)
