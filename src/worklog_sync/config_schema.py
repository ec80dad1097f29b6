"""Unified configuration schema for worklog_sync.

Defines Pydantic models for the YAML config structure with dedicated
sections for the GitHub target, snapshot sync and logging, plus the adapter
that turns it into the runtime ``SyncConfig`` dataclass.

Usage:
    from worklog_sync.config_schema import build_config, to_sync_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = to_sync_config(unified, cli_overrides={"repo": "acme/app"})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .config import SyncConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class GithubSection(BaseModel):
    """Issue tracker settings.

    All fields are optional so env vars and CLI args can supply them.
    """

    repo: str | None = Field(default=None, description="owner/name slug")
    label_prefix: str | None = Field(
        default=None, description="Label namespace prefix"
    )
    gh_binary: str = Field(default="gh", description="GitHub CLI binary")
    max_retries: int = Field(
        default=3, ge=0, le=10, description="Rate-limit retries per call"
    )
    retry_initial_delay: float = Field(
        default=0.5, ge=0, description="First backoff delay in seconds"
    )
    command_timeout: float = Field(
        default=60.0, gt=0, description="Per-call timeout in seconds"
    )

    model_config = {"frozen": True}


class SyncSection(BaseModel):
    """Shared snapshot settings."""

    git_remote: str | None = Field(default=None, description="Git remote")
    git_branch: str | None = Field(
        default=None, description="Branch or ref holding the snapshot"
    )
    data_file: str | None = Field(
        default=None, description="Local snapshot file path"
    )
    id_prefix: str | None = Field(
        default=None, description="Prefix for generated ids"
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


class UnifiedConfig(BaseModel):
    """Top-level configuration; ``UnifiedConfig()`` is always valid."""

    github: GithubSection = Field(default_factory=GithubSection)
    sync: SyncSection = Field(default_factory=SyncSection)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the dict returned by
    ``load_hierarchical_config()``.  Missing sections get defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


def yaml_fallbacks(unified: UnifiedConfig) -> dict:
    """Flatten the YAML sections into the fallback dict of ``load_config``."""
    flat: dict = {}
    for section in (unified.github, unified.sync):
        for key, value in section.model_dump().items():
            if value is not None:
                flat[key] = value
    return flat


def to_sync_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> SyncConfig:
    """Convert a ``UnifiedConfig`` into ``SyncConfig``, applying CLI overrides.

    Precedence: CLI override > environment > unified config value > default.

    CLI overrides dict keys: repo, label_prefix, data_file, git_remote,
    git_branch, debug.

    Raises:
        ValueError: If the resulting configuration is invalid.
    """
    from .config import load_config

    overrides = cli_overrides or {}
    return load_config(
        repo=overrides.get("repo"),
        label_prefix=overrides.get("label_prefix"),
        data_file=overrides.get("data_file"),
        git_remote=overrides.get("git_remote"),
        git_branch=overrides.get("git_branch"),
        debug=bool(overrides.get("debug", False)),
        yaml_fallbacks=yaml_fallbacks(unified),
    )
