"""Unified configuration schema for mdx_git_sync.

Defines Pydantic models for the config file structure, one section per
concern: git invocation, sync defaults, database provider and logging.

Usage:
    from mdx_git_sync.config_schema import UnifiedConfig, build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
"""

from __future__ import annotations

import logging
import os
import tempfile
from typing import Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


def _default_temp_dir() -> str:
    return os.path.join(tempfile.gettempdir(), "mdx-git-sync")


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class GitConfig(BaseModel):
    """How git commands are run."""

    timeout_seconds: float = Field(
        default=60,
        gt=0,
        le=3600,
        description="Timeout for a single git command",
    )
    clone_timeout_factor: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Multiplier applied to timeout_seconds for clones",
    )
    default_host: str = Field(
        default="github.com",
        description="Host used to expand org/repo shorthand",
    )
    temp_dir: str = Field(
        default_factory=_default_temp_dir,
        description="Parent directory for engine-owned clones",
    )

    model_config = {"frozen": True}


class SyncConfig(BaseModel):
    """Defaults applied to sync requests that leave them unset."""

    default_branch: str = Field(default="main", description="Branch to sync")
    actor: str = Field(
        default="system:sync",
        description="Actor recorded on audit actions and events",
    )
    max_commits: int = Field(
        default=1000,
        ge=1,
        description="Most recent commits processed in one run",
    )
    include: list[str] = Field(
        default_factory=list, description="Default include globs"
    )
    exclude: list[str] = Field(
        default_factory=list, description="Default exclude globs"
    )
    cleanup: bool = Field(
        default=True,
        description="Remove engine-owned clone directories after a run",
    )

    model_config = {"frozen": True}


class ProviderConfig(BaseModel):
    """Content database connection settings.

    ``backend: local`` keeps the database in process (persisted under
    ``state_dir`` when set).  ``backend: clickhouse`` talks to a remote
    server at ``url``.
    """

    backend: Literal["local", "clickhouse"] = Field(
        default="local", description="Provider backend"
    )
    state_dir: str | None = Field(
        default=None, description="Local backend persistence directory"
    )
    url: str | None = Field(default=None, description="ClickHouse HTTP URL")
    username: str | None = Field(default=None, description="ClickHouse user")
    password: str | None = Field(
        default=None, description="ClickHouse password", repr=False
    )
    database: str = Field(default="mdxdb", description="ClickHouse database")
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )
    timeout_seconds: float = Field(
        default=60, gt=0, description="HTTP read timeout"
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json`` (one JSON object per line).
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: Literal["text", "json"] = Field(
        default="text", description="Log line format"
    )

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level configuration.

    Every section has defaults, so ``UnifiedConfig()`` (zero-config) is
    always valid and syncs into an in-memory local provider.
    """

    git: GitConfig = Field(default_factory=GitConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict | None) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Missing sections get defaults; unknown top-level keys are ignored
    with a warning.
    """
    if not raw_data:
        return UnifiedConfig()

    known = set(UnifiedConfig.model_fields)
    unknown = sorted(set(raw_data) - known)
    if unknown:
        logger.warning("Ignoring unknown config sections: %s", ", ".join(unknown))

    return UnifiedConfig(
        **{k: v for k, v in raw_data.items() if k in known and v is not None}
    )
