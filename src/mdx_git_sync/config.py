"""Runtime configuration for mdx_git_sync.

Builds a ``UnifiedConfig`` from every source, in precedence order:

    explicit overrides > environment variables > .env file > YAML config
    > built-in defaults

Environment variables:
    MDX_SYNC_PROVIDER: Provider backend (``local`` or ``clickhouse``).
    MDX_SYNC_CLICKHOUSE_URL: ClickHouse HTTP URL.
    MDX_SYNC_CLICKHOUSE_USER: ClickHouse user.
    MDX_SYNC_CLICKHOUSE_PASSWORD: ClickHouse password.
    MDX_SYNC_CLICKHOUSE_DATABASE: ClickHouse database.
    MDX_SYNC_CLICKHOUSE_INSECURE: Skip TLS verification.
    MDX_SYNC_STATE_DIR: Local provider persistence directory.
    MDX_SYNC_GIT_TIMEOUT: Git command timeout in seconds (1-3600).
    MDX_SYNC_BRANCH: Default branch.
    MDX_SYNC_ACTOR: Actor recorded on audit records.
    MDX_SYNC_MAX_COMMITS: Commits processed per run (1-100000).
"""

import logging
import os
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from dotenv import find_dotenv, load_dotenv

from .config_loader import load_hierarchical_config
from .config_schema import UnifiedConfig, build_config

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("true", "1", "yes", "on")


def _get_bool_env(key: str) -> bool | None:
    """True/False from an env var, or ``None`` when it is unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.strip().lower() in _TRUE_VALUES


def _get_number_env(
    key: str, cast: type, minimum: float, maximum: float
) -> Any:
    """Parse a numeric env var, or return ``None`` when it is unset.

    Raises:
        ValueError: If the value is not a number within range.
    """
    raw = os.getenv(key)
    if raw is None:
        return None
    message = f"Invalid {key} '{raw}': must be a number between {minimum:g} and {maximum:g}"
    try:
        value = cast(raw.strip())
    except ValueError:
        raise ValueError(message) from None
    if not (minimum <= value <= maximum):
        raise ValueError(message)
    return value


def _env_overrides() -> dict[str, dict[str, Any]]:
    """Collect ``MDX_SYNC_*`` variables into section override dicts."""
    sections: dict[str, dict[str, Any]] = {"git": {}, "sync": {}, "provider": {}}

    string_vars = {
        "MDX_SYNC_PROVIDER": ("provider", "backend"),
        "MDX_SYNC_CLICKHOUSE_URL": ("provider", "url"),
        "MDX_SYNC_CLICKHOUSE_USER": ("provider", "username"),
        "MDX_SYNC_CLICKHOUSE_PASSWORD": ("provider", "password"),
        "MDX_SYNC_CLICKHOUSE_DATABASE": ("provider", "database"),
        "MDX_SYNC_STATE_DIR": ("provider", "state_dir"),
        "MDX_SYNC_BRANCH": ("sync", "default_branch"),
        "MDX_SYNC_ACTOR": ("sync", "actor"),
    }
    for key, (section, field) in string_vars.items():
        value = os.getenv(key)
        if value:
            sections[section][field] = value.strip()

    insecure = _get_bool_env("MDX_SYNC_CLICKHOUSE_INSECURE")
    if insecure is not None:
        sections["provider"]["insecure"] = insecure

    timeout = _get_number_env("MDX_SYNC_GIT_TIMEOUT", float, 1, 3600)
    if timeout is not None:
        sections["git"]["timeout_seconds"] = timeout

    max_commits = _get_number_env("MDX_SYNC_MAX_COMMITS", int, 1, 100000)
    if max_commits is not None:
        sections["sync"]["max_commits"] = max_commits

    return {name: values for name, values in sections.items() if values}


def validate_config(config: UnifiedConfig) -> None:
    """Check cross-field constraints the schema cannot express.

    Raises:
        ValueError: If the clickhouse backend has no usable URL.
    """
    provider = config.provider
    if provider.backend == "clickhouse":
        url = (provider.url or "").strip()
        if not url:
            raise ValueError(
                "ClickHouse URL not found. Set MDX_SYNC_CLICKHOUSE_URL or "
                "add 'url' to the provider section of config.yml."
            )
        if not url.startswith(("http://", "https://")):
            raise ValueError(
                f"Invalid ClickHouse URL '{url}': must start with http:// or https://"
            )
        if not urlparse(url).hostname:
            raise ValueError(
                f"Invalid ClickHouse URL '{url}': URL must include a hostname"
            )
        if provider.insecure:
            logger.warning(
                "SSL verification disabled (insecure=True). Use only for development."
            )


def load_config(
    config_file: str | Path | None = None,
    overrides: dict[str, dict[str, Any]] | None = None,
    *,
    use_dotenv: bool = True,
) -> UnifiedConfig:
    """Load, merge and validate configuration.

    Args:
        config_file: Explicit YAML file; skips discovery when given.
        overrides: Per-section values applied last (e.g. from a CLI).
        use_dotenv: Load ``.env`` from the working directory first.
            Existing environment variables are never overwritten.

    Returns:
        Validated ``UnifiedConfig``.

    Raises:
        ValueError: If a value is invalid; the message names its source.
    """
    if use_dotenv:
        load_dotenv(find_dotenv(usecwd=True), override=False)

    if config_file is not None:
        raw = load_hierarchical_config([Path(config_file).expanduser()])
    else:
        raw = load_hierarchical_config()

    layers = [_env_overrides(), overrides or {}]
    for layer in layers:
        for section, values in layer.items():
            current = raw.get(section) or {}
            raw[section] = {**current, **values}

    config = build_config(raw)
    validate_config(config)
    return config
