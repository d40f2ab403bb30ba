"""
Hierarchical configuration loader for mdx_git_sync.

Finds config files by convention, loads them with a YAML loader that
understands ``!include``, merges them so the project file wins over the
user file, and expands ``${VAR}`` references from the environment.

Usage:
    from mdx_git_sync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "MDX_SYNC_CONFIG"
PROJECT_CONFIG_DIR = ".mdx_sync"

# ---------------------------------------------------------------------------
# 1. Env var interpolation
# ---------------------------------------------------------------------------

# ${VAR} or ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` in *value*.

    An unset or empty variable expands to its default, or to ``""`` when
    no default is given.  An unterminated ``${`` is left as is.
    """

    def _replace(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _interpolate_recursive(obj: Any) -> Any:
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _interpolate_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# 2. YAML with !include
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """``SafeLoader`` subclass that adds ``!include``.

    A subclass keeps the global ``yaml.SafeLoader`` untouched.  Each load
    carries the chain of files being included so cycles are reported
    instead of recursing forever.
    """


def _include_constructor(loader: ConfigLoader, node: yaml.ScalarNode) -> Any:
    """``!include other.yml`` -- path is relative to the including file."""
    target = Path(loader.construct_scalar(node))
    if not target.is_absolute():
        target = Path(loader.name).resolve().parent / target
    target = target.resolve()

    chain: list[Path] = getattr(loader, "_include_stack", [])
    if target in chain:
        cycle = " -> ".join(str(p) for p in [*chain, target])
        raise ValueError(f"Circular include detected: {cycle}")

    if not target.exists():
        raise FileNotFoundError(
            f"Include file not found: {target} "
            f"(referenced from {Path(loader.name).resolve()})"
        )

    return load_yaml_file(target, _include_stack=[*chain, target])


ConfigLoader.add_constructor("!include", _include_constructor)


def load_yaml_file(
    path: Path,
    *,
    _include_stack: list[Path] | None = None,
) -> Any:
    """Parse one YAML file with ``!include`` support (no interpolation)."""
    path = path.resolve()
    with open(path, "r", encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader._include_stack = _include_stack or [path]  # type: ignore[attr-defined]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# 3. Discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Existing config files, highest precedence first.

    Search order:
        1. ``$MDX_SYNC_CONFIG`` (explicit path)
        2. ``./.mdx_sync/config.yml``
        3. ``./.mdx_sync/config.yaml``
        4. ``~/.config/mdx_sync/config.yml``
    """
    candidates: list[Path] = []

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        explicit = Path(env_path).expanduser().resolve()
        if not explicit.exists():
            logger.warning("%s points to a missing file: %s", CONFIG_ENV_VAR, explicit)
        candidates.append(explicit)

    cwd = Path.cwd()
    candidates.append(cwd / PROJECT_CONFIG_DIR / "config.yml")
    candidates.append(cwd / PROJECT_CONFIG_DIR / "config.yaml")
    candidates.append(Path.home() / ".config" / "mdx_sync" / "config.yml")

    return [p for p in candidates if p.exists()]


_STARTER_CONFIG = """\
# mdx-git-sync configuration
#
# Values may reference environment variables: ${VAR} or ${VAR:-default}.
# Provider settings can also be set with MDX_SYNC_PROVIDER,
# MDX_SYNC_CLICKHOUSE_URL, MDX_SYNC_CLICKHOUSE_USER,
# MDX_SYNC_CLICKHOUSE_PASSWORD and MDX_SYNC_CLICKHOUSE_DATABASE.
#
# git:
#   timeout_seconds: 60
#   clone_timeout_factor: 5
#   default_host: github.com
#
# sync:
#   default_branch: main
#   actor: system:sync
#   max_commits: 1000
#   include:
#     - "content/**"
#   exclude:
#     - "**/draft.*"
#
# provider:
#   backend: local            # or: clickhouse
#   state_dir: .mdx_sync/store
#   # url: http://localhost:8123
#   # username: default
#   # password: ${CLICKHOUSE_PASSWORD}
#   # database: mdxdb
#
# logging:
#   level: INFO
#   file: null
#   format: text
"""


def resolve_config_path() -> Path:
    """Highest-precedence existing config file, else the project default."""
    existing = discover_config_files()
    if existing:
        return existing[0]
    return Path.cwd() / PROJECT_CONFIG_DIR / "config.yml"


def ensure_config(target: Path | None = None) -> Path:
    """Return the active config file, writing a commented starter if none
    exists yet."""
    existing = discover_config_files()
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    config_path = target or resolve_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", config_path)
    return config_path


# ---------------------------------------------------------------------------
# 4. Merge
# ---------------------------------------------------------------------------


def load_hierarchical_config(paths: list[Path] | None = None) -> dict[str, Any]:
    """Load and merge config files.

    Files are applied from lowest precedence to highest; each file's
    top-level sections replace (not deep-merge) earlier ones.  Env var
    interpolation runs on the merged result.

    Args:
        paths: Files to load, highest precedence first.  Defaults to
            ``discover_config_files()``.

    Returns:
        The merged dict; empty when there is nothing to load.
    """
    if paths is None:
        paths = discover_config_files()

    if not paths:
        logger.debug("No config files found, using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        try:
            data = load_yaml_file(path)
        except (OSError, ValueError, yaml.YAMLError):
            logger.exception("Failed to load config file %s", path)
            raise

        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s has a %s at its root, skipping",
                path,
                type(data).__name__,
            )

    return _interpolate_recursive(merged)
