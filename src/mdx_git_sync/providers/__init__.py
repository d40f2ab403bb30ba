"""Content database providers.

- ``base``       -- ``SyncProvider`` protocol, ``ActionStatus``, URL helpers.
- ``local``      -- ``LocalProvider``: embedded, optionally persisted.
- ``clickhouse`` -- ``ClickHouseProvider``: remote ClickHouse over HTTP.

``create_provider()`` picks one from the ``provider`` config section.
"""

from __future__ import annotations

import logging

from mdx_git_sync.config_schema import ProviderConfig

from .base import ActionStatus, SyncProvider, thing_url
from .clickhouse import ClickHouseProvider
from .local import LocalProvider

logger = logging.getLogger(__name__)


def create_provider(config: ProviderConfig | None = None) -> SyncProvider:
    """Instantiate the provider selected by *config*.

    Raises:
        ValueError: If the clickhouse backend has no URL.
    """
    config = config or ProviderConfig()

    if config.backend == "clickhouse":
        if not config.url:
            raise ValueError("provider.url is required for the clickhouse backend")
        logger.debug("Using ClickHouse provider at %s", config.url)
        return ClickHouseProvider(
            url=config.url,
            database=config.database,
            username=config.username,
            password=config.password,
            insecure=config.insecure,
            timeout=(10, config.timeout_seconds),
        )

    logger.debug("Using local provider (state_dir=%s)", config.state_dir)
    return LocalProvider(state_dir=config.state_dir)


__all__ = [
    "ActionStatus",
    "ClickHouseProvider",
    "LocalProvider",
    "SyncProvider",
    "create_provider",
    "thing_url",
]
