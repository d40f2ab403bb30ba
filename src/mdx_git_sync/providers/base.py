"""Database provider contract consumed by the sync engine.

A provider is the engine's only window onto the content database.  The
engine reads entity snapshots and checkpoints through it and writes
versioned entity mutations, audit actions and events.  Two backends
implement the same protocol:

- ``LocalProvider``      -- embedded, in-process (optionally persisted).
- ``ClickHouseProvider`` -- remote ClickHouse over HTTP.

Providers never assign versions themselves; the engine passes the version
to write and providers reject anything not strictly newer than what they
already hold.
"""

from __future__ import annotations

import secrets
import time
from enum import Enum
from typing import Protocol

from mdx_git_sync.sync.models import (
    CreateSyncActionOptions,
    EntitySnapshot,
    StagedChange,
    SyncEvent,
    SyncState,
    SyncStats,
)


class ActionStatus(str, Enum):
    """Lifecycle status of an audit action."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def thing_url(ns: str, type_: str, id_: str) -> str:
    """Canonical entity URL: ``ns/Type/id``."""
    return f"{ns}/{type_}/{id_}"


def new_action_id() -> str:
    """Time-ordered unique identifier (millisecond prefix + random suffix)."""
    return f"{int(time.time() * 1000):012X}{secrets.token_hex(7).upper()}"


class SyncProvider(Protocol):
    """Read/write interface to the content database."""

    name: str

    def is_connected(self) -> bool:
        """Return ``True`` if the backend is reachable.  Never raises."""
        ...  # pragma: no cover

    def get_sync_state(self, repo: str, branch: str) -> SyncState | None:
        """Checkpoint for *(repo, branch)*, or ``None``."""
        ...  # pragma: no cover

    def save_sync_state(self, state: SyncState) -> None:
        """Replace the checkpoint for ``(state.repo, state.branch)``."""
        ...  # pragma: no cover

    def create_sync_action(self, options: CreateSyncActionOptions) -> str:
        """Record a new active sync action and return its id."""
        ...  # pragma: no cover

    def update_action_progress(
        self, action_id: str, processed: int, total: int
    ) -> None:
        """Record that *processed* of *total* commits are done."""
        ...  # pragma: no cover

    def complete_action(self, action_id: str, stats: SyncStats) -> None:
        """Mark an action completed with its final stats."""
        ...  # pragma: no cover

    def fail_action(self, action_id: str, error: str) -> None:
        """Mark an action failed."""
        ...  # pragma: no cover

    def upsert_thing(
        self,
        ns: str,
        change: StagedChange,
        *,
        version: int,
        commit: str = "",
    ) -> None:
        """Write *change* as *version* of its entity."""
        ...  # pragma: no cover

    def delete_thing(
        self,
        ns: str,
        type_: str,
        id_: str,
        *,
        version: int,
        commit: str = "",
    ) -> None:
        """Write a deletion marker as *version* of the entity."""
        ...  # pragma: no cover

    def get_thing(self, url: str) -> EntitySnapshot | None:
        """Latest snapshot of the entity at *url* (deleted ones included)."""
        ...  # pragma: no cover

    def emit_event(self, event: SyncEvent) -> None:
        """Append an event to the audit trail."""
        ...  # pragma: no cover
