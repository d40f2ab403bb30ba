"""Embedded provider: the content database held in process.

Entities are kept as an append-only list of versions per URL, so every
write (deletions included) is preserved and ``history()`` can replay it.
Actions, events and checkpoints are kept alongside.

With a ``state_dir`` the whole store is persisted to
``<state_dir>/mdx_sync_store.json`` after each mutation.  Writes go to a
temporary file in the same directory which then replaces the target, so
a crash never leaves a half-written store behind.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from mdx_git_sync.errors import ProviderError, VersionConflictError
from mdx_git_sync.git.models import Commit
from mdx_git_sync.providers.base import ActionStatus, new_action_id, thing_url
from mdx_git_sync.sync.models import (
    CreateSyncActionOptions,
    EntitySnapshot,
    Operation,
    Relationship,
    SearchMetadata,
    StagedChange,
    SyncEvent,
    SyncState,
    SyncStats,
    utcnow,
)
from mdx_git_sync.sync.pipeline import (
    ActionPipeline,
    PipelineStage,
    StageStatus,
    create_pipeline,
    update_stage,
)

logger = logging.getLogger(__name__)

STORE_FILENAME = "mdx_sync_store.json"


def _write_atomic(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class ThingVersion(BaseModel):
    """One stored version of an entity."""

    url: str
    ns: str
    type: str
    id: str
    version: int
    event: str
    data: dict[str, Any] = {}
    content: str = ""
    hash: str | None = None
    commit: str = ""
    deleted: bool = False
    relationships: list[Relationship] = []
    search_metadata: SearchMetadata | None = None
    updated_at: datetime

    model_config = {"frozen": True}

    def snapshot(self) -> EntitySnapshot:
        return EntitySnapshot(
            url=self.url,
            version=self.version,
            hash=self.hash,
            updated_at=self.updated_at,
            commit=self.commit,
            deleted=self.deleted,
        )


class ActionRecord(BaseModel):
    """Stored state of one sync audit action."""

    id: str
    ns: str
    actor: str
    repo: str
    branch: str
    status: ActionStatus = ActionStatus.ACTIVE
    from_commit: str = ""
    to_commit: str = ""
    commit: Commit | None = None
    objects: list[StagedChange] = []
    processed: int = 0
    total: int = 0
    pipeline: ActionPipeline
    stats: SyncStats | None = None
    error: str = ""
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None

    model_config = {"frozen": True}


class LocalProvider:
    """In-process ``SyncProvider``.

    Args:
        state_dir: Directory for JSON persistence.  ``None`` keeps
            everything in memory only.
    """

    name = "local"

    def __init__(self, state_dir: Path | str | None = None) -> None:
        self._state_dir = Path(state_dir) if state_dir else None
        self._things: dict[str, list[ThingVersion]] = {}
        self._states: dict[tuple[str, str], SyncState] = {}
        self._actions: dict[str, ActionRecord] = {}
        self._events: list[SyncEvent] = []
        if self._state_dir is not None:
            self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @property
    def store_path(self) -> Path | None:
        if self._state_dir is None:
            return None
        return self._state_dir / STORE_FILENAME

    def _load(self) -> None:
        path = self.store_path
        if path is None or not path.exists():
            return
        try:
            with open(path, encoding="utf-8") as fh:
                raw = json.load(fh)
        except (OSError, ValueError) as exc:
            raise ProviderError(f"Cannot read store {path}: {exc}") from exc

        self._things = {
            url: [ThingVersion.model_validate(v) for v in versions]
            for url, versions in raw.get("things", {}).items()
        }
        for item in raw.get("states", []):
            state = SyncState.model_validate(item)
            self._states[(state.repo, state.branch)] = state
        self._actions = {
            a["id"]: ActionRecord.model_validate(a)
            for a in raw.get("actions", [])
        }
        self._events = [SyncEvent.model_validate(e) for e in raw.get("events", [])]
        logger.debug("Loaded local store from %s", path)

    def _save(self) -> None:
        path = self.store_path
        if path is None:
            return

        payload = {
            "things": {
                url: [v.model_dump(mode="json") for v in versions]
                for url, versions in self._things.items()
            },
            "states": [s.model_dump(mode="json") for s in self._states.values()],
            "actions": [a.model_dump(mode="json") for a in self._actions.values()],
            "events": [e.model_dump(mode="json") for e in self._events],
        }

        try:
            _write_atomic(path, payload)
        except OSError as exc:
            raise ProviderError(f"Cannot write store {path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def history(self, url: str) -> list[ThingVersion]:
        """Every stored version of *url*, oldest first."""
        return list(self._things.get(url, []))

    def current(self, url: str) -> ThingVersion | None:
        """Latest stored version of *url*."""
        versions = self._things.get(url)
        return versions[-1] if versions else None

    @property
    def urls(self) -> list[str]:
        return sorted(self._things)

    @property
    def events(self) -> list[SyncEvent]:
        return list(self._events)

    @property
    def actions(self) -> list[ActionRecord]:
        return list(self._actions.values())

    def get_action(self, action_id: str) -> ActionRecord:
        try:
            return self._actions[action_id]
        except KeyError:
            raise ProviderError(f"Unknown action: {action_id}") from None

    # ------------------------------------------------------------------
    # SyncProvider
    # ------------------------------------------------------------------

    def is_connected(self) -> bool:
        if self._state_dir is None:
            return True
        return not self._state_dir.exists() or os.access(self._state_dir, os.W_OK)

    def get_sync_state(self, repo: str, branch: str) -> SyncState | None:
        return self._states.get((repo, branch))

    def save_sync_state(self, state: SyncState) -> None:
        self._states[(state.repo, state.branch)] = state
        self._save()

    def create_sync_action(self, options: CreateSyncActionOptions) -> str:
        action_id = new_action_id()
        now = utcnow()
        pipeline = options.pipeline or create_pipeline()
        self._actions[action_id] = ActionRecord(
            id=action_id,
            ns=options.ns,
            actor=options.actor,
            repo=options.repo,
            branch=options.branch,
            from_commit=options.from_commit,
            to_commit=options.to_commit,
            commit=options.commit,
            objects=options.objects,
            total=options.total,
            pipeline=update_stage(
                pipeline,
                PipelineStage.THINGS,
                StageStatus.ACTIVE,
                processed=0,
                total=options.total,
            ),
            created_at=now,
            updated_at=now,
        )
        self._save()
        return action_id

    def _update_action(self, action_id: str, **changes: Any) -> None:
        action = self.get_action(action_id)
        changes["updated_at"] = utcnow()
        self._actions[action_id] = action.model_copy(update=changes)
        self._save()

    def update_action_progress(
        self, action_id: str, processed: int, total: int
    ) -> None:
        action = self.get_action(action_id)
        self._update_action(
            action_id,
            processed=processed,
            total=total,
            pipeline=update_stage(
                action.pipeline,
                PipelineStage.THINGS,
                StageStatus.ACTIVE,
                processed=processed,
                total=total,
            ),
        )

    def complete_action(self, action_id: str, stats: SyncStats) -> None:
        action = self.get_action(action_id)
        self._update_action(
            action_id,
            status=ActionStatus.COMPLETED,
            stats=stats,
            completed_at=utcnow(),
            pipeline=update_stage(
                action.pipeline,
                PipelineStage.THINGS,
                StageStatus.COMPLETED,
                result=stats.model_dump(),
            ),
        )

    def fail_action(self, action_id: str, error: str) -> None:
        action = self.get_action(action_id)
        self._update_action(
            action_id,
            status=ActionStatus.FAILED,
            error=error,
            completed_at=utcnow(),
            pipeline=update_stage(
                action.pipeline,
                PipelineStage.THINGS,
                StageStatus.FAILED,
                error=error,
            ),
        )

    def _append(self, record: ThingVersion) -> None:
        current = self.current(record.url)
        if current is not None and record.version <= current.version:
            raise VersionConflictError(record.url, record.version, current.version)
        versions = self._things.setdefault(record.url, [])
        versions.append(record)
        try:
            self._save()
        except ProviderError:
            versions.pop()
            if not versions:
                del self._things[record.url]
            raise

    def upsert_thing(
        self,
        ns: str,
        change: StagedChange,
        *,
        version: int,
        commit: str = "",
    ) -> None:
        if not change.id:
            raise ProviderError(f"Cannot write {change.path}: entity id is empty")
        self._append(
            ThingVersion(
                url=thing_url(ns, change.type, change.id),
                ns=ns,
                type=change.type,
                id=change.id,
                version=version,
                event="created" if change.operation == Operation.CREATE else "updated",
                data=change.data or {},
                content=change.content or "",
                hash=change.hash,
                commit=commit,
                relationships=change.relationships or [],
                search_metadata=change.search_metadata,
                updated_at=utcnow(),
            )
        )

    def delete_thing(
        self,
        ns: str,
        type_: str,
        id_: str,
        *,
        version: int,
        commit: str = "",
    ) -> None:
        url = thing_url(ns, type_, id_)
        previous = self.current(url)
        self._append(
            ThingVersion(
                url=url,
                ns=ns,
                type=type_,
                id=id_,
                version=version,
                event="deleted",
                data=previous.data if previous else {},
                hash=previous.hash if previous else None,
                commit=commit,
                deleted=True,
                updated_at=utcnow(),
            )
        )

    def get_thing(self, url: str) -> EntitySnapshot | None:
        current = self.current(url)
        return current.snapshot() if current else None

    def emit_event(self, event: SyncEvent) -> None:
        self._events.append(event)
        self._save()

    # ------------------------------------------------------------------
    # Out-of-band edits
    # ------------------------------------------------------------------

    def put_thing(
        self,
        url: str,
        *,
        content: str,
        hash_: str,
        data: dict[str, Any] | None = None,
    ) -> ThingVersion:
        """Write a new version that did not come from git.

        This is how edits made directly in the database look to the
        sync engine; the record carries no commit.
        """
        current = self.current(url)
        if current is None:
            ns, type_, id_ = url.rsplit("/", 2)
            version = 1
        else:
            ns, type_, id_ = current.ns, current.type, current.id
            version = current.version + 1
        record = ThingVersion(
            url=url,
            ns=ns,
            type=type_,
            id=id_,
            version=version,
            event="updated" if current else "created",
            data=data if data is not None else (current.data if current else {}),
            content=content,
            hash=hash_,
            updated_at=utcnow(),
        )
        self._append(record)
        return record
