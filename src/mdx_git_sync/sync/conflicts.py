"""Detect entities changed in both git and the database.

A conflict exists for a file when, between the stored checkpoint and the
target commit, git changed it *and* the database holds a version written
after the checkpoint whose content hash differs from git's.  Deletions in
git are not reported.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mdx_git_sync.errors import GitNotFoundError
from mdx_git_sync.git.executor import GitExecutor
from mdx_git_sync.git.models import Commit, FileStatus
from mdx_git_sync.sync.models import (
    ConflictType,
    DbSide,
    GitSide,
    ResolutionStrategy,
    SyncConflict,
    SyncState,
)
from mdx_git_sync.sync.parser import ParserOptions, build_staged_change, is_candidate

if TYPE_CHECKING:
    from mdx_git_sync.providers.base import SyncProvider

logger = logging.getLogger(__name__)


class ConflictDetector:
    """Read-only comparison of git changes against database snapshots."""

    def __init__(self, executor: GitExecutor, provider: SyncProvider) -> None:
        self.executor = executor
        self.provider = provider

    def detect(
        self,
        repo_path: str,
        state: SyncState | None,
        target: Commit,
        options: ParserOptions,
    ) -> list[SyncConflict]:
        """Conflicts between *state* and *target*; empty without a checkpoint."""
        if state is None or state.last_commit == target.hash:
            return []

        diff = self.executor.get_diff(repo_path, state.last_commit, target.hash)
        conflicts: list[SyncConflict] = []

        for change in diff.files:
            if change.status == FileStatus.DELETED:
                continue
            if not is_candidate(change.path, options):
                continue
            try:
                content = self.executor.get_file_content(
                    repo_path, change.path, target.hash
                )
            except GitNotFoundError:
                continue

            staged = build_staged_change(change, content, options)
            if staged is None or not staged.id:
                continue

            snapshot = self.provider.get_thing(staged.url(options.ns))
            if snapshot is None:
                continue
            if snapshot.updated_at <= state.last_sync_at:
                continue
            if snapshot.hash == staged.hash:
                continue

            logger.info(
                "Conflict on %s: database version %d changed since %s",
                change.path,
                snapshot.version,
                state.last_sync_at.isoformat(),
            )
            conflicts.append(
                SyncConflict(
                    type=ConflictType.BOTH_MODIFIED,
                    path=change.path,
                    git=GitSide(
                        commit=target.hash,
                        hash=staged.hash,
                        timestamp=target.timestamp,
                    ),
                    db=DbSide(
                        version=snapshot.version,
                        hash=snapshot.hash,
                        timestamp=snapshot.updated_at,
                    ),
                    suggestion=ResolutionStrategy.MERGE,
                )
            )

        return conflicts
