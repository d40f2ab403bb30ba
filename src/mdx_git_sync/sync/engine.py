"""Sync engine: replay git history into the content database.

The ``SyncEngine`` ties together the repository accessor, the change
parser and a database provider.  One ``sync()`` call:

1. Resolves a working directory (reuse a checkout, or clone into an
   engine-owned temporary directory that is removed afterwards).  A
   reused checkout is fetched and synced up to ``origin/<branch>``.
2. Determines the commit range: explicit ``from_commit``/``to_commit``,
   else ``mode=full`` (whole history), else the stored checkpoint, else
   the whole history.  An empty range returns a no-op result.
3. Diffs every commit against its first parent and stages its changes.
4. Creates the audit action (with every staged object) and emits
   ``Sync.started``.
5. Applies staged changes oldest commit first, in diff order, assigning
   ``version = previous + 1`` per entity, and reports progress after
   each commit.
6. Saves the new checkpoint, then completes or fails the audit action and
   emits ``Sync.completed``/``Sync.failed``.

Only setup failures raise (``SyncSetupError``).  A failing commit or file
is recorded in ``SyncResult.errors`` and the run carries on; the
checkpoint still advances.

Changes already written by an earlier run (the entity's stored commit is
this commit or a later one in the current range) are skipped, so running
the same range twice does not create new versions.  Entities written
earlier in the same run are never skipped, so several files resolving to
one entity each produce a version.  ``force=True``
re-applies them.

Dry runs read from the provider but never call a mutating method;
planned versions are tracked in memory so the reported files and stats
match what a real run would produce.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Iterator, Mapping
from urllib.parse import urlsplit

from mdx_git_sync.config_schema import UnifiedConfig
from mdx_git_sync.errors import GitError, ProviderError, SyncSetupError
from mdx_git_sync.git.executor import DefaultGitExecutor, GitExecutor
from mdx_git_sync.git.models import CloneOptions, Commit
from mdx_git_sync.git.remote import is_local_reference, repo_slug, resolve_repo_url
from mdx_git_sync.sync.conflicts import ConflictDetector
from mdx_git_sync.sync.models import (
    ConflictResolution,
    CreateSyncActionOptions,
    EntitySnapshot,
    ErrorCode,
    Operation,
    ResolutionStrategy,
    StagedChange,
    SyncConflict,
    SyncDirection,
    SyncedFile,
    SyncEvent,
    SyncIssue,
    SyncMode,
    SyncRequest,
    SyncResult,
    SyncState,
    SyncStats,
    utcnow,
)
from mdx_git_sync.sync.parser import ParserOptions, parse_commit_changes
from mdx_git_sync.sync.pipeline import create_pipeline

if TYPE_CHECKING:
    from mdx_git_sync.providers.base import SyncProvider

logger = logging.getLogger(__name__)

EVENT_STARTED = "Sync.started"
EVENT_COMPLETED = "Sync.completed"
EVENT_FAILED = "Sync.failed"


@dataclass
class _Run:
    """Mutable bookkeeping for one sync invocation."""

    request: SyncRequest
    repo: str
    branch: str
    actor: str
    ns: str = ""
    target_ref: str = "HEAD"
    positions: dict[str, int] = field(default_factory=dict)
    written: set[str] = field(default_factory=set)
    planned: dict[str, EntitySnapshot] = field(default_factory=dict)
    errors: list[SyncIssue] = field(default_factory=list)
    failed_commits: set[str] = field(default_factory=set)
    relationships: int = 0

    @property
    def dry_run(self) -> bool:
        return self.request.dry_run

    @property
    def progress_level(self) -> int:
        return logging.INFO if self.request.verbose else logging.DEBUG


class SyncEngine:
    """Orchestrate git -> database sync runs.

    Args:
        provider: Database provider to read from and write to.
        executor: Repository accessor; defaults to the git CLI.
        config: Engine defaults (branch, actor, limits, temp dir).
    """

    def __init__(
        self,
        provider: SyncProvider,
        executor: GitExecutor | None = None,
        config: UnifiedConfig | None = None,
    ) -> None:
        self.config = config or UnifiedConfig()
        self.provider = provider
        self.executor = executor or DefaultGitExecutor(
            timeout=self.config.git.timeout_seconds,
            clone_timeout_factor=self.config.git.clone_timeout_factor,
            default_host=self.config.git.default_host,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def sync(self, request: SyncRequest) -> SyncResult:
        """Run one sync.

        Raises:
            SyncSetupError: If the repository cannot be resolved, cloned or
                read, or the provider is unreachable.
        """
        return self._execute(request)

    def check_conflicts(self, request: SyncRequest) -> list[SyncConflict]:
        """Report entities changed in both git and the database since the
        last checkpoint.  Performs no writes."""
        run = self._new_run(request)
        self._ensure_connected()

        with self._working_directory(run) as repo_path:
            run.ns = self._resolve_ns(request, repo_path)
            state = self.provider.get_sync_state(run.repo, run.branch)
            if state is None:
                logger.info("No checkpoint for %s@%s, nothing to compare", run.repo, run.branch)
                return []
            try:
                target = self.executor.get_commit(
                    repo_path, request.to_commit or run.target_ref
                )
            except GitError as exc:
                raise SyncSetupError(f"Cannot resolve target commit: {exc}") from exc

            detector = ConflictDetector(self.executor, self.provider)
            return detector.detect(
                repo_path, state, target, self._parser_options(run)
            )

    def resolve_and_sync(
        self,
        request: SyncRequest,
        resolutions: Iterable[ConflictResolution],
    ) -> SyncResult:
        """Sync after the caller decided how to settle reported conflicts.

        ``use_git`` paths sync normally, ``use_db`` and ``skip`` paths are
        left out of the run, and ``merge`` paths are written with the
        supplied merged content.  The run is forced so resolved content is
        written even where an earlier run already applied the commit.
        """
        overrides: dict[str, str] = {}
        skipped: set[str] = set()
        for resolution in resolutions:
            if resolution.strategy in (ResolutionStrategy.USE_DB, ResolutionStrategy.SKIP):
                skipped.add(resolution.path)
            elif resolution.strategy == ResolutionStrategy.MERGE:
                overrides[resolution.path] = resolution.merged_content or ""

        logger.info(
            "Resolving conflicts: %d merged, %d kept from database",
            len(overrides),
            len(skipped),
        )
        forced = request.model_copy(update={"force": True})
        return self._execute(forced, overrides, frozenset(skipped))

    # ------------------------------------------------------------------
    # Run orchestration
    # ------------------------------------------------------------------

    def _new_run(self, request: SyncRequest) -> _Run:
        try:
            repo = resolve_repo_url(request.repo, self.config.git.default_host)
        except ValueError as exc:
            raise SyncSetupError(str(exc)) from exc
        return _Run(
            request=request,
            repo=repo,
            branch=request.branch or self.config.sync.default_branch,
            actor=request.actor or self.config.sync.actor,
        )

    def _ensure_connected(self) -> None:
        if not self.provider.is_connected():
            raise SyncSetupError(
                f"Database provider '{getattr(self.provider, 'name', 'unknown')}' "
                f"is not reachable"
            )

    def _execute(
        self,
        request: SyncRequest,
        overrides: Mapping[str, str] | None = None,
        skip_paths: frozenset[str] = frozenset(),
    ) -> SyncResult:
        started = time.monotonic()
        run = self._new_run(request)

        if request.direction != SyncDirection.PULL:
            logger.warning(
                "Direction '%s' is not supported; syncing git -> database only",
                request.direction.value,
            )

        self._ensure_connected()

        with self._working_directory(run) as repo_path:
            run.ns = self._resolve_ns(request, repo_path)
            logger.info(
                "Syncing %s@%s into %s%s",
                run.repo,
                run.branch,
                run.ns,
                " (dry run)" if run.dry_run else "",
            )
            return self._sync_repository(
                run,
                repo_path,
                self._parser_options(run, overrides, skip_paths),
                started,
            )

    def _sync_repository(
        self,
        run: _Run,
        repo_path: str,
        options: ParserOptions,
        started: float,
    ) -> SyncResult:
        previous = self.provider.get_sync_state(run.repo, run.branch)
        from_commit, to_commit = self._resolve_range(run, repo_path, previous)

        if from_commit == to_commit:
            logger.info("Already up to date at %s", to_commit[:12])
            return SyncResult(
                success=True,
                repo=run.repo,
                branch=run.branch,
                ns=run.ns,
                direction=run.request.direction,
                from_commit=from_commit,
                to_commit=to_commit,
                stats=SyncStats(duration_ms=_elapsed_ms(started)),
                state=previous
                or SyncState(
                    repo=run.repo,
                    ns=run.ns,
                    branch=run.branch,
                    last_commit=to_commit,
                ),
                dry_run=run.dry_run,
            )

        commits = self._list_commits(run, repo_path, from_commit, to_commit)
        run.positions = {c.hash: i for i, c in enumerate(commits)}
        logger.info(
            "Processing %d commit(s) from %s to %s",
            len(commits),
            from_commit[:12] or "the beginning",
            to_commit[:12],
        )

        staged = self._stage_commits(run, repo_path, commits, options)
        action_id = self._start_action(run, commits, staged, from_commit, to_commit)

        applied: list[SyncedFile] = []
        for index, commit in enumerate(commits):
            logger.log(
                run.progress_level,
                "[%d/%d] %s %s",
                index + 1,
                len(commits),
                commit.short_hash,
                commit.message,
            )
            for change in staged.get(commit.hash, []):
                applied.append(self._apply_change(run, commit, change))
            if action_id:
                self._report_progress(action_id, index + 1, len(commits))

        stats = self._compute_stats(run, commits, applied, started)
        state = SyncState(
            repo=run.repo,
            ns=run.ns,
            branch=run.branch,
            last_commit=to_commit,
            total_files=(previous.total_files if previous else 0) + stats.files_synced,
            total_commits=(previous.total_commits if previous else 0)
            + stats.commits_processed,
        )

        if not run.dry_run:
            self._save_checkpoint(run, state)
            if action_id:
                self._finish_action(run, action_id, stats)

        result = SyncResult(
            success=not run.errors,
            action_id=action_id,
            repo=run.repo,
            branch=run.branch,
            ns=run.ns,
            direction=run.request.direction,
            from_commit=from_commit,
            to_commit=to_commit,
            commits=commits,
            files=applied,
            errors=run.errors,
            stats=stats,
            state=state,
            dry_run=run.dry_run,
        )
        logger.info(
            "Sync %s: %d synced, %d skipped, %d failed, %d error(s) in %d ms",
            "succeeded" if result.success else "finished with errors",
            stats.files_synced,
            stats.files_skipped,
            stats.files_failed,
            len(run.errors),
            stats.duration_ms,
        )
        return result

    # ------------------------------------------------------------------
    # Working directory
    # ------------------------------------------------------------------

    @contextmanager
    def _working_directory(self, run: _Run) -> Iterator[str]:
        """Yield a checkout of the requested repository.

        Caller-supplied directories are reused (or cloned into) and never
        removed.  Otherwise the repository is cloned into a fresh
        directory under ``git.temp_dir`` which is removed on every exit
        path when ``sync.cleanup`` is enabled.
        """
        request = run.request
        if request.work_dir:
            path = str(Path(request.work_dir).expanduser())
            if self.executor.is_repo(path):
                self._refresh(run, path)
            else:
                self._clone(request, path)
            yield path
            return

        if is_local_reference(request.repo):
            path = request.repo
            if path.startswith("file://"):
                path = urlsplit(path).path
            path = str(Path(path).expanduser())
            if not self.executor.is_repo(path):
                raise SyncSetupError(f"Not a git repository: {path}")
            self._refresh(run, path)
            yield path
            return

        temp_root = Path(self.config.git.temp_dir)
        try:
            temp_root.mkdir(parents=True, exist_ok=True)
            path = tempfile.mkdtemp(
                prefix=f"{repo_slug(request.repo)}-", dir=str(temp_root)
            )
        except OSError as exc:
            raise SyncSetupError(f"Cannot create clone directory: {exc}") from exc

        try:
            self._clone(request, path)
            yield path
        finally:
            if self.config.sync.cleanup:
                self._remove_tree(path)

    @staticmethod
    def _remove_tree(path: str) -> None:
        try:
            shutil.rmtree(path)
            logger.debug("Removed clone directory %s", path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove clone directory %s: %s", path, exc)

    def _clone(self, request: SyncRequest, dest: str) -> None:
        options = CloneOptions(
            branch=request.branch,
            depth=request.depth,
            single_branch=True,
            token=request.token,
        )
        try:
            self.executor.clone(request.repo, dest, options)
        except (GitError, ValueError) as exc:
            logger.error("Clone of %s failed: %s", request.repo, exc)
            raise SyncSetupError(f"Failed to clone {request.repo}: {exc}") from exc

    def _refresh(self, run: _Run, path: str) -> None:
        """Update an existing checkout and pick the commit to sync up to.

        Fetching is best-effort.  After a successful fetch the range ends
        at ``origin/<branch>`` so upstream commits are synced without
        touching the working tree, unless the local branch holds commits
        the remote does not.  A requested branch that cannot be checked
        out is a setup error.
        """
        fetched = False
        try:
            self.executor.get_remote_url(path)
        except GitError:
            logger.debug("%s has no origin remote, not fetching", path)
        else:
            try:
                self.executor.fetch(path)
                fetched = True
            except GitError as exc:
                logger.warning("Fetch failed in %s: %s", path, exc)

        branch = run.request.branch
        if branch:
            try:
                self.executor.checkout(path, branch)
            except GitError as exc:
                logger.error("Checkout of %s failed in %s: %s", branch, path, exc)
                raise SyncSetupError(
                    f"Cannot check out branch '{branch}' in {path}: {exc}"
                ) from exc

        if not fetched:
            return
        try:
            branch = branch or self.executor.get_current_branch(path)
            upstream = self.executor.get_commit(path, f"origin/{branch}")
            local_only = self.executor.get_commits(path, upstream.hash, "HEAD")
        except GitError:
            logger.debug("No origin/%s in %s, syncing up to HEAD", branch, path)
            return

        if local_only:
            logger.info(
                "%s has %d commit(s) not on origin/%s, syncing up to HEAD",
                path,
                len(local_only),
                branch,
            )
            return
        run.target_ref = f"origin/{branch}"

    def _resolve_ns(self, request: SyncRequest, repo_path: str) -> str:
        if request.ns:
            return request.ns
        try:
            return self.executor.get_repo_info(repo_path).ns
        except GitError as exc:
            raise SyncSetupError(f"Cannot read repository info: {exc}") from exc

    # ------------------------------------------------------------------
    # Commit range
    # ------------------------------------------------------------------

    def _resolve_range(
        self, run: _Run, repo_path: str, previous: SyncState | None
    ) -> tuple[str, str]:
        request = run.request
        try:
            to_commit = self.executor.get_commit(
                repo_path, request.to_commit or run.target_ref
            ).hash
            if request.from_commit:
                from_commit = self.executor.get_commit(
                    repo_path, request.from_commit
                ).hash
            elif request.mode == SyncMode.FULL:
                from_commit = ""
            elif previous is not None:
                from_commit = previous.last_commit
            else:
                from_commit = ""
        except GitError as exc:
            raise SyncSetupError(f"Cannot resolve commit range: {exc}") from exc
        return from_commit, to_commit

    def _list_commits(
        self, run: _Run, repo_path: str, from_commit: str, to_commit: str
    ) -> list[Commit]:
        try:
            commits = self.executor.get_commits(repo_path, from_commit, to_commit)
        except GitError as exc:
            raise SyncSetupError(f"Cannot list commits: {exc}") from exc

        limit = self.config.sync.max_commits
        if len(commits) > limit:
            logger.warning(
                "Range has %d commits; only the newest %d are processed",
                len(commits),
                limit,
            )
            commits = commits[-limit:]
        return commits

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def _parser_options(
        self,
        run: _Run,
        overrides: Mapping[str, str] | None = None,
        skip_paths: frozenset[str] = frozenset(),
    ) -> ParserOptions:
        request = run.request
        return ParserOptions(
            ns=run.ns,
            include=tuple(request.include or self.config.sync.include),
            exclude=tuple(request.exclude or self.config.sync.exclude),
            content_overrides=dict(overrides or {}),
            skip_paths=skip_paths,
        )

    def _stage_commits(
        self,
        run: _Run,
        repo_path: str,
        commits: list[Commit],
        options: ParserOptions,
    ) -> dict[str, list[StagedChange]]:
        staged: dict[str, list[StagedChange]] = {}
        for commit in commits:
            try:
                diff = self.executor.get_diff(
                    repo_path, commit.first_parent, commit.hash
                )
                staged[commit.hash] = parse_commit_changes(
                    commit, diff.files, self.executor, repo_path, options
                )
            except Exception as exc:
                logger.warning(
                    "Failed to process commit %s: %s", commit.short_hash, exc
                )
                run.failed_commits.add(commit.hash)
                run.errors.append(
                    SyncIssue(
                        code=ErrorCode.COMMIT_PROCESS_ERROR,
                        message=str(exc),
                        commit=commit.hash,
                    )
                )
        return staged

    # ------------------------------------------------------------------
    # Audit action
    # ------------------------------------------------------------------

    def _start_action(
        self,
        run: _Run,
        commits: list[Commit],
        staged: dict[str, list[StagedChange]],
        from_commit: str,
        to_commit: str,
    ) -> str | None:
        if run.dry_run:
            return None

        objects = [obj for commit in commits for obj in staged.get(commit.hash, [])]
        try:
            action_id = self.provider.create_sync_action(
                CreateSyncActionOptions(
                    ns=run.ns,
                    actor=run.actor,
                    repo=run.repo,
                    branch=run.branch,
                    from_commit=from_commit,
                    to_commit=to_commit,
                    commit=commits[-1] if commits else None,
                    objects=objects,
                    total=len(commits),
                    pipeline=create_pipeline(),
                )
            )
            self.provider.emit_event(
                SyncEvent(
                    type=EVENT_STARTED,
                    ns=run.ns,
                    actor=run.actor,
                    correlation_id=action_id,
                    data={
                        "actionId": action_id,
                        "repo": run.repo,
                        "branch": run.branch,
                        "fromCommit": from_commit,
                        "toCommit": to_commit,
                        "commits": len(commits),
                    },
                )
            )
        except ProviderError as exc:
            logger.error("Could not record sync action: %s", exc)
            raise SyncSetupError(f"Could not record sync action: {exc}") from exc
        return action_id

    def _report_progress(self, action_id: str, processed: int, total: int) -> None:
        try:
            self.provider.update_action_progress(action_id, processed, total)
        except ProviderError as exc:
            logger.warning("Progress update for %s failed: %s", action_id, exc)

    def _finish_action(self, run: _Run, action_id: str, stats: SyncStats) -> None:
        failed = bool(run.errors)
        try:
            if failed:
                self.provider.fail_action(
                    action_id, "; ".join(e.message for e in run.errors)
                )
            else:
                self.provider.complete_action(action_id, stats)
            self.provider.emit_event(
                SyncEvent(
                    type=EVENT_FAILED if failed else EVENT_COMPLETED,
                    ns=run.ns,
                    actor=run.actor,
                    correlation_id=action_id,
                    data={
                        "actionId": action_id,
                        "stats": stats.model_dump(),
                        "errors": len(run.errors),
                    },
                )
            )
        except ProviderError as exc:
            logger.error("Could not finalise sync action %s: %s", action_id, exc)
            run.errors.append(
                SyncIssue(
                    code=ErrorCode.CHECKPOINT_ERROR,
                    message=f"Could not finalise sync action {action_id}: {exc}",
                )
            )

    def _save_checkpoint(self, run: _Run, state: SyncState) -> None:
        try:
            self.provider.save_sync_state(state)
        except ProviderError as exc:
            logger.error("Could not save checkpoint: %s", exc)
            run.errors.append(
                SyncIssue(
                    code=ErrorCode.CHECKPOINT_ERROR,
                    message=f"Could not save checkpoint: {exc}",
                )
            )

    # ------------------------------------------------------------------
    # Applying changes
    # ------------------------------------------------------------------

    def _current_snapshot(self, run: _Run, url: str) -> EntitySnapshot | None:
        if url in run.planned:
            return run.planned[url]
        return self.provider.get_thing(url)

    def _already_applied(
        self,
        run: _Run,
        url: str,
        snapshot: EntitySnapshot | None,
        commit: Commit,
    ) -> bool:
        if snapshot is None or run.request.force or url in run.written:
            return False
        position = run.positions.get(snapshot.commit)
        return position is not None and position >= run.positions[commit.hash]

    def _apply_change(
        self, run: _Run, commit: Commit, change: StagedChange
    ) -> SyncedFile:
        base = {
            "path": change.path,
            "change": change.operation,
            "type": change.type,
            "id": change.id,
            "commit": commit.hash,
        }

        if change.errors:
            message = "; ".join(change.errors)
            logger.warning("Not applying %s: %s", change.path, message)
            run.errors.append(
                SyncIssue(
                    code=ErrorCode.PARSE_ERROR,
                    message=message,
                    path=change.path,
                    commit=commit.hash,
                )
            )
            return SyncedFile(**base, error=message)

        url = change.url(run.ns)
        try:
            snapshot = self._current_snapshot(run, url)
            if self._already_applied(run, url, snapshot, commit):
                logger.debug("%s already at %s, skipping", url, snapshot.commit[:12])
                return SyncedFile(**base, skipped=True, version=snapshot.version)

            version = snapshot.version + 1 if snapshot else 1
            if run.dry_run:
                run.planned[url] = EntitySnapshot(
                    url=url,
                    version=version,
                    hash=change.hash,
                    updated_at=utcnow(),
                    commit=commit.hash,
                    deleted=change.operation == Operation.DELETE,
                )
            elif change.operation == Operation.DELETE:
                self.provider.delete_thing(
                    run.ns, change.type, change.id, version=version, commit=commit.hash
                )
            else:
                self.provider.upsert_thing(
                    run.ns, change, version=version, commit=commit.hash
                )
        except Exception as exc:
            logger.warning(
                "Failed to apply %s at %s: %s", change.path, commit.short_hash, exc
            )
            run.errors.append(
                SyncIssue(
                    code=ErrorCode.APPLY_ERROR,
                    message=str(exc),
                    path=change.path,
                    commit=commit.hash,
                )
            )
            return SyncedFile(**base, error=str(exc))

        run.written.add(url)
        if change.operation != Operation.DELETE:
            run.relationships += len(change.relationships or [])
        return SyncedFile(**base, synced=True, version=version)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    @staticmethod
    def _compute_stats(
        run: _Run,
        commits: list[Commit],
        files: list[SyncedFile],
        started: float,
    ) -> SyncStats:
        synced = [f for f in files if f.synced]
        return SyncStats(
            commits_processed=len(commits) - len(run.failed_commits),
            files_scanned=len(files),
            files_synced=len(synced),
            files_skipped=sum(1 for f in files if f.skipped),
            files_failed=sum(1 for f in files if not f.synced and not f.skipped),
            things_created=sum(1 for f in synced if f.change == Operation.CREATE),
            things_updated=sum(
                1 for f in synced if f.change in (Operation.UPDATE, Operation.UPSERT)
            ),
            things_deleted=sum(1 for f in synced if f.change == Operation.DELETE),
            relationships_created=run.relationships,
            duration_ms=_elapsed_ms(started),
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
