"""Pydantic models for the git-to-database sync engine.

Defines the data contracts shared by the parser, the engine, the conflict
detector and the providers:

- ``Operation``: what a staged change does to its entity.
- ``StagedChange``: one file in one commit, ready to apply.
- ``Relationship`` / ``SearchMetadata``: derived data on a staged change.
- ``SyncState``: the per-(repo, branch) checkpoint.
- ``SyncedFile`` / ``SyncIssue`` / ``SyncStats`` / ``SyncResult``: the
  outcome of one sync invocation.
- ``EntitySnapshot``: the database-side state read before each write.
- ``SyncConflict`` / ``ConflictResolution``: conflict reports and the
  caller's answer to them.
- ``SyncEvent`` / ``CreateSyncActionOptions``: audit trail payloads.
- ``SyncRequest``: the invocation surface.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from mdx_git_sync.git.models import Commit, FileStatus
from mdx_git_sync.sync.pipeline import ActionPipeline


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class Operation(str, Enum):
    """Mutation applied to an entity."""

    CREATE = "create"
    UPDATE = "update"
    UPSERT = "upsert"
    DELETE = "delete"


class SyncDirection(str, Enum):
    """Which way content flows."""

    PULL = "pull"
    PUSH = "push"
    BOTH = "both"


class SyncMode(str, Enum):
    """How the commit range is chosen."""

    FULL = "full"
    INCREMENTAL = "incremental"
    DIFF = "diff"


class ErrorCode(str, Enum):
    """Category of a non-fatal sync failure."""

    COMMIT_PROCESS_ERROR = "COMMIT_PROCESS_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    APPLY_ERROR = "APPLY_ERROR"
    CHECKPOINT_ERROR = "CHECKPOINT_ERROR"


class ConflictType(str, Enum):
    """Kind of divergence between git and the database."""

    BOTH_MODIFIED = "both_modified"
    DELETE_MODIFY = "delete_modify"
    MODIFY_DELETE = "modify_delete"
    TYPE_MISMATCH = "type_mismatch"


class ResolutionStrategy(str, Enum):
    """How a conflict should be (or was suggested to be) resolved."""

    USE_GIT = "use_git"
    USE_DB = "use_db"
    MERGE = "merge"
    SKIP = "skip"


# ---------------------------------------------------------------------------
# Staged changes
# ---------------------------------------------------------------------------


class Relationship(BaseModel):
    """Edge extracted from frontmatter or a wiki link.

    Attributes:
        predicate: Edge name from the source entity (``author``).
        target: Target entity URL (``ns/Type/id``).
        reverse: Edge name from the target back (``authored``), if any.
    """

    predicate: str
    target: str
    reverse: str | None = None

    model_config = {"frozen": True}


class SearchMetadata(BaseModel):
    """Title, description and keywords used for search indexing."""

    title: str | None = None
    description: str | None = None
    keywords: list[str] | None = None

    model_config = {"frozen": True}


class StagedChange(BaseModel):
    """A file change transformed into an entity mutation.

    ``id`` may be empty for bracket-notation files that name no concrete
    entity; such changes carry ``errors`` and are never applied.
    Deletions carry neither ``data`` nor ``content``.
    """

    path: str
    type: str
    id: str = ""
    operation: Operation
    data: dict[str, Any] | None = None
    content: str | None = None
    hash: str | None = None
    previous_hash: str | None = None
    change: FileStatus
    previous_path: str | None = None
    relationships: list[Relationship] | None = None
    search_metadata: SearchMetadata | None = None
    errors: list[str] | None = None

    model_config = {"frozen": True}

    def url(self, ns: str) -> str:
        """Entity URL of this change within namespace *ns*."""
        return f"{ns}/{self.type}/{self.id}"


# ---------------------------------------------------------------------------
# Checkpoint and database snapshots
# ---------------------------------------------------------------------------


class SyncState(BaseModel):
    """Checkpoint for one (repo, branch).

    Attributes:
        repo: Normalised repository reference (clone URL or local path).
        ns: Namespace entities were written to.
        branch: Branch that was synced.
        last_commit: Last commit whose changes were attempted.
        last_sync_at: When the checkpoint was written.
        total_files: Cumulative count of synced files.
        total_commits: Cumulative count of processed commits.
    """

    repo: str
    ns: str
    branch: str
    last_commit: str
    last_sync_at: datetime = Field(default_factory=utcnow)
    total_files: int = 0
    total_commits: int = 0

    model_config = {"frozen": True}


class EntitySnapshot(BaseModel):
    """Current database state of one entity.

    ``commit`` is the git commit whose change produced the stored
    version; it is empty for writes that did not come from git.
    """

    url: str
    version: int
    hash: str | None = None
    updated_at: datetime
    commit: str = ""
    deleted: bool = False

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class SyncedFile(BaseModel):
    """Outcome for one staged change.

    Attributes:
        path: Repository-relative file path.
        change: Operation that was (or would be) applied.
        type: Entity type.
        id: Entity id.
        commit: Commit the change belongs to.
        synced: Whether the change was applied (or, in a dry run, planned).
        skipped: The change was already applied by an earlier run.
        version: Version written (or planned) for the entity.
        error: Failure message when ``synced`` is false.
    """

    path: str
    change: Operation
    type: str
    id: str
    commit: str = ""
    synced: bool = False
    skipped: bool = False
    version: int | None = None
    error: str | None = None

    model_config = {"frozen": True}


class SyncIssue(BaseModel):
    """A non-fatal failure recorded during a run."""

    code: ErrorCode
    message: str
    path: str | None = None
    commit: str | None = None

    model_config = {"frozen": True}


class SyncStats(BaseModel):
    """Counters for one sync run."""

    commits_processed: int = 0
    files_scanned: int = 0
    files_synced: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    things_created: int = 0
    things_updated: int = 0
    things_deleted: int = 0
    relationships_created: int = 0
    duration_ms: int = 0

    model_config = {"frozen": True}


class SyncResult(BaseModel):
    """Aggregate outcome of one sync invocation.

    ``success`` is true exactly when ``errors`` is empty.  ``action_id``
    is ``None`` for dry runs and no-op runs.
    """

    success: bool
    action_id: str | None = None
    repo: str
    branch: str = ""
    ns: str = ""
    direction: SyncDirection = SyncDirection.PULL
    from_commit: str = ""
    to_commit: str = ""
    commits: list[Commit] = []
    files: list[SyncedFile] = []
    errors: list[SyncIssue] = []
    stats: SyncStats = SyncStats()
    state: SyncState | None = None
    dry_run: bool = False

    model_config = {"frozen": True}

    @property
    def failed_files(self) -> list[SyncedFile]:
        """Files that were attempted but not applied."""
        return [f for f in self.files if not f.synced and not f.skipped]

    @property
    def synced_files(self) -> list[SyncedFile]:
        """Files that were applied."""
        return [f for f in self.files if f.synced]


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------


class GitSide(BaseModel):
    """Git's view of a conflicting file."""

    commit: str
    hash: str | None = None
    timestamp: str = ""

    model_config = {"frozen": True}


class DbSide(BaseModel):
    """The database's view of a conflicting entity."""

    version: int
    hash: str | None = None
    timestamp: datetime

    model_config = {"frozen": True}


class SyncConflict(BaseModel):
    """A divergence between git and the database since the last sync."""

    type: ConflictType
    path: str
    git: GitSide
    db: DbSide
    suggestion: ResolutionStrategy

    model_config = {"frozen": True}


class ConflictResolution(BaseModel):
    """The caller's decision for one conflicting path.

    ``merged_content`` is required for the ``merge`` strategy and is
    staged in place of the file's git content.
    """

    path: str
    strategy: ResolutionStrategy
    merged_content: str | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _merge_needs_content(self) -> ConflictResolution:
        if self.strategy == ResolutionStrategy.MERGE and self.merged_content is None:
            raise ValueError(
                f"merge resolution for {self.path} requires merged_content"
            )
        return self


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------


class SyncEvent(BaseModel):
    """Audit event emitted around a sync run.

    ``correlation_id`` ties the start event to its completion/failure.
    """

    type: str
    ns: str
    actor: str
    correlation_id: str
    data: dict[str, Any] = {}
    timestamp: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}


class CreateSyncActionOptions(BaseModel):
    """Payload for creating a sync audit action."""

    ns: str
    actor: str
    repo: str
    branch: str
    from_commit: str = ""
    to_commit: str
    commit: Commit | None = None
    objects: list[StagedChange] = []
    total: int = 0
    pipeline: ActionPipeline | None = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


class SyncRequest(BaseModel):
    """Parameters of one sync invocation.

    Attributes:
        repo: Remote URL, ``org/repo`` shorthand or local path.
        branch: Branch to sync; the configured default when omitted.
        direction: Only ``pull`` is performed.
        mode: ``full``, ``incremental`` (default) or ``diff``.
        from_commit: Start of the range (exclusive); required for ``diff``.
        to_commit: End of the range (inclusive); ``HEAD`` when omitted.
        include: Glob patterns a path must match.
        exclude: Glob patterns that reject a path (wins over include).
        ns: Namespace; inferred from the remote when omitted.
        actor: Recorded on audit actions and events.
        dry_run: Plan only; never call mutating provider methods.
        force: Re-apply changes even if already applied.
        depth: Clone depth for engine-owned clones.
        work_dir: Existing checkout to reuse, or directory to clone into.
        token: HTTPS access token injected into the clone URL.
        verbose: Log per-commit progress at INFO.
    """

    repo: str
    branch: str | None = None
    direction: SyncDirection = SyncDirection.PULL
    mode: SyncMode = SyncMode.INCREMENTAL
    from_commit: str | None = None
    to_commit: str | None = None
    include: list[str] = []
    exclude: list[str] = []
    ns: str | None = None
    actor: str | None = None
    dry_run: bool = False
    force: bool = False
    depth: int | None = Field(default=None, ge=1)
    work_dir: str | None = None
    token: str | None = Field(default=None, repr=False)
    verbose: bool = False

    model_config = {"frozen": True}

    @field_validator("repo")
    @classmethod
    def _repo_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("repo cannot be empty")
        return value.strip()

    @model_validator(mode="after")
    def _diff_needs_from(self) -> SyncRequest:
        if self.mode == SyncMode.DIFF and not self.from_commit:
            raise ValueError("mode 'diff' requires from_commit")
        return self
