"""Git to content-database sync engine.

Public API for replaying the history of a repository of MDX/Markdown
files into a versioned content database.

Architecture
------------
Each file change in each commit becomes a versioned entity mutation.
Commits are processed oldest first and every write carries the next
version for its entity, so the database ends up with a full history that
mirrors git.  A per-(repo, branch) checkpoint makes the next run
incremental.

Modules:

- ``engine``      -- ``SyncEngine``: orchestrates a sync run.
- ``parser``      -- Turns file changes into ``StagedChange`` objects.
- ``frontmatter`` -- Lightweight frontmatter extraction.
- ``conflicts``   -- ``ConflictDetector``: git vs database divergence.
- ``pipeline``    -- Audit action pipeline stages and progress.
- ``models``      -- Request, result, checkpoint and audit contracts.
- ``reporter``    -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from mdx_git_sync.providers import LocalProvider
    from mdx_git_sync.sync import (
        SyncEngine,
        SyncRequest,
        format_dry_run_preview,
        format_sync_report,
    )

    engine = SyncEngine(provider=LocalProvider(state_dir=".mdx_sync/store"))

    # Dry-run first to preview changes
    preview = engine.sync(SyncRequest(repo="org/content", dry_run=True))
    print(format_dry_run_preview(preview))

    # Execute the sync
    result = engine.sync(SyncRequest(repo="org/content"))
    print(format_sync_report(result))
"""

from .conflicts import ConflictDetector
from .engine import SyncEngine
from .models import (
    ConflictResolution,
    Operation,
    ResolutionStrategy,
    StagedChange,
    SyncConflict,
    SyncDirection,
    SyncMode,
    SyncRequest,
    SyncResult,
    SyncState,
    SyncStats,
)
from .parser import ParserOptions, parse_commit_changes
from .reporter import (
    format_conflicts,
    format_dry_run_preview,
    format_sync_report,
    result_to_json,
)

__all__ = [
    "ConflictDetector",
    "ConflictResolution",
    "Operation",
    "ParserOptions",
    "ResolutionStrategy",
    "StagedChange",
    "SyncConflict",
    "SyncDirection",
    "SyncEngine",
    "SyncMode",
    "SyncRequest",
    "SyncResult",
    "SyncState",
    "SyncStats",
    "format_conflicts",
    "format_dry_run_preview",
    "format_sync_report",
    "parse_commit_changes",
    "result_to_json",
]
