"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync runs:

- ``format_sync_report`` -- full post-sync summary.
- ``format_dry_run_preview`` -- dry-run plan grouped by operation.
- ``format_conflicts`` -- conflict listing for review before resolving.
- ``result_to_json`` -- structured dict for JSON output.
"""

from __future__ import annotations

from collections import defaultdict

from .models import Operation, SyncConflict, SyncedFile, SyncResult

_SECTION_LABELS = {
    Operation.CREATE: "Created",
    Operation.UPDATE: "Updated",
    Operation.UPSERT: "Upserted",
    Operation.DELETE: "Deleted",
}

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def _short(commit: str) -> str:
    return commit[:12] if commit else "(start)"


def format_sync_report(result: SyncResult) -> str:
    """Format a completed sync result as human-readable text.

    Sections are only included when they contain at least one entry.
    Skipped files are summarised by count only.

    Args:
        result: The sync result.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    stats = result.stats

    header = f"Sync report for '{result.repo}' ({result.branch or 'default branch'})"
    if result.dry_run:
        header += " (DRY RUN)"
    lines.append(header)
    lines.append(f"Namespace: {result.ns}")
    lines.append(f"Range: {_short(result.from_commit)}..{_short(result.to_commit)}")
    if result.action_id:
        lines.append(f"Action: {result.action_id}")
    lines.append("")

    lines.append(
        f"Processed {stats.commits_processed} commits, {stats.files_scanned} files: "
        f"{stats.things_created} created, {stats.things_updated} updated, "
        f"{stats.things_deleted} deleted, {stats.files_failed} failed "
        f"({stats.duration_ms} ms)"
    )
    lines.append("")

    by_operation: dict[Operation, list[SyncedFile]] = defaultdict(list)
    for f in result.synced_files:
        by_operation[f.change].append(f)

    for operation, label in _SECTION_LABELS.items():
        files = by_operation.get(operation)
        if not files:
            continue
        lines.append(f"{label}:")
        for f in files:
            lines.append(f"  {f.path} -> {f.type}/{f.id} v{f.version}")
        lines.append("")

    if result.failed_files:
        lines.append("Failed:")
        for f in result.failed_files:
            lines.append(f"  {f.path}: {f.error}")
        lines.append("")

    other_errors = [e for e in result.errors if e.path is None]
    if other_errors:
        lines.append("Errors:")
        for e in other_errors:
            where = f" [{e.commit[:12]}]" if e.commit else ""
            lines.append(f"  {e.code.value}{where}: {e.message}")
        lines.append("")

    if stats.files_skipped > 0:
        lines.append(f"Skipped: {stats.files_skipped} files (already applied)")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Dry-run preview
# ------------------------------------------------------------------


def format_dry_run_preview(result: SyncResult) -> str:
    """Format a dry-run result grouped by operation.

    Each planned change is shown as ``[OPERATION] path -> Type/id``.
    """
    lines: list[str] = []
    lines.append("DRY RUN -- No changes will be made")
    lines.append(f"Repository: {result.repo}")
    lines.append(f"Namespace: {result.ns}")
    lines.append("")

    groups: dict[Operation, list[SyncedFile]] = defaultdict(list)
    for f in result.synced_files:
        groups[f.change].append(f)

    for operation in _SECTION_LABELS:
        if operation not in groups:
            continue
        lines.append(f"[{operation.value.upper()}]")
        for f in groups[operation]:
            lines.append(f"  {f.path} -> {f.type}/{f.id} (v{f.version})")
        lines.append("")

    skipped = sum(1 for f in result.files if f.skipped)
    if skipped > 0:
        lines.append(f"Skipped: {skipped} files (already applied)")
        lines.append("")

    if result.failed_files:
        lines.append("Would fail:")
        for f in result.failed_files:
            lines.append(f"  {f.path}: {f.error}")
        lines.append("")

    if not groups:
        lines.append("No changes needed.")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Conflicts
# ------------------------------------------------------------------


def format_conflicts(conflicts: list[SyncConflict]) -> str:
    """Format detected conflicts for review."""
    if not conflicts:
        return "No conflicts."

    lines = [f"{len(conflicts)} conflict(s):", ""]
    for c in conflicts:
        lines.append(f"Conflict: {c.path} ({c.type.value})")
        lines.append(f"  git: {c.git.commit[:12]} at {c.git.timestamp or 'unknown'}")
        lines.append(
            f"  db:  v{c.db.version} updated {c.db.timestamp.isoformat()}"
        )
        lines.append(f"  suggested resolution: {c.suggestion.value}")
        lines.append("")
    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def result_to_json(result: SyncResult) -> dict:
    """Convert a sync result to a structured dict for JSON serialisation.

    Returns:
        Dict with run info, stats, per-file outcomes and errors.
    """
    files = []
    for f in result.files:
        entry: dict = {
            "path": f.path,
            "change": f.change.value,
            "type": f.type,
            "id": f.id,
            "commit": f.commit,
            "synced": f.synced,
        }
        if f.skipped:
            entry["skipped"] = True
        if f.version is not None:
            entry["version"] = f.version
        if f.error:
            entry["error"] = f.error
        files.append(entry)

    return {
        "success": result.success,
        "action_id": result.action_id,
        "repo": result.repo,
        "branch": result.branch,
        "ns": result.ns,
        "dry_run": result.dry_run,
        "from_commit": result.from_commit,
        "to_commit": result.to_commit,
        "commits": len(result.commits),
        "stats": result.stats.model_dump(),
        "files": files,
        "errors": [e.model_dump(mode="json", exclude_none=True) for e in result.errors],
        "state": result.state.model_dump(mode="json") if result.state else None,
    }
