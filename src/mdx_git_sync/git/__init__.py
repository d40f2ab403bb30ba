"""Repository accessor: run git and parse its output into models."""

from .executor import DefaultGitExecutor, GitExecutor
from .models import (
    CloneOptions,
    Commit,
    Diff,
    DiffStats,
    FileChange,
    FileStatus,
    RepoInfo,
)
from .remote import infer_ns_from_repo, parse_git_remote, resolve_repo_url

__all__ = [
    "CloneOptions",
    "Commit",
    "DefaultGitExecutor",
    "Diff",
    "DiffStats",
    "FileChange",
    "FileStatus",
    "GitExecutor",
    "RepoInfo",
    "infer_ns_from_repo",
    "parse_git_remote",
    "resolve_repo_url",
]
