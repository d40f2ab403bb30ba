"""Pydantic models for data read out of a git repository.

- ``FileStatus``: how a file changed between two commits.
- ``Commit``: one commit as reported by ``git log``.
- ``FileChange``: one path touched between two commits.
- ``DiffStats`` / ``Diff``: the change set between two commits.
- ``RepoInfo``: facts about a working directory.
- ``CloneOptions``: knobs for ``git clone``.

All models are frozen (immutable); git history is append-only and so
are the records derived from it.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class FileStatus(str, Enum):
    """Change status of a file in a diff."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"
    COPIED = "copied"


class Commit(BaseModel):
    """A single commit.

    Attributes:
        hash: Full object name.
        short_hash: Abbreviated object name.
        message: Subject line of the commit message.
        author_name: Author name.
        author_email: Author email.
        timestamp: Author date, strict ISO 8601 with offset.
        parents: Parent hashes; the first parent is the mainline.
    """

    hash: str
    short_hash: str
    message: str = ""
    author_name: str = ""
    author_email: str = ""
    timestamp: str = ""
    parents: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def first_parent(self) -> str:
        """First parent hash, or ``""`` for a root commit."""
        return self.parents[0] if self.parents else ""


class FileChange(BaseModel):
    """One file touched between two commits.

    ``binary`` is set when git reported neither added nor deleted lines.
    """

    path: str
    previous_path: str | None = None
    status: FileStatus
    additions: int = 0
    deletions: int = 0
    binary: bool = False

    model_config = {"frozen": True}


class DiffStats(BaseModel):
    """Aggregate line counts for a diff."""

    files_changed: int = 0
    insertions: int = 0
    deletions: int = 0

    model_config = {"frozen": True}


class Diff(BaseModel):
    """Changes between two commits.

    ``from_commit`` is ``""`` when the diff starts at the empty tree
    (a root commit, or a full resync).
    """

    from_commit: str
    to_commit: str
    files: list[FileChange] = Field(default_factory=list)
    patch: str = ""
    stats: DiffStats = Field(default_factory=DiffStats)

    model_config = {"frozen": True}


class RepoInfo(BaseModel):
    """Facts about a repository working directory."""

    path: str
    remote_url: str = ""
    current_branch: str = ""
    head: str = ""
    is_bare: bool = False
    is_dirty: bool = False
    ns: str = ""

    model_config = {"frozen": True}


class CloneOptions(BaseModel):
    """Options for cloning a repository."""

    branch: str | None = None
    depth: int | None = Field(default=None, ge=1)
    single_branch: bool = False
    token: str | None = None

    model_config = {"frozen": True}
