"""Git command execution and output parsing.

``GitExecutor`` is the protocol the sync engine depends on, so tests can
substitute a scripted double.  ``DefaultGitExecutor`` implements it with
the ``git`` CLI via ``subprocess``.

Every invocation:

* runs with ``GIT_TERMINAL_PROMPT=0`` (and a batch-mode SSH command) so a
  missing credential fails instead of hanging on a prompt,
* runs with ``LC_ALL=C`` so messages parsed below are stable,
* is bounded by a timeout; a timed-out command raises ``GitTimeoutError``
  carrying whatever stderr was captured,
* has credentials redacted from the command line before it appears in
  any log line or exception.

Listings that contain paths (``diff --name-status``, ``diff --numstat``,
``ls-tree``) are read with ``-z`` so unusual file names are never quoted
or escaped by git.
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Protocol

from charset_normalizer import from_bytes

from mdx_git_sync.errors import GitError, GitNotFoundError, GitTimeoutError
from mdx_git_sync.git.models import (
    CloneOptions,
    Commit,
    Diff,
    DiffStats,
    FileChange,
    FileStatus,
    RepoInfo,
)
from mdx_git_sync.git.remote import (
    infer_ns_from_repo,
    inject_token,
    redact_credentials,
    resolve_repo_url,
)
from mdx_git_sync.globs import match_glob

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_CLONE_TIMEOUT_FACTOR = 5

_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"
_LOG_FORMAT = (
    "%x1f".join(["%H", "%h", "%s", "%an", "%ae", "%aI", "%P"]) + "%x1e"
)

_STATUS_CODES: dict[str, FileStatus] = {
    "A": FileStatus.ADDED,
    "M": FileStatus.MODIFIED,
    "D": FileStatus.DELETED,
    "R": FileStatus.RENAMED,
    "C": FileStatus.COPIED,
}

_MISSING_PATH_MARKERS = ("does not exist in", "exists on disk, but not in")


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class GitExecutor(Protocol):
    """Operations the sync engine needs from a git repository."""

    def clone(
        self, url: str, dest: str, options: CloneOptions | None = None
    ) -> None:
        """Clone *url* into *dest*."""
        ...  # pragma: no cover

    def fetch(self, repo_path: str, remote: str = "origin") -> None:
        """Fetch and prune *remote*."""
        ...  # pragma: no cover

    def checkout(self, repo_path: str, ref: str) -> None:
        """Check out a branch or commit."""
        ...  # pragma: no cover

    def is_repo(self, path: str) -> bool:
        """Return ``True`` if *path* is inside a git repository.  Never raises."""
        ...  # pragma: no cover

    def get_repo_info(self, repo_path: str) -> RepoInfo:
        """Describe the repository at *repo_path*."""
        ...  # pragma: no cover

    def get_current_branch(self, repo_path: str) -> str:
        """Current branch name (short hash when HEAD is detached)."""
        ...  # pragma: no cover

    def get_remote_url(self, repo_path: str, remote: str = "origin") -> str:
        """URL of *remote*."""
        ...  # pragma: no cover

    def get_commit(self, repo_path: str, ref: str) -> Commit:
        """Resolve *ref* to a commit."""
        ...  # pragma: no cover

    def get_commits(
        self, repo_path: str, from_commit: str, to_commit: str
    ) -> list[Commit]:
        """Commits in ``from_commit..to_commit``, oldest first.

        An empty *from_commit* means everything reachable from *to_commit*.
        """
        ...  # pragma: no cover

    def get_diff(
        self, repo_path: str, from_commit: str, to_commit: str
    ) -> Diff:
        """Changes between two commits (empty *from_commit* = empty tree)."""
        ...  # pragma: no cover

    def get_file_content(self, repo_path: str, path: str, ref: str) -> str:
        """Content of *path* at *ref*; ``GitNotFoundError`` if absent."""
        ...  # pragma: no cover

    def list_files(
        self, repo_path: str, ref: str, pattern: str | None = None
    ) -> list[str]:
        """Repository-relative paths at *ref*, optionally glob-filtered."""
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Output parsing (pure functions)
# ---------------------------------------------------------------------------


def parse_status_code(code: str) -> FileStatus:
    """Map a name-status code (``A``, ``M``, ``R100``...) to a ``FileStatus``.

    Unrecognised codes (``T``, ``U``, ``X``) are treated as modifications.
    """
    return _STATUS_CODES.get(code[:1], FileStatus.MODIFIED)


def parse_log_output(output: str) -> list[Commit]:
    """Parse ``git log --format=<_LOG_FORMAT>`` output into commits."""
    commits: list[Commit] = []
    for record in output.split(_RECORD_SEP):
        record = record.strip("\n")
        if not record:
            continue
        fields = record.split(_FIELD_SEP)
        fields += [""] * (7 - len(fields))
        hash_, short_hash, message, name, email, ts, parents = fields[:7]
        commits.append(
            Commit(
                hash=hash_,
                short_hash=short_hash,
                message=message,
                author_name=name,
                author_email=email,
                timestamp=ts,
                parents=parents.split(),
            )
        )
    return commits


def parse_numstat(output: str) -> dict[str, tuple[int, int]]:
    """Parse ``git diff --numstat -z`` into ``{path: (additions, deletions)}``.

    Binary files report ``-`` for both counts, which becomes ``0``.
    Renames are keyed by their new path.
    """
    stats: dict[str, tuple[int, int]] = {}
    tokens = output.split("\0")
    i = 0
    while i < len(tokens):
        record = tokens[i]
        if not record.strip():
            i += 1
            continue
        pieces = record.split("\t", 2)
        if len(pieces) < 3:
            i += 1
            continue
        added, deleted, path = pieces
        if path == "":
            # rename/copy: counts record is followed by old and new paths
            path = tokens[i + 2] if i + 2 < len(tokens) else ""
            i += 3
        else:
            i += 1
        if path:
            stats[path] = (
                0 if added == "-" else int(added),
                0 if deleted == "-" else int(deleted),
            )
    return stats


def parse_name_status(output: str) -> list[tuple[str, str, str | None]]:
    """Parse ``git diff --name-status -z`` into ``(code, path, previous)``."""
    entries: list[tuple[str, str, str | None]] = []
    tokens = output.split("\0")
    i = 0
    while i < len(tokens):
        code = tokens[i].strip()
        if not code:
            i += 1
            continue
        if code[0] in ("R", "C") and i + 2 < len(tokens):
            entries.append((code, tokens[i + 2], tokens[i + 1]))
            i += 3
        elif i + 1 < len(tokens):
            entries.append((code, tokens[i + 1], None))
            i += 2
        else:
            break
    return entries


def build_file_changes(name_status: str, numstat: str) -> list[FileChange]:
    """Correlate a name-status listing with a numstat listing."""
    counts = parse_numstat(numstat)
    changes: list[FileChange] = []
    for code, path, previous in parse_name_status(name_status):
        if not path:
            continue
        additions, deletions = counts.get(path, (0, 0))
        status = parse_status_code(code)
        changes.append(
            FileChange(
                path=path,
                previous_path=(
                    previous
                    if status in (FileStatus.RENAMED, FileStatus.COPIED)
                    else None
                ),
                status=status,
                additions=additions,
                deletions=deletions,
                binary=additions == 0 and deletions == 0,
            )
        )
    return changes


def decode_content(raw: bytes) -> str:
    """Decode file bytes, detecting the encoding when not UTF-8."""
    if not raw:
        return ""
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        pass

    result = from_bytes(raw).best()
    if result is None:
        return raw.decode("utf-8", errors="replace")
    return str(result)


# ---------------------------------------------------------------------------
# Default implementation
# ---------------------------------------------------------------------------


class DefaultGitExecutor:
    """``GitExecutor`` backed by the ``git`` command-line client.

    Args:
        timeout: Seconds before a single git command is killed.
        clone_timeout_factor: Multiplier applied to *timeout* for clones.
        default_host: Host used to expand ``org/repo`` shorthand.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        clone_timeout_factor: int = DEFAULT_CLONE_TIMEOUT_FACTOR,
        default_host: str = "github.com",
    ) -> None:
        self.timeout = timeout
        self.clone_timeout_factor = clone_timeout_factor
        self.default_host = default_host
        self._empty_trees: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Command runner
    # ------------------------------------------------------------------

    @staticmethod
    def _environment() -> dict[str, str]:
        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        env["LC_ALL"] = "C"
        env.setdefault("GIT_SSH_COMMAND", "ssh -o BatchMode=yes")
        return env

    def _run(
        self,
        args: list[str],
        cwd: str,
        *,
        check: bool = True,
        timeout: float | None = None,
        stdin: bytes | None = None,
    ) -> subprocess.CompletedProcess[bytes]:
        """Run ``git *args`` in *cwd* and return the raw completed process."""
        command = redact_credentials("git " + " ".join(args))
        limit = timeout if timeout is not None else self.timeout
        logger.debug("Running %s (cwd=%s)", command, cwd)

        try:
            result = subprocess.run(
                ["git", *args],
                cwd=cwd,
                capture_output=True,
                input=stdin,
                timeout=limit,
                env=self._environment(),
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            stderr = exc.stderr or b""
            if isinstance(stderr, bytes):
                stderr = stderr.decode("utf-8", errors="replace")
            raise GitTimeoutError(
                f"Git command timed out after {limit:g}s: {command}",
                stderr=redact_credentials(stderr),
                command=command,
            ) from None
        except OSError as exc:
            raise GitError(
                f"Could not run git: {command}",
                stderr=str(exc),
                command=command,
            ) from exc

        if check and result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace")
            raise GitError(
                f"Git command failed: {command}",
                stderr=redact_credentials(stderr),
                exit_code=result.returncode,
                command=command,
            )
        return result

    def _git(self, repo_path: str, *args: str) -> str:
        """Run a git command and return its stripped text output."""
        result = self._run(list(args), repo_path)
        return result.stdout.decode("utf-8", errors="replace").strip()

    # ------------------------------------------------------------------
    # Remote operations
    # ------------------------------------------------------------------

    def clone(
        self, url: str, dest: str, options: CloneOptions | None = None
    ) -> None:
        opts = options or CloneOptions()
        args = ["clone"]
        if opts.branch:
            args += ["--branch", opts.branch]
        if opts.depth:
            args += ["--depth", str(opts.depth)]
        if opts.single_branch:
            args.append("--single-branch")

        clone_url = resolve_repo_url(url, self.default_host)
        if opts.token:
            clone_url = inject_token(clone_url, opts.token)
        args += [clone_url, dest]

        parent = Path(dest).parent
        parent.mkdir(parents=True, exist_ok=True)
        logger.info("Cloning %s into %s", redact_credentials(clone_url), dest)
        self._run(
            args,
            str(parent),
            timeout=self.timeout * self.clone_timeout_factor,
        )

    def fetch(self, repo_path: str, remote: str = "origin") -> None:
        self._git(repo_path, "fetch", remote, "--prune")

    def checkout(self, repo_path: str, ref: str) -> None:
        self._git(repo_path, "checkout", ref)

    # ------------------------------------------------------------------
    # Repository facts
    # ------------------------------------------------------------------

    def is_repo(self, path: str) -> bool:
        if not Path(path).is_dir():
            return False
        try:
            result = self._run(["rev-parse", "--git-dir"], path, check=False)
        except GitError:
            return False
        return result.returncode == 0

    def get_current_branch(self, repo_path: str) -> str:
        try:
            return self._git(repo_path, "symbolic-ref", "--short", "HEAD")
        except GitError:
            # detached HEAD
            return self._git(repo_path, "rev-parse", "--short", "HEAD")

    def get_remote_url(self, repo_path: str, remote: str = "origin") -> str:
        return self._git(repo_path, "remote", "get-url", remote)

    def get_repo_info(self, repo_path: str) -> RepoInfo:
        try:
            remote_url = self.get_remote_url(repo_path)
        except GitError:
            remote_url = ""

        is_bare = (
            self._git(repo_path, "rev-parse", "--is-bare-repository")
            == "true"
        )
        is_dirty = False
        if not is_bare:
            is_dirty = bool(self._git(repo_path, "status", "--porcelain"))

        return RepoInfo(
            path=repo_path,
            remote_url=remote_url,
            current_branch=self.get_current_branch(repo_path),
            head=self._git(repo_path, "rev-parse", "HEAD"),
            is_bare=is_bare,
            is_dirty=is_dirty,
            ns=infer_ns_from_repo(remote_url or repo_path),
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def get_commit(self, repo_path: str, ref: str) -> Commit:
        output = self._git(
            repo_path, "log", "-1", f"--format={_LOG_FORMAT}", ref, "--"
        )
        commits = parse_log_output(output)
        if not commits:
            raise GitNotFoundError(f"Commit not found: {ref}")
        return commits[0]

    def get_commits(
        self, repo_path: str, from_commit: str, to_commit: str
    ) -> list[Commit]:
        rev_range = f"{from_commit}..{to_commit}" if from_commit else to_commit
        output = self._git(
            repo_path,
            "log",
            f"--format={_LOG_FORMAT}",
            "--reverse",
            rev_range,
            "--",
        )
        return parse_log_output(output)

    def _empty_tree(self, repo_path: str) -> str:
        """Object name of the empty tree in this repository's hash format."""
        if repo_path not in self._empty_trees:
            result = self._run(
                ["hash-object", "-t", "tree", "--stdin"],
                repo_path,
                stdin=b"",
            )
            self._empty_trees[repo_path] = result.stdout.decode().strip()
        return self._empty_trees[repo_path]

    def get_diff(
        self, repo_path: str, from_commit: str, to_commit: str
    ) -> Diff:
        base = from_commit or self._empty_tree(repo_path)
        common = ["diff", "--no-color", "--no-ext-diff", "-M"]

        name_status = self._run(
            [*common, "--name-status", "-z", base, to_commit], repo_path
        ).stdout.decode("utf-8", errors="replace")
        numstat = self._run(
            [*common, "--numstat", "-z", base, to_commit], repo_path
        ).stdout.decode("utf-8", errors="replace")
        patch = self._run([*common, base, to_commit], repo_path).stdout

        files = build_file_changes(name_status, numstat)
        return Diff(
            from_commit=from_commit,
            to_commit=to_commit,
            files=files,
            patch=decode_content(patch),
            stats=DiffStats(
                files_changed=len(files),
                insertions=sum(f.additions for f in files),
                deletions=sum(f.deletions for f in files),
            ),
        )

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def get_file_content(self, repo_path: str, path: str, ref: str) -> str:
        result = self._run(["show", f"{ref}:{path}"], repo_path, check=False)
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace")
            command = f"git show {ref}:{path}"
            if any(marker in stderr for marker in _MISSING_PATH_MARKERS):
                raise GitNotFoundError(
                    f"File not found: {path} at {ref}",
                    stderr=stderr,
                    exit_code=result.returncode,
                    command=command,
                )
            raise GitError(
                f"Git command failed: {command}",
                stderr=stderr,
                exit_code=result.returncode,
                command=command,
            )
        return decode_content(result.stdout).rstrip("\r\n")

    def list_files(
        self, repo_path: str, ref: str, pattern: str | None = None
    ) -> list[str]:
        output = self._run(
            ["ls-tree", "-r", "--name-only", "-z", ref], repo_path
        ).stdout.decode("utf-8", errors="replace")
        files = [f for f in output.split("\0") if f]
        if pattern:
            files = [f for f in files if match_glob(f, pattern)]
        return files
