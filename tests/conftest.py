"""Shared pytest fixtures for mdx-git-sync tests."""

import shutil
import subprocess
from pathlib import Path

import pytest
from dotenv import load_dotenv

from mdx_git_sync.errors import GitError, GitNotFoundError
from mdx_git_sync.git.models import (
    CloneOptions,
    Commit,
    Diff,
    FileChange,
    FileStatus,
    RepoInfo,
)
from mdx_git_sync.git.remote import infer_ns_from_repo
from mdx_git_sync.globs import match_glob
from mdx_git_sync.providers.local import LocalProvider

load_dotenv()

GIT_AVAILABLE = shutil.which("git") is not None


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "requires_git: test needs a git binary on PATH"
    )


def pytest_collection_modifyitems(config, items):
    """Skip git-backed tests when no git binary is installed."""
    if GIT_AVAILABLE:
        return
    skip_git = pytest.mark.skip(reason="git binary not found on PATH")
    for item in items:
        if "requires_git" in item.keywords:
            item.add_marker(skip_git)


@pytest.fixture
def provider():
    """In-memory local provider."""
    return LocalProvider()


class GitRepo:
    """Small helper for building real repositories in tests."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.git("init", "-q", "-b", "main")
        self.git("config", "user.name", "Test Author")
        self.git("config", "user.email", "author@example.com")
        self.git("config", "commit.gpgsign", "false")

    def git(self, *args: str) -> str:
        result = subprocess.run(
            ["git", *args],
            cwd=self.path,
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout.strip()

    def write(self, rel: str, content: str) -> None:
        target = self.path / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")

    def commit(self, message: str, files: dict[str, str | None]) -> str:
        """Write (or delete, for ``None``) *files* and commit them."""
        for rel, content in files.items():
            if content is None:
                self.git("rm", "-q", rel)
            else:
                self.write(rel, content)
                self.git("add", rel)
        self.git("commit", "-q", "-m", message)
        return self.git("rev-parse", "HEAD")


@pytest.fixture
def git_repo(tmp_path):
    """Empty repository on branch ``main`` with an identity configured."""
    repo_dir = tmp_path / "repo"
    repo_dir.mkdir()
    return GitRepo(repo_dir)


class FakeGitExecutor:
    """Scripted in-memory repository implementing ``GitExecutor``.

    ``commit()`` appends a commit whose tree is the previous tree plus
    the given changes (``None`` deletes a file).  Renames given to
    ``commit()`` are reported as such when diffing against the parent.
    ``refs`` maps extra names (``origin/main``) to commits and ``head``
    pins ``HEAD`` to an older commit, to model a checkout behind its
    remote.
    """

    def __init__(
        self,
        path: str = "/srv/repos/content",
        remote: str | None = "https://github.com/acme/content.git",
    ) -> None:
        self.path = path
        self.remote = remote
        self.commits: list[Commit] = []
        self.trees: dict[str, dict[str, str]] = {}
        self.renames: dict[str, dict[str, str]] = {}
        self.fail_diff: set[str] = set()
        self.clone_error: Exception | None = None
        self.checkout_error: Exception | None = None
        self.refs: dict[str, str] = {}
        self.head: str | None = None
        self.clones: list[tuple[str, str, CloneOptions | None]] = []
        self.fetches: list[str] = []
        self.checkouts: list[tuple[str, str]] = []

    # -- scripting -------------------------------------------------------

    def commit(
        self,
        message: str,
        files: dict[str, str | None] | None = None,
        renames: dict[str, str] | None = None,
    ) -> str:
        parent = self.commits[-1].hash if self.commits else None
        tree = dict(self.trees[parent]) if parent else {}
        for new_path, old_path in (renames or {}).items():
            tree[new_path] = tree.pop(old_path)
        for path, content in (files or {}).items():
            if content is None:
                tree.pop(path, None)
            else:
                tree[path] = content

        number = len(self.commits) + 1
        sha = f"{number:040x}"
        self.commits.append(
            Commit(
                hash=sha,
                short_hash=sha[-7:],
                message=message,
                author_name="Test Author",
                author_email="author@example.com",
                timestamp=f"2024-01-{number:02d}T12:00:00+00:00",
                parents=[parent] if parent else [],
            )
        )
        self.trees[sha] = tree
        self.renames[sha] = dict(renames or {})
        return sha

    def _index(self, ref: str) -> int:
        if ref == "HEAD" and self.commits:
            ref = self.head or self.commits[-1].hash
        ref = self.refs.get(ref, ref)
        for i, c in enumerate(self.commits):
            if c.hash == ref or c.short_hash == ref:
                return i
        raise GitError(f"Git command failed: git log {ref}", stderr="unknown revision")

    # -- GitExecutor -----------------------------------------------------

    def clone(self, url, dest, options=None):
        if self.clone_error is not None:
            raise self.clone_error
        self.clones.append((url, dest, options))
        Path(dest).mkdir(parents=True, exist_ok=True)

    def fetch(self, repo_path, remote="origin"):
        self.fetches.append(repo_path)

    def checkout(self, repo_path, ref):
        if self.checkout_error is not None:
            raise self.checkout_error
        self.checkouts.append((repo_path, ref))

    def is_repo(self, path):
        return path == self.path or any(dest == path for _, dest, _ in self.clones)

    def get_repo_info(self, repo_path):
        return RepoInfo(
            path=repo_path,
            remote_url=self.remote or "",
            current_branch="main",
            head=self.commits[self._index("HEAD")].hash if self.commits else "",
            ns=infer_ns_from_repo(self.remote or repo_path),
        )

    def get_current_branch(self, repo_path):
        return "main"

    def get_remote_url(self, repo_path, remote="origin"):
        if self.remote is None:
            raise GitError("Git command failed: git remote get-url origin")
        return self.remote

    def get_commit(self, repo_path, ref):
        if not self.commits:
            raise GitError("Git command failed: git log", stderr="bad default revision 'HEAD'")
        return self.commits[self._index(ref)]

    def get_commits(self, repo_path, from_commit, to_commit):
        end = self._index(to_commit)
        start = self._index(from_commit) + 1 if from_commit else 0
        return self.commits[start : end + 1]

    def get_diff(self, repo_path, from_commit, to_commit):
        if to_commit in self.fail_diff:
            raise GitError(f"Git command failed: git diff {to_commit}", stderr="bad object")
        old = self.trees[from_commit] if from_commit else {}
        new = self.trees[to_commit]
        renames = {}
        target = self.commits[self._index(to_commit)]
        if target.first_parent == from_commit:
            renames = self.renames.get(to_commit, {})
        renamed_from = set(renames.values())

        files: list[FileChange] = []
        for path in sorted(set(old) | set(new)):
            if path in renames:
                files.append(
                    FileChange(
                        path=path,
                        previous_path=renames[path],
                        status=FileStatus.RENAMED,
                    )
                )
            elif path in renamed_from:
                continue
            elif path not in old:
                files.append(FileChange(path=path, status=FileStatus.ADDED, additions=1))
            elif path not in new:
                files.append(FileChange(path=path, status=FileStatus.DELETED, deletions=1))
            elif old[path] != new[path]:
                files.append(
                    FileChange(path=path, status=FileStatus.MODIFIED, additions=1, deletions=1)
                )
        return Diff(from_commit=from_commit, to_commit=to_commit, files=files)

    def get_file_content(self, repo_path, path, ref):
        tree = self.trees.get(ref, {})
        if path not in tree:
            raise GitNotFoundError(f"File not found: {path} at {ref}")
        return tree[path]

    def list_files(self, repo_path, ref, pattern=None):
        files = sorted(self.trees.get(ref, {}))
        if pattern:
            files = [f for f in files if match_glob(f, pattern)]
        return files


@pytest.fixture
def fake_git():
    """Empty scripted repository at ``/srv/repos/content``."""
    return FakeGitExecutor()
