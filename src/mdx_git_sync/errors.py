"""Exception types for mdx_git_sync.

Convention:
- ``GitError`` and its subclasses -- a git invocation failed.  They carry
  the command line (with credentials redacted), the captured stderr and
  the exit code so callers never have to re-run the command to see why.
- ``SyncSetupError`` -- the run could not start (bad repository
  reference, clone failure, unreachable provider).  This is the only
  error a sync run raises; per-commit and per-file failures are
  collected into ``SyncResult.errors`` instead.
- ``ProviderError`` -- the database provider rejected a call.
"""

from __future__ import annotations


class MdxSyncError(Exception):
    """Base class for all errors raised by mdx_git_sync."""


class GitError(MdxSyncError):
    """A git command exited non-zero (or could not be started).

    Attributes:
        stderr: Captured standard error of the failed command.
        exit_code: Process exit status, or ``None`` when the process
            never finished (timeout, missing binary).
        command: The command line that failed, credentials redacted.
    """

    def __init__(
        self,
        message: str,
        stderr: str = "",
        exit_code: int | None = None,
        command: str = "",
    ) -> None:
        super().__init__(message)
        self.stderr = stderr
        self.exit_code = exit_code
        self.command = command

    def __str__(self) -> str:
        base = super().__str__()
        detail = self.stderr.strip()
        if detail:
            return f"{base}: {detail}"
        return base


class GitNotFoundError(GitError):
    """The requested object (usually a file at a ref) does not exist."""


class GitTimeoutError(GitError):
    """A git command exceeded its timeout and was killed."""


class SyncSetupError(MdxSyncError):
    """A sync run could not be set up; nothing was written."""


class ProviderError(MdxSyncError):
    """The database provider failed to perform an operation."""


class VersionConflictError(ProviderError):
    """A write carried a version that is not newer than the stored one."""

    def __init__(self, url: str, version: int, current: int) -> None:
        super().__init__(
            f"Version {version} for {url} is not greater than stored version {current}"
        )
        self.url = url
        self.version = version
        self.current = current
