"""Repository reference helpers: namespace inference, URL resolution, auth.

A repository can be referenced in several shapes:

- ``https://github.com/org/repo(.git)`` (any ``scheme://`` URL)
- ``git@github.com:org/repo.git`` (scp-style)
- ``github.com/org/repo`` (host-qualified path)
- ``org/repo`` (shorthand, expanded to the default host)
- a local filesystem path

All functions here are pure string manipulation; nothing touches git.
"""

from __future__ import annotations

import re
from pathlib import Path
from urllib.parse import quote, urlsplit

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")
# user@host:path, but not a scheme URL and not a Windows drive letter
_SCP_RE = re.compile(r"^(?:[^@/\s]+@)?([^:/\s]{2,}):(?!//)(.+)$")
_SHORTHAND_RE = re.compile(r"^[\w.-]+/[\w.-]+$")
_CREDENTIALS_RE = re.compile(r"(?P<scheme>[A-Za-z][A-Za-z0-9+.-]*://)[^/@\s]+@")

_LOCAL_PREFIXES = ("/", "./", "../", "~", "file://")


def _remote_parts(repo: str) -> list[str]:
    """Split a repository reference into ``[host, org, ..., repo]`` parts."""
    text = repo.strip()

    if _SCHEME_RE.match(text):
        parsed = urlsplit(text)
        parts = [parsed.hostname or ""]
        parts.extend(parsed.path.split("/"))
    else:
        scp = _SCP_RE.match(text)
        if scp:
            parts = [scp.group(1), *scp.group(2).split("/")]
        else:
            parts = text.split("/")

    parts = [p for p in parts if p]
    if parts:
        parts[-1] = parts[-1].removesuffix(".git")
    return [p for p in parts if p]


def infer_ns_from_repo(repo: str) -> str:
    """Derive a namespace from a remote URL or local path.

    ``host/org/repo`` becomes ``repo.org.host``; extra path segments
    (sub-groups) are folded into the repo part with ``-``.  Without a
    host (``org/repo``) the host is ``local``.

    Examples:
        >>> infer_ns_from_repo("https://github.com/org/repo")
        'repo.org.github.com'
        >>> infer_ns_from_repo("git@github.com:org/repo.git")
        'repo.org.github.com'
        >>> infer_ns_from_repo("org/repo")
        'repo.org.local'
    """
    parts = _remote_parts(repo)

    if len(parts) >= 3:
        host, org, *rest = parts
        return f"{'-'.join(rest)}.{org}.{host}"

    if len(parts) == 2:
        org, name = parts
        return f"{name}.{org}.local"

    return ".".join(parts) or "local"


def parse_git_remote(remote: str) -> dict[str, str]:
    """Split a remote into ``host``, ``org``, ``repo`` and ``ns``.

    Missing components default to ``local`` (host) and ``unknown``.
    """
    parts = _remote_parts(remote)
    if len(parts) >= 3:
        host, org, rest = parts[0], parts[1], "-".join(parts[2:])
    elif len(parts) == 2:
        host, org, rest = "local", parts[0], parts[1]
    elif len(parts) == 1:
        host, org, rest = "local", "unknown", parts[0]
    else:
        host, org, rest = "local", "unknown", "unknown"
    return {
        "host": host,
        "org": org,
        "repo": rest,
        "ns": infer_ns_from_repo(remote),
    }


def is_local_reference(repo: str) -> bool:
    """Return ``True`` if *repo* names a local filesystem path."""
    if repo.startswith(_LOCAL_PREFIXES):
        return True
    if _SCHEME_RE.match(repo):
        return False
    return Path(repo).expanduser().exists()


def resolve_repo_url(repo: str, default_host: str = "github.com") -> str:
    """Normalise a repository reference into something ``git clone`` accepts.

    URLs and scp-style remotes are returned unchanged, local paths are
    made absolute (``~`` expanded, symlinks and ``..`` resolved) so one
    checkout always maps to one checkpoint key, and ``org/repo``
    shorthand is expanded to ``https://<default_host>/org/repo.git``.

    Raises:
        ValueError: If *repo* is empty or whitespace.
    """
    text = repo.strip()
    if not text:
        raise ValueError("Repository reference cannot be empty")

    if _SCHEME_RE.match(text):
        return text

    if is_local_reference(text):
        if text.startswith("file://"):
            return text
        return str(Path(text).expanduser().resolve())

    if _SCP_RE.match(text):
        return text

    if _SHORTHAND_RE.match(text):
        return f"https://{default_host}/{text.removesuffix('.git')}.git"

    return text


def inject_token(url: str, token: str) -> str:
    """Embed *token* as basic-auth credentials in an HTTPS *url*.

    Non-HTTPS URLs are returned unchanged (SSH remotes authenticate with
    keys, local paths need nothing).
    """
    if not token or not url.startswith("https://"):
        return url

    parsed = urlsplit(url)
    host = parsed.hostname or ""
    if parsed.port:
        host = f"{host}:{parsed.port}"
    netloc = f"oauth2:{quote(token, safe='')}@{host}"
    return parsed._replace(netloc=netloc).geturl()


def redact_credentials(text: str) -> str:
    """Mask ``user:password@`` userinfo in any URL inside *text*."""
    return _CREDENTIALS_RE.sub(r"\g<scheme>***@", text)


def repo_slug(repo: str) -> str:
    """Short filesystem-safe name for a repository (``org-repo``)."""
    parsed = parse_git_remote(repo)
    slug = f"{parsed['org']}-{parsed['repo']}"
    return re.sub(r"[^\w.-]+", "-", slug).strip("-") or "repo"
