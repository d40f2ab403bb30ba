"""Anchored glob matching for repository-relative paths.

Patterns are compiled into regular expressions with exactly three
wildcards:

- ``**`` -- any characters, including ``/`` (any depth).
- ``*``  -- any characters except ``/``.
- ``?``  -- exactly one character except ``/``.

Everything else matches literally and the whole path must match.
Unlike ``fnmatch``, ``posts/*.mdx`` does not match ``posts/a/b.mdx``.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable


@lru_cache(maxsize=256)
def compile_glob(pattern: str) -> re.Pattern[str]:
    """Compile *pattern* into an anchored regular expression."""
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if char == "*":
            if pattern.startswith("**", i):
                parts.append(".*")
                i += 2
                continue
            parts.append("[^/]*")
        elif char == "?":
            parts.append("[^/]")
        else:
            parts.append(re.escape(char))
        i += 1
    return re.compile("^" + "".join(parts) + "$")


def match_glob(path: str, pattern: str) -> bool:
    """Return ``True`` if *path* matches the glob *pattern* exactly."""
    return compile_glob(pattern).match(path) is not None


def should_include(
    path: str,
    include: Iterable[str] | None = None,
    exclude: Iterable[str] | None = None,
) -> bool:
    """Apply include/exclude filters to *path*.

    Exclude patterns are checked first and always win.  With no include
    patterns every non-excluded path is included.
    """
    for pattern in exclude or ():
        if match_glob(path, pattern):
            return False

    include = list(include or ())
    if not include:
        return True
    return any(match_glob(path, pattern) for pattern in include)
