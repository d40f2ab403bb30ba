"""Frontmatter extraction for MDX/Markdown documents.

Frontmatter is a leading block delimited by ``---`` lines.  Each
``key: value`` line inside it is read as one flat entry; values are
coerced, in priority order, to:

1. boolean (``true`` / ``false``)
2. number (integer or decimal, optional exponent)
3. quoted string (``"..."`` or ``'...'``, quotes removed)
4. bracket array (``[a, b, c]``, items trimmed, empty items dropped)

Anything else stays a plain string.  Keys starting with ``$`` are schema
hints and lose the prefix (``$type`` -> ``type``).

Nested YAML is not interpreted; this is the flat subset content files in
this system use, and coercion is exact rather than YAML's (``2024-01-01``
stays a string, ``on``/``yes`` are not booleans).
"""

from __future__ import annotations

import re
from typing import Any

_FRONTMATTER_RE = re.compile(r"^---\r?\n(.*?)\r?\n---(?:\r?\n|$)", re.DOTALL)
_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?([eE][+-]?\d+)?$")


def coerce_value(raw: str) -> Any:
    """Coerce one frontmatter value string."""
    value = raw.strip()

    if value == "true":
        return True
    if value == "false":
        return False

    if _NUMBER_RE.match(value):
        if "." in value or "e" in value or "E" in value:
            return float(value)
        return int(value)

    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]

    if value.startswith("[") and value.endswith("]"):
        return [item.strip() for item in value[1:-1].split(",") if item.strip()]

    return value


def extract_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Split *content* into ``(data, body)``.

    Documents without a frontmatter block return ``({}, content)``.
    """
    text = content.lstrip("\ufeff")
    match = _FRONTMATTER_RE.match(text)
    if not match:
        return {}, content

    data: dict[str, Any] = {}
    for line in match.group(1).split("\n"):
        line = line.rstrip("\r")
        if line.lstrip().startswith("#") or ":" not in line:
            continue
        key, _, raw = line.partition(":")
        key = key.strip()
        if not key:
            continue
        if key.startswith("$"):
            key = key[1:]
        data[key] = coerce_value(raw)

    return data, text[match.end():]
