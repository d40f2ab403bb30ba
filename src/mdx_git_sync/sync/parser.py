"""Change parser: turn git file changes into staged entity changes.

For every MDX/Markdown file touched by a commit the parser resolves the
entity identity (``type``/``id`` from frontmatter, else inferred from the
path), hashes the content, and derives relationships and search metadata.

Identity inference from paths:

- ``posts/hello.mdx`` -> type ``Post``, id ``hello``
- ``docs/categories/a.md`` -> type ``Category``, id ``a``
- ``content/[Post].mdx`` -> type ``Post``, no id
- ``README.md`` -> type ``Readme``, id ``README``
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping

import mistune

from mdx_git_sync.errors import GitNotFoundError
from mdx_git_sync.git.executor import GitExecutor
from mdx_git_sync.git.models import Commit, FileChange, FileStatus
from mdx_git_sync.globs import should_include
from mdx_git_sync.sync.frontmatter import extract_frontmatter
from mdx_git_sync.sync.models import (
    Operation,
    Relationship,
    SearchMetadata,
    StagedChange,
)

logger = logging.getLogger(__name__)

_MDX_EXT_RE = re.compile(r"\.(mdx?|md)$", re.IGNORECASE)
_BRACKET_RE = re.compile(r"\[([A-Z][a-zA-Z0-9]*)\]")
_TYPE_REF_RE = re.compile(r"^[A-Z][a-zA-Z0-9]*$")
_WIKI_LINK_RE = re.compile(r"\[\[([A-Z][a-zA-Z0-9]*/[a-zA-Z0-9_-]+)\]\]")
_SIBILANT_PLURAL_RE = re.compile(r"(ch|sh|ss|x|z)es$")

DESCRIPTION_MAX_LENGTH = 300

_REVERSE_PREDICATES = {
    "author": "authored",
    "authors": "authored",
    "parent": "children",
    "category": "items",
    "categories": "items",
    "tag": "tagged",
    "tags": "tagged",
    "relatedTo": "relatedTo",
}

_STATUS_OPERATIONS = {
    FileStatus.ADDED: Operation.CREATE,
    FileStatus.MODIFIED: Operation.UPDATE,
    FileStatus.DELETED: Operation.DELETE,
    FileStatus.RENAMED: Operation.UPDATE,
    FileStatus.COPIED: Operation.CREATE,
}

_markdown = mistune.create_markdown(renderer=None)


@dataclass(frozen=True)
class ParserOptions:
    """Options controlling which files are staged and what is extracted.

    Attributes:
        ns: Namespace used for relationship target URLs.
        include: Glob patterns a path must match (empty = everything).
        exclude: Glob patterns that reject a path; checked first.
        extract_relationships: Populate ``StagedChange.relationships``.
        extract_search: Populate ``StagedChange.search_metadata``.
        content_overrides: Per-path content staged instead of git's.
        skip_paths: Exact paths never staged.
    """

    ns: str
    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    extract_relationships: bool = True
    extract_search: bool = True
    content_overrides: Mapping[str, str] = field(default_factory=dict)
    skip_paths: frozenset[str] = frozenset()


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------


def is_mdx_file(path: str) -> bool:
    """Return ``True`` for ``.md``/``.mdx`` paths (case-insensitive)."""
    return _MDX_EXT_RE.search(path) is not None


def singularize(word: str) -> str:
    """Strip common English plural suffixes."""
    if word.endswith("ies"):
        return word[:-3] + "y"
    if _SIBILANT_PLURAL_RE.search(word):
        return word[:-2]
    if word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def infer_type(path: str) -> str:
    """Infer an entity type from *path*.

    ``[Type].mdx`` bracket notation wins; otherwise the parent directory,
    capitalised and singularised; otherwise the capitalised file name.
    """
    bracket = _BRACKET_RE.search(_MDX_EXT_RE.sub("", path))
    if bracket:
        return bracket.group(1)

    parts = path.split("/")
    if len(parts) >= 2:
        return singularize((parts[-2] or "Document").capitalize())

    return (_MDX_EXT_RE.sub("", parts[-1]) or "document").capitalize()


def infer_id(path: str) -> str:
    """File name without extension; ``""`` for bracket-notation files."""
    stem = _MDX_EXT_RE.sub("", path.rsplit("/", 1)[-1])
    if stem.startswith("[") and stem.endswith("]"):
        return ""
    return stem


def hash_content(content: str) -> str:
    """SHA-256 hex digest of *content* encoded as UTF-8."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def status_to_operation(status: FileStatus) -> Operation:
    return _STATUS_OPERATIONS.get(status, Operation.UPSERT)


# ---------------------------------------------------------------------------
# Relationships
# ---------------------------------------------------------------------------


def reverse_predicate(predicate: str, target_type: str) -> str:
    """Reverse edge name for *predicate*, defaulting to the plural type."""
    return _REVERSE_PREDICATES.get(predicate, target_type.lower() + "s")


def _reference(value: Any) -> tuple[str, str] | None:
    if not isinstance(value, str) or "/" not in value:
        return None
    parts = value.split("/")
    ref_type, ref_id = parts[0], parts[1]
    if ref_type and ref_id and _TYPE_REF_RE.match(ref_type):
        return ref_type, ref_id
    return None


def extract_relationships(
    data: Mapping[str, Any], body: str, ns: str
) -> list[Relationship] | None:
    """Collect ``Type/id`` references from frontmatter and ``[[Type/id]]``
    links from the body.

    Returns ``None`` when nothing was found.
    """
    relationships: list[Relationship] = []

    for key, value in data.items():
        values = value if isinstance(value, list) else [value]
        for item in values:
            ref = _reference(item)
            if ref is None:
                continue
            ref_type, ref_id = ref
            relationships.append(
                Relationship(
                    predicate=key,
                    target=f"{ns}/{ref_type}/{ref_id}",
                    reverse=reverse_predicate(key, ref_type),
                )
            )

    for match in _WIKI_LINK_RE.finditer(body):
        ref_type, ref_id = match.group(1).split("/", 1)
        relationships.append(
            Relationship(predicate="mentions", target=f"{ns}/{ref_type}/{ref_id}")
        )

    return relationships or None


# ---------------------------------------------------------------------------
# Search metadata
# ---------------------------------------------------------------------------


def _inline_text(children: list[dict[str, Any]] | None) -> str:
    parts: list[str] = []
    for token in children or ():
        kind = token.get("type")
        if kind in ("softbreak", "linebreak"):
            parts.append(" ")
        elif "children" in token:
            parts.append(_inline_text(token["children"]))
        elif "raw" in token:
            parts.append(token["raw"])
    return " ".join("".join(parts).split())


def _first_heading(tokens: list[dict[str, Any]]) -> str | None:
    for token in tokens:
        if token.get("type") == "heading":
            return _inline_text(token.get("children")) or None
    return None


def _first_paragraph(tokens: list[dict[str, Any]]) -> str | None:
    for token in tokens:
        kind = token.get("type")
        if kind == "block_code":
            return None
        if kind == "paragraph":
            text = _inline_text(token.get("children"))
            if text:
                return text[:DESCRIPTION_MAX_LENGTH]
    return None


def _text_field(value: Any) -> str | None:
    if value is None or value == "" or isinstance(value, (list, dict)):
        return None
    return str(value)


def extract_search_metadata(
    data: Mapping[str, Any], body: str
) -> SearchMetadata:
    """Title, description and keywords for search indexing.

    Frontmatter ``title``/``description`` win; otherwise the first heading
    and the first paragraph before any code block are used.  Keywords are
    frontmatter ``keywords`` followed by ``tags``.
    """
    tokens: list[dict[str, Any]] | None = None

    title = _text_field(data.get("title"))
    description = _text_field(data.get("description"))
    if title is None or description is None:
        tokens = _markdown(body)
        if title is None:
            title = _first_heading(tokens)
        if description is None:
            description = _first_paragraph(tokens)

    keywords: list[str] = []
    for key in ("keywords", "tags"):
        value = data.get(key)
        if isinstance(value, list):
            keywords.extend(str(item) for item in value)

    return SearchMetadata(
        title=title,
        description=description,
        keywords=keywords or None,
    )


# ---------------------------------------------------------------------------
# Staging
# ---------------------------------------------------------------------------


def is_candidate(path: str, options: ParserOptions) -> bool:
    """Return ``True`` if *path* passes the file-type and glob filters."""
    if path in options.skip_paths:
        return False
    if not should_include(path, options.include, options.exclude):
        return False
    return is_mdx_file(path)


def _identity_errors(path: str, entity_id: str) -> list[str] | None:
    if entity_id:
        return None
    return [f"Cannot resolve an entity id for {path}; set 'id' in frontmatter"]


def build_staged_change(
    change: FileChange,
    content: str | None,
    options: ParserOptions,
    previous_content: str | None = None,
) -> StagedChange | None:
    """Build the staged change for one file.

    Returns ``None`` when the path is filtered out, is not MDX/Markdown,
    or (for non-deletions) no content is available.  A configured content
    override replaces *content*.
    """
    if not is_candidate(change.path, options):
        return None

    operation = status_to_operation(change.status)

    if operation == Operation.DELETE:
        entity_id = infer_id(change.path)
        return StagedChange(
            path=change.path,
            type=infer_type(change.path),
            id=entity_id,
            operation=operation,
            change=change.status,
            previous_path=change.previous_path,
            errors=_identity_errors(change.path, entity_id),
        )

    content = options.content_overrides.get(change.path, content)
    if content is None:
        return None

    data, body = extract_frontmatter(content)
    entity_type = _text_field(data.get("type")) or infer_type(change.path)
    entity_id = _text_field(data.get("id")) or infer_id(change.path)

    return StagedChange(
        path=change.path,
        type=entity_type,
        id=entity_id,
        operation=operation,
        data=data,
        content=body,
        hash=hash_content(content),
        previous_hash=(
            hash_content(previous_content)
            if previous_content is not None
            else None
        ),
        change=change.status,
        previous_path=change.previous_path,
        relationships=(
            extract_relationships(data, body, options.ns)
            if options.extract_relationships
            else None
        ),
        search_metadata=(
            extract_search_metadata(data, body)
            if options.extract_search
            else None
        ),
        errors=_identity_errors(change.path, entity_id),
    )


def _previous_content(
    executor: GitExecutor,
    repo_path: str,
    commit: Commit,
    change: FileChange,
) -> str | None:
    if not commit.first_parent or change.status not in (
        FileStatus.MODIFIED,
        FileStatus.RENAMED,
    ):
        return None
    try:
        return executor.get_file_content(
            repo_path,
            change.previous_path or change.path,
            commit.first_parent,
        )
    except GitNotFoundError:
        return None


def parse_commit_changes(
    commit: Commit,
    changes: list[FileChange],
    executor: GitExecutor,
    repo_path: str,
    options: ParserOptions,
) -> list[StagedChange]:
    """Stage every eligible file change of *commit*, in diff order.

    Files missing at the commit (possible for merge commits) are skipped.
    Other git failures propagate to the caller.
    """
    staged: list[StagedChange] = []

    for change in changes:
        if not is_candidate(change.path, options):
            continue

        content: str | None = None
        if change.status != FileStatus.DELETED:
            try:
                content = executor.get_file_content(
                    repo_path, change.path, commit.hash
                )
            except GitNotFoundError:
                logger.debug(
                    "Skipping %s: not present at %s",
                    change.path,
                    commit.short_hash,
                )
                continue

        obj = build_staged_change(
            change,
            content,
            options,
            previous_content=_previous_content(
                executor, repo_path, commit, change
            ),
        )
        if obj is not None:
            staged.append(obj)

    return staged
