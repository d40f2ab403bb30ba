"""Remote provider: ClickHouse over its HTTP interface.

Every statement is POSTed to the server with ``requests``.  Values are
never spliced into SQL text; they travel as server-side query parameters
(``{name:Type}`` placeholders bound from ``param_<name>`` URL
arguments).  Reads use ``FORMAT JSON``; inserts send ``JSONEachRow``
bodies.

Tables (created by ``ensure_schema()``):

- ``Things``    -- append-only entity versions, ``ORDER BY (url, version)``
- ``SyncState`` -- one checkpoint per (repo, branch), replacing
- ``Actions``   -- sync audit actions, updated by mutation
- ``Events``    -- audit events
"""

from __future__ import annotations

import json
import logging
import re
import threading
from datetime import datetime, timezone
from typing import Any

import requests

from mdx_git_sync.errors import ProviderError, VersionConflictError
from mdx_git_sync.providers.base import ActionStatus, new_action_id, thing_url
from mdx_git_sync.sync.models import (
    CreateSyncActionOptions,
    EntitySnapshot,
    Operation,
    StagedChange,
    SyncEvent,
    SyncState,
    SyncStats,
    utcnow,
)
from mdx_git_sync.sync.pipeline import create_pipeline

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_PARAM_ESCAPES = str.maketrans(
    {"\\": "\\\\", "\t": "\\t", "\n": "\\n", "\r": "\\r", "\0": "\\0"}
)

SCHEMA_STATEMENTS = (
    "CREATE DATABASE IF NOT EXISTS {db}",
    """CREATE TABLE IF NOT EXISTS {db}.Things (
  url String,
  ns LowCardinality(String),
  type LowCardinality(String),
  id String,
  version UInt64,
  event LowCardinality(String),
  data String,
  content String,
  hash String,
  commit String,
  deleted UInt8,
  relationships String,
  search String,
  ts DateTime64(3, 'UTC')
) ENGINE = MergeTree
ORDER BY (url, version)""",
    """CREATE TABLE IF NOT EXISTS {db}.SyncState (
  repo String,
  ns LowCardinality(String),
  branch LowCardinality(String),
  lastCommit String,
  lastSyncAt DateTime64(3, 'UTC'),
  totalFiles UInt64 DEFAULT 0,
  totalCommits UInt64 DEFAULT 0,
  updatedAt DateTime64(3, 'UTC') DEFAULT now64(3)
) ENGINE = ReplacingMergeTree(updatedAt)
ORDER BY (repo, branch)""",
    """CREATE TABLE IF NOT EXISTS {db}.Actions (
  id String,
  ns LowCardinality(String),
  action LowCardinality(String),
  actor String,
  repo String,
  branch LowCardinality(String),
  status LowCardinality(String),
  fromCommit String,
  commit String,
  commitMessage String,
  commitAuthor String,
  commitEmail String,
  commitTs String,
  objects String,
  objectsCount UInt64,
  progress UInt64,
  total UInt64,
  pipeline String,
  result String,
  error String,
  createdAt DateTime64(3, 'UTC'),
  updatedAt DateTime64(3, 'UTC'),
  completedAt Nullable(DateTime64(3, 'UTC'))
) ENGINE = MergeTree
ORDER BY id""",
    """CREATE TABLE IF NOT EXISTS {db}.Events (
  ulid String,
  ns LowCardinality(String),
  actor String,
  event LowCardinality(String),
  correlationId String,
  data String,
  ts DateTime64(3, 'UTC')
) ENGINE = MergeTree
ORDER BY (ns, ts)""",
)


def _param_value(value: Any) -> str:
    """Render a value in the escaped text form query parameters expect."""
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value).translate(_PARAM_ESCAPES)


def _format_ts(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]


def _parse_ts(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ClickHouseProvider:
    """``SyncProvider`` backed by a ClickHouse server.

    Args:
        url: HTTP(S) endpoint, e.g. ``http://localhost:8123``.
        database: Database holding the sync tables.
        username: Basic-auth user (``None`` for the server default).
        password: Basic-auth password.
        insecure: Skip TLS certificate verification.
        timeout: ``(connect, read)`` timeout in seconds.
    """

    name = "clickhouse"

    def __init__(
        self,
        url: str,
        database: str = "mdxdb",
        username: str | None = None,
        password: str | None = None,
        insecure: bool = False,
        timeout: tuple[float, float] = (10, 60),
    ) -> None:
        if not _IDENTIFIER_RE.match(database):
            raise ValueError(f"Invalid ClickHouse database name: {database!r}")
        self.url = url.rstrip("/") + "/"
        self.database = database
        self.username = username
        self.password = password
        self.insecure = insecure
        self.timeout = timeout
        self._thread_local = threading.local()

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    @property
    def session(self) -> requests.Session:
        """Thread-local HTTP session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        if self.username:
            session.auth = (self.username, self.password or "")
        session.verify = not self.insecure
        return session

    def _post(
        self,
        sql: str,
        params: dict[str, Any] | None = None,
        body: str | None = None,
    ) -> requests.Response:
        query: dict[str, str] = {
            "database": self.database,
            "date_time_input_format": "best_effort",
        }
        for key, value in (params or {}).items():
            query[f"param_{key}"] = _param_value(value)

        if body is None:
            data = sql
        else:
            query["query"] = sql
            data = body

        try:
            response = self.session.post(
                self.url,
                params=query,
                data=data.encode("utf-8"),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise ProviderError(f"ClickHouse request failed: {exc}") from exc

        if response.status_code >= 400:
            raise ProviderError(
                f"ClickHouse returned HTTP {response.status_code}: "
                f"{response.text.strip()[:500]}"
            )
        return response

    def _query(
        self, sql: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        response = self._post(f"{sql}\nFORMAT JSON", params)
        try:
            return response.json().get("data", [])
        except ValueError as exc:
            raise ProviderError(f"Invalid JSON from ClickHouse: {exc}") from exc

    def _command(self, sql: str, params: dict[str, Any] | None = None) -> None:
        self._post(sql, params)

    def _insert(self, table: str, rows: list[dict[str, Any]]) -> None:
        body = "\n".join(json.dumps(row, default=str) for row in rows)
        self._post(
            f"INSERT INTO {self.database}.{table} FORMAT JSONEachRow", body=body
        )

    def ensure_schema(self) -> None:
        """Create the database and tables if they do not exist."""
        for statement in SCHEMA_STATEMENTS:
            self._command(statement.format(db=self.database))
        logger.info("ClickHouse schema ready in database %s", self.database)

    # ------------------------------------------------------------------
    # SyncProvider
    # ------------------------------------------------------------------

    def is_connected(self) -> bool:
        try:
            self._query("SELECT 1 AS ok")
        except ProviderError as exc:
            logger.debug("ClickHouse not reachable: %s", exc)
            return False
        return True

    def get_sync_state(self, repo: str, branch: str) -> SyncState | None:
        rows = self._query(
            f"SELECT repo, ns, branch, lastCommit, lastSyncAt, totalFiles, "
            f"totalCommits FROM {self.database}.SyncState FINAL "
            f"WHERE repo = {{repo:String}} AND branch = {{branch:String}} "
            f"LIMIT 1",
            {"repo": repo, "branch": branch},
        )
        if not rows:
            return None
        row = rows[0]
        return SyncState(
            repo=row["repo"],
            ns=row["ns"],
            branch=row["branch"],
            last_commit=row["lastCommit"],
            last_sync_at=_parse_ts(row["lastSyncAt"]),
            total_files=int(row["totalFiles"]),
            total_commits=int(row["totalCommits"]),
        )

    def save_sync_state(self, state: SyncState) -> None:
        self._insert(
            "SyncState",
            [
                {
                    "repo": state.repo,
                    "ns": state.ns,
                    "branch": state.branch,
                    "lastCommit": state.last_commit,
                    "lastSyncAt": _format_ts(state.last_sync_at),
                    "totalFiles": state.total_files,
                    "totalCommits": state.total_commits,
                    "updatedAt": _format_ts(utcnow()),
                }
            ],
        )

    def create_sync_action(self, options: CreateSyncActionOptions) -> str:
        action_id = new_action_id()
        now = _format_ts(utcnow())
        commit = options.commit
        pipeline = options.pipeline or create_pipeline()
        self._insert(
            "Actions",
            [
                {
                    "id": action_id,
                    "ns": options.ns,
                    "action": "sync",
                    "actor": options.actor,
                    "repo": options.repo,
                    "branch": options.branch,
                    "status": ActionStatus.ACTIVE.value,
                    "fromCommit": options.from_commit,
                    "commit": options.to_commit,
                    "commitMessage": commit.message if commit else "",
                    "commitAuthor": commit.author_name if commit else "",
                    "commitEmail": commit.author_email if commit else "",
                    "commitTs": commit.timestamp if commit else "",
                    "objects": json.dumps(
                        [o.model_dump(mode="json") for o in options.objects]
                    ),
                    "objectsCount": len(options.objects),
                    "progress": 0,
                    "total": options.total,
                    "pipeline": pipeline.model_dump_json(),
                    "result": "{}",
                    "error": "",
                    "createdAt": now,
                    "updatedAt": now,
                    "completedAt": None,
                }
            ],
        )
        return action_id

    def update_action_progress(
        self, action_id: str, processed: int, total: int
    ) -> None:
        self._command(
            f"ALTER TABLE {self.database}.Actions UPDATE "
            f"progress = {{processed:UInt64}}, total = {{total:UInt64}}, "
            f"updatedAt = now64(3) WHERE id = {{id:String}}",
            {"processed": processed, "total": total, "id": action_id},
        )

    def complete_action(self, action_id: str, stats: SyncStats) -> None:
        self._command(
            f"ALTER TABLE {self.database}.Actions UPDATE "
            f"status = {{status:String}}, result = {{result:String}}, "
            f"completedAt = now64(3), updatedAt = now64(3) "
            f"WHERE id = {{id:String}}",
            {
                "status": ActionStatus.COMPLETED.value,
                "result": stats.model_dump_json(),
                "id": action_id,
            },
        )

    def fail_action(self, action_id: str, error: str) -> None:
        self._command(
            f"ALTER TABLE {self.database}.Actions UPDATE "
            f"status = {{status:String}}, error = {{error:String}}, "
            f"completedAt = now64(3), updatedAt = now64(3) "
            f"WHERE id = {{id:String}}",
            {
                "status": ActionStatus.FAILED.value,
                "error": error,
                "id": action_id,
            },
        )

    def _check_version(self, url: str, version: int) -> None:
        current = self.get_thing(url)
        if current is not None and version <= current.version:
            raise VersionConflictError(url, version, current.version)

    def upsert_thing(
        self,
        ns: str,
        change: StagedChange,
        *,
        version: int,
        commit: str = "",
    ) -> None:
        if not change.id:
            raise ProviderError(f"Cannot write {change.path}: entity id is empty")
        url = thing_url(ns, change.type, change.id)
        self._check_version(url, version)
        self._insert(
            "Things",
            [
                {
                    "url": url,
                    "ns": ns,
                    "type": change.type,
                    "id": change.id,
                    "version": version,
                    "event": (
                        "created"
                        if change.operation == Operation.CREATE
                        else "updated"
                    ),
                    "data": json.dumps(change.data or {}, default=str),
                    "content": change.content or "",
                    "hash": change.hash or "",
                    "commit": commit,
                    "deleted": 0,
                    "relationships": json.dumps(
                        [r.model_dump() for r in change.relationships or []]
                    ),
                    "search": (
                        change.search_metadata.model_dump_json()
                        if change.search_metadata
                        else "{}"
                    ),
                    "ts": _format_ts(utcnow()),
                }
            ],
        )

    def delete_thing(
        self,
        ns: str,
        type_: str,
        id_: str,
        *,
        version: int,
        commit: str = "",
    ) -> None:
        url = thing_url(ns, type_, id_)
        self._check_version(url, version)
        self._insert(
            "Things",
            [
                {
                    "url": url,
                    "ns": ns,
                    "type": type_,
                    "id": id_,
                    "version": version,
                    "event": "deleted",
                    "data": "{}",
                    "content": "",
                    "hash": "",
                    "commit": commit,
                    "deleted": 1,
                    "relationships": "[]",
                    "search": "{}",
                    "ts": _format_ts(utcnow()),
                }
            ],
        )

    def get_thing(self, url: str) -> EntitySnapshot | None:
        rows = self._query(
            f"SELECT url, version, hash, commit, deleted, ts "
            f"FROM {self.database}.Things WHERE url = {{url:String}} "
            f"ORDER BY version DESC LIMIT 1",
            {"url": url},
        )
        if not rows:
            return None
        row = rows[0]
        return EntitySnapshot(
            url=row["url"],
            version=int(row["version"]),
            hash=row.get("hash") or None,
            updated_at=_parse_ts(row["ts"]),
            commit=row.get("commit", ""),
            deleted=bool(int(row.get("deleted", 0))),
        )

    def emit_event(self, event: SyncEvent) -> None:
        self._insert(
            "Events",
            [
                {
                    "ulid": new_action_id(),
                    "ns": event.ns,
                    "actor": event.actor,
                    "event": event.type,
                    "correlationId": event.correlation_id,
                    "data": json.dumps(event.data, default=str),
                    "ts": _format_ts(event.timestamp),
                }
            ],
        )
