"""Tests for the sync engine against a scripted repository."""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from mdx_git_sync.config_schema import GitConfig, SyncConfig, UnifiedConfig
from mdx_git_sync.errors import GitError, ProviderError, SyncSetupError
from mdx_git_sync.providers.base import ActionStatus
from mdx_git_sync.providers.local import LocalProvider
from mdx_git_sync.sync.engine import EVENT_COMPLETED, EVENT_FAILED, EVENT_STARTED, SyncEngine
from mdx_git_sync.sync.models import (
    ErrorCode,
    Operation,
    SyncDirection,
    SyncMode,
    SyncRequest,
)

REPO = "/srv/repos/content"
NS = "content.acme.github.com"
HELLO_URL = f"{NS}/Post/hello"

MUTATING_METHODS = (
    "save_sync_state",
    "create_sync_action",
    "update_action_progress",
    "complete_action",
    "fail_action",
    "upsert_thing",
    "delete_thing",
    "emit_event",
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _post(title: str, body: str = "Content", **extra: str) -> str:
    lines = [f"title: {title}", *(f"{k}: {v}" for k, v in extra.items())]
    return "---\n" + "\n".join(lines) + "\n---\n" + body


def _config(tmp_path: Path, **sync) -> UnifiedConfig:
    return UnifiedConfig(
        git=GitConfig(temp_dir=str(tmp_path / "clones")),
        sync=SyncConfig(**sync),
    )


def _engine(fake_git, provider, tmp_path, **sync) -> SyncEngine:
    return SyncEngine(provider, executor=fake_git, config=_config(tmp_path, **sync))


def _request(**overrides) -> SyncRequest:
    values = {"repo": REPO}
    values.update(overrides)
    return SyncRequest(**values)


class FlakyProvider(LocalProvider):
    """Local provider that fails writes for chosen entity ids."""

    def __init__(self, fail_ids=(), fail_checkpoint=False) -> None:
        super().__init__()
        self.fail_ids = set(fail_ids)
        self.fail_checkpoint = fail_checkpoint

    def upsert_thing(self, ns, change, *, version, commit=""):
        if change.id in self.fail_ids:
            raise ProviderError(f"write rejected for {change.id}")
        super().upsert_thing(ns, change, version=version, commit=commit)

    def save_sync_state(self, state):
        if self.fail_checkpoint:
            raise ProviderError("checkpoint table unavailable")
        super().save_sync_state(state)


# ---------------------------------------------------------------------------
# Basic flows
# ---------------------------------------------------------------------------


class TestFirstSync:
    def test_creates_entities(self, fake_git, provider, tmp_path):
        sha = fake_git.commit("add hello", {"posts/hello.mdx": _post("Hello")})
        engine = _engine(fake_git, provider, tmp_path)

        result = engine.sync(_request())

        assert result.success
        assert result.ns == NS
        assert result.repo == REPO
        assert result.branch == "main"
        assert result.from_commit == ""
        assert result.to_commit == sha
        assert [c.hash for c in result.commits] == [sha]
        (synced,) = result.files
        assert synced.synced
        assert synced.change == Operation.CREATE
        assert synced.version == 1
        assert (synced.type, synced.id) == ("Post", "hello")

        stats = result.stats
        assert stats.commits_processed == 1
        assert stats.files_scanned == 1
        assert stats.files_synced == 1
        assert stats.things_created == 1

        thing = provider.current(HELLO_URL)
        assert thing.version == 1
        assert thing.data == {"title": "Hello"}
        assert thing.content == "Content"
        assert thing.commit == sha

    def test_checkpoint_saved(self, fake_git, provider, tmp_path):
        sha = fake_git.commit("add", {"posts/hello.mdx": _post("Hello")})
        _engine(fake_git, provider, tmp_path).sync(_request())

        state = provider.get_sync_state(REPO, "main")
        assert state.last_commit == sha
        assert state.ns == NS
        assert state.total_files == 1
        assert state.total_commits == 1

    def test_audit_action_and_events(self, fake_git, provider, tmp_path):
        fake_git.commit("one", {"posts/a.mdx": _post("A")})
        fake_git.commit("two", {"posts/b.mdx": _post("B")})

        result = _engine(fake_git, provider, tmp_path).sync(_request(actor="user:jane"))

        action = provider.get_action(result.action_id)
        assert action.status == ActionStatus.COMPLETED
        assert action.actor == "user:jane"
        assert [o.path for o in action.objects] == ["posts/a.mdx", "posts/b.mdx"]
        assert action.processed == action.total == 2
        assert action.stats.files_synced == 2
        assert action.commit.message == "two"

        assert [e.type for e in provider.events] == [EVENT_STARTED, EVENT_COMPLETED]
        assert all(e.correlation_id == result.action_id for e in provider.events)
        assert all(e.actor == "user:jane" for e in provider.events)

    def test_local_checkout_is_refreshed(self, fake_git, provider, tmp_path):
        fake_git.commit("add", {"posts/a.mdx": _post("A")})
        _engine(fake_git, provider, tmp_path).sync(_request(branch="main"))

        assert fake_git.fetches == [REPO]
        assert fake_git.checkouts == [(REPO, "main")]
        assert fake_git.clones == []

    def test_no_remote_skips_fetch(self, fake_git, provider, tmp_path):
        fake_git.remote = None
        fake_git.commit("add", {"posts/a.mdx": _post("A")})
        result = _engine(fake_git, provider, tmp_path).sync(_request())

        assert fake_git.fetches == []
        assert result.ns == "content.repos.srv"

    def test_explicit_namespace(self, fake_git, provider, tmp_path):
        fake_git.commit("add", {"posts/hello.mdx": _post("Hello")})
        _engine(fake_git, provider, tmp_path).sync(_request(ns="example.com"))
        assert provider.get_thing("example.com/Post/hello") is not None


class TestIncremental:
    def test_only_new_commits_processed(self, fake_git, provider, tmp_path):
        first = fake_git.commit("add", {"posts/hello.mdx": _post("Hello")})
        engine = _engine(fake_git, provider, tmp_path)
        engine.sync(_request())

        second = fake_git.commit("edit", {"posts/hello.mdx": _post("Hello again")})
        result = engine.sync(_request())

        assert result.from_commit == first
        assert [c.hash for c in result.commits] == [second]
        (synced,) = result.files
        assert synced.change == Operation.UPDATE
        assert synced.version == 2
        assert result.stats.things_updated == 1
        assert provider.current(HELLO_URL).data == {"title": "Hello again"}
        state = provider.get_sync_state(REPO, "main")
        assert state.total_commits == 2
        assert state.total_files == 2

    def test_up_to_date_is_a_no_op(self, fake_git, provider, tmp_path):
        sha = fake_git.commit("add", {"posts/hello.mdx": _post("Hello")})
        engine = _engine(fake_git, provider, tmp_path)
        engine.sync(_request())
        events_before = len(provider.events)

        result = engine.sync(_request())

        assert result.success
        assert result.action_id is None
        assert result.commits == []
        assert result.files == []
        assert result.from_commit == result.to_commit == sha
        assert result.state.last_commit == sha
        assert len(provider.events) == events_before
        assert len(provider.actions) == 1

    def test_full_mode_ignores_checkpoint(self, fake_git, provider, tmp_path):
        fake_git.commit("add", {"posts/hello.mdx": _post("Hello")})
        fake_git.commit("edit", {"posts/hello.mdx": _post("Edited")})
        engine = _engine(fake_git, provider, tmp_path)
        engine.sync(_request())

        result = engine.sync(_request(mode=SyncMode.FULL))

        assert result.from_commit == ""
        assert len(result.commits) == 2

    def test_explicit_range(self, fake_git, provider, tmp_path):
        first = fake_git.commit("a", {"posts/a.mdx": _post("A")})
        second = fake_git.commit("b", {"posts/b.mdx": _post("B")})
        fake_git.commit("c", {"posts/c.mdx": _post("C")})

        result = _engine(fake_git, provider, tmp_path).sync(
            _request(mode=SyncMode.DIFF, from_commit=first, to_commit=second)
        )

        assert [c.hash for c in result.commits] == [second]
        assert [f.path for f in result.files] == ["posts/b.mdx"]
        assert provider.get_sync_state(REPO, "main").last_commit == second

    def test_checkpoints_are_per_branch(self, fake_git, provider, tmp_path):
        fake_git.commit("add", {"posts/a.mdx": _post("A")})
        engine = _engine(fake_git, provider, tmp_path)
        engine.sync(_request(branch="main"))

        result = engine.sync(_request(branch="dev", ns="dev.example.com"))

        assert result.from_commit == ""
        assert provider.get_sync_state(REPO, "dev") is not None


# ---------------------------------------------------------------------------
# Versioning and ordering
# ---------------------------------------------------------------------------


class TestVersioning:
    def test_history_replayed_in_order(self, fake_git, provider, tmp_path):
        shas = [
            fake_git.commit("v1", {"posts/hello.mdx": _post("One")}),
            fake_git.commit("v2", {"posts/hello.mdx": _post("Two")}),
            fake_git.commit("v3", {"posts/hello.mdx": _post("Three")}),
        ]

        result = _engine(fake_git, provider, tmp_path).sync(_request())

        assert [f.version for f in result.files] == [1, 2, 3]
        history = provider.history(HELLO_URL)
        assert [v.data["title"] for v in history] == ["One", "Two", "Three"]
        assert [v.commit for v in history] == shas

    def test_delete_is_a_new_version(self, fake_git, provider, tmp_path):
        fake_git.commit("add", {"posts/hello.mdx": _post("Hello")})
        fake_git.commit("remove", {"posts/hello.mdx": None})

        result = _engine(fake_git, provider, tmp_path).sync(_request())

        assert [f.change for f in result.files] == [Operation.CREATE, Operation.DELETE]
        assert result.stats.things_deleted == 1
        snapshot = provider.get_thing(HELLO_URL)
        assert snapshot.deleted
        assert snapshot.version == 2
        assert len(provider.history(HELLO_URL)) == 2

    def test_rename_updates_entity_at_new_id(self, fake_git, provider, tmp_path):
        fake_git.commit("add", {"posts/old.mdx": _post("Same")})
        fake_git.commit("rename", renames={"posts/new.mdx": "posts/old.mdx"})

        result = _engine(fake_git, provider, tmp_path).sync(_request())

        renamed = result.files[-1]
        assert renamed.change == Operation.UPDATE
        assert renamed.id == "new"
        assert provider.current(f"{NS}/Post/new").version == 1

    def test_rerun_of_same_range_adds_no_versions(self, fake_git, provider, tmp_path):
        fake_git.commit("v1", {"posts/hello.mdx": _post("One")})
        fake_git.commit("v2", {"posts/hello.mdx": _post("Two")})
        fake_git.commit("remove", {"posts/hello.mdx": None})
        engine = _engine(fake_git, provider, tmp_path)
        engine.sync(_request())

        result = engine.sync(_request(mode=SyncMode.FULL))

        assert result.success
        assert all(f.skipped for f in result.files)
        assert result.stats.files_skipped == 3
        assert result.stats.files_synced == 0
        assert len(provider.history(HELLO_URL)) == 3

    def test_files_sharing_an_id_in_one_commit(self, fake_git, provider, tmp_path):
        fake_git.commit(
            "add",
            {
                "posts/a.mdx": _post("From A", id="shared"),
                "posts/b.mdx": _post("From B", id="shared"),
            },
        )
        engine = _engine(fake_git, provider, tmp_path)

        result = engine.sync(_request())

        assert [f.version for f in result.files] == [1, 2]
        assert all(f.synced for f in result.files)
        assert result.stats.files_skipped == 0
        shared = f"{NS}/Post/shared"
        assert [v.data["title"] for v in provider.history(shared)] == ["From A", "From B"]

        rerun = engine.sync(_request(mode=SyncMode.FULL))
        assert all(f.skipped for f in rerun.files)
        assert len(provider.history(shared)) == 2

    def test_files_sharing_an_id_in_dry_run(self, fake_git, provider, tmp_path):
        fake_git.commit(
            "add",
            {"posts/page.md": _post("Markdown"), "posts/page.mdx": _post("MDX")},
        )

        result = _engine(fake_git, provider, tmp_path).sync(_request(dry_run=True))

        assert [(f.id, f.version) for f in result.files] == [("page", 1), ("page", 2)]
        assert all(f.synced for f in result.files)

    def test_force_reapplies(self, fake_git, provider, tmp_path):
        fake_git.commit("v1", {"posts/hello.mdx": _post("One")})
        engine = _engine(fake_git, provider, tmp_path)
        engine.sync(_request())

        result = engine.sync(_request(mode=SyncMode.FULL, force=True))

        assert result.files[0].version == 2
        assert len(provider.history(HELLO_URL)) == 2

    def test_relationships_counted(self, fake_git, provider, tmp_path):
        fake_git.commit(
            "add",
            {"posts/hello.mdx": _post("Hello", "See [[Post/other]]", author="Person/jane")},
        )
        result = _engine(fake_git, provider, tmp_path).sync(_request())

        assert result.stats.relationships_created == 2
        rels = provider.current(HELLO_URL).relationships
        assert rels[0].target == f"{NS}/Person/jane"


# ---------------------------------------------------------------------------
# Filtering and limits
# ---------------------------------------------------------------------------


class TestFiltering:
    def test_include_exclude(self, fake_git, provider, tmp_path):
        fake_git.commit(
            "add",
            {
                "posts/a.mdx": _post("A"),
                "posts/draft.mdx": _post("Draft"),
                "docs/intro.md": _post("Intro"),
                "posts/image.png": "binary",
            },
        )
        result = _engine(fake_git, provider, tmp_path).sync(
            _request(include=["posts/**"], exclude=["**/draft.mdx"])
        )
        assert [f.path for f in result.files] == ["posts/a.mdx"]

    def test_config_defaults_apply(self, fake_git, provider, tmp_path):
        fake_git.commit("add", {"posts/a.mdx": _post("A"), "docs/b.md": _post("B")})
        result = _engine(
            fake_git, provider, tmp_path, include=["docs/**"]
        ).sync(_request())
        assert [f.path for f in result.files] == ["docs/b.md"]

    def test_max_commits_keeps_newest(self, fake_git, provider, tmp_path, caplog):
        fake_git.commit("a", {"posts/a.mdx": _post("A")})
        second = fake_git.commit("b", {"posts/b.mdx": _post("B")})
        third = fake_git.commit("c", {"posts/c.mdx": _post("C")})

        with caplog.at_level(logging.WARNING):
            result = _engine(fake_git, provider, tmp_path, max_commits=2).sync(_request())

        assert [c.hash for c in result.commits] == [second, third]
        assert "only the newest 2" in caplog.text


# ---------------------------------------------------------------------------
# Failure isolation
# ---------------------------------------------------------------------------


class TestPartialFailure:
    def test_commit_failure_does_not_stop_run(self, fake_git, provider, tmp_path):
        fake_git.commit("a", {"posts/a.mdx": _post("A")})
        broken = fake_git.commit("b", {"posts/b.mdx": _post("B")})
        last = fake_git.commit("c", {"posts/c.mdx": _post("C")})
        fake_git.fail_diff.add(broken)

        result = _engine(fake_git, provider, tmp_path).sync(_request())

        assert not result.success
        (error,) = result.errors
        assert error.code == ErrorCode.COMMIT_PROCESS_ERROR
        assert error.commit == broken
        assert [f.path for f in result.files] == ["posts/a.mdx", "posts/c.mdx"]
        assert result.stats.commits_processed == 2
        assert provider.get_sync_state(REPO, "main").last_commit == last

        action = provider.get_action(result.action_id)
        assert action.status == ActionStatus.FAILED
        assert "bad object" in action.error
        assert action.processed == 3
        assert provider.events[-1].type == EVENT_FAILED

    def test_apply_failure_is_per_file(self, fake_git, tmp_path):
        provider = FlakyProvider(fail_ids={"bad"})
        fake_git.commit("add", {"posts/bad.mdx": _post("Bad"), "posts/good.mdx": _post("Good")})

        result = _engine(fake_git, provider, tmp_path).sync(_request())

        assert not result.success
        (error,) = result.errors
        assert error.code == ErrorCode.APPLY_ERROR
        assert error.path == "posts/bad.mdx"
        assert [f.path for f in result.failed_files] == ["posts/bad.mdx"]
        assert [f.path for f in result.synced_files] == ["posts/good.mdx"]
        assert result.stats.files_failed == 1
        assert provider.get_thing(f"{NS}/Post/good") is not None

    def test_unresolvable_id_is_parse_error(self, fake_git, provider, tmp_path):
        fake_git.commit("add", {"content/[Post].mdx": "# Template"})

        result = _engine(fake_git, provider, tmp_path).sync(_request())

        (error,) = result.errors
        assert error.code == ErrorCode.PARSE_ERROR
        assert not result.files[0].synced
        assert provider.urls == []

    def test_checkpoint_failure_recorded(self, fake_git, tmp_path):
        provider = FlakyProvider(fail_checkpoint=True)
        fake_git.commit("add", {"posts/a.mdx": _post("A")})

        result = _engine(fake_git, provider, tmp_path).sync(_request())

        assert not result.success
        assert [e.code for e in result.errors] == [ErrorCode.CHECKPOINT_ERROR]
        assert provider.get_action(result.action_id).status == ActionStatus.FAILED


# ---------------------------------------------------------------------------
# Dry run
# ---------------------------------------------------------------------------


class TestDryRun:
    def test_no_mutating_calls(self, fake_git, tmp_path):
        fake_git.commit("add", {"posts/hello.mdx": _post("Hello")})
        fake_git.commit("edit", {"posts/hello.mdx": _post("Edited")})
        spy = MagicMock(wraps=LocalProvider())

        result = _engine(fake_git, spy, tmp_path).sync(_request(dry_run=True))

        for method in MUTATING_METHODS:
            getattr(spy, method).assert_not_called()
        assert result.dry_run
        assert result.action_id is None
        assert [f.version for f in result.files] == [1, 2]
        assert all(f.synced for f in result.files)

    def test_matches_real_run(self, fake_git, tmp_path):
        fake_git.commit("add", {"posts/a.mdx": _post("A"), "posts/b.mdx": _post("B")})
        fake_git.commit("edit", {"posts/a.mdx": _post("A2"), "posts/b.mdx": None})

        planned = _engine(fake_git, LocalProvider(), tmp_path).sync(_request(dry_run=True))
        applied = _engine(fake_git, LocalProvider(), tmp_path).sync(_request())

        assert planned.stats.model_dump(exclude={"duration_ms"}) == applied.stats.model_dump(
            exclude={"duration_ms"}
        )
        assert [(f.path, f.change, f.version) for f in planned.files] == [
            (f.path, f.change, f.version) for f in applied.files
        ]

    def test_checkpoint_not_advanced(self, fake_git, provider, tmp_path):
        fake_git.commit("add", {"posts/a.mdx": _post("A")})
        result = _engine(fake_git, provider, tmp_path).sync(_request(dry_run=True))

        assert provider.get_sync_state(REPO, "main") is None
        assert result.state.last_commit == result.to_commit


# ---------------------------------------------------------------------------
# Setup and working directory
# ---------------------------------------------------------------------------


class TestSetup:
    def test_unreachable_provider(self, fake_git, tmp_path):
        provider = MagicMock()
        provider.is_connected.return_value = False
        with pytest.raises(SyncSetupError, match="not reachable"):
            _engine(fake_git, provider, tmp_path).sync(_request())
        provider.create_sync_action.assert_not_called()

    def test_local_path_not_a_repo(self, fake_git, provider, tmp_path):
        with pytest.raises(SyncSetupError, match="Not a git repository"):
            _engine(fake_git, provider, tmp_path).sync(_request(repo=str(tmp_path)))
        assert provider.actions == []

    def test_unknown_target_commit(self, fake_git, provider, tmp_path):
        fake_git.commit("add", {"posts/a.mdx": _post("A")})
        with pytest.raises(SyncSetupError, match="commit range") as exc_info:
            _engine(fake_git, provider, tmp_path).sync(_request(to_commit="deadbeef"))
        assert isinstance(exc_info.value.__cause__, GitError)
        assert provider.actions == []

    def test_diff_mode_requires_from_commit(self):
        with pytest.raises(ValueError, match="requires from_commit"):
            SyncRequest(repo=REPO, mode=SyncMode.DIFF)

    def test_unsupported_direction_runs_pull(self, fake_git, provider, tmp_path, caplog):
        fake_git.commit("add", {"posts/a.mdx": _post("A")})
        with caplog.at_level(logging.WARNING):
            result = _engine(fake_git, provider, tmp_path).sync(
                _request(direction=SyncDirection.BOTH)
            )
        assert result.success
        assert result.direction == SyncDirection.BOTH
        assert "not supported" in caplog.text


class TestReusedCheckout:
    def test_syncs_up_to_fetched_upstream(self, fake_git, provider, tmp_path):
        first = fake_git.commit("a", {"posts/a.mdx": _post("A")})
        upstream = fake_git.commit("b", {"posts/b.mdx": _post("B")})
        fake_git.head = first
        fake_git.refs["origin/main"] = upstream

        result = _engine(fake_git, provider, tmp_path).sync(_request())

        assert result.to_commit == upstream
        assert [f.path for f in result.files] == ["posts/a.mdx", "posts/b.mdx"]
        assert provider.get_sync_state(REPO, "main").last_commit == upstream

    def test_incremental_picks_up_upstream_commits(self, fake_git, provider, tmp_path):
        first = fake_git.commit("a", {"posts/a.mdx": _post("A")})
        fake_git.refs["origin/main"] = first
        engine = _engine(fake_git, provider, tmp_path)
        engine.sync(_request())

        upstream = fake_git.commit("b", {"posts/b.mdx": _post("B")})
        fake_git.head = first
        fake_git.refs["origin/main"] = upstream
        result = engine.sync(_request())

        assert result.from_commit == first
        assert result.to_commit == upstream
        assert [f.path for f in result.files] == ["posts/b.mdx"]

    def test_local_commits_ahead_of_remote_use_head(self, fake_git, provider, tmp_path):
        pushed = fake_git.commit("a", {"posts/a.mdx": _post("A")})
        local = fake_git.commit("b", {"posts/b.mdx": _post("B")})
        fake_git.refs["origin/main"] = pushed

        result = _engine(fake_git, provider, tmp_path).sync(_request())

        assert result.to_commit == local

    def test_without_remote_uses_head(self, fake_git, provider, tmp_path):
        first = fake_git.commit("a", {"posts/a.mdx": _post("A")})
        fake_git.commit("b", {"posts/b.mdx": _post("B")})
        fake_git.head = first
        fake_git.remote = None

        result = _engine(fake_git, provider, tmp_path).sync(_request())

        assert result.to_commit == first
        assert fake_git.fetches == []

    def test_explicit_target_wins(self, fake_git, provider, tmp_path):
        first = fake_git.commit("a", {"posts/a.mdx": _post("A")})
        fake_git.refs["origin/main"] = fake_git.commit("b", {"posts/b.mdx": _post("B")})

        result = _engine(fake_git, provider, tmp_path).sync(_request(to_commit=first))

        assert result.to_commit == first

    def test_failed_branch_checkout_is_fatal(self, fake_git, provider, tmp_path):
        fake_git.commit("a", {"posts/a.mdx": _post("A")})
        fake_git.checkout_error = GitError(
            "Git command failed: git checkout dev",
            stderr="pathspec 'dev' did not match",
        )

        with pytest.raises(SyncSetupError, match="Cannot check out branch 'dev'"):
            _engine(fake_git, provider, tmp_path).sync(_request(branch="dev"))

        assert provider.actions == []
        assert provider.get_sync_state(REPO, "dev") is None


class TestRemoteClone:
    def test_clone_into_temp_dir_and_clean_up(self, fake_git, provider, tmp_path):
        fake_git.commit("add", {"posts/a.mdx": _post("A")})

        result = _engine(fake_git, provider, tmp_path).sync(
            _request(repo="acme/content", branch="main", depth=5, token="s3cret")
        )

        (url, dest, options) = fake_git.clones[0]
        assert url == "acme/content"
        assert Path(dest).parent == tmp_path / "clones"
        assert Path(dest).name.startswith("acme-content-")
        assert options.branch == "main"
        assert options.depth == 5
        assert options.single_branch
        assert options.token == "s3cret"
        assert not Path(dest).exists()

        assert result.repo == "https://github.com/acme/content.git"
        assert result.ns == NS
        assert provider.get_sync_state(result.repo, "main") is not None

    def test_clean_up_after_clone_failure(self, fake_git, provider, tmp_path):
        fake_git.clone_error = GitError("Git command failed: git clone", stderr="denied")

        with pytest.raises(SyncSetupError, match="Failed to clone"):
            _engine(fake_git, provider, tmp_path).sync(_request(repo="acme/content"))

        assert list((tmp_path / "clones").iterdir()) == []

    def test_keep_clone_when_cleanup_disabled(self, fake_git, provider, tmp_path):
        fake_git.commit("add", {"posts/a.mdx": _post("A")})
        _engine(fake_git, provider, tmp_path, cleanup=False).sync(_request(repo="acme/content"))

        (_, dest, _) = fake_git.clones[0]
        assert Path(dest).exists()

    def test_work_dir_cloned_and_kept(self, fake_git, provider, tmp_path):
        fake_git.commit("add", {"posts/a.mdx": _post("A")})
        work_dir = tmp_path / "checkout"
        engine = _engine(fake_git, provider, tmp_path)

        engine.sync(_request(repo="acme/content", work_dir=str(work_dir)))
        assert fake_git.clones[0][1] == str(work_dir)
        assert work_dir.exists()

        # second run reuses the checkout
        engine.sync(_request(repo="acme/content", work_dir=str(work_dir)))
        assert len(fake_git.clones) == 1
        assert fake_git.fetches == [str(work_dir)]
