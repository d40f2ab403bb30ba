"""End-to-end sync against real git repositories."""

import pytest

from mdx_git_sync.config_schema import GitConfig, UnifiedConfig
from mdx_git_sync.errors import SyncSetupError
from mdx_git_sync.git.executor import DefaultGitExecutor
from mdx_git_sync.providers.local import LocalProvider
from mdx_git_sync.sync.engine import SyncEngine
from mdx_git_sync.sync.models import Operation, SyncRequest

NS = "docs.example.com"

pytestmark = pytest.mark.requires_git


@pytest.fixture
def config(tmp_path):
    return UnifiedConfig(git=GitConfig(temp_dir=str(tmp_path / "clones")))


def _engine(provider, config):
    return SyncEngine(provider, executor=DefaultGitExecutor(), config=config)


def test_history_sync_and_resume(git_repo, config, tmp_path):
    git_repo.commit(
        "add posts",
        {
            "posts/hello.mdx": "---\ntitle: Hello\nauthor: Person/jane\n---\n# Hello\n\nFirst post.\n",
            "README.md": "# Readme\n",
            "assets/logo.svg": "<svg/>",
        },
    )
    second = git_repo.commit(
        "edit hello, drop readme",
        {"posts/hello.mdx": "---\ntitle: Hello again\n---\nUpdated.\n", "README.md": None},
    )
    state_dir = tmp_path / "state"
    request = SyncRequest(repo=str(git_repo.path), ns=NS)

    result = _engine(LocalProvider(state_dir), config).sync(request)

    assert result.success, result.errors
    assert [(f.path, f.change, f.version) for f in result.files] == [
        ("README.md", Operation.CREATE, 1),
        ("posts/hello.mdx", Operation.CREATE, 1),
        ("README.md", Operation.DELETE, 2),
        ("posts/hello.mdx", Operation.UPDATE, 2),
    ]
    assert result.stats.relationships_created == 1

    # A fresh provider over the same store resumes from the checkpoint.
    provider = LocalProvider(state_dir)
    assert provider.get_sync_state(str(git_repo.path.resolve()), "main").last_commit == second
    hello = provider.current(f"{NS}/Post/hello")
    assert hello.version == 2
    assert hello.data == {"title": "Hello again"}
    assert provider.get_thing(f"{NS}/Readme/README").deleted

    third = git_repo.commit("new post", {"posts/second.mdx": "# Second\n\nText.\n"})
    resumed = _engine(provider, config).sync(request)

    assert resumed.from_commit == second
    assert resumed.to_commit == third
    (synced,) = resumed.files
    assert synced.path == "posts/second.mdx"
    thing = provider.current(f"{NS}/Post/second")
    assert thing.search_metadata.title == "Second"
    assert thing.search_metadata.description == "Text."


def test_clone_into_work_dir(git_repo, config, tmp_path):
    git_repo.commit("add", {"posts/a.mdx": "---\ntitle: A\n---\nA\n"})
    work_dir = tmp_path / "checkout"
    provider = LocalProvider()

    result = _engine(provider, config).sync(
        SyncRequest(repo=str(git_repo.path), ns=NS, branch="main", work_dir=str(work_dir))
    )

    assert result.success, result.errors
    assert (work_dir / ".git").is_dir()
    assert provider.current(f"{NS}/Post/a").data == {"title": "A"}


def test_dry_run_leaves_store_untouched(git_repo, config, tmp_path):
    git_repo.commit("add", {"posts/a.mdx": "# A\n"})
    state_dir = tmp_path / "state"

    result = _engine(LocalProvider(state_dir), config).sync(
        SyncRequest(repo=str(git_repo.path), ns=NS, dry_run=True)
    )

    assert result.success
    assert result.stats.things_created == 1
    assert not (state_dir / "mdx_sync_store.json").exists()


@pytest.mark.parametrize("branch", [None, "main"])
def test_reused_work_dir_follows_upstream(git_repo, config, tmp_path, branch):
    git_repo.commit("add a", {"posts/a.mdx": "---\ntitle: A\n---\nA\n"})
    provider = LocalProvider()
    engine = _engine(provider, config)
    request = SyncRequest(
        repo=str(git_repo.path), ns=NS, branch=branch, work_dir=str(tmp_path / "checkout")
    )
    first = engine.sync(request)

    upstream = git_repo.commit("add b", {"posts/b.mdx": "---\ntitle: B\n---\nB\n"})
    second = engine.sync(request)

    assert second.success, second.errors
    assert second.from_commit == first.to_commit
    assert second.to_commit == upstream
    assert [f.path for f in second.files] == ["posts/b.mdx"]
    assert provider.current(f"{NS}/Post/b").data == {"title": "B"}


def test_unknown_branch_in_work_dir_is_fatal(git_repo, config, tmp_path):
    git_repo.commit("add", {"posts/a.mdx": "# A\n"})
    provider = LocalProvider()
    engine = _engine(provider, config)
    work_dir = str(tmp_path / "checkout")
    engine.sync(SyncRequest(repo=str(git_repo.path), ns=NS, work_dir=work_dir))

    with pytest.raises(SyncSetupError, match="Cannot check out branch 'missing'"):
        engine.sync(
            SyncRequest(repo=str(git_repo.path), ns=NS, branch="missing", work_dir=work_dir)
        )
    assert provider.get_sync_state(str(git_repo.path.resolve()), "missing") is None
