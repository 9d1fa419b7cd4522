"""Tests for the repository and versions cache."""

import subprocess
import time
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import httpx
import pytest

from conftest import commit_file, git, make_upstream
from unmaintained import git as git_ops
from unmaintained.cache import Cache, CloneError, UnnamedPackageError
from unmaintained.lock import lock_path
from unmaintained.package import Package
from unmaintained.registry import Version
from unmaintained.store import SECS_PER_DAY, CacheEntry
from unmaintained.urls import url_digest


@pytest.fixture
def cache(tmp_path):
    """A cache with a 30-day refresh age and no locking."""
    return Cache(tmp_path / "cache", refresh_age=30)


@pytest.fixture
def stale_cache(tmp_path):
    """A cache whose entries are never current."""
    return Cache(tmp_path / "cache", refresh_age=0)


def test_clone_repository_first_call_clones(cache, upstream):
    """First clone writes the entry, the timestamp and the repository."""
    _, url = upstream
    pkg = Package(name="anyhow", version="1.0.0", repository=url)

    cloned_url, repo_dir = cache.clone_repository(pkg)

    digest = url_digest(url)
    assert cloned_url == url
    assert repo_dir == cache.base_dir / "repositories" / digest
    assert (repo_dir / ".git").is_dir()
    assert (cache.base_dir / "entries" / "anyhow").exists()
    assert (cache.base_dir / "timestamps" / digest).exists()

    entry = cache.store.read_entry("anyhow", url)
    assert entry == CacheEntry(named_url=url, cloned_url=url)


def test_clone_repository_second_call_runs_no_git(cache, upstream):
    """A current entry is served without any subprocess."""
    _, url = upstream
    pkg = Package(name="anyhow", version="1.0.0", repository=url)

    first = cache.clone_repository(pkg)

    with patch("unmaintained.git.subprocess.run", wraps=subprocess.run) as run:
        second = cache.clone_repository(pkg)

    assert second == first
    assert run.call_count == 0


def test_clone_repository_current_entry_from_disk(tmp_path, upstream):
    """A new process reuses the entry written by an earlier one."""
    _, url = upstream
    pkg = Package(name="anyhow", version="1.0.0", repository=url)

    first = Cache(tmp_path / "cache", refresh_age=30).clone_repository(pkg)

    with patch("unmaintained.git.subprocess.run", wraps=subprocess.run) as run:
        second = Cache(tmp_path / "cache", refresh_age=30).clone_repository(pkg)

    assert second == first
    assert run.call_count == 0


def test_clone_repository_stale_entry_fetches(stale_cache, upstream):
    """A stale clone is fetched and moves to the upstream tip."""
    path, url = upstream
    pkg = Package(name="anyhow", version="1.0.0", repository=url)

    _, repo_dir = stale_cache.clone_repository(pkg)
    commit_file(path, "README.md", "hello\n", "second")

    with patch("unmaintained.cache.git.clone_shallow", wraps=git_ops.clone_shallow) as clone:
        _, repo_dir_again = stale_cache.clone_repository(pkg)

    assert repo_dir_again == repo_dir
    clone.assert_not_called()
    assert git_ops.run_git(["log", "-1", "--pretty=format:%s"], cwd=repo_dir) == "second"


def test_clone_repository_missing_directory_reclones(cache, upstream):
    """A current timestamp without its clone on disk is treated as stale."""
    _, url = upstream
    pkg = Package(name="anyhow", version="1.0.0", repository=url)

    _, repo_dir = cache.clone_repository(pkg)
    cache.store.remove_repository(url_digest(url))
    assert not repo_dir.exists()

    _, repo_dir_again = cache.clone_repository(pkg)

    assert repo_dir_again == repo_dir
    assert repo_dir.exists()


def test_clone_repository_recovers_from_renamed_branch(stale_cache, upstream):
    """A branch renamed upstream is recovered by recloning."""
    path, url = upstream
    pkg = Package(name="anyhow", version="1.0.0", repository=url)

    _, repo_dir = stale_cache.clone_repository(pkg)
    assert git_ops.current_branch(repo_dir) == "main"

    git("branch", "-m", "main", "trunk", cwd=path)
    commit_file(path, "README.md", "renamed\n", "on trunk")

    cloned_url, repo_dir_again = stale_cache.clone_repository(pkg)

    assert cloned_url == url
    assert repo_dir_again == repo_dir
    assert git_ops.current_branch(repo_dir) == "trunk"
    assert git_ops.run_git(["log", "-1", "--pretty=format:%s"], cwd=repo_dir) == "on trunk"
    assert stale_cache.store.read_entry("anyhow", url) == CacheEntry(named_url=url, cloned_url=url)
    assert stale_cache.store.read_repository_timestamp(url_digest(url)) is not None


def test_clone_repository_url_change_invalidates_entry(cache, tmp_path, upstream):
    """An entry recorded for another declared URL is not reused."""
    _, old_url = upstream
    new_url = make_upstream(tmp_path / "upstream" / "moved")

    cache.clone_repository(Package(name="anyhow", version="1.0.0", repository=old_url))
    fresh = Cache(cache.base_dir, refresh_age=30)

    cloned_url, repo_dir = fresh.clone_repository(Package(name="anyhow", version="1.0.1", repository=new_url))

    assert cloned_url == new_url
    assert repo_dir.name == url_digest(new_url)
    assert fresh.store.read_entry("anyhow", new_url).cloned_url == new_url


def test_clone_repository_unnamed_package(cache):
    """A package without a repository fails without touching git."""
    pkg = Package(name="local", version="0.1.0", repository=None)

    with patch("unmaintained.git.subprocess.run") as run:
        with pytest.raises(UnnamedPackageError):
            cache.clone_repository(pkg)

    run.assert_not_called()


def test_clone_repository_all_candidates_fail(cache, tmp_path):
    """Failure of every candidate is reported with git's error text."""
    url = (tmp_path / "does-not-exist").as_uri()
    pkg = Package(name="ghost", version="1.0.0", repository=url)

    with pytest.raises(CloneError) as exc_info:
        cache.clone_repository(pkg)

    assert len(exc_info.value.errors) == 1
    assert not (cache.base_dir / "entries" / "ghost").exists()


def test_clone_repository_falls_back_to_shortened_url(cache):
    """The shortened URL is tried when the declared one fails."""
    pkg = Package(
        name="sub",
        version="1.0.0",
        repository="https://github.com/owner/repo/tree/main/sub",
    )
    attempts = []

    def fake_clone(url, repo_dir):
        attempts.append(url)
        if url.endswith("/sub"):
            raise git_ops.GitError(["clone", url], "fatal: repository not found\n")

    with patch("unmaintained.cache.git.clone_shallow", side_effect=fake_clone):
        cloned_url, repo_dir = cache.clone_repository(pkg)

    assert attempts == ["https://github.com/owner/repo/tree/main/sub", "https://github.com/owner/repo"]
    assert cloned_url == "https://github.com/owner/repo"
    assert repo_dir.name == url_digest("https://github.com/owner/repo")
    entry = cache.store.read_entry("sub", pkg.repository)
    assert entry.named_url == pkg.repository
    assert entry.cloned_url == "https://github.com/owner/repo"


def test_clone_repository_deduplicates_errors(cache):
    """Identical failures from several candidates are reported once."""
    pkg = Package(name="sub", version="1.0.0", repository="https://example.com/owner/repo/extra")

    with patch(
        "unmaintained.cache.git.clone_shallow",
        side_effect=git_ops.GitError(["clone"], "fatal: unable to access\n"),
    ):
        with pytest.raises(CloneError) as exc_info:
            cache.clone_repository(pkg)

    assert exc_info.value.errors == ["fatal: unable to access"]


def test_clone_repository_stale_entry_tries_cloned_url_first(stale_cache):
    """A stale entry's cloned URL is refreshed before other candidates."""
    pkg = Package(name="sub", version="1.0.0", repository="https://github.com/owner/repo/tree/main/sub")
    stale_cache.store.write_entry(
        "sub", CacheEntry(named_url=pkg.repository, cloned_url="https://github.com/owner/repo")
    )
    attempts = []

    with patch("unmaintained.cache.git.clone_shallow", side_effect=lambda url, d: attempts.append(url)):
        cloned_url, _ = stale_cache.clone_repository(pkg)

    assert attempts == ["https://github.com/owner/repo"]
    assert cloned_url == "https://github.com/owner/repo"


def test_clone_repository_takes_lock(tmp_path, upstream):
    """Persistent caches lock around the clone."""
    _, url = upstream
    lock_file = tmp_path / "cache.lock"
    cache = Cache(tmp_path / "cache", refresh_age=30, lock_file=lock_file)

    with patch("unmaintained.cache.lock_path", wraps=lock_path) as lock:
        cache.clone_repository(Package(name="anyhow", version="1.0.0", repository=url))

    lock.assert_called_once_with(lock_file)
    assert lock_file.exists()


def test_purge_entry_removes_everything(cache, upstream):
    """Purging a package removes its metadata and its clone."""
    _, url = upstream
    pkg = Package(name="anyhow", version="1.0.0", repository=url)
    _, repo_dir = cache.clone_repository(pkg)
    cache.store.write_versions("anyhow", [])
    cache.store.write_versions_timestamp("anyhow", int(time.time()))

    cache.purge_entry("anyhow")

    digest = url_digest(url)
    assert not repo_dir.exists()
    assert not (cache.base_dir / "entries" / "anyhow").exists()
    assert not (cache.base_dir / "timestamps" / digest).exists()
    assert not (cache.base_dir / "versions" / "anyhow").exists()
    assert not (cache.base_dir / "versions_timestamps" / "anyhow").exists()
    assert cache.entries == {}
    assert cache.repository_timestamps == {}


def test_purge_entry_missing_is_noop(cache):
    """Purging an unknown package does nothing."""
    cache.purge_entry("never-cached")

    assert not (cache.base_dir / "entries").exists()


@pytest.fixture
def versions():
    return [
        Version(num="1.0.1", created_at=datetime(2024, 5, 1, tzinfo=timezone.utc)),
        Version(num="1.0.0", created_at=datetime(2023, 5, 1, tzinfo=timezone.utc)),
    ]


def test_fetch_versions_writes_and_reuses(tmp_path, versions):
    """Fetched versions are persisted and served from disk while current."""
    registry = MagicMock()
    registry.get_versions.return_value = versions

    first = Cache(tmp_path / "cache", refresh_age=30, registry=registry).fetch_versions("anyhow")
    second = Cache(tmp_path / "cache", refresh_age=30, registry=registry).fetch_versions("anyhow")

    assert first == versions
    assert second == versions
    registry.get_versions.assert_called_once_with("anyhow")
    assert (tmp_path / "cache" / "versions" / "anyhow").exists()
    assert (tmp_path / "cache" / "versions_timestamps" / "anyhow").exists()


def test_fetch_versions_refreshes_stale(tmp_path, versions):
    """Versions older than the refresh age are fetched again."""
    registry = MagicMock()
    registry.get_versions.return_value = versions
    cache = Cache(tmp_path / "cache", refresh_age=30, registry=registry)
    cache.store.write_versions("anyhow", versions[1:])
    cache.store.write_versions_timestamp("anyhow", int(time.time()) - 31 * SECS_PER_DAY)

    assert cache.fetch_versions("anyhow") == versions
    registry.get_versions.assert_called_once_with("anyhow")


def test_fetch_versions_survives_write_failure(tmp_path, versions):
    """An unwritable cache still serves versions for the rest of the run."""
    registry = MagicMock()
    registry.get_versions.return_value = versions
    cache = Cache(tmp_path / "cache", refresh_age=30, registry=registry)

    with patch.object(cache.store, "write_versions", side_effect=OSError("read-only")):
        assert cache.fetch_versions("anyhow") == versions
    assert cache.fetch_versions("anyhow") == versions

    registry.get_versions.assert_called_once_with("anyhow")
    assert not (tmp_path / "cache" / "versions_timestamps" / "anyhow").exists()


def test_fetch_versions_propagates_http_errors(tmp_path):
    """Registry failures reach the caller."""
    registry = MagicMock()
    registry.get_versions.side_effect = httpx.ConnectError("offline")
    cache = Cache(tmp_path / "cache", refresh_age=30, registry=registry)

    with pytest.raises(httpx.HTTPError):
        cache.fetch_versions("anyhow")
