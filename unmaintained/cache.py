"""Repository and versions cache.

A package's entry is current when a URL associated with the package was
cloned successfully, the clone (or last fetch) happened less than
``refresh_age`` days ago, and the clone is still on disk. Anything else
triggers a refresh. The same holds for versions fetched from the registry.

Records are kept in memory as well as on disk. The in-memory maps only save
disk reads within one run; a miss there falls through to disk, and a disk miss
means "refresh".
"""

import contextlib
import logging
import time
from pathlib import Path

from unmaintained import git
from unmaintained.lock import lock_path
from unmaintained.package import Package
from unmaintained.registry import RegistryClient, Version
from unmaintained.store import CacheEntry, DiskStore, is_fresh
from unmaintained.urls import url_digest

logger = logging.getLogger(__name__)


class CacheError(Exception):
    """Base class for cache failures."""


class UnnamedPackageError(CacheError):
    """The package declares no repository URL."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"`{name}` has no repository URL")


class CloneError(CacheError):
    """Every candidate URL of a package failed to clone or fetch."""

    def __init__(self, name: str, errors: list[str]):
        self.name = name
        self.errors = errors
        super().__init__(f"failed to clone `{name}`: " + "; ".join(errors))


def _dedup(errors: list[str]) -> list[str]:
    return list(dict.fromkeys(errors))


class Cache:
    """On-disk cache of repository clones and registry version lists."""

    def __init__(
        self,
        base_dir: Path,
        refresh_age: int,
        lock_file: Path | None = None,
        registry: RegistryClient | None = None,
    ):
        """Initialize the cache.

        Args:
            base_dir: Directory holding the stores
            refresh_age: Days after which cached data is refreshed
            lock_file: Lock serializing mutation across processes; None when
                the directory is private to this process
            registry: Client used to fetch versions; created on first use
        """
        self.store = DiskStore(base_dir)
        self.refresh_age = refresh_age
        self.lock_file = lock_file
        self._registry = registry
        self._owns_registry = registry is None
        self.entries: dict[str, CacheEntry] = {}
        self.repository_timestamps: dict[str, int] = {}
        self.versions: dict[str, list[Version]] = {}
        self.versions_timestamps: dict[str, int] = {}

    @property
    def temporary(self) -> bool:
        return self.lock_file is None

    @property
    def base_dir(self) -> Path:
        return self.store.base_dir

    def _locked(self):
        if self.lock_file is None:
            return contextlib.nullcontext()
        return lock_path(self.lock_file)

    # Repositories

    def clone_repository(self, pkg: Package) -> tuple[str, Path]:
        """Return the URL cloned for ``pkg`` and the path of its clone.

        A current entry is returned without running git. Otherwise each
        candidate URL is fetched (if already cloned) or cloned until one
        succeeds.

        Raises:
            UnnamedPackageError: If the package has no repository URL
            CloneError: If every candidate URL failed
            LockError: If the persistent cache cannot be locked
        """
        urls = pkg.urls
        if not urls:
            raise UnnamedPackageError(pkg.name)

        with self._locked():
            entry = self.entry(pkg)
            if entry is not None:
                repo_dir = self.store.repository_dir(url_digest(entry.cloned_url))
                if self.repository_is_current(entry.cloned_url) and repo_dir.is_dir():
                    logger.debug(f"Using cached clone of {entry.cloned_url} for {pkg.name}")
                    return entry.cloned_url, repo_dir
                urls = [entry.cloned_url] + [url for url in urls if url != entry.cloned_url]

            url, repo_dir = self._clone_uncached(pkg, urls)
            self._record_clone(pkg, url)

        return url, repo_dir

    def _clone_uncached(self, pkg: Package, urls: list[str]) -> tuple[str, Path]:
        errors = []
        for url in urls:
            repo_dir = self.store.repository_dir(url_digest(url))
            try:
                self._clone_or_fetch(pkg, url, repo_dir)
            except git.GitError as e:
                errors.append(e.stderr.strip() or str(e))
                continue
            return url, repo_dir
        raise CloneError(pkg.name, _dedup(errors))

    def _clone_or_fetch(self, pkg: Package, url: str, repo_dir: Path) -> None:
        if repo_dir.exists():
            try:
                git.fetch_current_branch(repo_dir)
                return
            except git.GitError as e:
                if not git.is_missing_remote_branch(e.stderr):
                    raise
                logger.info(f"Remote branch of {url} is gone; cloning {pkg.name} afresh")
                self._purge_entry(pkg.name, url)
                assert not repo_dir.exists(), f"{repo_dir} survived purge"
        git.clone_shallow(url, repo_dir)

    def _record_clone(self, pkg: Package, url: str) -> None:
        entry = CacheEntry(named_url=pkg.repository, cloned_url=url)
        self.entries[pkg.name] = entry
        digest = url_digest(url)
        timestamp = int(time.time())
        self.repository_timestamps[digest] = timestamp

        try:
            self.store.write_entry(pkg.name, entry)
        except OSError as e:
            logger.warning(f"Failed to write cache entry for {pkg.name}: {e}")
        try:
            self.store.write_repository_timestamp(digest, timestamp)
        except OSError as e:
            logger.warning(f"Failed to write timestamp for {url}: {e}")

    def entry(self, pkg: Package) -> CacheEntry | None:
        """Return the package's entry if it was recorded for its current URL."""
        entry = self.entries.get(pkg.name)
        if entry is None:
            entry = self.store.read_entry(pkg.name, pkg.repository)
            if entry is None:
                return None
            self.entries[pkg.name] = entry
        elif entry.named_url != pkg.repository:
            return None
        return entry

    def repository_timestamp(self, url: str) -> int | None:
        digest = url_digest(url)
        if digest not in self.repository_timestamps:
            timestamp = self.store.read_repository_timestamp(digest)
            if timestamp is None:
                return None
            self.repository_timestamps[digest] = timestamp
        return self.repository_timestamps[digest]

    def repository_is_current(self, url: str) -> bool:
        return is_fresh(self.repository_timestamp(url), self.refresh_age)

    # Purging

    def purge_entry(self, name: str, url: str | None = None) -> None:
        """Remove everything cached for a package.

        ``url``, when given, names an additional clone to remove along with
        the one recorded in the package's entry.
        """
        with self._locked():
            self._purge_entry(name, url)

    def _purge_entry(self, name: str, url: str | None = None) -> None:
        # Metadata goes first and the clone last, so an interrupted purge
        # leaves at worst a clone with no timestamp, which reads as stale.
        entry = self.entries.get(name) or self.store.read_entry_unchecked(name)
        urls = [entry.cloned_url] if entry is not None else []
        if url is not None and url not in urls:
            urls.append(url)
        digests = [url_digest(u) for u in urls]

        self.versions.pop(name, None)
        self.versions_timestamps.pop(name, None)
        self.store.remove_versions(name)

        for digest in digests:
            self.repository_timestamps.pop(digest, None)
            self.store.remove_repository_timestamp(digest)

        self.entries.pop(name, None)
        self.store.remove_entry(name)

        for digest in digests:
            self.store.remove_repository(digest)

        logger.debug(f"Purged cache entry for {name}")

    # Versions

    @property
    def registry(self) -> RegistryClient:
        if self._registry is None:
            self._registry = RegistryClient()
        return self._registry

    def fetch_versions(self, name: str) -> list[Version]:
        """Return the registry's versions of ``name``, refreshing when stale.

        Raises:
            httpx.HTTPError: If the registry request fails
        """
        versions = self.cached_versions(name)
        if versions is not None and self.versions_are_current(name):
            return versions

        versions = self.registry.get_versions(name)
        timestamp = int(time.time())
        self.versions[name] = versions
        self.versions_timestamps[name] = timestamp

        with self._locked():
            try:
                self.store.write_versions(name, versions)
            except OSError as e:
                # The old timestamp stays, so the old data on disk still reads as stale
                logger.warning(f"Failed to write versions of {name}: {e}")
                return versions
            try:
                self.store.write_versions_timestamp(name, timestamp)
            except OSError as e:
                logger.warning(f"Failed to write versions timestamp of {name}: {e}")

        return versions

    def cached_versions(self, name: str) -> list[Version] | None:
        if name not in self.versions:
            versions = self.store.read_versions(name)
            if versions is None:
                return None
            self.versions[name] = versions
        return self.versions[name]

    def versions_timestamp(self, name: str) -> int | None:
        if name not in self.versions_timestamps:
            timestamp = self.store.read_versions_timestamp(name)
            if timestamp is None:
                return None
            self.versions_timestamps[name] = timestamp
        return self.versions_timestamps[name]

    def versions_are_current(self, name: str) -> bool:
        return is_fresh(self.versions_timestamp(name), self.refresh_age)

    def close(self):
        """Close the registry client if this cache created it."""
        if self._owns_registry and self._registry is not None:
            self._registry.close()
