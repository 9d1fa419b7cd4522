"""Per-package maintenance checks built on the cache."""

import logging
import time
from dataclasses import dataclass

import httpx

from unmaintained import git
from unmaintained.cache import CloneError, UnnamedPackageError
from unmaintained.lifecycle import CacheManager
from unmaintained.package import Package, load_latest_package, version_key
from unmaintained.registry import latest_version
from unmaintained.status import RepoState, RepoStatus, StatusChecker
from unmaintained.store import SECS_PER_DAY

logger = logging.getLogger(__name__)


@dataclass
class UnmaintainedPackage:
    """A package reported as unmaintained.

    For a SUCCESS status, ``status.value`` is the age in seconds of the
    repository's latest commit.
    """

    package: Package
    status: RepoStatus
    newer_version_available: bool = False

    @property
    def age_days(self) -> int | None:
        if not self.status.is_success:
            return None
        return self.status.value // SECS_PER_DAY

    def to_dict(self) -> dict:
        return {
            "name": self.package.name,
            "version": self.package.version,
            "repository": self.package.repository,
            "status": self.status.state.name.lower(),
            "url": self.status.url,
            "age_days": self.age_days,
            "newer_version_available": self.newer_version_available,
        }

    def describe(self) -> str:
        detail = f"{self.age_days} days" if self.status.is_success else self.status.describe()
        marker = "*" if self.newer_version_available else ""
        return f"{self.package.name} ({detail}){marker}"


class Scanner:
    """Decides, package by package, whether a dependency looks unmaintained.

    Clone outcomes are remembered per URL for the whole run, so packages
    sharing a repository (or a shortened repository URL) run git once.
    Failures are remembered under every URL of the package that failed.
    """

    def __init__(self, cache_manager: CacheManager, checker: StatusChecker, max_age: int):
        self.cache_manager = cache_manager
        self.checker = checker
        self.max_age = max_age
        self.repositories: dict[str, RepoStatus] = {}

    def _clone(self, pkg: Package) -> RepoStatus:
        for url in pkg.urls:
            if url in self.repositories:
                return self.repositories[url]

        try:
            url, repo_dir = self.cache_manager.with_cache(lambda cache: cache.clone_repository(pkg))
        except UnnamedPackageError:
            return RepoStatus(RepoState.UNNAMED)
        except CloneError as e:
            logger.warning(f"Failed to clone {pkg.repository}: {'; '.join(e.errors)}")
            status = self.checker.status(pkg.repository)
            if status.is_success:
                status = RepoStatus(RepoState.UNCLONEABLE, pkg.repository)
            for url in pkg.urls:
                self.repositories[url] = status
            return status

        status = RepoStatus.success(url, repo_dir)
        self.repositories[url] = status
        return status

    def clone_repository(self, pkg: Package) -> RepoStatus:
        """Clone (or reuse) the package's repository and check membership."""
        repo = self._clone(pkg)
        if repo.is_failure:
            return repo
        if not git.is_member(repo.value, pkg.name):
            return RepoStatus(RepoState.UNASSOCIATED, repo.url)
        return repo

    def newer_version_available(self, pkg: Package) -> bool:
        """Check whether the registry has a newer release than the one in use."""
        if not pkg.is_from_crates_io:
            return False
        try:
            versions = self.cache_manager.with_cache(lambda cache: cache.fetch_versions(pkg.name))
        except httpx.HTTPError as e:
            logger.warning(f"Failed to fetch versions of {pkg.name}: {e}")
            return False
        latest = latest_version(versions)
        return latest is not None and version_key(latest.num) > version_key(pkg.version)

    def latest_version_is_unmaintained(self, name: str) -> bool:
        """Check the newest release of ``name`` the same way as the one in use."""
        return self.find_unmaintained(load_latest_package(name)) is not None

    def find_unmaintained(self, pkg: Package) -> UnmaintainedPackage | None:
        """Return a report for ``pkg`` if its repository looks unmaintained."""
        logger.debug(f"Checking {pkg.name} {pkg.version}")

        if pkg.repository and self.checker.checks_archival:
            general = self.checker.status(pkg.repository)
            if general.is_failure:
                return UnmaintainedPackage(pkg, general)

        repo = self.clone_repository(pkg)
        if repo.state == RepoState.UNCLONEABLE and self.checker.is_mercurial_repo(pkg.repository):
            logger.debug(f"{pkg.repository} is a Mercurial repository; skipping {pkg.name}")
            return None
        if repo.is_failure:
            return UnmaintainedPackage(pkg, repo)

        age = max(0, int(time.time()) - git.latest_commit_timestamp(repo.value))
        if age < self.max_age * SECS_PER_DAY:
            return None

        return UnmaintainedPackage(pkg, RepoStatus.success(repo.url, age))

    def check_package(self, pkg: Package) -> UnmaintainedPackage | None:
        """Return a report for ``pkg`` if it looks unmaintained, else None.

        When a newer release exists, the package is only reported if that
        release looks unmaintained too.
        """
        result = self.find_unmaintained(pkg)
        if result is None:
            return None

        newer = self.newer_version_available(pkg)
        if newer and not self.latest_version_is_unmaintained(pkg.name):
            logger.debug(f"Latest version of {pkg.name} looks maintained")
            return None

        result.newer_version_available = newer
        return result

    def scan(self, packages: list[Package], fail_fast: bool = False) -> list[UnmaintainedPackage]:
        """Check every package, returning the unmaintained ones sorted worst first.

        With ``fail_fast``, scanning stops at the first unmaintained package.
        """
        found = []
        for pkg in packages:
            result = self.check_package(pkg)
            if result is not None:
                found.append(result)
                if fail_fast:
                    break
        found.sort(key=lambda u: (u.status.state, u.status.value or 0, u.package.name), reverse=True)
        return found
