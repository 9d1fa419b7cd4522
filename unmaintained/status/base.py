"""Repository status types and the status checker interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from typing import Any


class RepoState(IntEnum):
    """Repository states, ordered by how "bad" they are."""

    UNCLONEABLE = 0
    UNNAMED = 1
    SUCCESS = 2
    UNASSOCIATED = 3
    NONEXISTENT = 4
    ARCHIVED = 5


@dataclass(frozen=True)
class RepoStatus:
    """Outcome of examining a package's repository.

    ``url`` is None only for UNNAMED; ``value`` is set only for SUCCESS.
    """

    state: RepoState
    url: str | None = None
    value: Any = None

    @classmethod
    def success(cls, url: str, value: Any = None) -> "RepoStatus":
        return cls(RepoState.SUCCESS, url, value)

    @property
    def is_success(self) -> bool:
        return self.state == RepoState.SUCCESS

    @property
    def is_failure(self) -> bool:
        return not self.is_success

    def describe(self) -> str:
        """Short human-readable description, as shown in reports."""
        if self.state == RepoState.UNCLONEABLE:
            return f"could not clone {self.url}"
        if self.state == RepoState.UNNAMED:
            return "no repository"
        if self.state == RepoState.UNASSOCIATED:
            return f"not in {self.url}"
        if self.state == RepoState.NONEXISTENT:
            return f"{self.url} does not exist"
        if self.state == RepoState.ARCHIVED:
            return f"{self.url} archived"
        return str(self.url)


class StatusChecker(ABC):
    """Abstract base class for repository status checks."""

    name = "status"
    checks_archival = False

    @abstractmethod
    def status(self, url: str) -> RepoStatus:
        """Check a repository URL.

        Args:
            url: Repository URL as declared by the package

        Returns:
            SUCCESS, NONEXISTENT or ARCHIVED status for the URL
        """
        pass

    def is_mercurial_repo(self, url: str) -> bool:
        """Check whether ``url`` is served by Mercurial rather than git."""
        return False

    def close(self):
        """Release any resources held by the checker."""
