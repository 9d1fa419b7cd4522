"""Repository status checkers."""

from unmaintained.status.base import RepoState, RepoStatus, StatusChecker
from unmaintained.status.existence import ExistenceChecker
from unmaintained.status.github_api import GitHubApiChecker
from unmaintained.status.factory import create_checker

__all__ = [
    "RepoState",
    "RepoStatus",
    "StatusChecker",
    "ExistenceChecker",
    "GitHubApiChecker",
    "create_checker",
]
