"""Status checker factory."""

from unmaintained.status.base import StatusChecker
from unmaintained.status.existence import ExistenceChecker
from unmaintained.status.github_api import GitHubApiChecker


def create_checker(token: str | None) -> StatusChecker:
    """Create the status checker to use for this run.

    Args:
        token: GitHub personal access token, if one was found

    Returns:
        A GitHub API checker when a token is available, otherwise an HTTP
        existence checker
    """
    if token:
        return GitHubApiChecker(token=token)
    return ExistenceChecker()
