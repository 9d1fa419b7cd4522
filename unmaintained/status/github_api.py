"""Repository archival check through the GitHub API."""

import logging
import re

import httpx

from unmaintained.registry import USER_AGENT
from unmaintained.status.base import RepoState, RepoStatus, StatusChecker
from unmaintained.status.existence import ExistenceChecker

logger = logging.getLogger(__name__)

GITHUB_URL_RE = re.compile(r"^https://github\.com/([^/]*)/([^/]*)")


def match_github_url(url: str) -> tuple[str, str, str] | None:
    """Split a GitHub URL into (repository url, owner, repo)."""
    match = GITHUB_URL_RE.match(url)
    if not match:
        return None
    owner, repo = match.group(1), match.group(2)
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    return match.group(0), owner, repo


class GitHubApiChecker(StatusChecker):
    """Checks existence and archival status using an authenticated API client."""

    name = "archival status"
    checks_archival = True

    BASE_URL = "https://api.github.com"

    def __init__(
        self,
        token: str,
        transport: httpx.BaseTransport | None = None,
        fallback: ExistenceChecker | None = None,
    ):
        """Initialize with GitHub token."""
        self._client = httpx.Client(
            base_url=self.BASE_URL,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": USER_AGENT,
            },
            transport=transport,
            timeout=30.0,
        )
        self._fallback = fallback if fallback is not None else ExistenceChecker(transport=transport)
        self._repositories: dict[str, dict | None] = {}

    def repository(self, owner: str, repo: str) -> dict | None:
        """Fetch repository metadata, or None if GitHub answers 404."""
        key = f"{owner}/{repo}"
        if key not in self._repositories:
            response = self._client.get(f"/repos/{owner}/{repo}")
            if response.status_code == 404:
                self._repositories[key] = None
            else:
                response.raise_for_status()
                self._repositories[key] = response.json()
        return self._repositories[key]

    def status(self, url: str) -> RepoStatus:
        """Check archival status; non-GitHub URLs get an existence check."""
        matched = match_github_url(url)
        if matched is None:
            return self._fallback.status(url)
        repo_url, owner, repo = matched

        try:
            repository = self.repository(owner, repo)
        except httpx.HTTPError as e:
            logger.warning(f"Failed to determine archival status of {url}: {e}")
            return RepoStatus.success(repo_url)

        if repository is None:
            return RepoStatus(RepoState.NONEXISTENT, repo_url)
        if repository.get("archived"):
            return RepoStatus(RepoState.ARCHIVED, repo_url)
        return RepoStatus.success(repo_url)

    def is_mercurial_repo(self, url: str) -> bool:
        return self._fallback.is_mercurial_repo(url)

    def close(self):
        """Close the HTTP clients."""
        self._client.close()
        self._fallback.close()
