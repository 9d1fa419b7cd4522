"""Repository existence check over plain HTTP."""

import logging

import httpx

from unmaintained.registry import USER_AGENT
from unmaintained.status.base import RepoState, RepoStatus, StatusChecker

logger = logging.getLogger(__name__)

MERCURIAL_CONTENT_TYPE = "application/mercurial"


class ExistenceChecker(StatusChecker):
    """Checks that a repository URL does not answer 404."""

    name = "existence"

    def __init__(self, transport: httpx.BaseTransport | None = None):
        """Initialize the HTTP client."""
        self._client = httpx.Client(
            headers={"User-Agent": USER_AGENT},
            transport=transport,
            timeout=30.0,
            follow_redirects=True,
        )
        self._results: dict[str, RepoStatus] = {}

    def exists(self, url: str) -> bool | None:
        """Return True for 200, False for 404 and None for anything else."""
        response = self._client.get(url)
        if response.status_code == 200:
            return True
        if response.status_code == 404:
            return False
        return None

    def status(self, url: str) -> RepoStatus:
        """Check existence, treating errors and unknown answers as success."""
        if url in self._results:
            return self._results[url]

        try:
            exists = self.exists(url)
        except httpx.HTTPError as e:
            logger.warning(f"Failed to determine existence of {url}: {e}")
            exists = None

        result = RepoStatus(RepoState.NONEXISTENT, url) if exists is False else RepoStatus.success(url)
        self._results[url] = result
        return result

    def is_mercurial_repo(self, url: str) -> bool:
        """Ask the server for Mercurial wire-protocol capabilities."""
        try:
            response = self._client.get(url, params={"cmd": "capabilities"})
        except httpx.HTTPError as e:
            logger.warning(f"Failed to determine whether {url} is a Mercurial repository: {e}")
            return False
        content_type = response.headers.get("Content-Type", "")
        return response.status_code == 200 and content_type.startswith(MERCURIAL_CONTENT_TYPE)

    def close(self):
        """Close the HTTP client."""
        self._client.close()
