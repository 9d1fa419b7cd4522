"""crates.io API client for published version lists."""

import logging
import time
from dataclasses import dataclass
from datetime import datetime

import httpx
from dateutil import parser as date_parser

from unmaintained.package import version_key

logger = logging.getLogger(__name__)

USER_AGENT = "cargo-unmaintained (github.com/trailofbits/cargo-unmaintained)"


@dataclass
class Version:
    """A published version of a package."""

    num: str
    created_at: datetime
    yanked: bool = False

    @classmethod
    def from_api(cls, data: dict) -> "Version":
        """Create Version from a crates.io API (or cached) version object."""
        return cls(
            num=data["num"],
            created_at=date_parser.isoparse(data["created_at"]),
            yanked=data.get("yanked", False),
        )

    def to_dict(self) -> dict:
        """Serialize to the JSON descriptor stored on disk."""
        return {
            "num": self.num,
            "created_at": self.created_at.isoformat(),
            "yanked": self.yanked,
        }

    @property
    def is_prerelease(self) -> bool:
        return "-" in self.num.split("+", 1)[0]


def latest_version(versions: list[Version]) -> Version | None:
    """Return the highest non-yanked, non-prerelease version."""
    candidates = [v for v in versions if not v.yanked and not v.is_prerelease]
    if not candidates:
        return None
    return max(candidates, key=lambda v: version_key(v.num))


class RegistryClient:
    """Synchronous client for the crates.io API."""

    BASE_URL = "https://crates.io/api/v1"

    # crates.io asks crawlers for at most one request per second
    RATE_LIMIT = 1.0

    def __init__(
        self,
        transport: httpx.BaseTransport | None = None,
        rate_limit: float | None = None,
    ):
        """Initialize the HTTP client."""
        self.rate_limit = self.RATE_LIMIT if rate_limit is None else rate_limit
        self._last_request: float | None = None
        self._client = httpx.Client(
            base_url=self.BASE_URL,
            headers={"User-Agent": USER_AGENT},
            transport=transport,
            timeout=30.0,
        )

    def _wait_for_rate_limit(self) -> None:
        if self._last_request is None:
            return
        elapsed = time.monotonic() - self._last_request
        if elapsed < self.rate_limit:
            time.sleep(self.rate_limit - elapsed)

    def get_versions(self, name: str) -> list[Version]:
        """Fetch every published version of a package.

        Only the ``versions`` array of the response is used; crate-level data
        is ignored.

        Raises:
            httpx.HTTPError: If the request fails or returns an error status
        """
        self._wait_for_rate_limit()
        try:
            response = self._client.get(f"/crates/{name}")
        finally:
            self._last_request = time.monotonic()
        response.raise_for_status()

        data = response.json()
        versions = [Version.from_api(item) for item in data.get("versions", [])]
        logger.debug(f"Fetched {len(versions)} versions of {name}")
        return versions

    def close(self):
        """Close the HTTP client."""
        self._client.close()
