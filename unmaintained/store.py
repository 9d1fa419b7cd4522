"""On-disk record stores backing the cache.

The cache root contains:

- ``entries/<package>``: JSON ``{"named_url", "cloned_url"}``
- ``repositories/<digest>``: shallow, no-checkout git clones
- ``timestamps/<digest>``: seconds since the epoch of the last clone/fetch
- ``versions/<package>``: JSON array of version descriptors
- ``versions_timestamps/<package>``: seconds since the epoch of the last
  versions fetch

Readers return ``None`` for anything missing or malformed. Writers go through
a temporary file and ``os.replace`` so a record is never seen half-written.
"""

import json
import logging
import os
import shutil
import tempfile
import time
from dataclasses import asdict, dataclass
from pathlib import Path

from unmaintained.registry import Version

logger = logging.getLogger(__name__)

SECS_PER_DAY = 24 * 60 * 60

READ_ERRORS = (OSError, ValueError, KeyError, TypeError)


@dataclass
class CacheEntry:
    """Binds a package's declared repository URL to the URL actually cloned."""

    named_url: str
    cloned_url: str

    @classmethod
    def from_dict(cls, data: dict) -> "CacheEntry":
        return cls(named_url=data["named_url"], cloned_url=data["cloned_url"])


def is_fresh(timestamp: int | None, refresh_age: int, now: float | None = None) -> bool:
    """Check whether a timestamp is less than ``refresh_age`` days old.

    A timestamp in the future is never fresh.
    """
    if timestamp is None:
        return False
    if now is None:
        now = time.time()
    if now < timestamp:
        return False
    return now - timestamp < refresh_age * SECS_PER_DAY


def _write_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _read_timestamp(path: Path) -> int | None:
    try:
        secs = int(path.read_text().strip())
    except READ_ERRORS as e:
        logger.debug(f"No usable timestamp at {path}: {e}")
        return None
    if secs < 0:
        logger.debug(f"Negative timestamp at {path}")
        return None
    return secs


class DiskStore:
    """File-per-record stores rooted at one cache directory."""

    def __init__(self, base_dir: Path):
        self.base_dir = base_dir

    @property
    def entries_dir(self) -> Path:
        return self.base_dir / "entries"

    @property
    def repositories_dir(self) -> Path:
        return self.base_dir / "repositories"

    @property
    def repository_timestamps_dir(self) -> Path:
        return self.base_dir / "timestamps"

    @property
    def versions_dir(self) -> Path:
        return self.base_dir / "versions"

    @property
    def versions_timestamps_dir(self) -> Path:
        return self.base_dir / "versions_timestamps"

    def repository_dir(self, digest: str) -> Path:
        return self.repositories_dir / digest

    # Timestamps

    def read_repository_timestamp(self, digest: str) -> int | None:
        return _read_timestamp(self.repository_timestamps_dir / digest)

    def write_repository_timestamp(self, digest: str, when: int) -> None:
        _write_atomic(self.repository_timestamps_dir / digest, str(when))

    def read_versions_timestamp(self, name: str) -> int | None:
        return _read_timestamp(self.versions_timestamps_dir / name)

    def write_versions_timestamp(self, name: str, when: int) -> None:
        _write_atomic(self.versions_timestamps_dir / name, str(when))

    # Entries

    def read_entry(self, name: str, repository: str | None) -> CacheEntry | None:
        """Read a package's entry.

        An entry recorded for a different declared URL than ``repository`` is
        a miss.
        """
        path = self.entries_dir / name
        try:
            entry = CacheEntry.from_dict(json.loads(path.read_text()))
        except READ_ERRORS as e:
            logger.debug(f"No usable entry for {name}: {e}")
            return None
        if entry.named_url != repository:
            logger.debug(
                f"Entry for {name} was recorded for {entry.named_url!r}, "
                f"not {repository!r}; ignoring it"
            )
            return None
        return entry

    def read_entry_unchecked(self, name: str) -> CacheEntry | None:
        """Read a package's entry without validating its declared URL."""
        try:
            return CacheEntry.from_dict(json.loads((self.entries_dir / name).read_text()))
        except READ_ERRORS:
            return None

    def write_entry(self, name: str, entry: CacheEntry) -> None:
        _write_atomic(self.entries_dir / name, json.dumps(asdict(entry), indent=2))

    # Versions

    def read_versions(self, name: str) -> list[Version] | None:
        path = self.versions_dir / name
        try:
            return [Version.from_api(item) for item in json.loads(path.read_text())]
        except READ_ERRORS as e:
            logger.debug(f"No usable versions for {name}: {e}")
            return None

    def write_versions(self, name: str, versions: list[Version]) -> None:
        payload = [version.to_dict() for version in versions]
        _write_atomic(self.versions_dir / name, json.dumps(payload, indent=2))

    # Removal

    def remove_versions(self, name: str) -> None:
        (self.versions_dir / name).unlink(missing_ok=True)
        (self.versions_timestamps_dir / name).unlink(missing_ok=True)

    def remove_repository_timestamp(self, digest: str) -> None:
        (self.repository_timestamps_dir / digest).unlink(missing_ok=True)

    def remove_entry(self, name: str) -> None:
        (self.entries_dir / name).unlink(missing_ok=True)

    def remove_repository(self, digest: str) -> None:
        repo_dir = self.repository_dir(digest)
        if repo_dir.exists():
            shutil.rmtree(repo_dir)
