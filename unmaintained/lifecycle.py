"""Cache construction, ownership and whole-cache purge.

The persistent cache lives at ``<cache home>/cargo-unmaintained/<version>``.
Bumping ``CACHE_VERSION`` is how on-disk layout changes are migrated: older
layouts are simply never read. The lock file sits next to the
``cargo-unmaintained`` directory so that purging the directory leaves it in
place.
"""

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Callable, TypeVar

from unmaintained.cache import Cache
from unmaintained.config import DEFAULT_MAX_AGE, default_cache_home
from unmaintained.lock import LOCKING_SUPPORTED, lock_path
from unmaintained.registry import RegistryClient

logger = logging.getLogger(__name__)

CACHE_NAME = "cargo-unmaintained"
CACHE_VERSION = "v2"

# Upper bound on how long a clone or version list goes unrefreshed
DEFAULT_REFRESH_AGE = 30

T = TypeVar("T")


def cache_root(cache_home: Path) -> Path:
    return cache_home / CACHE_NAME


def cache_directory(cache_home: Path) -> Path:
    return cache_root(cache_home) / CACHE_VERSION


def cache_lock_file(cache_home: Path) -> Path:
    return cache_home / f"{CACHE_NAME}.lock"


def refresh_age(max_age: int) -> int:
    """Cache freshness in days, capped independently of the staleness threshold."""
    return min(DEFAULT_REFRESH_AGE, max_age)


class CacheManager:
    """Owns the process's cache, creating it on first use."""

    def __init__(
        self,
        temporary: bool = False,
        max_age: int = DEFAULT_MAX_AGE,
        cache_home: Path | None = None,
        registry: RegistryClient | None = None,
    ):
        """Initialize the manager.

        Args:
            temporary: Keep everything in a private temporary directory
                removed on close
            max_age: The user's staleness threshold in days
            cache_home: Base directory of the persistent cache
            registry: Client handed to the cache for versions fetches
        """
        self.temporary = temporary or not LOCKING_SUPPORTED
        self.refresh_age = refresh_age(max_age)
        self.cache_home = cache_home if cache_home is not None else default_cache_home()
        self._registry = registry
        self._tempdir: tempfile.TemporaryDirectory | None = None
        self._cache: Cache | None = None

    def get(self) -> Cache:
        """Return the cache, creating its directory the first time."""
        if self._cache is None:
            if self.temporary:
                self._tempdir = tempfile.TemporaryDirectory(prefix="cargo-unmaintained-")
                base_dir = Path(self._tempdir.name)
                lock_file = None
                logger.debug(f"Using temporary cache at {base_dir}")
            else:
                base_dir = cache_directory(self.cache_home)
                base_dir.mkdir(parents=True, exist_ok=True)
                lock_file = cache_lock_file(self.cache_home)
                logger.debug(f"Using cache at {base_dir}")
            self._cache = Cache(
                base_dir,
                self.refresh_age,
                lock_file=lock_file,
                registry=self._registry,
            )
        return self._cache

    def with_cache(self, f: Callable[[Cache], T]) -> T:
        """Run ``f`` against the cache."""
        return f(self.get())

    def close(self):
        """Release the cache and delete its directory if it is temporary."""
        if self._cache is not None:
            self._cache.close()
            self._cache = None
        if self._tempdir is not None:
            self._tempdir.cleanup()
            self._tempdir = None

    def __enter__(self) -> "CacheManager":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def purge_cache(cache_home: Path | None = None) -> bool:
    """Remove every persistent cache version.

    Returns:
        True if there was a cache directory to remove

    Raises:
        LockError: If the cache cannot be locked
        OSError: If the directory cannot be removed
    """
    if cache_home is None:
        cache_home = default_cache_home()
    root = cache_root(cache_home)

    if not LOCKING_SUPPORTED:
        if not root.exists():
            return False
        shutil.rmtree(root)
        return True

    with lock_path(cache_lock_file(cache_home)):
        if not root.exists():
            logger.debug(f"No cache at {root}")
            return False
        shutil.rmtree(root)

    logger.info(f"Removed {root}")
    return True
