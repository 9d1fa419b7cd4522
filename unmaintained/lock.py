"""Advisory file lock serializing cache mutation across processes.

The lock is cooperative: it only excludes other processes that also take it.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

try:
    import fcntl
except ImportError:  # Windows
    fcntl = None

logger = logging.getLogger(__name__)

LOCKING_SUPPORTED = fcntl is not None


class LockError(Exception):
    """Raised when the cache lock cannot be acquired."""


@contextmanager
def lock_path(path: Path) -> Iterator[None]:
    """Hold an exclusive ``flock`` on ``path`` for the duration of the block.

    Blocks until the lock is available. The file (and its parent directory)
    is created if absent.

    Raises:
        LockError: If the lock file cannot be opened or locked
    """
    if fcntl is None:
        raise LockError("file locking is not supported on this platform")

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        lock_file = open(path, "a")
    except OSError as e:
        raise LockError(f"failed to open lock file {path}: {e}") from e

    with lock_file:
        try:
            fcntl.flock(lock_file, fcntl.LOCK_EX)
        except OSError as e:
            raise LockError(f"failed to lock {path}: {e}") from e
        logger.debug(f"Acquired lock {path}")
        try:
            yield
        finally:
            fcntl.flock(lock_file, fcntl.LOCK_UN)
            logger.debug(f"Released lock {path}")
