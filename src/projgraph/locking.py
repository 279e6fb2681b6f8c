"""Cross-process advisory locking for memory files.

A lease is an exclusive ``flock`` on a sidecar ``<file>.lock`` next to the
document it protects. The document itself is replaced by rename on every
write, so locking its inode would not exclude a process that opens the new
file; the sidecar keeps a stable inode.

Acquisition is non-blocking with bounded, exponentially backed-off retries.
Sidecar files are left on disk after release; unlinking them would let two
processes lock different inodes for the same path.
"""

from __future__ import annotations

import asyncio
import fcntl
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from .constants import (
    LOCK_BACKOFF_FACTOR,
    LOCK_MAX_BACKOFF,
    LOCK_MIN_BACKOFF,
    LOCK_RETRIES,
    LOCK_SUFFIX,
)
from .exceptions import LockTimeoutError

logger = logging.getLogger(__name__)


def lock_path_for(target: Path) -> Path:
    """Sidecar lock file guarding ``target``."""
    return target.with_name(target.name + LOCK_SUFFIX)


class FileLease:
    """A held cross-process lock. Release it exactly once.

    Releasing twice is a no-op that returns False, so a forced release on
    shutdown and the owner's own release cannot both close the descriptor.
    """

    def __init__(self, target: Path, lock_path: Path, fd: int):
        self.target = target
        self.lock_path = lock_path
        self._fd: int | None = fd

    @property
    def released(self) -> bool:
        return self._fd is None

    def release(self) -> bool:
        """Unlock and close the lock file.

        Returns:
            True if this call released the lease, False if already released
        """
        fd, self._fd = self._fd, None
        if fd is None:
            return False
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        return True

    def __repr__(self) -> str:
        state = "released" if self.released else "held"
        return f"FileLease({self.target}, {state})"


async def acquire_lease(
    target: Path,
    retries: int = LOCK_RETRIES,
    min_backoff: float = LOCK_MIN_BACKOFF,
    max_backoff: float = LOCK_MAX_BACKOFF,
) -> FileLease:
    """Acquire an exclusive lease on ``target``.

    Args:
        target: File to protect; its directory must exist
        retries: Attempts after the first one before giving up
        min_backoff: Delay before the first retry, in seconds
        max_backoff: Ceiling for the doubling delay

    Returns:
        The held lease

    Raises:
        LockTimeoutError: If every attempt found the lock held
    """
    lock_path = lock_path_for(target)
    fd = os.open(lock_path, os.O_CREAT | os.O_RDWR, 0o644)
    delay = min_backoff
    attempts = retries + 1

    try:
        for attempt in range(1, attempts + 1):
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return FileLease(target, lock_path, fd)
            except BlockingIOError:
                if attempt == attempts:
                    break
            logger.debug(f"Lock busy on {lock_path}, retry {attempt}/{retries} in {delay:.2f}s")
            await asyncio.sleep(delay)
            delay = min(delay * LOCK_BACKOFF_FACTOR, max_backoff)
    except BaseException:
        os.close(fd)
        raise

    os.close(fd)
    logger.warning(f"Gave up locking {target} after {attempts} attempts")
    raise LockTimeoutError(target, attempts)


@asynccontextmanager
async def hold_lease(target: Path, **kwargs) -> AsyncIterator[FileLease]:
    """Scoped lease: released on every exit path."""
    lease = await acquire_lease(target, **kwargs)
    try:
        yield lease
    finally:
        lease.release()
