"""Advisory exclusive file lock with a bounded wait.

Writers take a non-blocking ``flock`` on a sidecar ``.lock`` file and poll
until the timeout expires; they never block indefinitely.
"""

from __future__ import annotations

import fcntl
import logging
import time
from pathlib import Path
from typing import IO

logger = logging.getLogger(__name__)

LOCK_INTERVAL = 0.1
LOCK_TIMEOUT = 5.0


class LockTimeoutError(RuntimeError):
    """Raised when the lock could not be acquired before the timeout."""


class FileLock:
    """Exclusive advisory lock on ``path``.

    Args:
        path:     The lock file (created if missing, never deleted).
        timeout:  Seconds to keep retrying before giving up.
        interval: Seconds between attempts.
    """

    def __init__(
        self,
        path: Path,
        timeout: float = LOCK_TIMEOUT,
        interval: float = LOCK_INTERVAL,
    ) -> None:
        self.path = path
        self.timeout = timeout
        self.interval = interval
        self._handle: IO[str] | None = None

    @property
    def locked(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.path, "a+")
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    handle.close()
                    logger.error("Lock %s not acquired after %.1fs", self.path, self.timeout)
                    raise LockTimeoutError(
                        f"Could not lock {self.path.name} within {self.timeout:g}s"
                    ) from None
                time.sleep(self.interval)
                continue
            self._handle = handle
            return

    def release(self) -> None:
        if self._handle is None:
            return
        try:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> FileLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()
