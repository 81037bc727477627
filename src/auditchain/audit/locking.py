"""Locking primitives for the append critical section.

Two layers:
- a threading.Lock per store/sink instance for threads in one process
- an fcntl.flock on a dedicated lock file for appenders in other processes

Both are acquired with a deadline; failing to get either raises
LockTimeoutError before anything is written.
"""

import fcntl
import logging
import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from auditchain.common.constants import AuditConstants
from auditchain.common.exceptions import LockTimeoutError

logger = logging.getLogger(__name__)


@contextmanager
def acquire_thread_lock(lock: threading.Lock, timeout: float) -> Iterator[None]:
    """Hold a threading.Lock, giving up after timeout seconds."""
    if not lock.acquire(timeout=timeout):
        raise LockTimeoutError(
            f"Could not acquire in-process chain lock within {timeout}s",
            timeout=timeout,
        )
    try:
        yield
    finally:
        lock.release()


class ProcessFileLock:
    """Exclusive advisory lock on a file, shared by every process.

    The lock file is separate from the data it protects so that the data file
    can be renamed or replaced while the lock is held.
    """

    def __init__(
        self,
        path: Union[str, Path],
        poll_interval: float = AuditConstants.LOCK_POLL_INTERVAL,
    ):
        self.path = Path(path)
        self.poll_interval = poll_interval

    @contextmanager
    def hold(self, timeout: float) -> Iterator[None]:
        """Hold the lock for the duration of the block.

        Raises:
            LockTimeoutError: If another process keeps the lock past timeout
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.path), os.O_RDWR | os.O_CREAT, 0o600)
        try:
            deadline = time.monotonic() + timeout
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        logger.warning(f"Timed out waiting for lock file {self.path}")
                        raise LockTimeoutError(
                            f"Could not acquire lock {self.path} within {timeout}s",
                            timeout=timeout,
                            details={"lock_path": str(self.path)},
                        )
                    time.sleep(self.poll_interval)
            try:
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)


@contextmanager
def chain_critical_section(
    thread_lock: threading.Lock,
    file_lock: Optional[ProcessFileLock],
    timeout: float,
) -> Iterator[None]:
    """Thread lock first, then the process lock, sharing one deadline."""
    started = time.monotonic()
    with acquire_thread_lock(thread_lock, timeout):
        if file_lock is None:
            yield
            return
        remaining = max(timeout - (time.monotonic() - started), 0.0)
        with file_lock.hold(remaining):
            yield
