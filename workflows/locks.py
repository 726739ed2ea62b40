"""Per-company mutual exclusion for intake runs and status transitions.

Locks are OS file locks (``fcntl.flock``) on one file per company in a
directory beside the ledger database, so a TUI intake and a CLI status
change started from separate processes exclude each other.
"""

import fcntl
import os
import re
import tempfile
import time
from contextlib import contextmanager
from typing import Iterator

from .errors import LockTimeoutError

DEFAULT_LOCK_TIMEOUT = 30.0
POLL_INTERVAL = 0.05


def default_lock_dir(db_path: str) -> str:
    """Lock directory for a ledger: ``locks/`` next to the database file."""
    if db_path == ":memory:":
        return os.path.join(tempfile.gettempdir(), "billsort-locks")
    return os.path.join(os.path.dirname(os.path.abspath(db_path)), "locks")


def lock_filename(company: str) -> str:
    return re.sub(r'[^A-Za-z0-9._-]', '_', company) + ".lock"


class CompanyLocks:
    """One lock file per company; acquisition waits at most ``timeout`` seconds."""

    def __init__(self, lock_dir: str, timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self.lock_dir = lock_dir
        self.timeout = timeout
        os.makedirs(lock_dir, exist_ok=True)

    def path_for(self, company: str) -> str:
        return os.path.join(self.lock_dir, lock_filename(company))

    @contextmanager
    def hold(self, company: str, operation: str = "",
             timeout: float = None) -> Iterator[None]:
        """Hold the company's lock for the duration of the block.

        Raises:
            LockTimeoutError: If the lock is still held elsewhere after the wait
        """
        wait = self.timeout if timeout is None else timeout
        deadline = time.monotonic() + wait
        lock_file = open(self.path_for(company), "a")
        try:
            while True:
                try:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        raise LockTimeoutError(
                            f"Another operation holds the lock; gave up after {wait:.0f}s",
                            company=company, operation=operation,
                        ) from None
                    time.sleep(POLL_INTERVAL)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
        finally:
            lock_file.close()
