"""A lock file guarding tiering and a wakeable sleep for the tiering thread."""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path
from typing import Callable


class LockFile:
    """Mutual exclusion across processes through exclusive file creation."""

    def __init__(self, path: str | os.PathLike) -> None:
        self.path = Path(path)

    @property
    def locked(self) -> bool:
        return self.path.exists()

    def acquire(self) -> bool:
        """Create the lock file; return False if it already exists."""
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o700)
        except FileExistsError:
            return False
        os.close(fd)
        return True

    def release(self) -> None:
        """Remove the lock file; a missing file is ignored."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def __enter__(self) -> "LockFile":
        if not self.acquire():
            raise BlockingIOError(f"{self.path} is already locked")
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()


class Sleeper:
    """Sleeps until a deadline or a predicate holds, and can be woken early."""

    def __init__(self) -> None:
        self._cond = threading.Condition()

    def sleep_until(self, deadline: float, predicate: Callable[[], bool]) -> bool:
        """Wait until ``predicate`` holds or ``time.monotonic()`` reaches ``deadline``.

        Return the last value of the predicate.
        """
        with self._cond:
            timeout = max(0.0, deadline - time.monotonic())
            return bool(self._cond.wait_for(predicate, timeout=timeout))

    def sleep_until_woken(self, predicate: Callable[[], bool]) -> bool:
        """Wait until ``predicate`` holds after a wake-up."""
        with self._cond:
            return bool(self._cond.wait_for(predicate))

    def wake(self) -> None:
        """Wake the sleeping thread so it re-checks its predicate."""
        with self._cond:
            self._cond.notify()