"""Registry of files currently open through the filesystem."""

from __future__ import annotations

import threading

_open_files: set[str] = set()
_lock = threading.Lock()


def register_open_file(path: str) -> None:
    """Record ``path`` as open."""
    with _lock:
        _open_files.add(path)


def release_open_file(path: str) -> None:
    """Forget ``path``; unknown paths are ignored."""
    with _lock:
        _open_files.discard(path)


def is_open(path: str) -> bool:
    """Return True if ``path`` is recorded as open."""
    with _lock:
        return path in _open_files