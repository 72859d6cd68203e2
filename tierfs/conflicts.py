"""Record and check file path conflicts found while tiering."""

from __future__ import annotations

import os
import threading
from pathlib import Path

from tierfs.logger import log

CONFLICT_LOG_FILE = "conflicts.log"
CONFLICT_SUFFIX = ".autotier_conflict"

_conflict_lock = threading.Lock()


def _still_conflicted(entry: str) -> bool:
    marker = entry + CONFLICT_SUFFIX
    parent = os.path.dirname(entry)
    try:
        with os.scandir(parent or os.curdir) as it:
            return any(os.path.join(parent, e.name).startswith(marker) for e in it)
    except OSError:
        return False


def _read_conflicts(log_file: Path) -> list[str]:
    try:
        text = log_file.read_text()
    except OSError:
        return []
    return [
        entry
        for entry in text.splitlines()
        if entry and os.path.exists(entry) and _still_conflicted(entry)
    ]


def _write_conflicts(conflicts: list[str], log_file: Path) -> None:
    try:
        with open(log_file, "w") as f:
            for entry in conflicts:
                f.write(entry + "\n")
    except OSError:
        log.error("Unable to open conflict log file for writing.")


def check_conflicts(run_path: str | os.PathLike) -> list[str]:
    """Return the conflicts that still exist, pruning resolved ones from the log."""
    log_file = Path(run_path) / CONFLICT_LOG_FILE
    with _conflict_lock:
        conflicts = _read_conflicts(log_file)
        _write_conflicts(conflicts, log_file)
    return conflicts


def add_conflict(path: str, run_path: str | os.PathLike) -> None:
    """Append ``path`` to the conflict log."""
    log_file = Path(run_path) / CONFLICT_LOG_FILE
    with _conflict_lock:
        conflicts = _read_conflicts(log_file)
        conflicts.append(path)
        _write_conflicts(conflicts, log_file)