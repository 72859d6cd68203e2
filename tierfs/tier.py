"""A storage tier: a backend directory with a quota."""

from __future__ import annotations

import os
import stat
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from tierfs.conflicts import CONFLICT_SUFFIX, add_conflict
from tierfs.logger import log

if TYPE_CHECKING:
    from tierfs.metadata import MetadataStore
    from tierfs.tracked_file import TrackedFile


@dataclass
class Quota:
    """A fraction of a tier's capacity that it may fill."""

    capacity: int
    fraction: float = 1.0

    @property
    def max(self) -> int:
        return int(self.capacity * self.fraction)

    def __str__(self) -> str:
        return log.format_bytes(self.max)


class Tier:
    """One backend directory taking part in the combined filesystem."""

    def __init__(self, tier_id: str, path: str | os.PathLike, quota: Quota) -> None:
        self.id = tier_id
        self.path = Path(path)
        self.quota = quota
        self.usage = 0
        self.sim_usage = 0
        self.incoming_files: list[TrackedFile] = []
        self._usage_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"Tier({self.id!r}, {str(self.path)!r})"

    def add_file_size(self, size: int) -> None:
        with self._usage_lock:
            self.usage += size

    def subtract_file_size(self, size: int) -> None:
        with self._usage_lock:
            self.usage -= size

    def size_delta(self, old_size: int, new_size: int) -> None:
        """Replace ``old_size`` by ``new_size`` in the usage, atomically."""
        with self._usage_lock:
            self.usage += new_size - old_size

    def add_file_size_sim(self, size: int) -> None:
        self.sim_usage += size

    def subtract_file_size_sim(self, size: int) -> None:
        self.sim_usage -= size

    @property
    def quota_percent(self) -> float:
        return self.quota.fraction * 100.0

    @quota_percent.setter
    def quota_percent(self, percent: float) -> None:
        self.quota = Quota(self.quota.capacity, percent / 100.0)

    def full_test(self, file_size: int) -> bool:
        """Return True if adding ``file_size`` to the simulated usage would exceed the quota."""
        return self.sim_usage + file_size > self.quota.max

    def enqueue_file(self, tracked_file: "TrackedFile") -> None:
        self.incoming_files.append(tracked_file)

    def transfer_files(
        self, buff_sz: int, run_path: str | os.PathLike, store: "MetadataStore"
    ) -> None:
        """Move every queued file into this tier, then clear the queue."""
        for tracked in self.incoming_files:
            old_tier = tracked.tier
            old_path = tracked.full_path
            relative = tracked.relative_path
            new_path = self.path / relative
            conflicted = os.path.lexists(new_path)
            if conflicted:
                origin = old_tier.id if old_tier is not None else ""
                relative = relative.with_name(f"{relative.name}{CONFLICT_SUFFIX}.{origin}")
                destination = self.path / relative
            else:
                destination = new_path
            if not self.move_file(old_path, destination, buff_sz):
                continue
            if conflicted:
                log.warning(f"Conflicting path while tiering: {new_path}")
                add_conflict(str(new_path), run_path)
                tracked.change_path(relative, store)
            tracked.transfer_to_tier(self, store)
            tracked.overwrite_times()
        self.incoming_files.clear()

    def move_file(
        self, old_path: str | os.PathLike, new_path: str | os.PathLike, buff_sz: int
    ) -> bool:
        """Copy ``old_path`` to ``new_path`` in ``buff_sz`` chunks, then remove the original."""
        if buff_sz <= 0:
            raise ValueError("copy buffer size must be positive")
        old_path, new_path = Path(old_path), Path(new_path)
        tmp_path = new_path.with_name(f".{new_path.name}.autotier.hide")
        try:
            new_path.parent.mkdir(parents=True, exist_ok=True)
            with open(old_path, "rb") as src, open(tmp_path, "wb") as dst:
                while chunk := src.read(buff_sz):
                    dst.write(chunk)
            self._copy_ownership_and_perms(old_path, tmp_path)
            os.replace(tmp_path, new_path)
            os.unlink(old_path)
        except OSError as exc:
            log.error(f"Failed to move {old_path} to {new_path}: {exc}")
            try:
                tmp_path.unlink()
            except OSError:
                pass
            return False
        return True

    @staticmethod
    def _copy_ownership_and_perms(old_path: Path, new_path: Path) -> None:
        info = os.stat(old_path)
        if hasattr(os, "chown"):
            try:
                os.chown(new_path, info.st_uid, info.st_gid)
            except PermissionError:
                log.warning(f"Could not copy ownership to {new_path}")
        os.chmod(new_path, stat.S_IMODE(info.st_mode))

    def usage_percent(self) -> float:
        """Return current usage as a percentage of capacity."""
        return self.usage / self.capacity() * 100.0

    def capacity(self) -> int:
        return self.quota.capacity

    def reset_sim(self) -> None:
        self.sim_usage = 0