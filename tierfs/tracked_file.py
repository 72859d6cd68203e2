"""A file found in a tier, with its metadata, size and times."""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import TYPE_CHECKING

from tierfs.metadata import Metadata, MetadataStore
from tierfs.popularity import next_popularity

if TYPE_CHECKING:
    from tierfs.tier import Tier


def _to_usec_ns(ns: int) -> int:
    return ns // 1000 * 1000


class TrackedFile:
    """A file in the combined filesystem as seen from the tier holding it."""

    def __init__(
        self, full_path: str | os.PathLike, store: MetadataStore, tier: "Tier"
    ) -> None:
        full_path = Path(full_path)
        self.tier: Tier | None = tier
        self.relative_path = Path(os.path.relpath(full_path, tier.path))
        self.metadata = Metadata.load(self.relative_path.as_posix(), store, str(tier.path))
        info = os.lstat(full_path)
        self.size = info.st_size
        self._atime_ns = _to_usec_ns(info.st_atime_ns)
        self._mtime_ns = _to_usec_ns(info.st_mtime_ns)
        self.ctime = int(info.st_ctime)

    def __repr__(self) -> str:
        return f"TrackedFile({str(self.full_path)!r})"

    @property
    def full_path(self) -> Path:
        if self.tier is not None:
            return self.tier.path / self.relative_path
        return Path(self.metadata.tier_path) / self.relative_path

    @property
    def popularity(self) -> float:
        return self.metadata.popularity

    @property
    def atime(self) -> tuple[int, int]:
        """Last access time as ``(seconds, microseconds)``."""
        seconds, rest = divmod(self._atime_ns, 1_000_000_000)
        return seconds, rest // 1000

    @property
    def is_pinned(self) -> bool:
        return self.metadata.pinned

    def update_db(self, store: MetadataStore) -> None:
        self.metadata.update(self.relative_path.as_posix(), store)

    def calc_popularity(self, period_seconds: float, now: float | None = None) -> None:
        """Fold the accesses of the last period into the popularity and reset the count."""
        if period_seconds <= 0.0:
            return
        if now is None:
            now = time.time()
        age = float(int(now) - self.ctime)
        self.metadata.popularity = next_popularity(
            self.metadata.popularity, self.metadata.access_count, period_seconds, age
        )
        self.metadata.access_count = 0

    def pin(self) -> None:
        """Keep the file in its current tier."""
        self.metadata.pinned = True

    def transfer_to_tier(self, tier: "Tier", store: MetadataStore) -> None:
        """Account the file to ``tier`` and record the move in the store."""
        if self.tier is not None:
            self.tier.subtract_file_size(self.size)
        self.tier = tier
        tier.add_file_size(self.size)
        self.metadata.tier_path = str(tier.path)
        self.metadata.update(self.relative_path.as_posix(), store)

    def overwrite_times(self) -> None:
        """Restore the access and modification times seen when the file was found."""
        os.utime(self.full_path, ns=(self._atime_ns, self._mtime_ns), follow_symlinks=False)

    def change_path(self, new_path: str | os.PathLike, store: MetadataStore) -> None:
        """Re-key the stored metadata under ``new_path``."""
        new_path = Path(new_path)
        old_key = self.relative_path.as_posix()
        self.metadata.update(new_path.as_posix(), store, old_key=old_key)
        self.relative_path = new_path