"""The complete tiering engine: crawling, ranking and moving files between tiers."""

from __future__ import annotations

import os
import re
import threading
import time
from pathlib import Path
from typing import Iterator

from tierfs.adhoc import AdhocEngine
from tierfs.config import ConfigOverrides
from tierfs.locking import LockFile
from tierfs.logger import LogLevel, log
from tierfs.tracked_file import TrackedFile

LOCK_FILE_NAME = "autotier.lock"

# Temporary files written while a file is being moved between tiers.
_TEMP_FILE_RE = re.compile(r"\.[^/]*\.autotier\.hide")


class TierEngine(AdhocEngine):
    """Finds every file in every tier, ranks them by popularity and places them."""

    def __init__(
        self,
        config_path: str | os.PathLike,
        overrides: ConfigOverrides | None = None,
    ) -> None:
        super().__init__(config_path, overrides)
        self.lock_file = LockFile(self.run_path / LOCK_FILE_NAME)
        self._tier_lock = threading.Lock()
        self._tiering = False
        self.last_tier_time = time.monotonic()
        self.files: list[TrackedFile] = []

    # -- main loop -------------------------------------------------------

    def _should_wake(self) -> bool:
        return self.stop_flag or not self.adhoc_work.empty()

    def begin(self, daemon_mode: bool = True) -> None:
        """Tier, run queued ad hoc work and sleep until the next period or new work.

        With a negative tier period no periodic tiering happens; only queued
        work is run. Without ``daemon_mode`` the loop runs a single pass.
        """
        log.message("tierfs started.", LogLevel.NORMAL)
        period = self.config.tier_period_s
        if period < 0:
            self.last_tier_time = time.monotonic()
            while daemon_mode and not self.stop_flag:
                self.execute_queued_work()
                self.sleeper.sleep_until_woken(self._should_wake)
            return
        self.last_tier_time = time.monotonic() - period
        while True:
            wake_time = time.monotonic() + period
            if not self.tier():
                log.message("tierfs already moving files.", LogLevel.DEBUG)
            while daemon_mode and time.monotonic() < wake_time and not self.stop_flag:
                self.execute_queued_work()
                self.sleeper.sleep_until(wake_time, self._should_wake)
            if not daemon_mode or self.stop_flag:
                break

    def tier(self) -> bool:
        """Run one tiering pass; return False if one is already running."""
        if not self._tier_lock.acquire(blocking=False):
            return False
        try:
            self._tiering = True
            self.launch_crawlers()
            self.calc_popularity()
            self.sort()
            self.simulate_tier()
            self.move_files()
            self.update_db()
            log.message("Tiering complete.", LogLevel.DEBUG)
        finally:
            self.files.clear()
            self._tiering = False
            self.lock_file.release()
            self._tier_lock.release()
        return True

    # -- gathering files -------------------------------------------------

    def launch_crawlers(self) -> None:
        """Collect the unpinned files of every tier and recount each tier's usage."""
        log.message("Gathering files.", LogLevel.DEBUG)
        db = self.get_db()
        for tier in self.tiers:
            usage = 0
            for path in self.crawl(tier.path):
                tracked = TrackedFile(path, db, tier)
                usage += tracked.size
                if not tracked.is_pinned:
                    self.files.append(tracked)
            tier.usage = usage

    def crawl(self, directory: str | os.PathLike) -> Iterator[Path]:
        """Yield every regular file below ``directory``, skipping symlinks and move temporaries."""
        with os.scandir(directory) as entries:
            children = list(entries)
        for entry in children:
            if entry.is_dir(follow_symlinks=False):
                yield from self.crawl(entry.path)
            elif not entry.is_symlink() and not _TEMP_FILE_RE.fullmatch(entry.name):
                yield Path(entry.path)

    # -- ranking and placement -------------------------------------------

    def calc_popularity(self) -> None:
        """Update each file's popularity over the time since the previous pass."""
        log.message("Calculating file popularity.", LogLevel.DEBUG)
        now = time.monotonic()
        period = now - self.last_tier_time
        self.last_tier_time = now
        log.message(f"Real period for popularity calc: {period:f}", LogLevel.DEBUG)
        for tracked in self.files:
            tracked.calc_popularity(period)

    def sort(self) -> None:
        """Order files by descending popularity, ties by most recent access."""
        log.message("Sorting files.", LogLevel.DEBUG)
        self.files.sort(key=lambda f: (f.popularity, f.atime), reverse=True)

    def simulate_tier(self) -> None:
        """Assign each file to the first tier it fits in, queueing those that must move."""
        log.message("Finding files' tiers.", LogLevel.DEBUG)
        for tier in self.tiers:
            tier.reset_sim()
        for tracked in self.files:
            for tier in self.tiers:
                if not tier.full_test(tracked.size):
                    tier.add_file_size_sim(tracked.size)
                    if tracked.tier is not tier:
                        tier.enqueue_file(tracked)
                    break
            else:
                log.error(f"Could not fit file in any tiers: `{tracked.full_path}`")

    def move_files(self) -> None:
        """Move queued files into their tiers, one thread per tier."""
        log.message("Moving files.", LogLevel.DEBUG)
        db = self.get_db()
        threads = [
            threading.Thread(
                target=tier.transfer_files,
                args=(self.config.copy_buff_sz, self.run_path, db),
                name=f"tier-{tier.id}",
            )
            for tier in self.tiers
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

    def update_db(self) -> None:
        """Store every gathered file's metadata."""
        db = self.get_db()
        for tracked in self.files:
            tracked.update_db(db)

    # -- lifecycle -------------------------------------------------------

    def stop(self) -> None:
        """Make the tiering loop and the ad hoc server exit."""
        self.stop_flag = True
        self.sleeper.wake()
        self.shutdown_socket_server()

    def currently_tiering(self) -> bool:
        return self._tiering

    def strict_period(self) -> bool:
        """Return True if tiering only happens once per period."""
        return self.config.strict_period

    def shutdown(self) -> None:
        """Release the lock file, stop every loop and close the metadata store."""
        log.message("Ensuring mutex is unlocked before exiting.", LogLevel.DEBUG)
        self.lock_file.release()
        self.stop()
        self.close_db()