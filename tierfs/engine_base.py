"""State shared by every part of the tiering engine."""

from __future__ import annotations

import os
import stat
from pathlib import Path

from tierfs.commands import AdHoc
from tierfs.config import Config, ConfigOverrides
from tierfs.locking import Sleeper
from tierfs.logger import LogLevel, log
from tierfs.metadata import MetadataStore
from tierfs.tier import Tier
from tierfs.workqueue import WorkQueue

try:
    import grp
except ImportError:  # not available on every platform
    grp = None  # type: ignore[assignment]

RUN_PATH_MODE = 0o775
DB_FILE_NAME = "metadata.db"
GROUP_NAME = "autotier"


def _group_id(name: str) -> int | None:
    if grp is None:
        return None
    try:
        return grp.getgrnam(name).gr_gid
    except KeyError:
        return None


class EngineBase:
    """Holds the configuration, tiers, run path, work queue and metadata store."""

    def __init__(
        self,
        config_path: str | os.PathLike,
        overrides: ConfigOverrides | None = None,
    ) -> None:
        self.stop_flag = False
        self.config = Config(config_path, overrides)
        self.tiers: list[Tier] = self.config.tiers
        self.run_path: Path = self.config.run_path
        self.mount_point: Path | None = None
        self.adhoc_work: WorkQueue[AdHoc] = WorkQueue()
        self.sleeper = Sleeper()
        self.db: MetadataStore | None = None

    def create_run_path(self) -> None:
        """Create the run path with mode 0775, owned by group ``autotier`` if it exists."""
        try:
            self.run_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            log.error(f"Error while creating run path: {exc}")
            raise
        try:
            info = os.stat(self.run_path)
        except OSError as exc:
            log.error(f"Error while running stat on run path: {exc.strerror}")
            raise
        if stat.S_IMODE(info.st_mode) != RUN_PATH_MODE:
            try:
                os.chmod(self.run_path, RUN_PATH_MODE)
            except OSError as exc:
                log.error(f"Error while running chmod on run path: {exc.strerror}")
                raise
        gid = _group_id(GROUP_NAME)
        if gid is not None and info.st_gid != gid:
            try:
                os.chown(self.run_path, -1, gid)
            except OSError as exc:
                log.error(f"Error while running chown on run path: {exc.strerror}")
                raise

    def tier_by_path(self, path: str | os.PathLike) -> Tier | None:
        """Return the tier whose backend path is ``path``, or None."""
        wanted = Path(path)
        return next((t for t in self.tiers if t.path == wanted), None)

    def tier_by_id(self, tier_id: str) -> Tier | None:
        """Return the tier named ``tier_id`` in the configuration, or None."""
        return next((t for t in self.tiers if t.id == tier_id), None)

    def set_mount_point(self, mount_point: str | os.PathLike) -> None:
        self.mount_point = Path(mount_point)

    def get_db(self) -> MetadataStore:
        """Return the metadata store, opening it on first use."""
        if self.db is None:
            db_path = self.run_path / DB_FILE_NAME
            try:
                self.db = MetadataStore(db_path)
            except Exception:
                log.error(f"Failed to open metadata database: {db_path}")
                raise
        return self.db

    def close_db(self) -> None:
        """Close the metadata store if it is open."""
        if self.db is not None:
            log.message("Closing db", LogLevel.DEBUG)
            self.db.close()
            self.db = None

    def tier(self) -> bool:
        """Run one tiering pass; an engine without a tiering component cannot."""
        log.error("EngineBase.tier() called without a tiering component!")
        raise RuntimeError("this engine has no tiering component")

    def currently_tiering(self) -> bool:
        """Report whether tiering runs; an engine without a tiering component cannot."""
        log.error("EngineBase.currently_tiering() called without a tiering component!")
        raise RuntimeError("this engine has no tiering component")