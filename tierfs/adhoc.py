"""Ad hoc command handling: the request server and the queued work it produces."""

from __future__ import annotations

import json
import os
import socket
import struct
from pathlib import Path

from tierfs.commands import AdHoc, Command, read_message, send_message
from tierfs.config import ConfigOverrides
from tierfs.conflicts import check_conflicts
from tierfs.engine_base import GROUP_NAME, EngineBase, _group_id
from tierfs.logger import LogLevel, log
from tierfs.metadata import Metadata
from tierfs.openfiles import is_open
from tierfs.popularity import VERSION

SOCKET_NAME = "adhoc.socket"
SOCKET_MODE = 0o775
ACCEPT_TIMEOUT = 0.5

_ABSW = 7
_ABSU = 4
_PERCENTW = 6
_PERCENTU = 2
_RULE = "-" * 80

OK = "OK"
ERR = "ERR"


class AdhocEngine(EngineBase):
    """Engine part that answers ad hoc requests and runs the work they queue."""

    def __init__(
        self,
        config_path: str | os.PathLike,
        overrides: ConfigOverrides | None = None,
    ) -> None:
        super().__init__(config_path, overrides)
        self.oneshot_in_queue = False
        self._server: socket.socket | None = None

    @property
    def socket_path(self) -> Path:
        return self.run_path / SOCKET_NAME

    # -- socket server -------------------------------------------------

    def _open_server(self) -> socket.socket:
        path = self.socket_path
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            server.bind(str(path))
            server.listen()
        except OSError as exc:
            server.close()
            log.error(f"Error while constructing socket server: {exc}")
            raise
        server.settimeout(ACCEPT_TIMEOUT)
        self._server = server
        self._set_socket_permissions()
        return server

    def _set_socket_permissions(self) -> None:
        gid = _group_id(GROUP_NAME)
        if gid is None:
            log.warning(f"`{GROUP_NAME}` group not found, ad hoc commands must be run as root.")
            return
        try:
            os.chown(self.socket_path, -1, gid)
        except OSError as exc:
            log.warning(f"Failed to chown {SOCKET_NAME}: {exc.strerror}")
        try:
            os.chmod(self.socket_path, SOCKET_MODE)
        except OSError as exc:
            log.warning(f"Failed to chmod {SOCKET_NAME}: {exc.strerror}")

    def process_adhoc_requests(self) -> None:
        """Serve requests on the ad hoc socket until ``stop_flag`` is set."""
        if self._server is None and not self.stop_flag:
            self._open_server()
        while not self.stop_flag:
            server = self._server
            if server is None:
                return
            try:
                conn, _ = server.accept()
            except TimeoutError:
                continue
            except OSError as exc:
                if self.stop_flag or self._server is None:
                    log.message("Adhoc server exiting after shutting down socket.", LogLevel.DEBUG)
                    return
                log.warning(f"Socket accept error: {exc}")
                continue
            with conn:
                conn.settimeout(None)
                try:
                    payload = read_message(conn)
                except (OSError, ConnectionError, struct.error, UnicodeDecodeError) as exc:
                    log.warning(f"Socket receive error: {exc}")
                    continue
                reply = self.handle_request(payload)
                try:
                    send_message(conn, reply)
                except OSError as exc:
                    log.warning(f"Socket reply error: {exc}")
            self.sleeper.wake()

    def shutdown_socket_server(self) -> None:
        """Close the ad hoc socket, waking the server thread."""
        log.message("Shutting down socket.", LogLevel.DEBUG)
        server, self._server = self._server, None
        if server is None:
            return
        try:
            server.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            server.close()
        except OSError as exc:
            log.error(f"Socket shutdown error: {exc}")
        try:
            self.socket_path.unlink()
        except OSError:
            pass

    # -- request handling ----------------------------------------------

    def handle_request(self, payload: list[str]) -> list[str]:
        """Answer one request; the reply starts with ``OK`` or ``ERR``."""
        if not payload:
            log.warning("Received bad ad hoc command.")
            return [ERR, "Not a command."]
        work = AdHoc.from_request(payload)
        if work.cmd is Command.ONESHOT:
            return self.process_oneshot(work)
        if work.cmd in (Command.PIN, Command.UNPIN):
            return self.process_pin_unpin(work)
        if work.cmd is Command.STATUS:
            return self.process_status(work)
        if work.cmd is Command.CONFIG:
            return self.process_config()
        if work.cmd is Command.LPIN:
            return self.process_list_pins()
        if work.cmd is Command.LPOP:
            return self.process_list_popularity()
        if work.cmd is Command.WHICHTIER:
            return self.process_which_tier(work)
        log.warning("Received bad ad hoc command.")
        return [ERR, "Not a command."]

    def process_oneshot(self, work: AdHoc) -> list[str]:
        if work.args:
            return [ERR, "tierfs oneshot takes no arguments. Offender(s): " + " ".join(work.args)]
        if self.currently_tiering():
            return [ERR, "tierfs already tiering."]
        self.adhoc_work.push(work)
        return [OK, "Work queued."]

    def _relative_to_mount(self, path: str) -> str | None:
        if self.mount_point is None:
            return None
        try:
            return Path(path).relative_to(self.mount_point).as_posix()
        except ValueError:
            return None

    def process_pin_unpin(self, work: AdHoc) -> list[str]:
        args = list(work.args)
        if work.cmd is Command.PIN:
            if not args:
                return [ERR, "No tier given."]
            tier_id = args.pop(0)
            if self.tier_by_id(tier_id) is None:
                return [ERR, f'Tier does not exist: "{tier_id}"']
        not_in_fs: list[str] = []
        open_files: list[str] = []
        for arg in args:
            relative = self._relative_to_mount(arg)
            if relative is None:
                not_in_fs.append(arg)
            elif is_open("/" + relative):
                open_files.append(arg)
        if not_in_fs or open_files:
            reply = [ERR]
            if not_in_fs:
                reply.append("Files are not in tierfs filesystem: " + " ".join(not_in_fs))
            if open_files:
                reply.append(
                    "Files are currently open by another process: " + " ".join(open_files)
                )
            return reply
        self.adhoc_work.push(work)
        return [OK, "Work queued."]

    def process_status(self, work: AdHoc) -> list[str]:
        flag = work.args[0].strip() if work.args else ""
        if flag not in ("true", "false"):
            log.error("Could not extract boolean from string.")
            return [ERR, "Could not determine whether to use table or JSON output."]
        as_json = flag == "true"

        total_capacity = sum(t.capacity() for t in self.tiers)
        total_quota = sum(t.quota.max for t in self.tiers)
        total_usage = sum(t.usage for t in self.tiers)
        overall_quota = total_quota / total_capacity * 100.0 if total_capacity else 0.0
        total_percent = total_usage / total_capacity * 100.0 if total_capacity else 0.0
        conflicts = check_conflicts(self.run_path)
        mount = str(self.mount_point) if self.mount_point is not None else ""

        if as_json:
            fmt = log.format_bytes
            doc = {
                "version": VERSION,
                "combined": {
                    "capacity": total_capacity,
                    "capacity_pretty": fmt(total_capacity),
                    "quota": total_quota,
                    "quota_pretty": fmt(total_quota),
                    "usage": total_usage,
                    "usage_pretty": fmt(total_usage),
                    "path": mount,
                },
                "tiers": [
                    {
                        "name": t.id,
                        "capacity": t.capacity(),
                        "capacity_pretty": fmt(t.capacity()),
                        "quota": t.quota.max,
                        "quota_pretty": fmt(t.quota.max),
                        "usage": t.usage,
                        "usage_pretty": fmt(t.usage),
                        "path": str(t.path),
                    }
                    for t in self.tiers
                ],
                "conflicts": {"has_conflicts": bool(conflicts), "paths": conflicts},
            }
            return [OK, json.dumps(doc, separators=(",", ":"))]

        namew = max(len(name) for name in ["combined", *(t.id for t in self.tiers)])
        lines = [
            f"{'Tier':<{namew}} {'Size':>{_ABSW}}{'':>{_ABSU}} "
            f"{'Quota':>{_ABSW}}{'':>{_ABSU}} {'Quota':>{_PERCENTW}}{'%':>{_PERCENTU}} "
            f"{'Use':>{_ABSW}}{'':>{_ABSU}} {'Use':>{_PERCENTW}}{'%':>{_PERCENTU}} Path",
            _RULE,
            self._status_row(
                "combined", total_capacity, total_quota, overall_quota,
                total_usage, total_percent, mount,
            ),
        ]
        for t in self.tiers:
            usage_percent = t.usage_percent() if t.capacity() else 0.0
            lines.append(
                self._status_row(
                    t.id, t.capacity(), t.quota.max, t.quota_percent,
                    t.usage, usage_percent, str(t.path),
                )
            )
        text = "\n".join(lines) + "\n"
        if conflicts:
            text += "\n\ntierfs encountered conflicting file paths between tiers:\n"
            text += "".join(f"{c}(.autotier_conflict)\n" for c in conflicts)
        return [OK, text]

    def _status_row(
        self,
        name: str,
        capacity: int,
        quota: int,
        quota_percent: float,
        usage: int,
        usage_percent: float,
        path: str,
        namew: int | None = None,
    ) -> str:
        if namew is None:
            namew = max(len(n) for n in ["combined", *(t.id for t in self.tiers)])
        cells = [f"{name:<{namew}}"]
        for num_bytes, percent in ((capacity, None), (quota, quota_percent), (usage, usage_percent)):
            value, unit = log.split_bytes(num_bytes)
            cells.append(f"{value:>{_ABSW}.2f}{unit:>{_ABSU}}")
            if percent is not None:
                cells.append(f"{percent:>{_PERCENTW}.2f}{'%':>{_PERCENTU}}")
        cells.append(path)
        return " ".join(cells)

    def process_config(self) -> list[str]:
        return [OK, self.config.dump()]

    def process_list_pins(self) -> list[str]:
        lines = ["File : Tier Path"]
        for key, value in self.get_db().items():
            meta = Metadata.deserialize(value)
            if meta.pinned:
                lines.append(f"{key} : {meta.tier_path}")
        return [OK, "\n".join(lines) + "\n"]

    def process_list_popularity(self) -> list[str]:
        lines = ["File : Popularity (accesses per hour)"]
        for key, value in self.get_db().items():
            meta = Metadata.deserialize(value)
            lines.append(f"{key} : {meta.popularity:g}")
        return [OK, "\n".join(lines) + "\n"]

    def process_which_tier(self, work: AdHoc) -> list[str]:
        names = [self._relative_to_mount(arg) or arg for arg in work.args]
        namew = max([len("File"), *(len(n) for n in names)])
        tierw = max([0, *(len(t.id) + 2 for t in self.tiers)])
        lines = [f"{'File':<{namew}}  {'Tier':<{tierw}}  Backend Path", _RULE]
        db = self.get_db()
        for name in names:
            row = f"{name:<{namew}}  "
            meta = Metadata.load(name, db)
            if meta.not_found:
                row += "not found"
            else:
                tier = self.tier_by_path(meta.tier_path)
                label = "UNK" if tier is None else f'"{tier.id}"'
                row += f"{label:<{tierw}}  {Path(meta.tier_path) / name}"
            lines.append(row)
        return [OK, "\n".join(lines) + "\n"]

    # -- queued work -----------------------------------------------------

    def enqueue_work(self, work: AdHoc) -> bool:
        """Queue ``work`` and wake the tiering thread; a second queued oneshot is dropped."""
        if work.cmd is Command.ONESHOT:
            if self.oneshot_in_queue:
                return False
            self.oneshot_in_queue = True
        self.adhoc_work.push(work)
        self.sleeper.wake()
        return True

    def execute_queued_work(self) -> None:
        """Run every queued job in order."""
        while not self.adhoc_work.empty():
            work = self.adhoc_work.pop()
            if work.cmd is Command.ONESHOT:
                self.oneshot_in_queue = False
                self.tier()
            elif work.cmd is Command.PIN:
                self.pin_files(work.args)
            elif work.cmd is Command.UNPIN:
                self.unpin_files(work.args)
            else:
                log.warning("Trying to execute bad ad hoc command.")

    def _relative_key(self, mounted_path: str) -> str:
        base = self.mount_point if self.mount_point is not None else Path(os.sep)
        return Path(os.path.relpath(mounted_path, base)).as_posix()

    def pin_files(self, args: list[str]) -> None:
        """Pin each file in ``args[1:]`` to the tier named ``args[0]``, moving it there."""
        if not args:
            log.warning("No tier given, cannot pin files.")
            return
        tier_id = args[0]
        tier = self.tier_by_id(tier_id)
        if tier is None:
            log.warning(f"Tier does not exist, cannot pin files. Tier name given: {tier_id}")
            return
        db = self.get_db()
        for mounted_path in args[1:]:
            relative = self._relative_key(mounted_path)
            meta = Metadata.load(relative, db)
            if meta.not_found:
                log.warning(f"File to be pinned was not in database: {mounted_path}")
                continue
            meta.pinned = True
            old_path = Path(meta.tier_path) / relative
            new_path = tier.path / relative
            if old_path == new_path:
                meta.update(relative, db)
                continue
            try:
                info = os.stat(old_path)
            except OSError as exc:
                log.warning(f"stat failed on {old_path}: {exc.strerror}")
                continue
            if tier.move_file(old_path, new_path, self.config.copy_buff_sz):
                try:
                    os.utime(new_path, ns=(info.st_atime_ns, info.st_mtime_ns))
                except OSError as exc:
                    log.error(f"Failed to set utimes of {new_path}: {exc.strerror}")
                meta.tier_path = str(tier.path)
                meta.update(relative, db)
        if not self.config.strict_period:
            self.enqueue_work(AdHoc(Command.ONESHOT, []))

    def unpin_files(self, args: list[str]) -> None:
        """Clear the pinned flag of each file in ``args``."""
        db = self.get_db()
        for mounted_path in args:
            relative = self._relative_key(mounted_path)
            meta = Metadata.load(relative, db)
            if meta.not_found:
                log.warning(f"File to be unpinned was not in database: {mounted_path}")
                continue
            meta.pinned = False
            meta.update(relative, db)