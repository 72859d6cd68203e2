"""Logging to stdout/stderr or the system log."""

from __future__ import annotations

import sys
from enum import Enum, IntEnum

try:
    import syslog
except ImportError:  # not available on every platform
    syslog = None  # type: ignore[assignment]

_UNITS = ("B", "KiB", "MiB", "GiB", "TiB", "PiB", "EiB", "ZiB", "YiB")


class LogLevel(IntEnum):
    NONE = 0
    NORMAL = 1
    DEBUG = 2


class Output(Enum):
    STD = "std"
    SYSLOG = "syslog"


class Logger:
    """Prints messages whose level does not exceed the configured level."""

    def __init__(self, level: LogLevel = LogLevel.NORMAL, output: Output = Output.STD):
        self.level = LogLevel(level)
        self.output = Output.STD
        self.set_output(output)

    def _emit(self, text: str, stream, priority_name: str) -> None:
        if self.output is Output.SYSLOG:
            syslog.syslog(getattr(syslog, priority_name), text)
        else:
            print(text, file=stream, flush=True)

    def message(self, msg: str, level: LogLevel = LogLevel.NORMAL) -> None:
        """Print ``msg`` if ``level`` is at or below the logger's level."""
        if LogLevel(level) <= self.level:
            self._emit(msg, sys.stdout, "LOG_INFO")

    def warning(self, msg: str) -> None:
        """Report a non-fatal problem."""
        self._emit("Warning: " + msg, sys.stderr, "LOG_WARNING")

    def error(self, msg: str) -> None:
        """Report a fatal problem."""
        self._emit("Error: " + msg, sys.stderr, "LOG_ERR")

    def set_level(self, level: LogLevel) -> None:
        self.level = LogLevel(level)

    def set_output(self, output: Output) -> None:
        """Switch output, opening or closing the system log as needed."""
        output = Output(output)
        if output is self.output:
            return
        if output is Output.SYSLOG:
            if syslog is None:
                raise RuntimeError("syslog is not available on this platform")
            syslog.openlog("tierfs", syslog.LOG_PID, syslog.LOG_DAEMON)
        elif syslog is not None:
            syslog.closelog()
        self.output = output

    def close(self) -> None:
        """Return to standard output, closing the system log if open."""
        self.set_output(Output.STD)

    def split_bytes(self, num_bytes: int) -> tuple[float, str]:
        """Return ``num_bytes`` as a value and its base-1024 unit."""
        value = float(num_bytes)
        unit_index = 0
        while value >= 1024.0 and unit_index < len(_UNITS) - 1:
            value /= 1024.0
            unit_index += 1
        return value, _UNITS[unit_index]

    def format_bytes(self, num_bytes: int) -> str:
        """Return ``num_bytes`` as a string in base-1024 units."""
        value, unit = self.split_bytes(num_bytes)
        return f"{value:.2f} {unit}"


log = Logger(LogLevel.NORMAL)