"""Reading, validating and creating the configuration file."""

from __future__ import annotations

import hashlib
import os
import re
import stat
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path

from tierfs.logger import LogLevel, log
from tierfs.tier import Quota, Tier

DEFAULT_CONFIG_PATH = "/etc/autotier.conf"
DEFAULT_RUN_PATH = "/var/lib/autotier"
TIER_PERIOD_DISABLED = -1
DEFAULT_COPY_BUFF_SZ = 1024 * 1024
DEFAULT_CRAWLER_THREADS = 8

_SECTION_RE = re.compile(r"^\[(.*)\]$")
_GLOBAL_RE = re.compile(r"^\s*[Gg]lobal\s*$")
_NUMBER = r"([0-9]*\.?[0-9]+(?:[eE][+-]?[0-9]+)?)"
_BYTES_RE = re.compile(rf"^\s*{_NUMBER}\s*([A-Za-z]*)\s*$")
_PERCENT_RE = re.compile(rf"^\s*{_NUMBER}\s*%\s*$")

_UNIT_FACTORS = {"B": 1}
for _power, _prefix in enumerate("KMGTPEZY", start=1):
    _UNIT_FACTORS[_prefix + "B"] = 1000**_power
    _UNIT_FACTORS[_prefix + "IB"] = 1024**_power

_TRUE_WORDS = {"true", "yes", "on", "1"}
_FALSE_WORDS = {"false", "no", "off", "0"}

_TEMPLATE = (
    "# tierfs config\n"
    "[Global]                       # global settings\n"
    "Log Level = 1                  # 0 = none, 1 = normal, 2 = debug\n"
    "Tier Period = 1000             # number of seconds between file move batches\n"
    "Copy Buffer Size = 1 MiB       # size of buffer for moving files between tiers\n"
    "\n"
    "[Tier 1]                       # tier name\n"
    "Path =                         # full path to tier storage pool\n"
    "Quota =                        # absolute or % usage to keep tier under\n"
    "# Quota format: x (%|B|MB|MiB|KB|KiB|MB|MiB|...)\n"
    "# Example: Quota = 5.3 TiB\n"
    "\n"
    "[Tier 2]\n"
    "Path =\n"
    "Quota =\n"
    "# ... (add as many tiers as you like)\n"
)


class ConfigError(ValueError):
    """The configuration file is missing, malformed or describes an unusable setup."""


@dataclass
class ConfigOverrides:
    """Values given on the command line that take precedence over the file."""

    log_level: LogLevel | None = None


def parse_bytes(text: str) -> int:
    """Parse a size such as ``"1 MiB"``, ``"5.3 TB"`` or ``"512"`` into bytes."""
    match = _BYTES_RE.match(text)
    if not match:
        raise ConfigError(f"Invalid byte size: {text!r}")
    number, unit = match.groups()
    factor = _UNIT_FACTORS.get((unit or "B").upper())
    if factor is None:
        raise ConfigError(f"Unknown byte unit in {text!r}")
    try:
        return int(Decimal(number) * factor)
    except InvalidOperation as exc:
        raise ConfigError(f"Invalid byte size: {text!r}") from exc


def parse_quota(text: str, capacity: int) -> Quota:
    """Parse a quota given as a percentage or an absolute size of ``capacity``."""
    match = _PERCENT_RE.match(text)
    if match:
        return Quota(capacity, float(match.group(1)) / 100.0)
    size = parse_bytes(text)
    if capacity <= 0:
        raise ConfigError(f"Cannot apply absolute quota {text!r} to a tier of no capacity")
    return Quota(capacity, size / capacity)


def run_path_hash(config_path: str | os.PathLike) -> str:
    """Return a stable directory name derived from the configuration file path."""
    return hashlib.sha256(os.fspath(config_path).encode("utf-8")).hexdigest()[:16]


def validate_backend_path(
    path: str | os.PathLike, prefix: str, path_desc: str, create: bool = False
) -> bool:
    """Check that ``path`` is an absolute, readable and writable directory.

    With ``create`` a missing directory is made. Problems are logged; the
    result tells whether the path is usable.
    """
    path = Path(path)
    if not path.is_absolute():
        log.error(f'{prefix}: {path_desc} must be an absolute path: "{path}"')
        return False
    try:
        is_directory = stat.S_ISDIR(os.stat(path).st_mode)
    except FileNotFoundError:
        is_directory = False
    except OSError as exc:
        log.error(f"{prefix}: Failed to check {path_desc}: {exc}")
        return False
    if not is_directory and create:
        try:
            path.mkdir(parents=True)
            is_directory = True
        except OSError as exc:
            log.error(f"{prefix}: Failed to create {path_desc}: {exc}")
            return False
    if not is_directory:
        log.error(f"{prefix}: {path_desc} is not a directory: {path}")
        return False
    if not os.access(path, os.R_OK | os.W_OK):
        log.error(f'{prefix}: Cannot access {path_desc}: Permission denied: "{path}"')
        return False
    return True


def init_config_file(config_path: str | os.PathLike) -> None:
    """Create a configuration file holding a commented template."""
    config_path = Path(config_path)
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        log.error(f"Error creating path: {config_path.parent}")
        raise ConfigError(f"Error creating path: {config_path.parent}") from exc
    try:
        config_path.write_text(_TEMPLATE)
    except OSError as exc:
        log.error(f"Error opening config file: {config_path}")
        raise ConfigError(f"Error opening config file: {config_path}") from exc


def _parse_sections(text: str) -> tuple[dict[str, str], dict[str, dict[str, str]]]:
    top: dict[str, str] = {}
    sections: dict[str, dict[str, str]] = {}
    current = top
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.split("#", 1)[0].strip()
        if not line:
            continue
        header = _SECTION_RE.match(line)
        if header:
            current = sections.setdefault(header.group(1).strip(), {})
            continue
        key, sep, value = line.partition("=")
        if not sep:
            raise ConfigError(f"line {lineno}: expected 'key = value': {raw.strip()!r}")
        current[key.strip()] = value.strip()
    return top, sections


def _get_int(values: dict[str, str], key: str, default: int) -> int:
    raw = values.get(key, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"Invalid integer for {key}: {raw!r}") from None


def _get_bool(values: dict[str, str], key: str, default: bool) -> bool:
    raw = values.get(key, "")
    if not raw:
        return default
    word = raw.lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise ConfigError(f"Invalid boolean for {key}: {raw!r}")


class Config:
    """Global settings and tier definitions read from a configuration file."""

    def __init__(
        self,
        config_path: str | os.PathLike = DEFAULT_CONFIG_PATH,
        overrides: ConfigOverrides | None = None,
    ) -> None:
        self._config_path_str = os.fspath(config_path)
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            init_config_file(self.config_path)
        try:
            text = self.config_path.read_text()
        except OSError as exc:
            raise ConfigError(f"Could not read {self.config_path}: {exc}") from exc
        self._top, self._sections = _parse_sections(text)
        self.tiers: list[Tier] = []
        self._load(overrides or ConfigOverrides())

    def _load(self, overrides: ConfigOverrides) -> None:
        errors = False
        for header in ("Global", "global"):
            if header in self._sections:
                values = self._sections[header]
                break
        else:
            log.warning(
                "No global section in config! Trying top level scope or defaults (no tiering)."
            )
            values = self._top

        level = _get_int(values, "Log Level", int(LogLevel.NORMAL))
        self.log_level = LogLevel(max(0, min(2, level)))
        raw_buff = values.get("Copy Buffer Size", "")
        self.copy_buff_sz = parse_bytes(raw_buff) if raw_buff else DEFAULT_COPY_BUFF_SZ
        self.tier_period_s = _get_int(values, "Tier Period", TIER_PERIOD_DISABLED)
        self.strict_period = _get_bool(values, "Strict Period", False)
        self.crawler_threads = _get_int(values, "Crawler Threads", DEFAULT_CRAWLER_THREADS)
        if self.crawler_threads <= 0:
            log.warning(
                f"Invalid number for Crawler Threads: {self.crawler_threads}. Defaulting to 8."
            )
            self.crawler_threads = DEFAULT_CRAWLER_THREADS
        run_path = Path(values.get("Run Path", "") or DEFAULT_RUN_PATH)

        if overrides.log_level is not None:
            self.log_level = LogLevel(overrides.log_level)
        log.set_level(self.log_level)
        log.message("Global config loaded.", LogLevel.DEBUG)

        for name, section in self._sections.items():
            if _GLOBAL_RE.match(name):
                continue
            log.message(f"Checking config[{name}]", LogLevel.DEBUG)
            tier_path = section.get("Path", "")
            if not tier_path:
                log.error(f"Failed to get path for {name}")
                errors = True
                continue
            try:
                fs_stats = os.statvfs(tier_path)
            except OSError as exc:
                log.error(f"statvfs() failed on {tier_path}")
                raise ConfigError(f"statvfs() failed on {tier_path}") from exc
            tier_size = fs_stats.f_blocks * fs_stats.f_frsize
            raw_quota = section.get("Quota", "")
            quota = parse_quota(raw_quota, tier_size) if raw_quota else Quota(tier_size, 1.0)
            if self.log_level >= LogLevel.DEBUG:
                log.message(f"Tier path: {tier_path}", LogLevel.DEBUG)
                log.message(
                    f"Tier quota: {quota.fraction * 100.0:f}% {quota} "
                    f"({log.format_bytes(quota.max)})",
                    LogLevel.DEBUG,
                )
            self.tiers.append(Tier(name, tier_path, quota))
        log.message("Tier configs loaded.", LogLevel.DEBUG)

        self.run_path = run_path / run_path_hash(self._config_path_str)
        if not validate_backend_path(self.run_path, "Global", "Metadata Path", create=True):
            errors = True

        if not self.tiers:
            log.error("No tiers defined.")
            errors = True
        elif len(self.tiers) == 1:
            log.error("Only one tier is defined. Two or more are needed.")
            errors = True

        if errors:
            log.error(f"Please fix these mistakes in {self.config_path}")
            raise ConfigError(f"Please fix these mistakes in {self.config_path}")

    def dump(self) -> str:
        """Return the loaded settings in configuration file form."""
        lines = [
            "[Global]",
            f"Log Level = {int(self.log_level)}",
            f"Tier Period = {self.tier_period_s}",
            f"Strict Period = {'true' if self.strict_period else 'false'}",
            f"Copy Buffer Size = {log.format_bytes(self.copy_buff_sz)}",
            f"Crawler Threads = {self.crawler_threads}",
            " ",
        ]
        for tier in self.tiers:
            lines += [
                f"[{tier.id}]",
                f'Path = "{tier.path}"',
                f"Quota = {tier.quota.fraction * 100.0:g} % ({tier.quota})",
                " ",
            ]
        return "\n".join(lines) + "\n"