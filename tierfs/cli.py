"""Command-line client sending ad hoc commands to a mounted filesystem."""

from __future__ import annotations

import getopt
import os
import socket
import sys
from pathlib import Path

from tierfs.commands import (
    Command,
    cli_usage,
    get_command_index,
    read_message,
    sanitize_paths,
    send_message,
)
from tierfs.config import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_RUN_PATH,
    ConfigError,
    _parse_sections,
    run_path_hash,
)
from tierfs.logger import LogLevel, log
from tierfs.popularity import VERSION

SOCKET_NAME = "adhoc.socket"

_SHORT_OPTS = "c:hjvqV"
_LONG_OPTS = ["config=", "help", "json", "verbose", "quiet", "version"]

_LOGO = "   ┓\n└─ ┃ ├─\n└─ ┣ ├─\n└─ ┃ └─\n   ┛"
_LOGO_NOTE = (
    "The logo shows three separate tiers on the left being combined into one "
    "storage space on the right.\n"
    "The use of └─ to represent filesystem hierarchy was inspired by the output of `tree`."
)


def get_run_path(config_path: str | os.PathLike) -> Path:
    """Return the run path for ``config_path``, as the filesystem daemon computes it."""
    try:
        text = Path(config_path).read_text()
    except OSError as exc:
        raise ConfigError(f"Could not open config file {config_path}: {exc}") from exc
    top, sections = _parse_sections(text)
    for header in ("Global", "global"):
        if header in sections:
            values = sections[header]
            break
    else:
        values = top
    base = Path(values.get("Run Path", "") or DEFAULT_RUN_PATH)
    return base / run_path_hash(os.fspath(config_path))


def build_payload(cmd_name: str, args: list[str], json_output: bool = False) -> list[str]:
    """Build the request for ``cmd_name``; raise ValueError if it cannot be sent."""
    cmd = get_command_index(cmd_name)
    if cmd is None:
        raise ValueError(f"Invalid command: {cmd_name}")
    payload = [cmd_name]
    rest = list(args)
    if cmd is Command.PIN:
        if not rest:
            raise ValueError("No arguments passed.")
        payload.append(rest.pop(0))
    if cmd in (Command.PIN, Command.UNPIN, Command.WHICHTIER):
        if not rest:
            raise ValueError("No arguments passed.")
        paths = sanitize_paths(rest)
        if not paths:
            raise ValueError("No remaining valid paths.")
        payload.extend(paths)
    elif cmd is Command.STATUS:
        payload.append(("true" if json_output else "false") + "\n")
    return payload


def _print_version() -> None:
    log.message(f"tierfs {VERSION}", LogLevel.NONE)
    log.message(_LOGO, LogLevel.NORMAL)
    log.message(_LOGO_NOTE, LogLevel.DEBUG)


def _exchange(socket_path: Path, payload: list[str]) -> list[str]:
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
        try:
            sock.connect(str(socket_path))
        except ConnectionRefusedError as exc:
            raise ConnectionError("Socket connection refused. Is tierfs mounted?") from exc
        except PermissionError as exc:
            raise ConnectionError(
                "Permission denied. Run as root or a member of group `autotier`."
            ) from exc
        except OSError as exc:
            raise ConnectionError(f"Socket connect error: {exc}") from exc
        try:
            send_message(sock, payload)
        except OSError as exc:
            raise ConnectionError(f"Socket request error: {exc}") from exc
        try:
            return read_message(sock)
        except OSError as exc:
            raise ConnectionError(f"Socket reply error: {exc}") from exc


def main(argv: list[str] | None = None) -> int:
    """Run the control command; return the process exit status."""
    if argv is None:
        argv = sys.argv[1:]
    try:
        opts, operands = getopt.gnu_getopt(argv, _SHORT_OPTS, _LONG_OPTS)
    except getopt.GetoptError as exc:
        log.error(str(exc))
        cli_usage()
        return 1

    config_path = DEFAULT_CONFIG_PATH
    json_output = False
    print_version = False
    for opt, value in opts:
        if opt in ("-c", "--config"):
            config_path = value
        elif opt in ("-h", "--help"):
            cli_usage()
            return 0
        elif opt in ("-j", "--json"):
            json_output = True
        elif opt in ("-v", "--verbose"):
            log.set_level(LogLevel.DEBUG)
        elif opt in ("-q", "--quiet"):
            log.set_level(LogLevel.NONE)
        elif opt in ("-V", "--version"):
            print_version = True

    if print_version:
        _print_version()
        return 0

    if not operands:
        log.error("No command passed.")
        cli_usage()
        return 1

    cmd_name, args = operands[0], operands[1:]
    cmd = get_command_index(cmd_name)
    if cmd is None:
        log.error("Invalid command: " + cmd_name)
        cli_usage()
        return 1
    if cmd is Command.HELP:
        cli_usage()
        return 0

    try:
        payload = build_payload(cmd_name, args, json_output)
    except ValueError as exc:
        log.error(str(exc))
        return 1

    try:
        run_path = get_run_path(config_path)
    except ConfigError as exc:
        log.error(str(exc))
        return 1

    try:
        response = _exchange(run_path / SOCKET_NAME, payload)
    except ConnectionError as exc:
        log.error(str(exc))
        return 1

    if not response:
        log.error("Empty reply from server.")
        return 1
    if response[0] == "OK":
        log.message("Response OK.", LogLevel.DEBUG)
        for line in response[1:]:
            log.message(line, LogLevel.NONE)
        return 0
    for line in response[1:]:
        log.error(line)
    return 1


if __name__ == "__main__":
    sys.exit(main())