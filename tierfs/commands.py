"""Ad hoc command names, requests, usage text and socket message framing."""

from __future__ import annotations

import os
import re
import socket
import struct
import sys
from dataclasses import dataclass, field
from enum import IntEnum

from tierfs.logger import log


class Command(IntEnum):
    ONESHOT = 0
    PIN = 1
    UNPIN = 2
    STATUS = 3
    CONFIG = 4
    HELP = 5
    LPIN = 6
    LPOP = 7
    WHICHTIER = 8


_COMMAND_PATTERNS = {
    Command.ONESHOT: re.compile(r"one-?shot"),
    Command.PIN: re.compile(r"pin"),
    Command.UNPIN: re.compile(r"unpin"),
    Command.STATUS: re.compile(r"status"),
    Command.CONFIG: re.compile(r"config"),
    Command.HELP: re.compile(r"help"),
    Command.LPIN: re.compile(r"list-?pins"),
    Command.LPOP: re.compile(r"list-?pop(ularity)?"),
    Command.WHICHTIER: re.compile(r"which-?tier"),
}


def get_command_index(cmd: str) -> Command | None:
    """Return the command matching ``cmd``, or None if there is none."""
    for command, pattern in _COMMAND_PATTERNS.items():
        if pattern.fullmatch(cmd):
            return command
    return None


@dataclass
class AdHoc:
    """An ad hoc command with its arguments."""

    cmd: Command | None
    args: list[str] = field(default_factory=list)

    @classmethod
    def from_request(cls, work_req: list[str]) -> "AdHoc":
        """Build from a request whose first element names the command."""
        if not work_req:
            raise ValueError("empty ad hoc request")
        return cls(get_command_index(work_req[0]), list(work_req[1:]))


def sanitize_paths(paths: list[str]) -> list[str]:
    """Return absolute forms of the paths that exist, reporting the rest."""
    valid = []
    for path in paths:
        if os.path.exists(path):
            valid.append(os.path.abspath(path))
        else:
            log.error("File does not exist: " + path)
    return valid


_FLAG_WIDTH = 31
_COMMAND_WIDTH = 17

_COMMON_FLAGS = {
    "-c, --config <path/to/config>": "override configuration file path (default /etc/autotier.conf)",
    "-h, --help": "display this message and cancel current command",
}

_FS_FLAGS = {
    **_COMMON_FLAGS,
    "-o, --fuse-options <options>": "comma separated list of options passed to fuse",
    "-q, --quiet": "set log level to 0 (no output)",
    "-v, --verbose": "set log level to 2 (debug output)",
    "-V, --version": "print version and exit",
}

_CLI_FLAGS = {
    **_COMMON_FLAGS,
    "-j, --json": "print status information in JSON format",
    "-q, --quiet": "set log level to 0 (no output)",
    "-v, --verbose": "set log level to 2 (debug output)",
    "-V, --version": "print version and exit",
}

_CLI_COMMANDS = {
    "oneshot": "execute tiering only once",
    'pin <"tier name"> <"path/to/file" "path/to/file" ...>':
        "pin file(s) to tier using tier name in config file",
    'unpin <"path/to/file" "path/to/file" ...>': "remove pin from file(s)",
    "status": "list info about defined tiers",
    "config": "display current configuration values",
    "help": "display this message",
    "list-pins": "show all pinned files",
    "list-popularity": "print list of all tier files with their popularity",
    'which-tier <"path/to/file" "path/to/file" ...>': "list which tier each argument is in",
}


def _flag_lines(flags: dict[str, str]) -> list[str]:
    return [f"  {flag:<{_FLAG_WIDTH}}- {desc}" for flag, desc in flags.items()]


def _command_lines(commands: dict[str, str]) -> list[str]:
    lines = []
    for name, desc in commands.items():
        if len(name) < _COMMAND_WIDTH - 1:
            lines.append(f"  {name:<{_COMMAND_WIDTH}}- {desc}")
        else:
            lines.append(f"  {name}")
            lines.append(" " * (_COMMAND_WIDTH + 2) + f"- {desc}")
    return lines


def _emit(lines: list[str]) -> str:
    text = "\n".join(lines)
    sys.stdout.write(text + "\n")
    return text


def fs_usage() -> str:
    """Print usage of the filesystem command and return the text."""
    lines = [
        "Usage:",
        "  tierfs [<flags>] <mountpoint> [-o <fuse,options,...>]",
        "Flags:",
        *_flag_lines(_FS_FLAGS),
    ]
    return _emit(lines)


def cli_usage() -> str:
    """Print usage of the control command and return the text."""
    lines = [
        "Usage:",
        "  tierctl [<flags>] <command> [<arg1 arg2 ...>]",
        "Commands:",
        *_command_lines(_CLI_COMMANDS),
        "Flags:",
        *_flag_lines(_CLI_FLAGS),
    ]
    return _emit(lines)


_U32 = struct.Struct(">I")


def encode_message(parts: list[str]) -> bytes:
    """Frame ``parts`` as a part count followed by length-prefixed UTF-8 strings."""
    chunks = [_U32.pack(len(parts))]
    for part in parts:
        data = part.encode("utf-8")
        chunks.append(_U32.pack(len(data)))
        chunks.append(data)
    return b"".join(chunks)


def send_message(sock: socket.socket, parts: list[str]) -> None:
    """Send one framed message on ``sock``."""
    sock.sendall(encode_message(parts))


def _recv_exact(sock: socket.socket, size: int) -> bytes:
    buf = bytearray()
    while len(buf) < size:
        chunk = sock.recv(size - len(buf))
        if not chunk:
            raise ConnectionError("connection closed in the middle of a message")
        buf.extend(chunk)
    return bytes(buf)


def read_message(sock: socket.socket) -> list[str]:
    """Receive one framed message from ``sock``."""
    (count,) = _U32.unpack(_recv_exact(sock, _U32.size))
    parts = []
    for _ in range(count):
        (length,) = _U32.unpack(_recv_exact(sock, _U32.size))
        parts.append(_recv_exact(sock, length).decode("utf-8"))
    return parts