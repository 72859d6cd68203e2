import os
import socket

import pytest

from tierfs.commands import (
    AdHoc,
    Command,
    cli_usage,
    encode_message,
    fs_usage,
    get_command_index,
    read_message,
    sanitize_paths,
    send_message,
)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("oneshot", Command.ONESHOT),
        ("pin", Command.PIN),
        ("unpin", Command.UNPIN),
        ("status", Command.STATUS),
        ("config", Command.CONFIG),
        ("help", Command.HELP),
        ("list-pins", Command.LPIN),
        ("list-popularity", Command.LPOP),
        ("which-tier", Command.WHICHTIER),
    ],
)
def test_command_lookup(name, expected):
    assert get_command_index(name) is expected


@pytest.mark.parametrize("name", ["", "pins", "oneshotx", "stat"])
def test_unknown_command(name):
    assert get_command_index(name) is None


def test_adhoc_from_request():
    work = AdHoc.from_request(["pin", "fast", "/mnt/a", "/mnt/b"])
    assert work.cmd is Command.PIN
    assert work.args == ["fast", "/mnt/a", "/mnt/b"]


def test_adhoc_from_request_bad_command():
    work = AdHoc.from_request(["bogus", "x"])
    assert work.cmd is None
    assert work.args == ["x"]


def test_adhoc_from_empty_request():
    with pytest.raises(ValueError):
        AdHoc.from_request([])


def test_sanitize_paths_drops_missing(tmp_path, capsys):
    present = tmp_path / "present"
    present.write_text("x")
    result = sanitize_paths([str(present), str(tmp_path / "missing")])
    assert result == [os.path.abspath(str(present))]
    assert "missing" in capsys.readouterr().err


def test_cli_usage_lists_commands(capsys):
    cli_usage()
    out = capsys.readouterr().out
    for name in ["oneshot", "list-pins", "which-tier", "--json"]:
        assert name in out


def test_fs_usage_lists_options(capsys):
    fs_usage()
    out = capsys.readouterr().out
    assert "--fuse-options" in out
    assert "<mountpoint>" in out


def test_encode_message_wire_format():
    assert encode_message(["OK"]) == b"\x00\x00\x00\x01\x00\x00\x00\x02OK"


def test_socket_round_trip():
    left, right = socket.socketpair()
    with left, right:
        parts = ["OK", "", "multi\nline é text"]
        send_message(left, parts)
        assert read_message(right) == parts


def test_read_truncated_message():
    left, right = socket.socketpair()
    with right:
        left.sendall(encode_message(["hello"])[:-2])
        left.close()
        with pytest.raises(ConnectionError):
            read_message(right)