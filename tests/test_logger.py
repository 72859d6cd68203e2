from unittest.mock import patch

import pytest

from tierfs.logger import LogLevel, Logger, Output


def test_message_at_level_printed(capsys):
    logger = Logger(LogLevel.NORMAL)
    logger.message("hello", LogLevel.NORMAL)
    assert capsys.readouterr().out == "hello\n"


def test_debug_message_suppressed_at_normal(capsys):
    logger = Logger(LogLevel.NORMAL)
    logger.message("noisy", LogLevel.DEBUG)
    assert capsys.readouterr().out == ""


def test_none_level_message_always_printed(capsys):
    logger = Logger(LogLevel.NONE)
    logger.message("always", LogLevel.NONE)
    logger.message("sometimes", LogLevel.NORMAL)
    assert capsys.readouterr().out == "always\n"


def test_set_level_enables_debug(capsys):
    logger = Logger(LogLevel.NORMAL)
    logger.set_level(LogLevel.DEBUG)
    logger.message("detail", LogLevel.DEBUG)
    assert capsys.readouterr().out == "detail\n"


def test_warning_and_error_go_to_stderr(capsys):
    logger = Logger(LogLevel.NONE)
    logger.warning("careful")
    logger.error("broken")
    captured = capsys.readouterr()
    assert captured.out == ""
    assert captured.err == "Warning: careful\nError: broken\n"


@patch("tierfs.logger.syslog")
def test_syslog_output(mock_syslog, capsys):
    logger = Logger(LogLevel.NORMAL)
    logger.set_output(Output.SYSLOG)
    logger.error("disk gone")
    assert mock_syslog.openlog.called
    mock_syslog.syslog.assert_called_once_with(mock_syslog.LOG_ERR, "Error: disk gone")
    assert capsys.readouterr().err == ""
    logger.set_output(Output.STD)
    assert mock_syslog.closelog.called


def test_split_bytes_small():
    value, unit = Logger(LogLevel.NONE).split_bytes(512)
    assert (value, unit) == (512.0, "B")


def test_split_bytes_mebibyte():
    assert Logger(LogLevel.NONE).split_bytes(1024 * 1024) == (1.0, "MiB")


@pytest.mark.parametrize("num_bytes", [0, 1, 1023, 1024, 5_000_000, 3 * 1024**4 + 17])
def test_split_bytes_invariant(num_bytes):
    units = ["B", "KiB", "MiB", "GiB", "TiB"]
    value, unit = Logger(LogLevel.NONE).split_bytes(num_bytes)
    assert value < 1024
    assert value * 1024 ** units.index(unit) == pytest.approx(num_bytes)


def test_format_bytes_contains_unit():
    text = Logger(LogLevel.NONE).format_bytes(1024)
    assert text == "1.00 KiB"