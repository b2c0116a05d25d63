"""Tests for the output log and ANSI helpers."""
import pytest

from startall.models.pane import ColorClass
from startall.output import (
    DEFAULT_CAPACITY,
    RESET,
    OutputLog,
    has_color,
    strip_ansi,
    truncate_ansi,
    visible_width,
)


def test_append_assigns_increasing_seq():
    log = OutputLog()
    first = log.append("web", "hello")
    second = log.append("api", "world")

    assert first.seq == 1
    assert second.seq == 2
    assert log.last_seq == 2
    assert second.timestamp >= first.timestamp
    assert [line.text for line in log] == ["hello", "world"]


def test_log_evicts_oldest_at_capacity():
    """Test the log keeps exactly the newest lines once full."""
    log = OutputLog()
    for i in range(DEFAULT_CAPACITY + 1):
        log.append("web", f"line {i}")

    lines = log.lines()
    assert len(log) == DEFAULT_CAPACITY
    assert lines[0].text == "line 1"
    assert lines[-1].text == f"line {DEFAULT_CAPACITY}"
    assert all(a.seq < b.seq for a, b in zip(lines, lines[1:]))


def test_clear_keeps_sequence_counter():
    log = OutputLog(capacity=5)
    log.append("web", "a")
    log.append("web", "b")
    log.clear()

    assert len(log) == 0
    assert log.append("web", "c").seq == 3


def test_strip_ansi_and_visible_width():
    text = "\x1b[1;31merror\x1b[0m: \x1b[2Kdone"
    assert strip_ansi(text) == "error: done"
    assert visible_width(text) == len("error: done")


@pytest.mark.parametrize("text,color,expected", [
    ("\x1b[31mfail\x1b[0m", ColorClass.RED, True),
    ("\x1b[91mfail\x1b[0m", ColorClass.RED, True),
    ("\x1b[1;31mfail\x1b[0m", ColorClass.RED, True),
    ("\x1b[32mok\x1b[0m", ColorClass.RED, False),
    ("\x1b[32mok\x1b[0m", ColorClass.GREEN, True),
    ("\x1b[90mdebug\x1b[0m", ColorClass.GRAY, True),
    ("plain red text", ColorClass.RED, False),
    ("\x1b[1;33;40mwarn\x1b[0m", ColorClass.YELLOW, True),
])
def test_has_color(text, color, expected):
    assert has_color(text, color) is expected


def test_truncate_plain_text():
    assert truncate_ansi("hello world", 5) == "hello" + RESET
    assert truncate_ansi("short", 10) == "short"
    assert truncate_ansi("exact", 5) == "exact"


def test_truncate_keeps_escapes_whole():
    text = "\x1b[31mabcdef\x1b[0m"
    result = truncate_ansi(text, 3)

    assert result == "\x1b[31mabc" + RESET
    assert visible_width(result) == 3


def test_truncate_zero_width():
    assert truncate_ansi("\x1b[32mgreen", 0) == RESET
    assert truncate_ansi("", 0) == ""
