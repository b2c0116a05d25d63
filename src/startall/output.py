"""Bounded output log and ANSI helpers."""
import re
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterator, List

from .models.pane import ColorClass

DEFAULT_CAPACITY = 1000

RESET = "\x1b[0m"

# CSI sequences (colors, cursor movement, erase) and two-byte escapes
ANSI_ESCAPE = re.compile(r"\x1b(?:\[[0-?]*[ -/]*[@-~]|[@-Z\\-_])")
SGR = re.compile(r"\x1b\[([0-9;]*)m")

COLOR_CODES = {
    ColorClass.GRAY: ("30", "90"),
    ColorClass.RED: ("31", "91"),
    ColorClass.GREEN: ("32", "92"),
    ColorClass.YELLOW: ("33", "93"),
    ColorClass.BLUE: ("34", "94"),
    ColorClass.MAGENTA: ("35", "95"),
    ColorClass.CYAN: ("36", "96"),
    ColorClass.WHITE: ("37", "97"),
}


@dataclass(frozen=True)
class LogLine:
    """A single line of command output."""
    source: str
    text: str
    timestamp: int
    seq: int


class OutputLog:
    """Append-only FIFO of output lines with a global sequence counter.

    Once the capacity is reached the oldest lines are evicted. Sequence numbers
    keep increasing across evictions and clears.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        self.capacity = capacity
        self._lines: Deque[LogLine] = deque(maxlen=capacity)
        self._seq = 0

    def append(self, source: str, text: str) -> LogLine:
        self._seq += 1
        line = LogLine(source=source, text=text, timestamp=int(time.time() * 1000), seq=self._seq)
        self._lines.append(line)
        return line

    @property
    def last_seq(self) -> int:
        """Sequence number of the most recent append (0 if none)."""
        return self._seq

    def lines(self) -> List[LogLine]:
        return list(self._lines)

    def clear(self) -> None:
        self._lines.clear()

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[LogLine]:
        return iter(self._lines)


def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE.sub("", text)


def visible_width(text: str) -> int:
    return len(strip_ansi(text))


def has_color(text: str, color: ColorClass) -> bool:
    """Check whether raw text sets the given color family.

    Matches both normal and bright codes, bare (``ESC[31m``) or inside a
    compound attribute list (``ESC[1;31m``).
    """
    codes = COLOR_CODES[color]
    for match in SGR.finditer(text):
        params = match.group(1).split(";")
        if any(code in params for code in codes):
            return True
    return False


def truncate_ansi(text: str, width: int) -> str:
    """Cut text to `width` visible characters without splitting escape sequences.

    A reset sequence is appended when anything was cut so styling does not
    leak into the next line.
    """
    if width <= 0:
        return RESET if text else ""

    out = []
    visible = 0
    pos = 0
    while pos < len(text):
        match = ANSI_ESCAPE.match(text, pos)
        if match:
            out.append(match.group(0))
            pos = match.end()
            continue
        if visible == width:
            out.append(RESET)
            return "".join(out)
        out.append(text[pos])
        visible += 1
        pos += 1
    return "".join(out)
