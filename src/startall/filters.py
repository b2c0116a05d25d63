"""Per-pane filtering of the output log."""
import re
from functools import lru_cache
from typing import Iterable, List

from .models.pane import Pane
from .output import LogLine, OutputLog, has_color, strip_ansi


def line_matches(line: LogLine, pane: Pane) -> bool:
    """Apply scope, hidden set, text filter and color filter, in that order."""
    if pane.process_scope and line.source not in pane.process_scope:
        return False
    if line.source in pane.hidden:
        return False
    if pane.text_filter:
        needle = pane.text_filter.lower()
        if needle not in strip_ansi(line.text).lower() and needle not in line.source.lower():
            return False
    if pane.color_filter is not None and not has_color(line.text, pane.color_filter):
        return False
    return True


def lines_for(log: OutputLog, pane: Pane) -> List[LogLine]:
    """All retained lines the pane should show, oldest first."""
    return [line for line in log if line_matches(line, pane)]


def visible_lines(log: OutputLog, pane: Pane, height: int) -> List[LogLine]:
    """The window of filtered lines a pane of `height` rows displays.

    A live pane follows the tail. A frozen pane only considers lines that
    existed when it froze, and can scroll back through all of them.
    """
    if height <= 0:
        return []
    lines = lines_for(log, pane)
    if not pane.is_paused:
        return lines[-height:]

    lines = [line for line in lines if line.seq <= pane.frozen_at]
    offset = min(max(pane.scroll_offset, 0), max(len(lines) - height, 0))
    end = len(lines) - offset
    return lines[max(end - height, 0):end]


def max_scroll(log: OutputLog, pane: Pane, height: int) -> int:
    """Largest useful scroll offset for a frozen pane."""
    frozen = [line for line in lines_for(log, pane) if line.seq <= pane.frozen_at]
    return max(len(frozen) - height, 0)


def new_line_count(log: OutputLog, pane: Pane) -> int:
    """Filtered lines that arrived after the pane froze."""
    if not pane.is_paused:
        return 0
    return sum(1 for line in log if line.seq > pane.frozen_at and line_matches(line, pane))


@lru_cache(maxsize=256)
def _glob_regex(pattern: str) -> "re.Pattern[str]":
    parts = [re.escape(part) for part in pattern.split("*")]
    return re.compile(".*".join(parts), re.DOTALL)


def matches_glob(name: str, pattern: str) -> bool:
    """Match a name against a glob where only `*` is special."""
    return _glob_regex(pattern).fullmatch(name) is not None


def matches_any(name: str, patterns: Iterable[str]) -> bool:
    return any(matches_glob(name, pattern) for pattern in patterns)
