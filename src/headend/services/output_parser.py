"""Best-effort parsing of encoder progress output.

The encoder's progress line is undocumented free text, for example::

    frame=  123 fps= 30 q=29.0 size=    1234kB time=00:00:04.12 bitrate=2450.0kbits/s speed=1x

None of these helpers raise: a line that does not look like progress yields
None, a token that does not split into key=value is skipped, and a bitrate
that cannot be read is reported as 0.

Note on Logging:
    Unparsable lines are a normal outcome, not an error, so nothing here logs.
"""
from __future__ import annotations

import math
import re
from typing import Final

from ..models.status import ProgressStatistics

# ============================================================================
# Constants
# ============================================================================

PROGRESS_MARKERS: Final[tuple[str, ...]] = ("frame=", "fps=")
"""A line must contain all of these to count as progress."""

VALUE_GAP_PATTERN: Final[re.Pattern[str]] = re.compile(r"=\s+")
"""Padding the encoder inserts between '=' and right-aligned values."""

LINE_BREAK_PATTERN: Final[re.Pattern[str]] = re.compile(r"[\r\n]+")
"""Progress lines are rewritten in place with carriage returns."""

KBPS_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^(\d+(?:\.\d+)?)\s*([km]?)bits/s$",
    re.IGNORECASE
)

# ============================================================================
# Progress Lines
# ============================================================================

def is_progress_line(line: str) -> bool:
    return all(marker in line for marker in PROGRESS_MARKERS)


def parse_progress_line(line: str) -> ProgressStatistics | None:
    """Extract key/value statistics from one encoder output line.

    Args:
        line: Raw output line

    Returns:
        Mapping of encoder keys to raw string values, or None when the line
        is not a progress line

    Examples:
        >>> parse_progress_line("frame=  10 fps= 30 bitrate=2450.0kbits/s")
        {'frame': '10', 'fps': '30', 'bitrate': '2450.0kbits/s'}
        >>> parse_progress_line("Press [q] to stop") is None
        True
    """
    if not line or not is_progress_line(line):
        return None

    stats: ProgressStatistics = {}
    for token in VALUE_GAP_PATTERN.sub("=", line.strip()).split():
        key, sep, value = token.partition("=")
        if not sep or not key or not value:
            continue
        stats[key] = value

    return stats


def parse_bitrate_kbps(value: str | None) -> int:
    """Convert an encoder bitrate token to whole kbps.

    Examples:
        >>> parse_bitrate_kbps("2450.0kbits/s")
        2450
        >>> parse_bitrate_kbps("2.45Mbits/s")
        2450
        >>> parse_bitrate_kbps("N/A")
        0
    """
    if not value:
        return 0

    match = KBPS_PATTERN.match(value.strip())
    if match is None:
        return 0

    number = float(match.group(1))
    unit = match.group(2).lower()
    if unit == "m":
        number *= 1000
    elif unit == "":
        number /= 1000
    return int(round(number))


def parse_int(value: str | None) -> int:
    """Lenient non-negative integer read for counters such as ``frame``."""
    number = parse_float(value)
    return int(number)


def parse_float(value: str | None) -> float:
    try:
        number = float(value) if value else 0.0
    except ValueError:
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


# ============================================================================
# Stream Splitting
# ============================================================================

def split_output_lines(buffer: str) -> tuple[list[str], str]:
    """Split buffered output into complete lines plus the unterminated tail.

    Both ``\\r`` and ``\\n`` terminate a line. Empty lines are dropped.

    Example:
        >>> split_output_lines("frame=1\\rframe=2\\rfra")
        (['frame=1', 'frame=2'], 'fra')
    """
    parts = LINE_BREAK_PATTERN.split(buffer)
    tail = parts.pop()
    return [part for part in parts if part.strip()], tail
