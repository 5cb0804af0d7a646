"""Per-invocation encoder log files.

Each encoder run gets one append-only UTF-8 file::

    <log_dir>/<job_id>_<YYYYmmdd_HHMMSS>.log

Line format::

    [2026-10-19T08:15:02.123456+00:00] [stderr] frame=  120 fps= 30 ...

Thread Safety:
    Appends for one job are serialised by an asyncio.Lock owned by that job's
    sink; sinks never share a lock, so jobs do not contend. File writes run in
    a worker thread so a slow disk never stalls the event loop.

Logging Strategy:
    DEBUG - Sink creation, tail reads
    WARN  - Write failures (never raised to callers)
"""
from __future__ import annotations

import asyncio
import io
import logging
import re
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Final

from ..models.status import LogEntry, LogSource
from ..models.stream import JOB_ID_PATTERN

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

LOG_FILE_TIMESTAMP_FORMAT: Final[str] = "%Y%m%d_%H%M%S"

LOG_LINE_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^\[(?P<timestamp>[^\]]+)\]\s*(?:\[(?P<source>system|stdout|stderr)\]\s?)?(?P<message>.*)$"
)
"""Matches '[timestamp] [source] message'; the source tag is optional."""

DEFAULT_SOURCE: Final[LogSource] = "stderr"


def log_file_path(log_dir: Path, job_id: str, started_at: datetime) -> Path:
    """Log file for one invocation of `job_id`.

    Raises:
        ValueError: `job_id` could name a path outside `log_dir`
    """
    if not JOB_ID_PATTERN.fullmatch(job_id):
        raise ValueError(f"Job id not usable in a log file name: {job_id!r}")
    return log_dir / f"{job_id}_{started_at.strftime(LOG_FILE_TIMESTAMP_FORMAT)}.log"


def log_file_name_pattern(job_id: str) -> re.Pattern[str]:
    """Exact file name shape of a job's logs; `cam` never matches `cam_2_...`."""
    return re.compile(rf"{re.escape(job_id)}_\d{{8}}_\d{{6}}\.log")


def find_latest_log(log_dir: Path, job_id: str) -> Path | None:
    """Newest log file of a job, by the timestamp embedded in its name."""
    if not log_dir.is_dir():
        return None
    pattern = log_file_name_pattern(job_id)
    candidates = sorted(
        path for path in log_dir.iterdir()
        if pattern.fullmatch(path.name) and path.is_file()
    )
    return candidates[-1] if candidates else None


def format_log_line(message: str, source: LogSource, when: datetime | None = None) -> str:
    when = when or datetime.now(timezone.utc)
    return f"[{when.isoformat()}] [{source}] {message}\n"


def parse_log_line(job_id: str, line: str) -> LogEntry | None:
    """Parse one persisted line; None when it does not match the log shape."""
    match = LOG_LINE_PATTERN.match(line.rstrip("\r\n"))
    if match is None:
        return None

    try:
        timestamp = datetime.fromisoformat(match.group("timestamp").strip())
    except ValueError:
        return None

    return LogEntry(
        job_id=job_id,
        timestamp=timestamp,
        source=match.group("source") or DEFAULT_SOURCE,
        message=match.group("message").strip(),
    )


def read_log_tail(job_id: str, path: Path, lines: int) -> list[LogEntry]:
    """Re-read a log file and parse its last `lines` lines.

    Lines that do not parse are dropped, so fewer than `lines` entries may be
    returned. Order is chronological (file order).
    """
    if lines <= 0 or not path.is_file():
        return []

    with io.open(path, "r", encoding="utf-8", errors="replace") as f:
        tail = deque(f, maxlen=lines)

    entries = []
    for raw in tail:
        entry = parse_log_line(job_id, raw)
        if entry is not None:
            entries.append(entry)
    return entries


# ============================================================================
# Log Sink
# ============================================================================

class LogSink:
    """Serialised, append-only writer for one encoder invocation's log."""

    def __init__(self, job_id: str, path: Path) -> None:
        self.job_id = job_id
        self.path = path
        self._lock = asyncio.Lock()
        logger.debug(f"[{job_id}] Log sink: {path}")

    async def append(self, message: str, source: LogSource = DEFAULT_SOURCE) -> None:
        """Append one timestamped line. Failures are logged, not raised.

        The timestamp is taken under the lock so file order is time order.
        """
        async with self._lock:
            text = format_log_line(message, source)
            try:
                await asyncio.to_thread(self._write_sync, text)
            except OSError as e:
                logger.warning(f"[{self.job_id}] Could not write to log file {self.path}: {e}")

    def _write_sync(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with io.open(self.path, "a", encoding="utf-8") as f:
            f.write(text)

    async def read_tail(self, lines: int) -> list[LogEntry]:
        return await asyncio.to_thread(read_log_tail, self.job_id, self.path, lines)
