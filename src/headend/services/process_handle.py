"""Runtime record for one running encoder process.

A ProcessHandle owns everything tied to a single encoder invocation:

- the asyncio subprocess and its three pipes
- the stdout/stderr pump tasks feeding the orchestrator's line handler
- the invocation's LogSink
- sampling state for incremental CPU% and the last parsed progress sample
- the set-once `stopping` flag that suppresses auto-restart

Handles are never reused. Once stopped or exited they are disposed and a
fresh handle is created for the next start.

Logging Strategy:
    DEBUG - Pump lifecycle, sampling failures
    WARN  - Force kills
    ERROR - Pump read failures, line handler exceptions
"""
from __future__ import annotations

import asyncio
import codecs
import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Final

import psutil

from ..config.encoder_defaults import GRACEFUL_QUIT_SIGNAL
from ..models.status import LogSource, ProgressStatistics
from ..models.stream import StreamConfiguration
from .log_sink import LogSink
from .output_parser import split_output_lines

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

PUMP_CHUNK_SIZE: Final[int] = 4096
"""Bytes read from a pipe per iteration."""

MAX_PENDING_LINE: Final[int] = 64 * 1024
"""Unterminated output longer than this is flushed as one line."""

CPU_COUNT: Final[int] = psutil.cpu_count() or 1

LineHandler = Callable[["ProcessHandle", str, LogSource], Awaitable[None]]

# ============================================================================
# Process Handle
# ============================================================================

class ProcessHandle:
    """Owning wrapper around one encoder subprocess.

    Attributes:
        job_id: Job identifier
        config: Configuration snapshot used to start the process
        args: Encoder arguments (executable excluded)
        process: asyncio subprocess
        started_at: UTC wall-clock start time
        log: Log sink for this invocation
        last_stats: Most recent progress sample, or None
        last_stats_at: When last_stats arrived
    """

    def __init__(
        self,
        job_id: str,
        config: StreamConfiguration,
        args: list[str],
        process: asyncio.subprocess.Process,
        log: LogSink,
        started_at: datetime | None = None,
    ) -> None:
        self.job_id = job_id
        self.config = config
        self.args = args
        self.process = process
        self.log = log
        self.started_at = started_at or datetime.now(timezone.utc)

        self.last_stats: ProgressStatistics | None = None
        self.last_stats_at: datetime | None = None

        self.last_cpu_time: float = 0.0
        self.last_cpu_sample_at: float | None = None
        self.last_cpu_percent: float = 0.0
        self.last_memory_bytes: int = 0

        self._stopping = False
        self._pumps: list[asyncio.Task[None]] = []
        self._disposed = False

    # ========================================================================
    # State
    # ========================================================================

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def is_alive(self) -> bool:
        return self.process.returncode is None

    @property
    def return_code(self) -> int | None:
        return self.process.returncode

    @property
    def stopping(self) -> bool:
        return self._stopping

    def mark_stopping(self) -> None:
        """Disable auto-restart for this instance. Never cleared."""
        self._stopping = True

    def record_stats(self, stats: ProgressStatistics) -> None:
        self.last_stats = stats
        self.last_stats_at = datetime.now(timezone.utc)

    # ========================================================================
    # Output Pumps
    # ========================================================================

    def start_pumps(self, on_line: LineHandler) -> None:
        """Start one pump task per output pipe."""
        for stream, source in ((self.process.stdout, "stdout"), (self.process.stderr, "stderr")):
            if stream is None:
                continue
            task = asyncio.create_task(
                self._pump(stream, source, on_line),
                name=f"pump-{self.job_id}-{source}"
            )
            self._pumps.append(task)

    async def _pump(
        self,
        stream: asyncio.StreamReader,
        source: LogSource,
        on_line: LineHandler
    ) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""

        try:
            while True:
                chunk = await stream.read(PUMP_CHUNK_SIZE)
                if not chunk:
                    break

                lines, pending = split_output_lines(pending + decoder.decode(chunk))
                if len(pending) > MAX_PENDING_LINE:
                    lines.append(pending)
                    pending = ""

                for line in lines:
                    await self._dispatch(on_line, line, source)

            pending += decoder.decode(b"", final=True)
            if pending.strip():
                await self._dispatch(on_line, pending, source)

            logger.debug(f"[{self.job_id}] {source} pump reached EOF")

        except asyncio.CancelledError:
            logger.debug(f"[{self.job_id}] {source} pump cancelled")
            raise
        except Exception as e:
            logger.error(f"[{self.job_id}] {source} pump failed: {e}", exc_info=True)

    async def _dispatch(self, on_line: LineHandler, line: str, source: LogSource) -> None:
        try:
            await on_line(self, line, source)
        except Exception as e:
            logger.error(f"[{self.job_id}] Output handler error: {e}", exc_info=True)

    async def drain_pumps(self, timeout: float) -> None:
        """Wait for pumps to flush remaining output after exit."""
        pending = [task for task in self._pumps if not task.done()]
        if pending:
            await asyncio.wait(pending, timeout=timeout)

    # ========================================================================
    # Process Control
    # ========================================================================

    async def request_quit(self) -> None:
        """Write the graceful quit signal to stdin.

        Raises:
            BrokenPipeError, ConnectionResetError: stdin already gone
        """
        stdin = self.process.stdin
        if stdin is None or stdin.is_closing():
            raise BrokenPipeError("encoder stdin is closed")
        stdin.write(GRACEFUL_QUIT_SIGNAL)
        await stdin.drain()

    async def wait_for_exit(self, timeout: float) -> bool:
        """True if the process exited within `timeout` seconds."""
        try:
            await asyncio.wait_for(self.process.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def kill(self) -> None:
        if self.is_alive:
            try:
                self.process.kill()
            except ProcessLookupError:
                pass
        await self.process.wait()

    # ========================================================================
    # Resource Sampling
    # ========================================================================

    def sample_resources(self) -> tuple[float, int]:
        """Sample CPU% since the previous call and resident memory.

        CPU% is (delta CPU time / delta wall time / cpu count) x 100. The first
        sample has nothing to diff against and reports 0. Exited or
        inaccessible processes report the last known values.

        Returns:
            (cpu_percent, memory_bytes)
        """
        if not self.is_alive:
            return self.last_cpu_percent, self.last_memory_bytes

        try:
            proc = psutil.Process(self.process.pid)
            with proc.oneshot():
                times = proc.cpu_times()
                memory = proc.memory_info().rss
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess) as e:
            logger.debug(f"[{self.job_id}] Resource sample failed: {e}")
            return self.last_cpu_percent, self.last_memory_bytes

        cpu_time = times.user + times.system
        now = time.monotonic()

        cpu_percent = 0.0
        if self.last_cpu_sample_at is not None:
            wall = now - self.last_cpu_sample_at
            if wall > 0:
                cpu_percent = (cpu_time - self.last_cpu_time) / wall / CPU_COUNT * 100.0
                cpu_percent = min(max(cpu_percent, 0.0), 100.0)

        self.last_cpu_time = cpu_time
        self.last_cpu_sample_at = now
        self.last_cpu_percent = cpu_percent
        self.last_memory_bytes = memory
        return cpu_percent, memory

    # ========================================================================
    # Disposal
    # ========================================================================

    async def dispose(self) -> None:
        """Release pumps and pipes. Safe to call more than once."""
        if self._disposed:
            return
        self._disposed = True

        for task in self._pumps:
            if not task.done():
                task.cancel()
        if self._pumps:
            await asyncio.gather(*self._pumps, return_exceptions=True)

        stdin = self.process.stdin
        if stdin is not None and not stdin.is_closing():
            stdin.close()

        logger.debug(f"[{self.job_id}] Handle disposed (PID={self.pid})")
