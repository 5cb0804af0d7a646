"""Encoder process orchestration.

Spawns, supervises, restarts and tears down one encoder process per job:

- Start: build the platform-specific command, spawn with piped stdio,
  register the handle, write the log header, start output pumps and a
  monitor task
- Stop: write 'q' to stdin, wait for the grace period, kill if still alive
- Crash recovery: a non-zero exit of an enabled job is restarted after a
  fixed delay
- Status: CPU/memory sampled on demand, progress statistics parsed from
  the encoder's output

Job States:
    Idle -> Starting -> Running -> Stopping -> Stopped
    Running -> Crashed -> Restarting -> Starting

    Crash recovery retries forever at `restart_delay` with no ceiling. A job
    whose encoder can never start (missing device, bad option) loops until
    it is stopped or disabled; each cycle logs a warning and increments
    `stream_restarts_total`.

Concurrency:
    Everything runs on one event loop. A per-job asyncio.Lock serialises
    lifecycle transitions of that job; the registry lock guards only insert
    and remove so jobs never wait on each other. Status reads take no lock.

Logging Strategy:
    DEBUG - Output handling, snapshot details
    INFO  - Process starts/stops/exits, boot and shutdown
    WARN  - Forced kills, crash restarts, quit signal failures
    ERROR - Spawn failures, monitor failures, sink exceptions
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Final

from .. import metrics
from ..config_io import ConfigSource
from ..exceptions import ConfigNotFoundError, HeadendError, ProcessStartError
from ..models.events import StreamEvent, StreamExited, StreamStarted, StreamStats, StreamStopped
from ..models.status import LogEntry, LogSource, StatusSnapshot
from ..models.stream import StreamConfiguration
from .command_builder import Platform, build_encoder_command, render_command
from .log_sink import LogSink, find_latest_log, log_file_path, read_log_tail
from .notifications import NotificationSink
from .output_parser import parse_bitrate_kbps, parse_float, parse_int, parse_progress_line
from .process_handle import ProcessHandle

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

DEFAULT_STOP_GRACE_PERIOD: Final[float] = 5.0
"""Seconds to wait for a graceful quit before killing."""

DEFAULT_RESTART_DELAY: Final[float] = 5.0
"""Seconds between a crash and the automatic restart."""

DEFAULT_RESTART_PAUSE: Final[float] = 1.0
"""Pause between stop and start of an explicit restart."""

PUMP_DRAIN_TIMEOUT: Final[float] = 2.0
"""Upper bound on flushing remaining output after an exit."""

DEFAULT_LOG_LINES: Final[int] = 100

CommandBuilder = Callable[[StreamConfiguration, Platform], list[str]]

# ============================================================================
# Orchestrator
# ============================================================================

class StreamOrchestrator:
    """Supervisor for all encoder processes.

    Attributes:
        config_source: Read-only configuration lookup
        notification_sink: Receives lifecycle and statistics events
        ffmpeg_path: Encoder executable
        log_dir: Directory for per-invocation encoder logs
        platform: Capture platform used to build commands
    """

    def __init__(
        self,
        config_source: ConfigSource,
        notification_sink: NotificationSink,
        ffmpeg_path: str,
        log_dir: Path,
        platform: Platform,
        stop_grace_period: float = DEFAULT_STOP_GRACE_PERIOD,
        restart_delay: float = DEFAULT_RESTART_DELAY,
        restart_pause: float = DEFAULT_RESTART_PAUSE,
        command_builder: CommandBuilder = build_encoder_command,
    ) -> None:
        self.config_source = config_source
        self.notification_sink = notification_sink
        self.ffmpeg_path = ffmpeg_path
        self.log_dir = Path(log_dir)
        self.platform = platform
        self.stop_grace_period = stop_grace_period
        self.restart_delay = restart_delay
        self.restart_pause = restart_pause
        self.command_builder = command_builder

        self._handles: dict[str, ProcessHandle] = {}
        self._registry_lock = asyncio.Lock()
        self._job_locks: dict[str, asyncio.Lock] = {}
        self._monitor_tasks: set[asyncio.Task[None]] = set()
        self._shutting_down = False

        logger.info(
            f"StreamOrchestrator initialized: encoder={ffmpeg_path}, "
            f"platform={platform.value}, logs={self.log_dir}"
        )

    # ========================================================================
    # Registry
    # ========================================================================

    def _job_lock(self, job_id: str) -> asyncio.Lock:
        """Lifecycle lock of a job. Only created for ids that had a configuration."""
        return self._job_locks.setdefault(job_id, asyncio.Lock())

    async def _register(self, handle: ProcessHandle) -> None:
        async with self._registry_lock:
            self._handles[handle.job_id] = handle
            metrics.streams_active.set(len(self._handles))

    async def _unregister(self, handle: ProcessHandle) -> bool:
        """Remove `handle` if it is still the registered one for its job."""
        async with self._registry_lock:
            if self._handles.get(handle.job_id) is not handle:
                return False
            del self._handles[handle.job_id]
            metrics.streams_active.set(len(self._handles))
        metrics.clear_encoder_gauges(handle.job_id)
        return True

    def is_running(self, job_id: str) -> bool:
        handle = self._handles.get(job_id)
        return handle is not None and handle.is_alive

    @property
    def job_ids(self) -> list[str]:
        return list(self._handles)

    # ========================================================================
    # Configuration Lookup
    # ========================================================================

    async def get_config(self, job_id: str) -> StreamConfiguration | None:
        """Configuration lookup off the event loop; sources may hit the disk."""
        return await asyncio.to_thread(self.config_source.get_config, job_id)

    async def list_configs(self) -> list[StreamConfiguration]:
        return await asyncio.to_thread(self.config_source.list_configs)

    # ========================================================================
    # Start
    # ========================================================================

    async def start_job(self, job_id: str) -> StatusSnapshot:
        """Start the encoder for a job, or return the live one's status.

        Raises:
            ConfigNotFoundError: No configuration for `job_id`
            ProcessStartError: The encoder could not be spawned
        """
        if job_id not in self._job_locks and await self.get_config(job_id) is None:
            metrics.streams_start_total.labels(status="failure").inc()
            logger.warning(f"[{job_id}] Start requested, no configuration")
            raise ConfigNotFoundError(job_id)

        async with self._job_lock(job_id):
            return await self._start_locked(job_id)

    async def _start_locked(self, job_id: str) -> StatusSnapshot:
        config = await self.get_config(job_id)
        if config is None:
            metrics.streams_start_total.labels(status="failure").inc()
            raise ConfigNotFoundError(job_id)

        existing = self._handles.get(job_id)
        if existing is not None:
            if existing.is_alive:
                logger.debug(f"[{job_id}] Already running (PID={existing.pid})")
                metrics.streams_start_total.labels(status="already_running").inc()
                return self._snapshot(existing)
            logger.info(f"[{job_id}] Cleaning up exited process before start")
            await self._stop_locked(existing)

        args = self.command_builder(config, self.platform)
        started_at = datetime.now(timezone.utc)

        try:
            log_path = log_file_path(self.log_dir, job_id, started_at)
        except ValueError as e:
            metrics.streams_start_total.labels(status="failure").inc()
            raise ProcessStartError(job_id, str(e)) from e

        try:
            process = await asyncio.create_subprocess_exec(
                self.ffmpeg_path,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            metrics.streams_start_total.labels(status="failure").inc()
            logger.error(f"[{job_id}] Failed to spawn encoder: {e}")
            raise ProcessStartError(job_id, str(e)) from e

        log = LogSink(job_id, log_path)
        handle = ProcessHandle(job_id, config, args, process, log, started_at=started_at)
        await self._register(handle)

        await log.append(f"Started at {started_at.isoformat()} (PID={handle.pid})", "system")
        await log.append(f"Configuration: {config.display_name}", "system")
        await log.append(f"Command: {render_command(self.ffmpeg_path, args)}", "system")

        handle.start_pumps(self._handle_output)
        task = asyncio.create_task(self._monitor(handle), name=f"monitor-{job_id}")
        self._monitor_tasks.add(task)
        task.add_done_callback(self._monitor_tasks.discard)

        snapshot = self._snapshot(handle)
        metrics.streams_start_total.labels(status="success").inc()
        logger.info(f"[{job_id}] Encoder started (PID={handle.pid}) -> {config.multicast_ip}:{config.port}")
        self._publish(StreamStarted(status=snapshot))
        return snapshot

    # ========================================================================
    # Stop
    # ========================================================================

    async def stop_job(self, job_id: str) -> bool:
        """Stop a job's encoder.

        Returns:
            True if a process was registered and has been torn down, False if
            there was nothing to stop or teardown failed
        """
        if job_id not in self._handles and job_id not in self._job_locks:
            logger.debug(f"[{job_id}] Stop requested for unknown job")
            return False

        async with self._job_lock(job_id):
            handle = self._handles.get(job_id)
            if handle is None:
                logger.debug(f"[{job_id}] Stop requested, no process registered")
                return False

            try:
                await self._stop_locked(handle)
                return True
            except Exception as e:
                logger.error(f"[{job_id}] Stop failed: {e}", exc_info=True)
                return False

    async def _stop_locked(self, handle: ProcessHandle) -> None:
        job_id = handle.job_id
        handle.mark_stopping()

        try:
            if handle.is_alive:
                await self._terminate(handle)
        except Exception as e:
            logger.error(f"[{job_id}] Error during shutdown: {e}", exc_info=True)
            if handle.is_alive:
                await handle.kill()

        await handle.drain_pumps(PUMP_DRAIN_TIMEOUT)
        await self._unregister(handle)
        await handle.log.append(
            f"Stopped at {datetime.now(timezone.utc).isoformat()} (exit code {handle.return_code})",
            "system"
        )
        await handle.dispose()

        metrics.streams_stop_total.inc()
        logger.info(f"[{job_id}] Encoder stopped (exit code {handle.return_code})")
        self._publish(StreamStopped(job_id=job_id))

    async def _terminate(self, handle: ProcessHandle) -> None:
        """Graceful quit, then kill once the grace period has passed."""
        job_id = handle.job_id
        try:
            await handle.request_quit()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning(f"[{job_id}] Could not send quit signal: {e}")

        if await handle.wait_for_exit(self.stop_grace_period):
            return

        logger.warning(
            f"[{job_id}] Encoder did not exit within {self.stop_grace_period}s, killing (PID={handle.pid})"
        )
        metrics.stream_force_kills_total.inc()
        await handle.kill()

    # ========================================================================
    # Restart
    # ========================================================================

    async def restart_job(self, job_id: str) -> StatusSnapshot:
        """Stop, pause, start. Another caller may act between the steps."""
        await self.stop_job(job_id)
        await asyncio.sleep(self.restart_pause)
        return await self.start_job(job_id)

    # ========================================================================
    # Exit Monitoring
    # ========================================================================

    async def _monitor(self, handle: ProcessHandle) -> None:
        job_id = handle.job_id
        try:
            return_code = await handle.process.wait()
            if handle.stopping:
                return

            await handle.drain_pumps(PUMP_DRAIN_TIMEOUT)

            config = await self.get_config(job_id)
            enabled = config is not None and config.enabled

            if enabled and return_code != 0 and not self._shutting_down:
                await self._restart_after_crash(handle, return_code)
            else:
                await self._finish_exit(handle, return_code)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[{job_id}] Monitor failed: {e}", exc_info=True)

    async def _restart_after_crash(self, handle: ProcessHandle, return_code: int) -> None:
        job_id = handle.job_id
        metrics.streams_exit_total.labels(outcome="crash").inc()
        logger.warning(
            f"[{job_id}] Encoder exited with code {return_code}, restarting in {self.restart_delay}s"
        )
        await handle.log.append(
            f"Exited with code {return_code}, restarting in {self.restart_delay}s", "system"
        )

        await asyncio.sleep(self.restart_delay)

        async with self._job_lock(job_id):
            if handle.stopping or self._shutting_down or self._handles.get(job_id) is not handle:
                logger.info(f"[{job_id}] Restart abandoned, job was stopped or replaced")
                return

            handle.mark_stopping()
            await self._unregister(handle)
            await handle.dispose()

            metrics.stream_restarts_total.labels(job_id=job_id).inc()
            try:
                await self._start_locked(job_id)
            except HeadendError as e:
                logger.error(f"[{job_id}] Automatic restart failed: {e}")

    async def _finish_exit(self, handle: ProcessHandle, return_code: int | None) -> None:
        job_id = handle.job_id
        async with self._job_lock(job_id):
            if handle.stopping:
                return
            handle.mark_stopping()
            await self._unregister(handle)

        outcome = "clean" if return_code == 0 else "crash"
        metrics.streams_exit_total.labels(outcome=outcome).inc()
        logger.info(f"[{job_id}] Encoder exited with code {return_code}")

        await handle.log.append(
            f"Exited at {datetime.now(timezone.utc).isoformat()} (exit code {return_code})", "system"
        )
        await handle.dispose()
        self._publish(StreamExited(job_id=job_id, return_code=return_code))

    # ========================================================================
    # Output Handling
    # ========================================================================

    async def _handle_output(self, handle: ProcessHandle, line: str, source: LogSource) -> None:
        stats = parse_progress_line(line)
        if stats is not None:
            handle.record_stats(stats)
            self._publish(StreamStats(job_id=handle.job_id, stats=stats))
        await handle.log.append(line, source)

    # ========================================================================
    # Status
    # ========================================================================

    def _snapshot(self, handle: ProcessHandle) -> StatusSnapshot:
        cpu_percent, memory_bytes = handle.sample_resources()
        stats = handle.last_stats or {}
        alive = handle.is_alive
        now = datetime.now(timezone.utc)

        snapshot = StatusSnapshot(
            job_id=handle.job_id,
            name=handle.config.display_name,
            running=alive,
            pid=handle.pid if alive else 0,
            start_time=handle.started_at,
            uptime_seconds=max((now - handle.started_at).total_seconds(), 0.0),
            cpu_percent=cpu_percent,
            memory_bytes=memory_bytes,
            bitrate_kbps=parse_bitrate_kbps(stats.get("bitrate")),
            frames_encoded=parse_int(stats.get("frame")),
            fps=parse_float(stats.get("fps")),
            last_updated=now,
        )

        if alive:
            metrics.update_encoder_gauges(
                handle.job_id,
                snapshot.cpu_percent,
                snapshot.memory_bytes,
                snapshot.bitrate_kbps,
                snapshot.fps
            )
        return snapshot

    def get_status(self, job_id: str) -> StatusSnapshot | None:
        """Current status of a job, or None when no process is registered."""
        handle = self._handles.get(job_id)
        if handle is None:
            return None
        return self._snapshot(handle)

    def get_all_statuses(self) -> dict[str, StatusSnapshot]:
        """Status of every registered job, keyed by job id."""
        return {job_id: self._snapshot(handle) for job_id, handle in list(self._handles.items())}

    async def get_logs(self, job_id: str, lines: int = DEFAULT_LOG_LINES) -> list[LogEntry]:
        """Last `lines` log entries of a job, oldest first.

        Reads the running invocation's log, or the newest log on disk when
        the job has no registered process.
        """
        handle = self._handles.get(job_id)
        if handle is not None:
            return await handle.log.read_tail(lines)

        path = await asyncio.to_thread(find_latest_log, self.log_dir, job_id)
        if path is None:
            return []
        return await asyncio.to_thread(read_log_tail, job_id, path, lines)

    # ========================================================================
    # Boot and Shutdown
    # ========================================================================

    async def start_enabled_jobs(self) -> list[StatusSnapshot]:
        """Start every enabled configuration. Failures are logged per job."""
        started: list[StatusSnapshot] = []
        configs = [c for c in await self.list_configs() if c.enabled]
        logger.info(f"Starting {len(configs)} enabled stream(s)")

        for config in configs:
            try:
                started.append(await self.start_job(config.id))
            except HeadendError as e:
                logger.error(f"[{config.id}] Boot start failed: {e}")

        return started

    async def shutdown(self) -> None:
        """Stop all jobs concurrently and cancel leftover monitor tasks."""
        self._shutting_down = True
        job_ids = list(self._handles)
        if job_ids:
            logger.info(f"Stopping {len(job_ids)} stream(s)")
            await asyncio.gather(*(self.stop_job(job_id) for job_id in job_ids))

        tasks = [task for task in self._monitor_tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("StreamOrchestrator shut down")

    # ========================================================================
    # Events
    # ========================================================================

    def _publish(self, event: StreamEvent) -> None:
        try:
            self.notification_sink.publish(event)
            metrics.events_published_total.labels(event=event.event).inc()
        except Exception as e:
            logger.error(f"Notification sink failed for {event.event}: {e}", exc_info=True)
