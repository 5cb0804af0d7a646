"""Read-only views computed from live process handles.

- StatusSnapshot: point-in-time status of one job, recomputed on every query
- LogEntry: one parsed line of a job's encoder log

Neither model is persisted.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

ProgressStatistics = dict[str, str]
"""Encoder key/value tokens from one progress line (frame, fps, q, size, time, bitrate)."""

LogSource = Literal["system", "stdout", "stderr"]


class StatusSnapshot(BaseModel):
    """Status of one job at read time."""

    job_id: str = Field(..., description="Job identifier")
    name: str = Field(default="", description="Display name")
    running: bool = Field(default=False, description="Encoder process alive")
    pid: int = Field(default=0, ge=0, description="Process id, 0 once exited")

    start_time: datetime = Field(..., description="UTC start time of the process")
    uptime_seconds: float = Field(default=0.0, ge=0.0)

    cpu_percent: float = Field(
        default=0.0,
        ge=0.0,
        description="CPU usage since the previous sample, across all cores (0-100)"
    )

    memory_bytes: int = Field(default=0, ge=0, description="Resident set size")
    bitrate_kbps: int = Field(default=0, ge=0, description="Last reported output bitrate")
    frames_encoded: int = Field(default=0, ge=0)
    fps: float = Field(default=0.0, ge=0.0)

    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When this snapshot was computed"
    )


class LogEntry(BaseModel):
    """One line of an encoder log file."""

    job_id: str
    timestamp: datetime
    source: LogSource = "stderr"
    message: str
