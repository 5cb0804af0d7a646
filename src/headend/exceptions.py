"""Exception types raised by the stream orchestrator.

Only failures of the immediate call are raised to callers. Failures that are
discovered asynchronously (encoder crash, shutdown errors) are logged by the
orchestrator and drive its state machine instead.

All custom exceptions inherit from `HeadendError`.
"""
from __future__ import annotations


class HeadendError(Exception):
    """Base class for all orchestrator errors."""


class ConfigNotFoundError(HeadendError, LookupError):
    """Raised when a start is requested for an unknown job id."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Configuration {job_id} not found")
        self.job_id = job_id


class ProcessStartError(HeadendError, RuntimeError):
    """Raised when the OS refuses to spawn the encoder process."""

    def __init__(self, job_id: str, reason: str) -> None:
        super().__init__(f"Failed to start encoder for {job_id}: {reason}")
        self.job_id = job_id
        self.reason = reason


class DeviceQueryError(HeadendError, RuntimeError):
    """Raised when an encoder device query cannot be run or does not finish."""

    def __init__(self, device: str, reason: str) -> None:
        super().__init__(f"Device query failed for {device}: {reason}")
        self.device = device
        self.reason = reason
