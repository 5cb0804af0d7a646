"""Lifecycle and telemetry events published by the orchestrator.

Events are plain pydantic models tagged with an `event` discriminator so a
transport can serialise them with `model_dump(mode="json")` without knowing
the concrete type.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Union

from pydantic import BaseModel, Field

from .status import ProgressStatistics, StatusSnapshot


class _Event(BaseModel):
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class StreamStarted(_Event):
    event: Literal["StreamStarted"] = "StreamStarted"
    status: StatusSnapshot

    @property
    def job_id(self) -> str:
        return self.status.job_id


class StreamStopped(_Event):
    event: Literal["StreamStopped"] = "StreamStopped"
    job_id: str


class StreamExited(_Event):
    event: Literal["StreamExited"] = "StreamExited"
    job_id: str
    return_code: int | None = None


class StreamStats(_Event):
    event: Literal["StreamStats"] = "StreamStats"
    job_id: str
    stats: ProgressStatistics


StreamEvent = Union[StreamStarted, StreamStopped, StreamExited, StreamStats]
