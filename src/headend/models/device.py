"""Capture devices reported by the encoder.

- CaptureDevice: one video (or, on Windows, audio) capture source
- DeviceOption: one format/resolution/frame rate combination a device offers
- DeviceOptions: every combination of one device
- DeviceTestRequest / DeviceTestResult: availability check payloads

Values are recomputed on every query; nothing is cached.
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

DeviceKind = Literal["video", "audio"]


class CaptureDevice(BaseModel):
    """A capture source as seen by the encoder."""

    path: str = Field(..., description="Value for input_device, e.g. /dev/video0 or a dshow name")
    name: str = Field(default="", description="Human-readable device name")
    kind: DeviceKind = "video"
    available: bool = Field(default=False, description="Encoder could open the device")
    formats: list[str] = Field(default_factory=list, description="Pixel formats and codecs")
    resolutions: list[str] = Field(default_factory=list, description="WIDTHxHEIGHT sizes")


class DeviceOption(BaseModel):
    """One capture mode. Exactly one of codec or pixel_format is set."""

    codec: str = ""
    pixel_format: str = ""
    resolution: str
    frame_rate: str = Field(default="", description="Empty when the device does not report it")
    display_text: str


class DeviceOptions(BaseModel):
    device: str
    options: list[DeviceOption] = Field(default_factory=list)


class DeviceTestRequest(BaseModel):
    device_path: str = Field(..., min_length=1, examples=["/dev/video0", "/media/loop.ts"])


class DeviceTestResult(BaseModel):
    device_path: str
    available: bool
