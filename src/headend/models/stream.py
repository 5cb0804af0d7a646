"""Stream configuration model for the headend.

Defines the immutable, per-job description of one capture-and-encode task.
Configurations are owned by an external store; the orchestrator only reads
them, so the model is frozen.

Field Validation:
- id: letters, digits, "_", "." and "-", not starting with "." or "-"
- video_size must look like WIDTHxHEIGHT
- port 1-65535, ttl 0-255
- frame_rate and gop_size must be positive

Input Kinds:
- Live device (default): /dev/video0, "Integrated Camera", "desktop"
- Local file: input_format "file" or "local file"
"""
from __future__ import annotations

import re
import uuid
from typing import Final

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ============================================================================
# Constants
# ============================================================================

VIDEO_SIZE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\d+x\d+$")
"""Matches WIDTHxHEIGHT resolutions such as 1920x1080."""

JOB_ID_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
"""Job ids are used verbatim in log file names: no separators, no leading dot."""

LOCAL_FILE_FORMATS: Final[frozenset[str]] = frozenset({"file", "local file"})
"""input_format values that designate a local file instead of a device."""

# ============================================================================
# Stream Configuration
# ============================================================================

class StreamConfiguration(BaseModel):
    """Complete configuration for one encoding job."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        min_length=1,
        max_length=100,
        pattern=JOB_ID_PATTERN.pattern,
        description="Stable job identifier (letters, digits, '_', '.', '-')"
    )

    name: str = Field(
        default="",
        max_length=100,
        description="Human-readable job name",
        examples=["Studio A", "Lobby screen"]
    )

    description: str = Field(default="", description="Free-form notes")

    enabled: bool = Field(
        default=True,
        description="Disabled jobs are never auto-restarted"
    )

    # Input
    input_device: str = Field(
        default="/dev/video0",
        min_length=1,
        description="Capture device or file path",
        examples=["/dev/video0", "Integrated Camera", "/media/loop.ts"]
    )

    input_format: str = Field(
        default="yuyv422",
        description="Pixel/input format, or 'file' for a local file input"
    )

    video_size: str = Field(default="1920x1080", description="Capture resolution")

    frame_rate: int = Field(default=30, gt=0, description="Capture frame rate")

    # Video encoding
    video_codec: str = Field(default="libx264", min_length=1)
    preset: str = Field(default="veryfast")
    tune: str = Field(default="zerolatency")

    bitrate: str = Field(
        default="5000k",
        description="Target bitrate with optional k/m suffix",
        examples=["5000k", "8m", "1500000"]
    )

    gop_size: int = Field(default=60, gt=0, description="Keyframe interval in frames")

    # Audio
    enable_audio: bool = Field(default=True)
    audio_device: str = Field(default="hw:0,0")
    audio_codec: str = Field(default="aac")
    audio_bitrate: str = Field(default="128k")

    # Output
    multicast_ip: str = Field(
        default="239.255.255.250",
        min_length=1,
        description="Destination multicast group"
    )

    port: int = Field(default=1234, ge=1, le=65535)
    ttl: int = Field(default=64, ge=0, le=255)
    output_format: str = Field(default="mpegts", min_length=1)

    advanced_options: dict[str, str] = Field(
        default_factory=dict,
        description="Extra encoder options appended verbatim, in order",
        examples=[{"-muxrate": "6000k", "-pcr_period": "20"}]
    )

    @property
    def is_local_file(self) -> bool:
        """True when the input is a file rather than a live device."""
        return self.input_format.strip().lower() in LOCAL_FILE_FORMATS

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @model_validator(mode="after")
    def validate_video_size(self) -> StreamConfiguration:
        """Validate WIDTHxHEIGHT resolution format."""
        if not VIDEO_SIZE_PATTERN.match(self.video_size):
            raise ValueError("video_size must be WIDTHxHEIGHT (e.g. 1920x1080)")
        return self
