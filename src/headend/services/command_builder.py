"""Encoder command construction.

Pure functions that turn a StreamConfiguration into the ordered argument list
for one encoder invocation. No I/O: the same (config, platform) pair always
yields the same arguments.

Command structure:
    1. Input pacing / capture subsystem (-re | -f v4l2 | -f dshow | -f gdigrab)
    2. Input format, size and frame rate (live devices only)
    3. Video input (-i ...)
    4. Audio input (optional)
    5. Video encoding (codec, preset, tune, rate control, GOP)
    6. Audio encoding (optional)
    7. Container format and flags
    8. Advanced options, verbatim
    9. Multicast UDP output URL

Paths are emitted as single argv elements. The encoder is spawned without a
shell, so embedded spaces need no quoting; `render_command()` produces a
shell-quoted rendering for logs.
"""
from __future__ import annotations

import logging
import re
import shlex
import sys
from enum import Enum
from typing import Final
from urllib.parse import urlencode

from ..config.encoder_defaults import (
    AUDIO_CHANNELS,
    AUDIO_DEVICE_PREFIX,
    AUDIO_THREAD_QUEUE_SIZE,
    LINUX_AUDIO_SUBSYSTEM,
    LINUX_VIDEO_SUBSYSTEM,
    OUTPUT_FLAGS,
    OUTPUT_PACKET_SIZE,
    OUTPUT_SOCKET_BUFFER_SIZE,
    PIXEL_FORMAT_PASSTHROUGH,
    SCREEN_CAPTURE_MARKERS,
    VIDEO_DEVICE_PREFIX,
    VIDEO_THREAD_QUEUE_SIZE,
    WINDOWS_DEVICE_SUBSYSTEM,
    WINDOWS_SCREEN_SUBSYSTEM,
)
from ..models.stream import StreamConfiguration

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

BITRATE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^(\d+(?:\.\d+)?)([km]?)$")
"""Numeric prefix with optional k/m suffix (input already lower-cased)."""

BITRATE_MULTIPLIERS: Final[dict[str, int]] = {"": 1, "k": 1_000, "m": 1_000_000}


class Platform(str, Enum):
    """Host OS family, which decides the capture subsystem."""

    LINUX = "linux"
    WINDOWS = "windows"


def detect_platform() -> Platform:
    """Map the running interpreter to a capture platform."""
    if sys.platform.startswith("win"):
        return Platform.WINDOWS
    return Platform.LINUX


# ============================================================================
# Bitrate Parsing
# ============================================================================

def parse_bitrate(bitrate: str | None) -> int:
    """Parse a bitrate string into bits per second.

    Case-insensitive. A trailing ``k`` multiplies by 1,000, a trailing ``m``
    by 1,000,000, no suffix is taken as raw units. Empty or non-numeric input
    yields 0.

    Examples:
        >>> parse_bitrate("5000k")
        5000000
        >>> parse_bitrate("2M")
        2000000
        >>> parse_bitrate("fast")
        0
    """
    if not bitrate:
        return 0

    match = BITRATE_PATTERN.match(bitrate.strip().lower())
    if match is None:
        return 0

    value, suffix = match.groups()
    return int(float(value) * BITRATE_MULTIPLIERS[suffix])


# ============================================================================
# Input Arguments
# ============================================================================

def _is_screen_capture(device: str) -> bool:
    lowered = device.lower()
    return any(marker in lowered for marker in SCREEN_CAPTURE_MARKERS)


def _capture_subsystem(config: StreamConfiguration, platform: Platform) -> str | None:
    """Return the -f value for the video input, None for file inputs."""
    if config.is_local_file:
        return None
    if platform is Platform.WINDOWS:
        if _is_screen_capture(config.input_device):
            return WINDOWS_SCREEN_SUBSYSTEM
        return WINDOWS_DEVICE_SUBSYSTEM
    return LINUX_VIDEO_SUBSYSTEM


def _format_args(config: StreamConfiguration, subsystem: str) -> list[str]:
    """Pixel/input format argument in the form the subsystem expects."""
    fmt = config.input_format.strip()
    if not fmt or fmt.lower() == "auto":
        return []

    if subsystem == LINUX_VIDEO_SUBSYSTEM:
        return ["-input_format", fmt]

    if subsystem == WINDOWS_DEVICE_SUBSYSTEM:
        if any(marker in fmt.lower() for marker in PIXEL_FORMAT_PASSTHROUGH):
            return []
        return ["-pixel_format", fmt]

    # gdigrab takes no pixel format
    return []


def normalize_device_path(device: str, subsystem: str | None) -> str:
    """Apply the subsystem-specific device path convention.

    dshow wants ``video=<name>``; gdigrab wants the bare descriptor
    (``desktop``, ``title=...``). Other subsystems take the path as-is.
    """
    if subsystem == WINDOWS_DEVICE_SUBSYSTEM and not device.startswith(VIDEO_DEVICE_PREFIX):
        return VIDEO_DEVICE_PREFIX + device
    if subsystem == WINDOWS_SCREEN_SUBSYSTEM and device.startswith(VIDEO_DEVICE_PREFIX):
        return device[len(VIDEO_DEVICE_PREFIX):]
    return device


def _input_args(config: StreamConfiguration, platform: Platform) -> list[str]:
    args: list[str] = []
    subsystem = _capture_subsystem(config, platform)

    if subsystem is None:
        # Pace file reads at native frame rate
        args.append("-re")
        args.extend(["-thread_queue_size", str(VIDEO_THREAD_QUEUE_SIZE)])
        args.extend(["-i", config.input_device])
        return args

    args.extend(["-f", subsystem])
    args.extend(["-thread_queue_size", str(VIDEO_THREAD_QUEUE_SIZE)])
    args.extend(_format_args(config, subsystem))
    args.extend(["-video_size", config.video_size])
    args.extend(["-framerate", str(config.frame_rate)])
    args.extend(["-i", normalize_device_path(config.input_device, subsystem)])
    return args


def _audio_input_args(config: StreamConfiguration, platform: Platform) -> list[str]:
    if not (config.enable_audio and config.audio_device):
        return []

    device = config.audio_device
    if platform is Platform.WINDOWS:
        subsystem = WINDOWS_DEVICE_SUBSYSTEM
        if not device.startswith(AUDIO_DEVICE_PREFIX):
            device = AUDIO_DEVICE_PREFIX + device
    else:
        subsystem = LINUX_AUDIO_SUBSYSTEM

    return [
        "-f", subsystem,
        "-thread_queue_size", str(AUDIO_THREAD_QUEUE_SIZE),
        "-i", device,
    ]


# ============================================================================
# Encoding Arguments
# ============================================================================

def _video_args(config: StreamConfiguration) -> list[str]:
    args = ["-c:v", config.video_codec]

    if config.preset:
        args.extend(["-preset", config.preset])
    if config.tune:
        args.extend(["-tune", config.tune])

    gop = str(config.gop_size)
    args.extend([
        "-b:v", config.bitrate,
        "-maxrate", config.bitrate,
        "-bufsize", f"{parse_bitrate(config.bitrate) // 2}k",
        "-g", gop,
        "-keyint_min", gop,
        "-sc_threshold", "0",
    ])
    return args


def _audio_args(config: StreamConfiguration) -> list[str]:
    if not (config.enable_audio and config.audio_codec):
        return []

    args = ["-c:a", config.audio_codec]
    if config.audio_bitrate:
        args.extend(["-b:a", config.audio_bitrate])
    args.extend(["-ac", str(AUDIO_CHANNELS)])
    return args


def build_output_url(config: StreamConfiguration) -> str:
    """Build the multicast UDP destination URL.

    Example:
        >>> build_output_url(StreamConfiguration(multicast_ip="239.0.0.1", port=5000, ttl=16))
        'udp://239.0.0.1:5000?pkt_size=1316&buffer_size=65536&ttl=16'
    """
    query = urlencode({
        "pkt_size": OUTPUT_PACKET_SIZE,
        "buffer_size": OUTPUT_SOCKET_BUFFER_SIZE,
        "ttl": config.ttl,
    })
    return f"udp://{config.multicast_ip}:{config.port}?{query}"


# ============================================================================
# Command Building
# ============================================================================

def build_encoder_command(config: StreamConfiguration, platform: Platform) -> list[str]:
    """Build the encoder argument list (executable excluded).

    Args:
        config: Job configuration
        platform: Capture platform

    Returns:
        Ordered argument list

    Example:
        >>> args = build_encoder_command(StreamConfiguration(), Platform.LINUX)
        >>> args[:4]
        ['-f', 'v4l2', '-thread_queue_size', '1024']
    """
    logger.debug(
        f"Building encoder command: platform={platform.value}, "
        f"file_input={config.is_local_file}, audio={config.enable_audio}"
    )

    args: list[str] = []
    args.extend(_input_args(config, platform))
    args.extend(_audio_input_args(config, platform))
    args.extend(_video_args(config))
    args.extend(_audio_args(config))

    args.extend(["-f", config.output_format])
    args.extend(OUTPUT_FLAGS)

    for key, value in config.advanced_options.items():
        args.extend([key, value])

    args.append(build_output_url(config))
    return args


def render_command(executable: str, args: list[str]) -> str:
    """Shell-quoted rendering of a command for log headers."""
    return shlex.join([executable, *args])
