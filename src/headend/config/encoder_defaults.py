"""Encoder parameter defaults.

Single source of truth for the fixed values baked into every encoder
invocation. Per-job values come from StreamConfiguration.
"""
from typing import Final

# ============================================================================
# Capture Subsystems
# ============================================================================

LINUX_VIDEO_SUBSYSTEM: Final[str] = "v4l2"
LINUX_AUDIO_SUBSYSTEM: Final[str] = "alsa"
WINDOWS_DEVICE_SUBSYSTEM: Final[str] = "dshow"
WINDOWS_SCREEN_SUBSYSTEM: Final[str] = "gdigrab"

SCREEN_CAPTURE_MARKERS: Final[tuple[str, ...]] = ("desktop", "screen")
"""Device path fragments that select the screen-capture subsystem on Windows."""

VIDEO_DEVICE_PREFIX: Final[str] = "video="
AUDIO_DEVICE_PREFIX: Final[str] = "audio="

PIXEL_FORMAT_PASSTHROUGH: Final[tuple[str, ...]] = ("mpegts", "auto")
"""input_format fragments never forwarded as a pixel/input format argument."""

# ============================================================================
# Queue Sizes
# ============================================================================

VIDEO_THREAD_QUEUE_SIZE: Final[int] = 1024
AUDIO_THREAD_QUEUE_SIZE: Final[int] = 512

# ============================================================================
# Output
# ============================================================================

AUDIO_CHANNELS: Final[int] = 2

OUTPUT_PACKET_SIZE: Final[int] = 1316
"""Seven 188-byte MPEG-TS packets per UDP datagram."""

OUTPUT_SOCKET_BUFFER_SIZE: Final[int] = 65536

OUTPUT_FLAGS: Final[list[str]] = ["-flags", "+global_header"]

# ============================================================================
# Control
# ============================================================================

GRACEFUL_QUIT_SIGNAL: Final[bytes] = b"q\n"
"""Written to encoder stdin to request a clean shutdown."""
