"""Capture device discovery through the encoder.

Asks the encoder which capture sources exist and what they can deliver, so an
operator can fill in input_device, input_format, video_size and frame_rate:

- Linux: every /dev/video* node, described by `-f v4l2 -list_formats all`
  (name from sysfs)
- Windows: `-list_devices true -f dshow` for names, `-list_options true`
  for the modes of one device
- Availability test: a local file exists, or the encoder can list the
  device's formats

Every query is a short-lived subprocess bounded by `timeout`; a query that
outlives it is killed. Nothing is cached.

Logging Strategy:
    DEBUG - Query commands, parse results
    INFO  - Device list summaries
    WARN  - Devices that could not be described, failed availability tests
    ERROR - Encoder not runnable
"""
from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Final, NamedTuple

from .. import metrics
from ..config.encoder_defaults import LINUX_VIDEO_SUBSYSTEM, WINDOWS_DEVICE_SUBSYSTEM
from ..exceptions import DeviceQueryError
from ..models.device import CaptureDevice, DeviceOption, DeviceOptions
from .command_builder import Platform, normalize_device_path

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

DEFAULT_QUERY_TIMEOUT: Final[float] = 10.0

DEV_DIR: Final[Path] = Path("/dev")
SYSFS_V4L2_DIR: Final[Path] = Path("/sys/class/video4linux")

V4L2_FORMAT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"\]\s*(?P<kind>Raw|Compressed)\s*:\s*(?P<code>\S+)\s+:\s+"
    r"(?P<description>.*?)\s+:\s*(?P<sizes>.*)$"
)
"""One `-list_formats all` line: '[video4linux2,v4l2 @ 0x..] Raw : yuyv422 : YUYV 4:2:2 : 640x480 1280x720'."""

DSHOW_SECTION_PATTERN: Final[re.Pattern[str]] = re.compile(r"DirectShow (video|audio) devices")
"""Section headers printed by older encoder builds."""

DSHOW_DEVICE_PATTERN: Final[re.Pattern[str]] = re.compile(
    r'"(?P<name>[^"]+)"(?:\s+\((?P<kind>video|audio|none)\))?'
)

DSHOW_OPTION_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?P<key>vcodec|pixel_format)=(?P<value>\S+)\s+"
    r"min s=(?P<min_size>\d+x\d+)\s+fps=(?P<min_fps>[\d.]+)\s+"
    r"max s=(?P<max_size>\d+x\d+)\s+fps=(?P<max_fps>[\d.]+)"
)
"""One `-list_options true` line: 'vcodec=mjpeg  min s=1280x720 fps=30 max s=1280x720 fps=30'."""

RESOLUTION_PATTERN: Final[re.Pattern[str]] = re.compile(r"\b(\d+)x(\d+)\b")

OPEN_FAILURE_MARKER: Final[str] = "Cannot open video device"


class V4l2Format(NamedTuple):
    compressed: bool
    code: str
    description: str
    resolutions: list[str]


# ============================================================================
# Output Parsing
# ============================================================================

def _resolution_key(resolution: str) -> tuple[int, int]:
    match = RESOLUTION_PATTERN.search(resolution)
    if match is None:
        return (0, 0)
    return (int(match.group(1)), int(match.group(2)))


def _format_fps(value: str) -> str:
    try:
        return f"{float(value):g}"
    except ValueError:
        return value


def _fps_key(value: str) -> float:
    try:
        return float(value)
    except ValueError:
        return 0.0


def parse_v4l2_formats(output: str) -> list[V4l2Format]:
    """Formats listed by `-f v4l2 -list_formats all`, in encoder order."""
    formats = []
    for line in output.splitlines():
        match = V4L2_FORMAT_PATTERN.search(line)
        if match is None:
            continue
        sizes = [f"{w}x{h}" for w, h in RESOLUTION_PATTERN.findall(match.group("sizes"))]
        formats.append(V4l2Format(
            compressed=match.group("kind") == "Compressed",
            code=match.group("code"),
            description=match.group("description").strip(),
            resolutions=list(dict.fromkeys(sizes)),
        ))
    return formats


def parse_dshow_devices(output: str) -> list[CaptureDevice]:
    """Device names from `-list_devices true -f dshow`.

    Handles both the '"name" (video)' form of newer builds and the section
    headers of older ones. Alternative (PnP) names and devices of kind
    'none' are skipped.
    """
    devices: list[CaptureDevice] = []
    seen: set[tuple[str, str]] = set()
    section: str | None = None

    for line in output.splitlines():
        if "Alternative name" in line:
            continue

        header = DSHOW_SECTION_PATTERN.search(line)
        if header is not None:
            section = header.group(1)
            continue

        match = DSHOW_DEVICE_PATTERN.search(line)
        if match is None:
            continue

        kind = match.group("kind") or section
        if kind not in ("video", "audio"):
            continue

        name = match.group("name")
        if (name, kind) in seen:
            continue
        seen.add((name, kind))
        devices.append(CaptureDevice(path=name, name=name, kind=kind, available=True))

    return devices


def _option(codec: str, pixel_format: str, resolution: str, frame_rate: str) -> DeviceOption:
    label = codec or pixel_format
    text = f"{label} - {resolution} @ {frame_rate} fps" if frame_rate else f"{label} - {resolution}"
    return DeviceOption(
        codec=codec,
        pixel_format=pixel_format,
        resolution=resolution,
        frame_rate=frame_rate,
        display_text=text,
    )


def _sorted_unique(options: list[DeviceOption]) -> list[DeviceOption]:
    unique = {option.display_text: option for option in reversed(options)}
    return sorted(
        unique.values(),
        key=lambda o: (_resolution_key(o.resolution), _fps_key(o.frame_rate), o.display_text)
    )


def parse_dshow_options(output: str) -> list[DeviceOption]:
    """Capture modes from `-list_options true -f dshow`.

    Each line gives a min and max mode; both are kept when they differ.
    Duplicates collapse, result is ordered by resolution then frame rate.
    """
    options = []
    for line in output.splitlines():
        match = DSHOW_OPTION_PATTERN.search(line)
        if match is None:
            continue

        codec = match.group("value") if match.group("key") == "vcodec" else ""
        pixel_format = match.group("value") if match.group("key") == "pixel_format" else ""

        for size, fps in (
            (match.group("min_size"), match.group("min_fps")),
            (match.group("max_size"), match.group("max_fps")),
        ):
            options.append(_option(codec, pixel_format, size, _format_fps(fps)))

    return _sorted_unique(options)


def v4l2_options(formats: list[V4l2Format]) -> list[DeviceOption]:
    """One option per format and discrete resolution; v4l2 lists no frame rates."""
    options = []
    for fmt in formats:
        for size in fmt.resolutions:
            if fmt.compressed:
                options.append(_option(fmt.code, "", size, ""))
            else:
                options.append(_option("", fmt.code, size, ""))
    return _sorted_unique(options)


def v4l2_device_paths(dev_dir: Path = DEV_DIR) -> list[Path]:
    """/dev/video* nodes in numeric order (video2 before video10)."""
    if not dev_dir.is_dir():
        return []

    def number(path: Path) -> int:
        digits = path.name[len("video"):]
        return int(digits) if digits.isdigit() else -1

    return sorted(dev_dir.glob("video*"), key=lambda p: (number(p), p.name))


def read_v4l2_name(device: Path, sysfs_dir: Path = SYSFS_V4L2_DIR) -> str:
    """Driver-reported card name, or the node name when sysfs has none."""
    try:
        name = (sysfs_dir / device.name / "name").read_text(encoding="utf-8").strip()
    except OSError:
        return device.name
    return name or device.name


# ============================================================================
# Device Discovery
# ============================================================================

class DeviceDiscovery:
    """Encoder-backed capture device queries.

    Attributes:
        ffmpeg_path: Encoder executable
        platform: Capture platform; selects v4l2 or dshow queries
        timeout: Seconds allowed per query
    """

    def __init__(
        self,
        ffmpeg_path: str,
        platform: Platform,
        timeout: float = DEFAULT_QUERY_TIMEOUT,
        dev_dir: Path = DEV_DIR,
        sysfs_dir: Path = SYSFS_V4L2_DIR,
    ) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.platform = platform
        self.timeout = timeout
        self.dev_dir = Path(dev_dir)
        self.sysfs_dir = Path(sysfs_dir)

    async def _query(self, operation: str, device: str, args: list[str]) -> str:
        """Run one encoder query and return its stderr, where listings go.

        Raises:
            DeviceQueryError: Encoder not runnable, or no answer within `timeout`
        """
        logger.debug(f"Device query ({operation}): {self.ffmpeg_path} {' '.join(args)}")

        try:
            process = await asyncio.create_subprocess_exec(
                self.ffmpeg_path,
                "-hide_banner",
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            metrics.device_queries_total.labels(operation=operation, outcome="failure").inc()
            logger.error(f"Cannot run encoder for device query: {e}")
            raise DeviceQueryError(device, str(e)) from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
            metrics.device_queries_total.labels(operation=operation, outcome="timeout").inc()
            raise DeviceQueryError(device, f"no answer within {self.timeout}s") from None

        metrics.device_queries_total.labels(operation=operation, outcome="success").inc()
        return stderr.decode("utf-8", errors="replace")

    # ========================================================================
    # Listing
    # ========================================================================

    async def list_devices(self) -> list[CaptureDevice]:
        """All capture devices of this platform.

        Raises:
            DeviceQueryError: Windows listing could not be run. On Linux a
                device that cannot be queried is reported unavailable instead.
        """
        if self.platform is Platform.WINDOWS:
            output = await self._query(
                "list", WINDOWS_DEVICE_SUBSYSTEM,
                ["-list_devices", "true", "-f", WINDOWS_DEVICE_SUBSYSTEM, "-i", "dummy"]
            )
            devices = parse_dshow_devices(output)
        else:
            devices = []
            for path in v4l2_device_paths(self.dev_dir):
                devices.append(await self._describe_v4l2(path))

        logger.info(f"Found {len(devices)} capture device(s)")
        return devices

    async def _describe_v4l2(self, path: Path) -> CaptureDevice:
        name = read_v4l2_name(path, self.sysfs_dir)
        try:
            output = await self._query("list", str(path), self._v4l2_list_args(str(path)))
        except DeviceQueryError as e:
            logger.warning(f"Could not describe {path}: {e.reason}")
            return CaptureDevice(path=str(path), name=name, available=False)

        formats = parse_v4l2_formats(output)
        resolutions = {size for fmt in formats for size in fmt.resolutions}
        return CaptureDevice(
            path=str(path),
            name=name,
            available=bool(formats) and OPEN_FAILURE_MARKER not in output,
            formats=list(dict.fromkeys(fmt.code for fmt in formats)),
            resolutions=sorted(resolutions, key=_resolution_key),
        )

    @staticmethod
    def _v4l2_list_args(device: str) -> list[str]:
        return ["-f", LINUX_VIDEO_SUBSYSTEM, "-list_formats", "all", "-i", device]

    # ========================================================================
    # Options
    # ========================================================================

    async def get_device_options(self, device: str) -> DeviceOptions:
        """Capture modes of one device.

        Raises:
            DeviceQueryError: Query could not be run or timed out
        """
        if self.platform is Platform.WINDOWS:
            path = normalize_device_path(device, WINDOWS_DEVICE_SUBSYSTEM)
            output = await self._query(
                "options", device,
                ["-list_options", "true", "-f", WINDOWS_DEVICE_SUBSYSTEM, "-i", path]
            )
            options = parse_dshow_options(output)
        else:
            output = await self._query("options", device, self._v4l2_list_args(device))
            options = v4l2_options(parse_v4l2_formats(output))

        logger.debug(f"{device}: {len(options)} capture mode(s)")
        return DeviceOptions(device=device, options=options)

    # ========================================================================
    # Availability
    # ========================================================================

    async def test_device(self, device_path: str) -> bool:
        """True when a local file exists or the encoder can list the device's modes."""
        if await asyncio.to_thread(Path(device_path).is_file):
            return True

        try:
            if self.platform is Platform.WINDOWS:
                available = bool((await self.get_device_options(device_path)).options)
            else:
                output = await self._query("test", device_path, self._v4l2_list_args(device_path))
                available = bool(parse_v4l2_formats(output)) and OPEN_FAILURE_MARKER not in output
        except DeviceQueryError as e:
            logger.warning(f"Device test failed for {device_path}: {e.reason}")
            return False

        if not available:
            logger.warning(f"Device not available: {device_path}")
        return available
