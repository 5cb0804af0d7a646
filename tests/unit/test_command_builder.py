"""
Unit tests for encoder command construction.

Tests bitrate parsing, capture subsystem selection per platform, device path
normalisation, audio handling, rate control arguments and the multicast
output URL.
"""

import pytest

from headend.models.stream import StreamConfiguration
from headend.services.command_builder import (
    Platform,
    build_encoder_command,
    build_output_url,
    normalize_device_path,
    parse_bitrate,
    render_command,
)


def arg_after(args: list[str], flag: str) -> str:
    """Value following the first occurrence of `flag`."""
    return args[args.index(flag) + 1]


class TestParseBitrate:
    """Tests for parse_bitrate()."""

    @pytest.mark.parametrize("value,expected", [
        ("5000k", 5_000_000),
        ("5000K", 5_000_000),
        ("8m", 8_000_000),
        ("2.5M", 2_500_000),
        ("1500000", 1_500_000),
        ("  128k ", 128_000),
    ])
    def test_parses_suffixes(self, value, expected):
        """Should apply k/m multipliers case-insensitively."""
        assert parse_bitrate(value) == expected

    @pytest.mark.parametrize("value", ["", None, "fast", "k", "5000kb", "-5k"])
    def test_invalid_input_yields_zero(self, value):
        """Should return 0 for empty or non-numeric input."""
        assert parse_bitrate(value) == 0


class TestLinuxDeviceInput:
    """Tests for v4l2/alsa capture on Linux."""

    def test_default_configuration(self):
        """Should build a v4l2 + alsa command with the default settings."""
        args = build_encoder_command(StreamConfiguration(), Platform.LINUX)

        assert args[:4] == ["-f", "v4l2", "-thread_queue_size", "1024"]
        assert arg_after(args, "-input_format") == "yuyv422"
        assert arg_after(args, "-video_size") == "1920x1080"
        assert arg_after(args, "-framerate") == "30"
        assert args[args.index("-i") + 1] == "/dev/video0"
        assert "alsa" in args
        assert args[-1] == "udp://239.255.255.250:1234?pkt_size=1316&buffer_size=65536&ttl=64"

    def test_auto_format_is_skipped(self):
        """Should omit -input_format when the format is auto or empty."""
        for fmt in ("auto", ""):
            args = build_encoder_command(StreamConfiguration(input_format=fmt), Platform.LINUX)
            assert "-input_format" not in args

    def test_audio_device_has_no_prefix(self):
        """Should pass ALSA devices through unchanged."""
        args = build_encoder_command(StreamConfiguration(audio_device="hw:1,0"), Platform.LINUX)

        audio_index = args.index("alsa")
        assert args[audio_index - 1] == "-f"
        assert args[audio_index + 1:audio_index + 5] == ["-thread_queue_size", "512", "-i", "hw:1,0"]


class TestWindowsDeviceInput:
    """Tests for dshow/gdigrab capture on Windows."""

    def test_dshow_device_gets_video_prefix(self):
        """Should select dshow and prefix the device with video=."""
        config = StreamConfiguration(input_device="Integrated Camera", input_format="nv12")
        args = build_encoder_command(config, Platform.WINDOWS)

        assert arg_after(args, "-f") == "dshow"
        assert arg_after(args, "-pixel_format") == "nv12"
        assert "video=Integrated Camera" in args

    def test_existing_video_prefix_is_kept(self):
        """Should not double the video= prefix."""
        config = StreamConfiguration(input_device="video=USB Cam")
        args = build_encoder_command(config, Platform.WINDOWS)

        assert "video=USB Cam" in args
        assert "video=video=USB Cam" not in args

    @pytest.mark.parametrize("fmt", ["mpegts", "auto"])
    def test_passthrough_formats_skip_pixel_format(self, fmt):
        """Should not emit -pixel_format for mpegts/auto formats."""
        config = StreamConfiguration(input_device="Capture Card", input_format=fmt)
        assert "-pixel_format" not in build_encoder_command(config, Platform.WINDOWS)

    def test_screen_capture_uses_gdigrab(self):
        """Should select gdigrab for desktop capture without pixel format or prefix."""
        config = StreamConfiguration(input_device="desktop", input_format="bgra")
        args = build_encoder_command(config, Platform.WINDOWS)

        assert args[:2] == ["-f", "gdigrab"]
        assert "-pixel_format" not in args
        assert arg_after(args, "-framerate") == "30"
        assert args[args.index("-i") + 1] == "desktop"

    def test_audio_device_gets_audio_prefix(self):
        """Should prefix dshow audio devices with audio=."""
        config = StreamConfiguration(input_device="Cam", audio_device="Microphone (USB)")
        args = build_encoder_command(config, Platform.WINDOWS)

        assert "audio=Microphone (USB)" in args


class TestNormalizeDevicePath:
    """Tests for normalize_device_path()."""

    def test_gdigrab_strips_video_prefix(self):
        """Should remove a stray video= prefix for screen capture."""
        assert normalize_device_path("video=desktop", "gdigrab") == "desktop"

    def test_linux_path_unchanged(self):
        """Should leave v4l2 paths alone."""
        assert normalize_device_path("/dev/video2", "v4l2") == "/dev/video2"


class TestLocalFileInput:
    """Tests for local file inputs."""

    @pytest.mark.parametrize("fmt", ["file", "Local File"])
    def test_file_input_is_paced(self, fmt):
        """Should read files at native rate without device arguments."""
        config = StreamConfiguration(input_device="/media/my clip.ts", input_format=fmt)
        args = build_encoder_command(config, Platform.LINUX)

        assert args[:5] == ["-re", "-thread_queue_size", "1024", "-i", "/media/my clip.ts"]
        assert "-video_size" not in args
        assert "-framerate" not in args
        assert "v4l2" not in args

    def test_path_with_spaces_is_one_argument(self):
        """Should keep a spaced path as a single unquoted argv element."""
        config = StreamConfiguration(input_device="C:/Videos/loop file.mp4", input_format="file")
        args = build_encoder_command(config, Platform.WINDOWS)

        assert "C:/Videos/loop file.mp4" in args
        assert not any(arg.startswith('"') for arg in args)


class TestEncodingArguments:
    """Tests for video/audio encoding and output arguments."""

    def test_rate_control(self):
        """Should derive maxrate, bufsize and GOP from the configuration."""
        config = StreamConfiguration(bitrate="4000k", gop_size=50)
        args = build_encoder_command(config, Platform.LINUX)

        assert arg_after(args, "-b:v") == "4000k"
        assert arg_after(args, "-maxrate") == "4000k"
        assert arg_after(args, "-bufsize") == "2000000k"
        assert arg_after(args, "-g") == "50"
        assert arg_after(args, "-keyint_min") == "50"
        assert arg_after(args, "-sc_threshold") == "0"

    def test_empty_preset_and_tune_are_omitted(self):
        """Should skip -preset/-tune when blank."""
        args = build_encoder_command(StreamConfiguration(preset="", tune=""), Platform.LINUX)
        assert "-preset" not in args
        assert "-tune" not in args

    def test_audio_disabled(self):
        """Should emit no audio input or encoding when audio is off."""
        args = build_encoder_command(StreamConfiguration(enable_audio=False), Platform.LINUX)

        assert "alsa" not in args
        assert "-c:a" not in args
        assert "-ac" not in args

    def test_audio_encoding(self):
        """Should encode stereo audio with the configured codec and bitrate."""
        args = build_encoder_command(StreamConfiguration(audio_bitrate="192k"), Platform.LINUX)

        assert arg_after(args, "-c:a") == "aac"
        assert arg_after(args, "-b:a") == "192k"
        assert arg_after(args, "-ac") == "2"

    def test_no_audio_input_without_device(self):
        """Should still encode audio but skip the capture input without a device."""
        args = build_encoder_command(StreamConfiguration(audio_device=""), Platform.LINUX)
        assert "alsa" not in args

    def test_advanced_options_precede_url_in_order(self):
        """Should append advanced options verbatim before the output URL."""
        config = StreamConfiguration(advanced_options={"-muxrate": "6000k", "-pcr_period": "20"})
        args = build_encoder_command(config, Platform.LINUX)

        assert args[-5:-1] == ["-muxrate", "6000k", "-pcr_period", "20"]
        assert args[args.index("-flags") + 1] == "+global_header"

    def test_output_format(self):
        """Should emit the container format before the global header flag."""
        args = build_encoder_command(StreamConfiguration(output_format="mpegts"), Platform.LINUX)
        flags_index = args.index("-flags")
        assert args[flags_index - 2:flags_index] == ["-f", "mpegts"]


class TestOutputUrl:
    """Tests for build_output_url() and render_command()."""

    def test_output_url(self):
        """Should build the UDP multicast URL with packet/buffer/ttl options."""
        config = StreamConfiguration(multicast_ip="239.1.2.3", port=5000, ttl=8)
        assert build_output_url(config) == "udp://239.1.2.3:5000?pkt_size=1316&buffer_size=65536&ttl=8"

    def test_render_command_quotes_spaces(self):
        """Should shell-quote arguments for log output."""
        rendered = render_command("ffmpeg", ["-i", "/media/my clip.ts"])
        assert rendered == "ffmpeg -i '/media/my clip.ts'"
