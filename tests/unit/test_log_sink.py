"""
Unit tests for per-invocation encoder log files.

Tests file naming, line formatting and parsing, tail reads, newest-log
lookup and write failure handling.
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from headend.services.log_sink import (
    LogSink,
    find_latest_log,
    format_log_line,
    log_file_path,
    parse_log_line,
    read_log_tail,
)


class TestLogFileNaming:
    """Tests for log_file_path() and find_latest_log()."""

    def test_path_embeds_job_and_timestamp(self, tmp_path):
        """Should name files <job_id>_<YYYYmmdd_HHMMSS>.log."""
        started = datetime(2026, 10, 19, 8, 15, 2, tzinfo=timezone.utc)
        path = log_file_path(tmp_path, "studio-a", started)

        assert path == tmp_path / "studio-a_20261019_081502.log"

    def test_finds_newest_log_of_job(self, tmp_path):
        """Should pick the latest timestamp and ignore other jobs."""
        for name in (
            "studio-a_20261018_230000.log",
            "studio-a_20261019_080000.log",
            "studio-b_20261020_000000.log",
        ):
            (tmp_path / name).write_text("", encoding="utf-8")

        assert find_latest_log(tmp_path, "studio-a") == tmp_path / "studio-a_20261019_080000.log"

    def test_latest_log_ignores_jobs_sharing_a_prefix(self, tmp_path):
        """Should not return cam_2's log when asked for cam."""
        for name in ("cam_20261019_080000.log", "cam_2_20261019_080000.log", "cam_notes.log"):
            (tmp_path / name).write_text("", encoding="utf-8")

        assert find_latest_log(tmp_path, "cam") == tmp_path / "cam_20261019_080000.log"
        assert find_latest_log(tmp_path, "cam_2") == tmp_path / "cam_2_20261019_080000.log"

    def test_latest_log_treats_glob_characters_literally(self, tmp_path):
        """Should match job ids exactly, not as patterns."""
        (tmp_path / "cam_20261019_080000.log").write_text("", encoding="utf-8")

        assert find_latest_log(tmp_path, "*") is None
        assert find_latest_log(tmp_path, "c?m") is None

    @pytest.mark.parametrize("job_id", ["../escaped", "a/b", ".hidden", ""])
    def test_path_rejects_ids_that_leave_the_directory(self, tmp_path, job_id):
        """Should refuse ids that are not plain file name fragments."""
        started = datetime(2026, 10, 19, 8, 15, 2, tzinfo=timezone.utc)

        with pytest.raises(ValueError):
            log_file_path(tmp_path / "logs", job_id, started)

    def test_missing_directory(self, tmp_path):
        """Should return None when nothing was ever logged."""
        assert find_latest_log(tmp_path / "absent", "studio-a") is None


class TestLogLineFormat:
    """Tests for format_log_line() and parse_log_line()."""

    def test_format_then_parse(self):
        """Should parse back timestamp, source and message."""
        when = datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)
        line = format_log_line("frame=1 fps=1", "stderr", when)

        assert line == "[2026-10-19T08:00:00+00:00] [stderr] frame=1 fps=1\n"

        entry = parse_log_line("studio-a", line)
        assert entry.job_id == "studio-a"
        assert entry.timestamp == when
        assert entry.source == "stderr"
        assert entry.message == "frame=1 fps=1"

    def test_untagged_line_defaults_to_stderr(self):
        """Should accept lines without a source tag."""
        entry = parse_log_line("job", "[2026-10-19T08:00:00+00:00] Started")

        assert entry.source == "stderr"
        assert entry.message == "Started"

    @pytest.mark.parametrize("line", [
        "no brackets at all",
        "[not a timestamp] [stderr] message",
        "",
    ])
    def test_unparsable_lines(self, line):
        """Should return None for lines that do not match the log shape."""
        assert parse_log_line("job", line) is None


class TestReadLogTail:
    """Tests for read_log_tail()."""

    def test_returns_last_lines_in_order(self, tmp_path):
        """Should return at most N entries, oldest first."""
        path = tmp_path / "job_20261019_080000.log"
        with open(path, "w", encoding="utf-8") as f:
            for i in range(10):
                f.write(format_log_line(f"line {i}", "stdout"))

        entries = read_log_tail("job", path, 3)

        assert [e.message for e in entries] == ["line 7", "line 8", "line 9"]
        assert entries[0].timestamp <= entries[-1].timestamp

    def test_drops_garbage_lines(self, tmp_path):
        """Should skip lines that do not parse."""
        path = tmp_path / "job.log"
        path.write_text(
            format_log_line("good", "system") + "garbage\n" + format_log_line("also good", "stderr"),
            encoding="utf-8"
        )

        entries = read_log_tail("job", path, 3)

        assert [e.message for e in entries] == ["good", "also good"]

    def test_missing_file(self, tmp_path):
        """Should return an empty list for a missing file."""
        assert read_log_tail("job", tmp_path / "nope.log", 5) == []


class TestLogSink:
    """Tests for LogSink."""

    @pytest.mark.asyncio
    async def test_append_creates_directory(self, tmp_path):
        """Should create the log directory and append tagged lines."""
        path = tmp_path / "nested" / "logs" / "job_20261019_080000.log"
        sink = LogSink("job", path)

        await sink.append("Started", "system")
        await sink.append("frame=1 fps=1")

        entries = await sink.read_tail(10)
        assert [(e.source, e.message) for e in entries] == [
            ("system", "Started"),
            ("stderr", "frame=1 fps=1"),
        ]

    @pytest.mark.asyncio
    async def test_write_failure_is_not_raised(self, tmp_path):
        """Should log and swallow OSError from the file system."""
        sink = LogSink("job", tmp_path / "job.log")

        with patch.object(LogSink, "_write_sync", side_effect=PermissionError("read-only")):
            await sink.append("lost line")

        assert not (tmp_path / "job.log").exists()
