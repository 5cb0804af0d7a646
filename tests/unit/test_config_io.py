"""
Unit tests for configuration sources and the stream configuration model.

Tests YAML loading (valid, invalid and missing files), invalid entry
skipping, live re-reads and the in-memory source.
"""

import pytest
from pydantic import ValidationError

from headend.config_io import InMemoryConfigSource, YamlConfigSource
from headend.models.stream import StreamConfiguration

STREAMS_YAML = """
streams:
  - id: studio-a
    name: Studio A
    input_device: /dev/video2
    multicast_ip: 239.1.1.1
    port: 5000
    advanced_options:
      -muxrate: 6000k
  - id: lobby
    enabled: false
  - id: broken
    port: 70000
  - just a string
"""


class TestYamlConfigSource:
    """Tests for YamlConfigSource."""

    def test_loads_valid_entries_and_skips_invalid(self, tmp_path):
        """Should return valid configurations and drop invalid ones."""
        path = tmp_path / "streams.yml"
        path.write_text(STREAMS_YAML, encoding="utf-8")
        source = YamlConfigSource(path)

        configs = source.list_configs()

        assert [c.id for c in configs] == ["studio-a", "lobby"]
        studio = source.get_config("studio-a")
        assert studio.input_device == "/dev/video2"
        assert studio.port == 5000
        assert studio.advanced_options == {"-muxrate": "6000k"}
        assert source.get_config("lobby").enabled is False
        assert source.get_config("broken") is None

    def test_rereads_file_on_each_lookup(self, tmp_path):
        """Should pick up an enabled flag changed on disk."""
        path = tmp_path / "streams.yml"
        path.write_text("streams:\n  - id: job\n    enabled: true\n", encoding="utf-8")
        source = YamlConfigSource(path)
        assert source.get_config("job").enabled is True

        path.write_text("streams:\n  - id: job\n    enabled: false\n", encoding="utf-8")
        assert source.get_config("job").enabled is False

    def test_missing_file(self, tmp_path):
        """Should behave as an empty source."""
        source = YamlConfigSource(tmp_path / "absent.yml")

        assert source.list_configs() == []
        assert source.get_config("job") is None

    @pytest.mark.parametrize("content", [
        "streams: [unclosed",
        "- not a mapping",
        "streams: nope",
    ])
    def test_malformed_files(self, tmp_path, content):
        """Should log and return nothing for malformed documents."""
        path = tmp_path / "streams.yml"
        path.write_text(content, encoding="utf-8")

        assert YamlConfigSource(path).list_configs() == []

    def test_duplicate_ids_keep_first(self, tmp_path):
        """Should ignore later entries reusing an id."""
        path = tmp_path / "streams.yml"
        path.write_text(
            "streams:\n  - id: job\n    port: 1000\n  - id: job\n    port: 2000\n",
            encoding="utf-8"
        )

        configs = YamlConfigSource(path).list_configs()
        assert len(configs) == 1
        assert configs[0].port == 1000


class TestInMemoryConfigSource:
    """Tests for InMemoryConfigSource."""

    def test_put_get_remove(self):
        """Should store, replace and remove configurations by id."""
        source = InMemoryConfigSource([StreamConfiguration(id="job", port=1000)])

        source.put(StreamConfiguration(id="job", port=2000))
        assert source.get_config("job").port == 2000
        assert len(source.list_configs()) == 1

        assert source.remove("job") is True
        assert source.remove("job") is False
        assert source.get_config("job") is None


class TestStreamConfiguration:
    """Tests for StreamConfiguration validation."""

    def test_defaults(self):
        """Should carry the documented defaults."""
        config = StreamConfiguration()

        assert config.input_device == "/dev/video0"
        assert config.bitrate == "5000k"
        assert config.multicast_ip == "239.255.255.250"
        assert config.port == 1234
        assert config.ttl == 64
        assert config.enabled is True
        assert config.id

    @pytest.mark.parametrize("field,value", [
        ("video_size", "1080p"),
        ("port", 0),
        ("ttl", 256),
        ("frame_rate", 0),
    ])
    def test_rejects_invalid_values(self, field, value):
        """Should raise ValidationError for out-of-range fields."""
        with pytest.raises(ValidationError):
            StreamConfiguration(**{field: value})

    @pytest.mark.parametrize("job_id", ["../escaped", "a/b", "a\\b", ".hidden", "-flag", "cam*", "a b"])
    def test_rejects_unsafe_ids(self, job_id):
        """Should only accept ids usable as a log file name fragment."""
        with pytest.raises(ValidationError):
            StreamConfiguration(id=job_id)

    @pytest.mark.parametrize("job_id", ["studio-a", "cam_2", "feed.main", "42"])
    def test_accepts_plain_ids(self, job_id):
        """Should accept letters, digits, '_', '.' and '-'."""
        assert StreamConfiguration(id=job_id).id == job_id

    def test_is_frozen(self):
        """Should not allow mutation."""
        config = StreamConfiguration()
        with pytest.raises(ValidationError):
            config.port = 9999

    def test_display_name_falls_back_to_id(self):
        """Should use the id when no name is set."""
        assert StreamConfiguration(id="job").display_name == "job"
        assert StreamConfiguration(id="job", name="Studio").display_name == "Studio"
