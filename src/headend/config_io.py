"""Runtime settings and read-only stream configuration sources.

The configuration CRUD store lives outside this package. The orchestrator
reads validated StreamConfiguration objects through the `ConfigSource`
protocol; two implementations are provided:

    - YamlConfigSource: reads `streams:` from a YAML file on every lookup, so
      an external editor toggling `enabled` is picked up by the next restart
      decision
    - InMemoryConfigSource: dict-backed, for embedding and tests

Environment:
    CONFIG_DIR          Directory holding streams.yml (default: /app/config)
    FFMPEG_PATH         Encoder executable (default: ffmpeg)
    ENCODER_LOG_DIR     Per-invocation encoder logs (default: logs/ffmpeg)
    STOP_GRACE_PERIOD   Seconds to wait after 'q' before killing (default: 5)
    RESTART_DELAY       Seconds before restarting a crashed encoder (default: 5)
    DEVICE_QUERY_TIMEOUT  Seconds allowed for one device query (default: 10)

Thread Safety:
    RLock serialises file reads and in-memory updates.

Logging Strategy:
    DEBUG - File loads
    INFO  - Source initialization
    WARN  - Invalid entries (skipped), invalid env values
    ERROR - YAML parsing, I/O failures
"""
from __future__ import annotations

import io
import logging
import os
import threading
from pathlib import Path
from typing import Any, Final, Iterable, Protocol

import yaml
from pydantic import ValidationError

from .models.stream import StreamConfiguration

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

STREAMS_KEY: Final[str] = "streams"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Invalid {name} '{raw}', using {default}")
        return default
    if value < 0:
        logger.warning(f"Negative {name} '{raw}', using {default}")
        return default
    return value


CONFIG_DIR: Final[Path] = Path(os.getenv("CONFIG_DIR", "/app/config"))
STREAMS_CONFIG_PATH: Final[Path] = CONFIG_DIR / "streams.yml"

FFMPEG_PATH: Final[str] = os.getenv("FFMPEG_PATH", "ffmpeg")
ENCODER_LOG_DIR: Final[Path] = Path(os.getenv("ENCODER_LOG_DIR", "logs/ffmpeg"))

STOP_GRACE_PERIOD: Final[float] = _env_float("STOP_GRACE_PERIOD", 5.0)
"""Seconds between the graceful quit signal and a forced kill."""

RESTART_DELAY: Final[float] = _env_float("RESTART_DELAY", 5.0)
"""Fixed delay before an automatic restart after a crash."""

RESTART_PAUSE: Final[float] = 1.0
"""Pause between stop and start in an explicit restart."""

DEVICE_QUERY_TIMEOUT: Final[float] = _env_float("DEVICE_QUERY_TIMEOUT", 10.0)
"""Upper bound on one encoder device query (list, options, test)."""

# ============================================================================
# Config Source Protocol
# ============================================================================

class ConfigSource(Protocol):
    """Read-only access to stream configurations."""

    def get_config(self, job_id: str) -> StreamConfiguration | None:
        ...

    def list_configs(self) -> list[StreamConfiguration]:
        ...


def parse_stream_configs(entries: Iterable[Any]) -> list[StreamConfiguration]:
    """Validate raw entries, skipping (and logging) invalid ones."""
    configs: list[StreamConfiguration] = []
    seen: set[str] = set()

    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            logger.warning(f"Stream entry {index} is not a mapping, skipped")
            continue
        try:
            config = StreamConfiguration.model_validate(entry)
        except ValidationError as e:
            logger.warning(f"Stream entry {index} invalid, skipped: {e.error_count()} error(s)")
            logger.debug(f"Validation details: {e}")
            continue
        if config.id in seen:
            logger.warning(f"Duplicate stream id '{config.id}', skipped")
            continue
        seen.add(config.id)
        configs.append(config)

    return configs


# ============================================================================
# YAML Source
# ============================================================================

class YamlConfigSource:
    """Stream configurations read from a YAML file.

    Expected layout::

        streams:
          - id: studio-a
            name: Studio A
            input_device: /dev/video0
            multicast_ip: 239.1.1.1
            port: 5000
    """

    def __init__(self, path: Path = STREAMS_CONFIG_PATH) -> None:
        self.path = path
        self._lock = threading.RLock()
        logger.info(f"Config: YAML source ({path})")

    def _load(self) -> list[StreamConfiguration]:
        with self._lock:
            if not self.path.exists():
                logger.debug(f"Config file missing: {self.path}")
                return []

            try:
                with io.open(self.path, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                logger.error(f"YAML parsing error: {e}", exc_info=True)
                return []
            except OSError as e:
                logger.error(f"Config load error: {e}", exc_info=True)
                return []

            if not isinstance(data, dict):
                logger.warning("Invalid config format (expected dict)")
                return []

            entries = data.get(STREAMS_KEY) or []
            if not isinstance(entries, list):
                logger.warning("Invalid streams format (expected list)")
                return []

            configs = parse_stream_configs(entries)
            logger.debug(f"Loaded {len(configs)} stream(s)")
            return configs

    def get_config(self, job_id: str) -> StreamConfiguration | None:
        for config in self._load():
            if config.id == job_id:
                return config
        return None

    def list_configs(self) -> list[StreamConfiguration]:
        return self._load()


# ============================================================================
# In-Memory Source
# ============================================================================

class InMemoryConfigSource:
    """Dict-backed configuration source."""

    def __init__(self, configs: Iterable[StreamConfiguration] = ()) -> None:
        self._lock = threading.RLock()
        self._configs: dict[str, StreamConfiguration] = {c.id: c for c in configs}

    def get_config(self, job_id: str) -> StreamConfiguration | None:
        with self._lock:
            return self._configs.get(job_id)

    def list_configs(self) -> list[StreamConfiguration]:
        with self._lock:
            return list(self._configs.values())

    def put(self, config: StreamConfiguration) -> None:
        """Insert or replace a configuration."""
        with self._lock:
            self._configs[config.id] = config

    def remove(self, job_id: str) -> bool:
        with self._lock:
            return self._configs.pop(job_id, None) is not None
