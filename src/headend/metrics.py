"""Prometheus metrics for observability.

Provides metrics for:
- HTTP requests (count)
- Stream lifecycle (starts, stops, exits, auto-restarts, active count)
- Encoder processes (CPU, memory, output bitrate, fps per job)
- Event publication (published, dropped)

Logging Strategy:
    INFO  - Module initialization
    ERROR - Metric generation failures
"""
from __future__ import annotations

import logging

from prometheus_client import (
    Counter,
    Gauge,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

from . import __version__

logger = logging.getLogger(__name__)

# ============================================================================
# Application Info
# ============================================================================

app_info = Info("headend_app", "Application information")
app_info.info({
    "version": __version__,
    "name": "headend",
    "description": "Multicast encoder process orchestrator"
})

# ============================================================================
# HTTP Request Metrics
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"]
)

# ============================================================================
# Stream Lifecycle Metrics
# ============================================================================

streams_active = Gauge("streams_active", "Jobs with a registered encoder process")

streams_start_total = Counter(
    "streams_start_total",
    "Stream start attempts",
    ["status"]  # success, failure, already_running
)
streams_stop_total = Counter("streams_stop_total", "Stream stop operations")

streams_exit_total = Counter(
    "streams_exit_total",
    "Encoder exits not requested by a stop",
    ["outcome"]  # clean, crash
)

stream_restarts_total = Counter(
    "stream_restarts_total",
    "Automatic restarts after an encoder crash",
    ["job_id"]
)

stream_force_kills_total = Counter(
    "stream_force_kills_total",
    "Encoders killed after the graceful stop grace period"
)

# ============================================================================
# Encoder Process Metrics
# ============================================================================

encoder_cpu_percent = Gauge("encoder_cpu_percent", "Encoder CPU %", ["job_id"])
encoder_memory_bytes = Gauge("encoder_memory_bytes", "Encoder resident memory", ["job_id"])
stream_bitrate_kbps = Gauge("stream_bitrate_kbps", "Reported output bitrate", ["job_id"])
stream_fps = Gauge("stream_fps", "Reported encoding fps", ["job_id"])

# ============================================================================
# Event Metrics
# ============================================================================

events_published_total = Counter("events_published_total", "Events published", ["event"])
events_dropped_total = Counter("events_dropped_total", "Events dropped by sinks", ["event"])

# ============================================================================
# Device Discovery Metrics
# ============================================================================

device_queries_total = Counter(
    "device_queries_total",
    "Encoder device queries",
    ["operation", "outcome"]  # list/options/test, success/failure/timeout
)

# ============================================================================
# Metrics Export
# ============================================================================

def get_metrics() -> tuple[bytes, int, dict[str, str]]:
    """Generate Prometheus metrics in text format.

    Returns:
        (body, status_code, headers) for FastAPI Response
    """
    try:
        metrics = generate_latest(REGISTRY)
        return (metrics, 200, {"Content-Type": CONTENT_TYPE_LATEST})
    except Exception as e:
        logger.error(f"Metrics generation failed: {e}", exc_info=True)
        return (b"# Error\n", 500, {"Content-Type": "text/plain"})


# ============================================================================
# Helper Functions
# ============================================================================

def track_http_request(method: str, endpoint: str, status_code: int) -> None:
    """Track HTTP request in metrics."""
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=str(status_code)
    ).inc()


def update_encoder_gauges(
    job_id: str,
    cpu_percent: float,
    memory_bytes: int,
    bitrate_kbps: int,
    fps: float
) -> None:
    """Refresh per-job encoder gauges from a status snapshot."""
    encoder_cpu_percent.labels(job_id=job_id).set(cpu_percent)
    encoder_memory_bytes.labels(job_id=job_id).set(memory_bytes)
    stream_bitrate_kbps.labels(job_id=job_id).set(bitrate_kbps)
    stream_fps.labels(job_id=job_id).set(fps)


def clear_encoder_gauges(job_id: str) -> None:
    """Drop per-job series once a job has no process."""
    for gauge in (encoder_cpu_percent, encoder_memory_bytes, stream_bitrate_kbps, stream_fps):
        try:
            gauge.remove(job_id)
        except KeyError:
            pass


logger.info("Prometheus metrics initialized")
