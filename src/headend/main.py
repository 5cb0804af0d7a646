"""FastAPI application entry point for the headend orchestrator.

Headend: one encoder process per configured capture source, each pushing an
MPEG-TS stream to a UDP multicast group.

Architecture:
    - FastAPI async web framework (JSON only)
    - Encoder subprocesses supervised by a single StreamOrchestrator
    - Stream configurations read from YAML (config_io.YamlConfigSource)
    - Lifecycle/statistics events fanned out by QueueNotificationSink

Critical Design Decisions:
    1. Singleton StreamOrchestrator: the process registry lives inside it, so
       every request must reach the same instance (services.container).
    2. Lifespan Context: boot starts every enabled job, shutdown stops all
       encoders gracefully before the loop closes.

Logging Strategy:
    INFO  - Application lifecycle, configuration summary
    WARN  - Boot without config file
    ERROR - Startup and shutdown failures with stack traces

Run:
    uvicorn headend.main:app --host 0.0.0.0 --port 8000
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator
import logging
import os

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .api import devices, health, streams
from .api.errors import (
    validation_exception_handler,
    http_exception_handler,
    general_exception_handler
)
from .config_io import (
    DEVICE_QUERY_TIMEOUT,
    ENCODER_LOG_DIR,
    FFMPEG_PATH,
    RESTART_DELAY,
    RESTART_PAUSE,
    STOP_GRACE_PERIOD,
    STREAMS_CONFIG_PATH,
    YamlConfigSource,
)
from .logging_config import configure_logging
from .middleware.request_id import RequestIDMiddleware
from .services import container
from .services.command_builder import detect_platform
from .services.device_discovery import DeviceDiscovery
from .services.notifications import QueueNotificationSink
from .services.orchestrator import StreamOrchestrator

logger = logging.getLogger(__name__)

# Setup logging before anything else
configure_logging()

# ============================================================================
# Application Lifespan Management
# ============================================================================

def create_orchestrator() -> StreamOrchestrator:
    """Build the orchestrator from environment settings."""
    if not STREAMS_CONFIG_PATH.exists():
        logger.warning(f"Stream config not found: {STREAMS_CONFIG_PATH} (no jobs will start)")

    return StreamOrchestrator(
        config_source=YamlConfigSource(STREAMS_CONFIG_PATH),
        notification_sink=QueueNotificationSink(),
        ffmpeg_path=FFMPEG_PATH,
        log_dir=ENCODER_LOG_DIR,
        platform=detect_platform(),
        stop_grace_period=STOP_GRACE_PERIOD,
        restart_delay=RESTART_DELAY,
        restart_pause=RESTART_PAUSE,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup, running, shutdown.

    Startup Phase:
        1. Create the DeviceDiscovery and the singleton StreamOrchestrator
        2. Start every enabled job

    Shutdown Phase:
        1. Stop all encoders concurrently (graceful quit, then kill)
        2. Cancel leftover monitor tasks
    """
    logger.info("=" * 80)
    logger.info(f"Headend {__version__} starting...")
    logger.info("=" * 80)

    try:
        container.device_discovery = DeviceDiscovery(
            FFMPEG_PATH, detect_platform(), timeout=DEVICE_QUERY_TIMEOUT
        )
        container.orchestrator = create_orchestrator()
        await container.orchestrator.start_enabled_jobs()
    except Exception as e:
        logger.error(f"Startup error: {e}", exc_info=True)
        logger.warning("Starting without running streams")

    logger.info("Headend ready")

    yield

    logger.info("=" * 80)
    logger.info("Headend shutting down...")
    logger.info("=" * 80)

    if container.orchestrator is None:
        logger.warning("StreamOrchestrator was None during shutdown")
    else:
        try:
            await container.orchestrator.shutdown()
        except Exception as e:
            logger.error(f"Shutdown error: {e}", exc_info=True)
        finally:
            container.orchestrator = None

    container.device_discovery = None

    logger.info("Headend shutdown complete")


# ============================================================================
# FastAPI Application
# ============================================================================

app = FastAPI(
    title="Headend",
    description=(
        "Multicast encoder orchestration API.\n\n"
        "Features:\n"
        "- One supervised encoder process per capture source\n"
        "- Graceful stop and automatic crash restart\n"
        "- Live CPU, memory and bitrate status\n"
        "- Per-invocation encoder logs\n"
        "- Capture device discovery"
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

# ============================================================================
# Exception Handlers
# ============================================================================

app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore
app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore
app.add_exception_handler(Exception, general_exception_handler)

# ============================================================================
# Middleware
# ============================================================================

app.add_middleware(RequestIDMiddleware)

# ============================================================================
# API Routers
# ============================================================================

app.include_router(health.router, tags=["health"])
app.include_router(streams.router, prefix="/api/streams", tags=["streams"])
app.include_router(devices.router, prefix="/api/devices", tags=["devices"])

# ============================================================================
# Configuration Summary
# ============================================================================

logger.info(f"Environment: {os.getenv('ENV', 'development')}")
logger.info(
    f"Encoder: {FFMPEG_PATH}, logs={ENCODER_LOG_DIR}, "
    f"grace={STOP_GRACE_PERIOD}s, restart_delay={RESTART_DELAY}s"
)
