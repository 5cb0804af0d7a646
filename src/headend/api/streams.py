"""REST API endpoints for encoder job control and status.

Thin JSON layer over the StreamOrchestrator singleton. Configuration CRUD is
owned by an external store; these routes only start, stop and inspect jobs.

Routes (mounted under /api/streams):
    GET  ""                 All configured jobs with live status
    GET  "/{job_id}"        One job's configuration and status
    POST "/{job_id}/start"  Start (idempotent)
    POST "/{job_id}/stop"   Graceful stop
    POST "/{job_id}/restart"
    GET  "/{job_id}/logs"   Tail of the job's encoder log

Logging Strategy:
    DEBUG - Listing, status reads
    INFO  - Start/stop/restart requests and results
    WARN  - Unknown jobs, stop of idle jobs
    ERROR - Unexpected failures with stack traces
"""
from __future__ import annotations

import logging
from typing import Any, Final

from fastapi import APIRouter, Depends, Query

from ..exceptions import ConfigNotFoundError, ProcessStartError
from ..models.status import LogEntry, StatusSnapshot
from ..models.stream import StreamConfiguration
from ..services import container
from ..services.command_builder import build_output_url
from ..services.orchestrator import StreamOrchestrator
from .errors import (
    raise_config_not_found,
    raise_process_start_failed,
    raise_service_unavailable,
    raise_stream_not_running,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["streams"])

# ============================================================================
# Constants
# ============================================================================

DEFAULT_LOG_LINES: Final[int] = 100
MAX_LOG_LINES: Final[int] = 5000

# ============================================================================
# Dependencies and Helpers
# ============================================================================

def require_orchestrator() -> StreamOrchestrator:
    """Orchestrator dependency mapped to a 503 before startup completes."""
    try:
        return container.get_orchestrator()
    except RuntimeError as e:
        raise_service_unavailable(str(e))


def stream_view(config: StreamConfiguration, snapshot: StatusSnapshot | None) -> dict[str, Any]:
    """Configuration summary merged with live status."""
    return {
        "id": config.id,
        "name": config.display_name,
        "enabled": config.enabled,
        "output_url": build_output_url(config),
        "running": snapshot is not None and snapshot.running,
        "status": snapshot.model_dump(mode="json") if snapshot else None,
    }


# ============================================================================
# Status Endpoints
# ============================================================================

@router.get("")
async def list_streams(
    orchestrator: StreamOrchestrator = Depends(require_orchestrator)
) -> list[dict[str, Any]]:
    """List configured jobs, plus registered jobs whose configuration vanished."""
    statuses = dict(orchestrator.get_all_statuses())
    views = []

    for config in await orchestrator.list_configs():
        views.append(stream_view(config, statuses.pop(config.id, None)))

    for job_id, snapshot in statuses.items():
        views.append({
            "id": job_id,
            "name": snapshot.name,
            "enabled": False,
            "output_url": None,
            "running": snapshot.running,
            "status": snapshot.model_dump(mode="json"),
        })

    logger.debug(f"Listed {len(views)} stream(s)")
    return views


@router.get("/{job_id}")
async def get_stream(
    job_id: str,
    orchestrator: StreamOrchestrator = Depends(require_orchestrator)
) -> dict[str, Any]:
    """Configuration and status of one job."""
    config = await orchestrator.get_config(job_id)
    snapshot = orchestrator.get_status(job_id)

    if config is None and snapshot is None:
        logger.warning(f"Stream not found: {job_id}")
        raise_config_not_found(job_id)

    response: dict[str, Any] = {
        "id": job_id,
        "config": config.model_dump(mode="json") if config else None,
        "status": snapshot.model_dump(mode="json") if snapshot else None,
    }
    return response


@router.get("/{job_id}/logs")
async def get_stream_logs(
    job_id: str,
    lines: int = Query(DEFAULT_LOG_LINES, ge=1, le=MAX_LOG_LINES),
    orchestrator: StreamOrchestrator = Depends(require_orchestrator)
) -> list[LogEntry]:
    """Last `lines` entries of the job's current or most recent log."""
    return await orchestrator.get_logs(job_id, lines)


# ============================================================================
# Control Endpoints
# ============================================================================

@router.post("/{job_id}/start")
async def start_stream(
    job_id: str,
    orchestrator: StreamOrchestrator = Depends(require_orchestrator)
) -> StatusSnapshot:
    """Start a job's encoder. Returns the live status if already running."""
    try:
        logger.info(f"Starting stream: {job_id}")
        return await orchestrator.start_job(job_id)
    except ConfigNotFoundError:
        logger.warning(f"Start failed - not found: {job_id}")
        raise_config_not_found(job_id)
    except ProcessStartError as e:
        raise_process_start_failed(job_id, e.reason)


@router.post("/{job_id}/stop")
async def stop_stream(
    job_id: str,
    orchestrator: StreamOrchestrator = Depends(require_orchestrator)
) -> dict[str, str]:
    """Stop a job's encoder gracefully."""
    logger.info(f"Stopping stream: {job_id}")

    if not await orchestrator.stop_job(job_id):
        logger.warning(f"Stop failed - not running: {job_id}")
        raise_stream_not_running(job_id)

    logger.info(f"Stream stopped: {job_id}")
    return {"message": "Stream stopped successfully", "job_id": job_id}


@router.post("/{job_id}/restart")
async def restart_stream(
    job_id: str,
    orchestrator: StreamOrchestrator = Depends(require_orchestrator)
) -> StatusSnapshot:
    """Stop, pause, start. A stopped job is simply started."""
    try:
        logger.info(f"Restarting stream: {job_id}")
        return await orchestrator.restart_job(job_id)
    except ConfigNotFoundError:
        logger.warning(f"Restart failed - not found: {job_id}")
        raise_config_not_found(job_id)
    except ProcessStartError as e:
        raise_process_start_failed(job_id, e.reason)
