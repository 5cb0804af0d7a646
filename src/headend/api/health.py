"""Health check and metrics endpoints for service monitoring.

Provides:
- Comprehensive health status comparing enabled jobs with live encoders
- Simple alive check for monitoring systems
- Prometheus scrape endpoint

Health Status Levels:
    - healthy: Every enabled job has a live encoder (or none are enabled)
    - degraded: Some enabled jobs are not running (crashed, restarting)
    - unhealthy: Orchestrator not available

Logging Strategy:
    DEBUG - Health check calls
    WARN  - Degraded status with the affected jobs
    ERROR - Health check failures

Usage:
    >>> GET /health
    {
        "status": "degraded",
        "streams": [{"id": "studio-a", "name": "Studio A", "enabled": true, "running": false}],
        "metrics": {"total": 1, "enabled": 1, "running": 0},
        "errors": ["Studio A: enabled but not running"]
    }

    >>> GET /health/live
    {"status": "alive"}
"""
from fastapi import APIRouter, Response, status
from typing import Dict, Any, List, Literal
import logging

from ..metrics import get_metrics
from ..services import container

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

HealthStatus = Literal["healthy", "degraded", "unhealthy"]
LivenessStatus = Literal["alive"]


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(response: Response) -> Dict[str, Any]:
    """Compare enabled configurations against live encoder processes.

    Returns 503 with status "unhealthy" when the orchestrator was never
    initialized.
    """
    logger.debug("Processing health check")

    orchestrator = container.orchestrator
    if orchestrator is None:
        logger.error("Health check: orchestrator not initialized")
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "unhealthy", "streams": [], "metrics": {}}

    configs = await orchestrator.list_configs()
    errors: List[str] = []
    streams: List[Dict[str, Any]] = []

    for config in configs:
        running = orchestrator.is_running(config.id)
        streams.append({
            "id": config.id,
            "name": config.display_name,
            "enabled": config.enabled,
            "running": running,
        })
        if config.enabled and not running:
            errors.append(f"{config.display_name}: enabled but not running")

    overall: HealthStatus = "degraded" if errors else "healthy"
    result: Dict[str, Any] = {
        "status": overall,
        "streams": streams,
        "metrics": {
            "total": len(configs),
            "enabled": sum(1 for c in configs if c.enabled),
            "running": sum(1 for s in streams if s["running"]),
        },
    }

    if errors:
        result["errors"] = errors
        logger.warning(f"Health check: degraded - {len(errors)} job(s) not running")
        for error in errors:
            logger.warning(f"  - {error}")

    return result


@router.get("/health/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> Dict[str, LivenessStatus]:
    """Liveness check; does not look at jobs."""
    logger.debug("Liveness check called")
    return {"status": "alive"}


@router.get("/metrics")
async def metrics_endpoint() -> Response:
    """Prometheus text exposition."""
    body, status_code, headers = get_metrics()
    return Response(content=body, status_code=status_code, headers=headers)
