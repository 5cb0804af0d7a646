"""Service container for singleton instances.

Holds the global StreamOrchestrator and DeviceDiscovery to break circular
import dependencies.
Pattern: main.py initializes the services → container stores them → API imports them

Critical Design Note:
    Every API request must reach the SAME orchestrator, because the process
    registry lives inside it. A second instance would report every job as
    stopped and could spawn a duplicate encoder for a job that is running.

Logging Strategy:
    DEBUG - Dependency injection
    ERROR - Orchestrator not initialized (critical failure)
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .device_discovery import DeviceDiscovery
    from .orchestrator import StreamOrchestrator

logger = logging.getLogger(__name__)

# ============================================================================
# Global Singleton Instance
# ============================================================================

orchestrator: StreamOrchestrator | None = None
"""Global StreamOrchestrator singleton initialized during app startup."""

device_discovery: DeviceDiscovery | None = None
"""Encoder-backed device queries, initialized during app startup."""


# ============================================================================
# Dependency Injection
# ============================================================================

def get_orchestrator() -> StreamOrchestrator:
    """Get the global StreamOrchestrator for dependency injection.

    Returns:
        Global StreamOrchestrator instance

    Raises:
        RuntimeError: If called before app startup

    Example:
        >>> @router.get("/streams")
        >>> async def list_streams(
        ...     orchestrator: StreamOrchestrator = Depends(get_orchestrator)
        ... ):
        ...     return orchestrator.get_all_statuses()
    """
    if orchestrator is None:
        logger.error("StreamOrchestrator dependency requested before initialization")
        raise RuntimeError(
            "StreamOrchestrator not initialized. "
            "Application startup may have failed."
        )

    logger.debug("Injecting StreamOrchestrator singleton")
    return orchestrator


def get_device_discovery() -> DeviceDiscovery:
    """Get the global DeviceDiscovery for dependency injection.

    Raises:
        RuntimeError: If called before app startup
    """
    if device_discovery is None:
        logger.error("DeviceDiscovery dependency requested before initialization")
        raise RuntimeError("DeviceDiscovery not initialized.")
    return device_discovery
