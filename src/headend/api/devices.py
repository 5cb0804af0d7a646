"""REST API endpoints for capture device discovery.

Routes (mounted under /api/devices):
    GET  ""                        Capture devices of this host
    GET  "/{device:path}/options"  Capture modes of one device
    POST "/test"                   Availability check for an input_device value

Device paths contain slashes on Linux, so clients percent-encode them
(/api/devices/%2Fdev%2Fvideo0/options); the options route takes the rest of
the decoded path up to '/options'.

Logging Strategy:
    DEBUG - Query results
    INFO  - Device list and test requests
    WARN  - Failed queries
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from ..exceptions import DeviceQueryError
from ..models.device import CaptureDevice, DeviceOptions, DeviceTestRequest, DeviceTestResult
from ..services import container
from ..services.device_discovery import DeviceDiscovery
from .errors import raise_device_query_failed, raise_service_unavailable

logger = logging.getLogger(__name__)

router = APIRouter(tags=["devices"])


def require_device_discovery() -> DeviceDiscovery:
    try:
        return container.get_device_discovery()
    except RuntimeError as e:
        raise_service_unavailable(str(e))


@router.get("")
async def list_devices(
    discovery: DeviceDiscovery = Depends(require_device_discovery)
) -> list[CaptureDevice]:
    """List capture devices the encoder can see."""
    logger.info("Listing capture devices")
    try:
        return await discovery.list_devices()
    except DeviceQueryError as e:
        logger.warning(f"Device listing failed: {e.reason}")
        raise_device_query_failed(e.device, e.reason)


@router.get("/{device:path}/options")
async def get_device_options(
    device: str,
    discovery: DeviceDiscovery = Depends(require_device_discovery)
) -> DeviceOptions:
    """Capture modes (format, resolution, frame rate) of one device."""
    try:
        return await discovery.get_device_options(device)
    except DeviceQueryError as e:
        logger.warning(f"Option query failed for {device}: {e.reason}")
        raise_device_query_failed(e.device, e.reason)


@router.post("/test")
async def test_device(
    request: DeviceTestRequest,
    discovery: DeviceDiscovery = Depends(require_device_discovery)
) -> DeviceTestResult:
    """Check whether an input_device value can be opened."""
    logger.info(f"Testing device: {request.device_path}")
    available = await discovery.test_device(request.device_path)
    return DeviceTestResult(device_path=request.device_path, available=available)
