"""Standardized error handling and response schemas for REST API.

This module provides consistent error handling across all API endpoints with:
- Standardized error response format
- Type-safe error codes (Enum)
- Convenient error raiser functions
- Global exception handlers for FastAPI
- Request validation error formatting

Error Response Format:
    All errors return JSON with this structure:
    {
        "code": "CONFIG_NOT_FOUND",
        "message": "Human-readable description",
        "details": {"additional": "context"}
    }

Error Categories:
    - Resource errors: CONFIG_NOT_FOUND
    - Validation errors: VALIDATION_ERROR
    - Operation errors: STREAM_NOT_RUNNING, PROCESS_START_FAILED,
      DEVICE_QUERY_FAILED
    - System errors: INTERNAL_ERROR, SERVICE_UNAVAILABLE

Logging Strategy:
    DEBUG - Error creation, response formatting
    INFO  - Client errors (4xx)
    WARN  - Validation errors, unavailable service
    ERROR - Server errors (5xx), unexpected exceptions

Usage:
    >>> raise_config_not_found(job_id)
    >>> raise_process_start_failed(job_id, "No such file or directory")
"""
from __future__ import annotations

from enum import Enum
from typing import Any, NoReturn, Optional
import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field

from ..middleware.request_id import get_request_id

logger = logging.getLogger(__name__)

# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standardized error response schema for all API errors.

    Attributes:
        code: Machine-readable error code (from ErrorCode enum)
        message: Human-readable error message for display
        details: Optional additional context
    """

    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[dict[str, Any]] = Field(None, description="Additional error details")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "code": "CONFIG_NOT_FOUND",
                    "message": "Configuration studio-a not found",
                    "details": {"job_id": "studio-a"}
                }
            ]
        }
    }


# ============================================================================
# Error Codes Enum
# ============================================================================

class ErrorCode(str, Enum):
    """Standardized error codes for the API."""

    # Resource errors (404)
    CONFIG_NOT_FOUND = "CONFIG_NOT_FOUND"

    # Validation errors (422)
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Operation errors (404, 500)
    STREAM_NOT_RUNNING = "STREAM_NOT_RUNNING"
    PROCESS_START_FAILED = "PROCESS_START_FAILED"
    DEVICE_QUERY_FAILED = "DEVICE_QUERY_FAILED"

    # System errors (500, 503)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


# ============================================================================
# Error Response Factory
# ============================================================================

def create_error_response(
    code: ErrorCode | str,
    message: str,
    details: Optional[dict[str, Any]] = None
) -> ErrorResponse:
    """Create a standardized error response.

    Args:
        code: Error code (ErrorCode enum or string)
        message: Human-readable error message
        details: Optional additional error context

    Returns:
        Structured ErrorResponse object
    """
    if isinstance(code, ErrorCode):
        code_str = code.value
    else:
        code_str = code

    logger.debug(f"Creating error response: code={code_str}, message={message}")

    return ErrorResponse(code=code_str, message=message, details=details)


# ============================================================================
# Specialized Error Raisers
# ============================================================================

def raise_config_not_found(job_id: str) -> NoReturn:
    """Raise a standardized 404 for an unknown job id."""
    logger.debug(f"Configuration not found: {job_id}")

    error = create_error_response(
        code=ErrorCode.CONFIG_NOT_FOUND,
        message=f"Configuration {job_id} not found",
        details={"job_id": job_id}
    )
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=error.model_dump()
    )


def raise_stream_not_running(job_id: str) -> NoReturn:
    """Raise a standardized 404 when no encoder process is registered."""
    logger.debug(f"Stream not running: {job_id}")

    error = create_error_response(
        code=ErrorCode.STREAM_NOT_RUNNING,
        message=f"Stream {job_id} is not running",
        details={"job_id": job_id}
    )
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=error.model_dump()
    )


def raise_process_start_failed(job_id: str, reason: str) -> NoReturn:
    """Raise a standardized 500 when the encoder could not be spawned.

    Args:
        job_id: Job identifier
        reason: OS error text
    """
    error = create_error_response(
        code=ErrorCode.PROCESS_START_FAILED,
        message=f"Failed to start encoder for {job_id}",
        details={"job_id": job_id, "reason": reason}
    )
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=error.model_dump()
    )


def raise_device_query_failed(device: str, reason: str) -> NoReturn:
    """Raise a standardized 500 when the encoder could not query a device."""
    error = create_error_response(
        code=ErrorCode.DEVICE_QUERY_FAILED,
        message=f"Could not query capture device {device}",
        details={"device": device, "reason": reason}
    )
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=error.model_dump()
    )


def raise_service_unavailable(
    message: str = "Service temporarily unavailable",
    details: Optional[dict[str, Any]] = None
) -> NoReturn:
    """Raise a standardized 503 service unavailable error.

    Used when the orchestrator is not initialized.
    """
    logger.warning(f"Service unavailable: {message}, details={details}")

    error = create_error_response(
        code=ErrorCode.SERVICE_UNAVAILABLE,
        message=message,
        details=details
    )
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=error.model_dump()
    )


# ============================================================================
# Global Exception Handlers
# ============================================================================

async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors with standardized format.

    Returns:
        JSONResponse with standardized error format (422 status)
    """
    error_count = len(exc.errors())
    logger.warning(
        f"Validation failed: {request.method} {request.url.path} "
        f"({error_count} error(s))"
    )
    logger.debug(f"Validation errors: {exc.errors()}")

    error = create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        details={"errors": jsonable_encoder(exc.errors())}
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error.model_dump()
    )


async def http_exception_handler(
    request: Request,
    exc: HTTPException
) -> JSONResponse:
    """Handle HTTPException with standardized format.

    Passes pre-formatted details through, wraps everything else.
    """
    if exc.status_code >= 500:
        logger.error(
            f"Server error: {request.method} {request.url.path} "
            f"-> {exc.status_code}: {exc.detail}"
        )
    else:
        logger.info(
            f"Client error: {request.method} {request.url.path} "
            f"-> {exc.status_code}: {exc.detail}"
        )

    if isinstance(exc.detail, dict) and "code" in exc.detail:
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.detail
        )

    error = create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message=str(exc.detail) if exc.detail else "An error occurred"
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=error.model_dump()
    )


async def general_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle unexpected exceptions with a generic 500.

    Logs the full stack trace but returns a generic message so internal
    details do not leak to clients.
    """
    logger.error(
        f"Unhandled exception: {request.method} {request.url.path} "
        f"-> {type(exc).__name__}: {str(exc)}",
        exc_info=exc
    )

    error = create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An internal server error occurred",
        details={"request_id": get_request_id(request)}
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error.model_dump()
    )


# ============================================================================
# Convenience Functions
# ============================================================================

def is_error_response(data: Any) -> bool:
    """Check if a response body has the standardized error shape.

    Example:
        >>> is_error_response({"code": "CONFIG_NOT_FOUND", "message": "..."})
        True
    """
    return (
        isinstance(data, dict)
        and "code" in data
        and "message" in data
    )
