"""
Standardized Error Responses for the filing API.

Maps the filing portal error taxonomy onto HTTP status codes and a single
response shape.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from filing_portal.domain.exceptions import (
    FilingPortalError,
    RecordNotFoundError,
    SchemaError,
    TransitionError,
    TransportError,
)

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Machine-readable error codes."""
    NOT_FOUND = "NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    SCHEMA_ERROR = "SCHEMA_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_STATUS_MAP = {
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.INVALID_STATE: status.HTTP_409_CONFLICT,
    ErrorCode.SERVICE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.SCHEMA_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class StandardErrorResponse(BaseModel):
    """Error body returned by every filing endpoint."""
    success: bool = False
    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="User-friendly error message")
    retryable: bool = False
    details: Optional[Dict[str, Any]] = None
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())


def error_code_for(error: FilingPortalError) -> ErrorCode:
    if isinstance(error, RecordNotFoundError):
        return ErrorCode.NOT_FOUND
    if isinstance(error, TransitionError):
        return ErrorCode.INVALID_STATE
    if isinstance(error, TransportError):
        return ErrorCode.SERVICE_UNAVAILABLE
    if isinstance(error, SchemaError):
        return ErrorCode.SCHEMA_ERROR
    return ErrorCode.INTERNAL_ERROR


def create_error_response(error: FilingPortalError) -> JSONResponse:
    """Build the JSON response for a filing portal error."""
    code = error_code_for(error)
    details = error.to_dict()
    details.pop("message", None)
    details.pop("type", None)
    body = StandardErrorResponse(
        error_code=code.value,
        message=error.message,
        retryable=isinstance(error, TransportError),
        details=details or None,
    )
    return JSONResponse(status_code=ERROR_STATUS_MAP[code], content=body.model_dump())


def register_exception_handlers(app: FastAPI) -> None:
    """Install the handler converting FilingPortalError into responses."""

    @app.exception_handler(FilingPortalError)
    async def handle_portal_error(request: Request, exc: FilingPortalError) -> JSONResponse:
        if isinstance(exc, (TransportError, SchemaError)):
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")
        return create_error_response(exc)
