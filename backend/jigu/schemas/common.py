"""
Jigu Server: Shared API Schemas
===============================

What:  The uniform response envelope and the models shared by every router.
How:   Every endpoint answers with `{"code", "data", "message"}`. Successful
       calls carry code 2000; failures carry one of the ServiceCode values
       below plus the request id (see main.register_exception_handlers).
"""

from datetime import datetime
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ServiceCode:
    """Application-level status codes carried in the envelope `code` field."""

    OK = 2000
    BAD_REQUEST = 4000
    UNAUTHORIZED = 4001
    FORBIDDEN = 4003
    NOT_FOUND = 4004
    INTERNAL_SERVER_ERROR = 5000
    BAD_ENVIRONMENT = 5001
    UPSTREAM_ERROR = 5002
    SERVICE_UNAVAILABLE = 5003


class ApiResponse(BaseModel, Generic[T]):
    """Success envelope returned by every JSON endpoint."""

    code: int = Field(default=ServiceCode.OK, description="Service status code")
    data: Optional[T] = Field(default=None, description="Payload, null on failure")
    message: str = Field(default="Ok", description="Human-readable outcome")


def ok(data: Any = None, message: str = "Ok") -> dict:
    """Builds a success envelope as a plain dict (JSON-ready for FastAPI)."""
    return {"code": ServiceCode.OK, "data": data, "message": message}


class ErrorResponse(BaseModel):
    """
    Failure envelope produced by the global exception handlers.

    Example:
        {
            "code": 4004,
            "data": null,
            "message": "script with ID '665f...' was not found",
            "request_id": "a1b2c3d4"
        }
    """

    code: int = Field(description="Service status code")
    data: None = Field(default=None)
    message: str = Field(description="Human-readable error description")
    details: Optional[Any] = Field(default=None, description="Field errors for validation failures")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="healthy, unhealthy or shutting_down")
    version: str
    database: str = Field(description="connected or disconnected")
    lifecycle: str = Field(description="init, ready, draining or closed")
    pending_logs: int = Field(description="Log entries buffered or in flight")
    uptime_seconds: float
    checked_at: datetime
