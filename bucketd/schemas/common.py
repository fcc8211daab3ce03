"""Common schemas used across routers."""

from __future__ import annotations

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Standard health check response."""

    status: str = "ok"


class ErrorResponse(BaseModel):
    code: str = "ERROR"
    message: str
