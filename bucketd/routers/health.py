"""Liveness endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from bucketd.schemas.common import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(status="ok")
