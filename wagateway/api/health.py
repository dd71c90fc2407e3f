"""Health endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from wagateway import __version__
from wagateway.api.deps import get_manager
from wagateway.api.schemas import HealthResponse
from wagateway.manager import SessionManager

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health(manager: SessionManager = Depends(get_manager)) -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(ok=True, version=__version__, sessions=len(manager.registry))
