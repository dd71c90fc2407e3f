"""Utility endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from wagateway import actions
from wagateway.api.deps import require_session, require_token
from wagateway.jid import format_phone
from wagateway.manager import SessionHandle
from wagateway.models import ApiResponse

router = APIRouter(prefix="/tools", tags=["tools"], dependencies=[Depends(require_token)])


@router.get("/exist", response_model=ApiResponse)
async def exist(
    mobile: str = Query(..., min_length=1),
    handle: SessionHandle = Depends(require_session),
) -> ApiResponse:
    """Check whether a phone number has a WhatsApp account."""
    result = await actions.is_exists(handle.connection, format_phone(mobile))
    return ApiResponse(success=True, data=result)
