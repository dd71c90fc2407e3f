"""Profile and contact endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from wagateway import actions
from wagateway.actions import ActionError
from wagateway.api.deps import require_session, require_token
from wagateway.api.errors import raise_http_error
from wagateway.api.schemas import (
    BlockRequest,
    ProfileNameRequest,
    ProfilePictureRequest,
    ProfileStatusRequest,
)
from wagateway.jid import format_phone
from wagateway.manager import SessionHandle
from wagateway.models import ApiResponse

router = APIRouter(prefix="/misc", tags=["misc"], dependencies=[Depends(require_token)])


@router.post("/update-profile-status", response_model=ApiResponse)
async def update_profile_status(
    payload: ProfileStatusRequest,
    handle: SessionHandle = Depends(require_session),
) -> ApiResponse:
    try:
        await actions.update_profile_status(handle.connection, payload.status)
    except ActionError:
        raise_http_error("INTERNAL_ERROR", "Failed to update status", 500)
    return ApiResponse(success=True, message="The status has been updated successfully")


@router.post("/update-profile-name", response_model=ApiResponse)
async def update_profile_name(
    payload: ProfileNameRequest,
    handle: SessionHandle = Depends(require_session),
) -> ApiResponse:
    try:
        await actions.update_profile_name(handle.connection, payload.name)
    except ActionError:
        raise_http_error("INTERNAL_ERROR", "Failed to update name", 500)
    return ApiResponse(success=True, message="The name has been updated successfully")


@router.post("/update-profile-picture", response_model=ApiResponse)
async def update_profile_picture(
    payload: ProfilePictureRequest,
    handle: SessionHandle = Depends(require_session),
) -> ApiResponse:
    """Download ``url`` and set it as the profile picture of ``jid``."""
    jid = format_phone(payload.jid)
    try:
        await actions.update_profile_picture(handle.connection, jid, payload.url)
    except ActionError:
        raise_http_error("INTERNAL_ERROR", "Failed to update profile picture", 500)
    return ApiResponse(success=True, message="Update profile picture successfully.")


@router.get("/profile-picture", response_model=ApiResponse)
async def profile_picture(
    jid: str = Query(..., min_length=1),
    handle: SessionHandle = Depends(require_session),
) -> ApiResponse:
    try:
        url = await actions.get_profile_picture(handle.connection, format_phone(jid))
    except ActionError:
        raise_http_error("INTERNAL_ERROR", "Failed to get profile picture", 500)
    return ApiResponse(success=True, data={"url": url})


@router.post("/block", response_model=ApiResponse)
async def block(
    payload: BlockRequest,
    handle: SessionHandle = Depends(require_session),
) -> ApiResponse:
    action = "block" if payload.is_block else "unblock"
    try:
        await actions.block_and_unblock_user(handle.connection, format_phone(payload.jid), action)
    except ActionError:
        raise_http_error("INTERNAL_ERROR", f"Failed to {action} user", 500)
    return ApiResponse(success=True, message=f"The user has been {action}ed successfully")

