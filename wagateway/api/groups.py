"""Group endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from wagateway import actions
from wagateway.actions import ActionError
from wagateway.api.deps import get_manager, require_session, require_token
from wagateway.api.errors import raise_http_error
from wagateway.api.schemas import (
    AcceptInviteRequest,
    GroupDescriptionRequest,
    GroupSendRequest,
    GroupSettingRequest,
    GroupSubjectRequest,
    ParticipantsUpdateRequest,
)
from wagateway.jid import format_group
from wagateway.manager import SessionHandle, SessionManager
from wagateway.models import ApiResponse

router = APIRouter(prefix="/groups", tags=["groups"], dependencies=[Depends(require_token)])

GROUP_MISSING = "The group is not exists."


async def _require_group(handle: SessionHandle, jid: str) -> None:
    if not await actions.is_exists(handle.connection, jid, True):
        raise_http_error("BAD_REQUEST", GROUP_MISSING, 400)


@router.get("", response_model=ApiResponse)
async def list_groups(handle: SessionHandle = Depends(require_session)) -> ApiResponse:
    """List groups the account participates in, with participants."""
    try:
        groups = await actions.get_groups_with_participants(handle.connection)
    except ActionError:
        raise_http_error("INTERNAL_ERROR", "Failed to list groups.", 500)
    return ApiResponse(success=True, data=groups)


@router.get("/meta/{jid}", response_model=ApiResponse)
async def group_metadata(jid: str, handle: SessionHandle = Depends(require_session)) -> ApiResponse:
    try:
        data = await actions.group_metadata(handle.connection, format_group(jid))
    except ActionError:
        raise_http_error("INTERNAL_ERROR", "Failed to get group metadata.", 500)
    if not (data or {}).get("id"):
        raise_http_error("BAD_REQUEST", GROUP_MISSING, 400)
    return ApiResponse(success=True, data=data)


@router.get("/code/{jid}", response_model=ApiResponse)
async def invite_code(jid: str, handle: SessionHandle = Depends(require_session)) -> ApiResponse:
    jid = format_group(jid)
    await _require_group(handle, jid)
    try:
        code = await actions.invite_code(handle.connection, jid)
    except ActionError:
        raise_http_error("INTERNAL_ERROR", "Failed invite code.", 500)
    return ApiResponse(success=True, message="Invite code successfully.", data=code)


@router.get("/revoke-code/{jid}", response_model=ApiResponse)
async def revoke_invite(jid: str, handle: SessionHandle = Depends(require_session)) -> ApiResponse:
    jid = format_group(jid)
    await _require_group(handle, jid)
    try:
        code = await actions.revoke_invite(handle.connection, jid)
    except ActionError:
        raise_http_error("INTERNAL_ERROR", "Failed to revoke invite code.", 500)
    return ApiResponse(success=True, message="Invite code revoked successfully.", data=code)


@router.get("/{jid}", response_model=ApiResponse)
async def get_messages(
    jid: str,
    limit: int = Query(25, ge=1, le=500),
    cursor_id: str | None = Query(None),
    handle: SessionHandle = Depends(require_session),
) -> ApiResponse:
    """Return cached messages of a group chat, oldest first."""
    cursor = {"before": cursor_id} if cursor_id else None
    return ApiResponse(success=True, data=handle.history.load_messages(format_group(jid), limit, cursor))


@router.post("/send", response_model=ApiResponse)
async def send(
    payload: GroupSendRequest,
    handle: SessionHandle = Depends(require_session),
    manager: SessionManager = Depends(get_manager),
) -> ApiResponse:
    receiver = format_group(payload.receiver)
    await _require_group(handle, receiver)
    try:
        await actions.send_message(handle.connection, receiver, payload.message, lid_map=manager.lid_map)
    except ActionError:
        raise_http_error("INTERNAL_ERROR", "Failed to send the message.", 500)
    return ApiResponse(success=True, message="The message has been successfully sent.")


@router.post("/leave/{jid}", response_model=ApiResponse)
async def leave(jid: str, handle: SessionHandle = Depends(require_session)) -> ApiResponse:
    jid = format_group(jid)
    await _require_group(handle, jid)
    try:
        await actions.leave(handle.connection, jid)
    except ActionError:
        raise_http_error("INTERNAL_ERROR", "Failed leave group.", 500)
    return ApiResponse(success=True, message="Leave group successfully.")


@router.post("/participants-update", response_model=ApiResponse)
async def participants_update(
    payload: ParticipantsUpdateRequest,
    handle: SessionHandle = Depends(require_session),
) -> ApiResponse:
    """Add, remove, promote or demote group participants."""
    jid = format_group(payload.group_id)
    await _require_group(handle, jid)
    try:
        result = await actions.participants_update(
            handle.connection, jid, payload.participants, payload.action
        )
    except ActionError:
        raise_http_error("INTERNAL_ERROR", "Failed to update participants.", 500)
    return ApiResponse(success=True, message="Participants updated successfully.", data=result)


@router.post("/update-subject", response_model=ApiResponse)
async def update_subject(
    payload: GroupSubjectRequest,
    handle: SessionHandle = Depends(require_session),
) -> ApiResponse:
    jid = format_group(payload.group_id)
    await _require_group(handle, jid)
    try:
        await actions.update_subject(handle.connection, jid, payload.subject)
    except ActionError:
        raise_http_error("INTERNAL_ERROR", "Failed to update subject.", 500)
    return ApiResponse(success=True, message="Subject updated successfully.")


@router.post("/update-description", response_model=ApiResponse)
async def update_description(
    payload: GroupDescriptionRequest,
    handle: SessionHandle = Depends(require_session),
) -> ApiResponse:
    jid = format_group(payload.group_id)
    await _require_group(handle, jid)
    try:
        await actions.update_description(handle.connection, jid, payload.description)
    except ActionError:
        raise_http_error("INTERNAL_ERROR", "Failed to update description.", 500)
    return ApiResponse(success=True, message="Description updated successfully.")


@router.post("/update-setting", response_model=ApiResponse)
async def update_setting(
    payload: GroupSettingRequest,
    handle: SessionHandle = Depends(require_session),
) -> ApiResponse:
    jid = format_group(payload.group_id)
    await _require_group(handle, jid)
    try:
        await actions.setting_update(handle.connection, jid, payload.setting)
    except ActionError:
        raise_http_error("INTERNAL_ERROR", "Failed to update setting.", 500)
    return ApiResponse(success=True, message="Setting updated successfully.")


@router.post("/accept-invite", response_model=ApiResponse)
async def accept_invite(
    payload: AcceptInviteRequest,
    handle: SessionHandle = Depends(require_session),
) -> ApiResponse:
    try:
        group_id = await actions.accept_invite(handle.connection, payload.invite)
    except ActionError:
        raise_http_error("INTERNAL_ERROR", "Failed to accept invite.", 500)
    return ApiResponse(success=True, message="Invite accepted successfully.", data=group_id)
