"""Chat and message endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query

from wagateway import actions
from wagateway.actions import ActionError
from wagateway.api.deps import get_manager, require_session, require_token
from wagateway.api.errors import raise_http_error
from wagateway.api.schemas import (
    BulkMessageItem,
    DeleteMessageRequest,
    DownloadMediaRequest,
    ForwardMessageRequest,
    PresenceRequest,
    ReadMessagesRequest,
    SendMessageRequest,
)
from wagateway.jid import USER_SERVER, format_group, format_phone
from wagateway.manager import SessionHandle, SessionManager
from wagateway.models import ApiResponse

router = APIRouter(prefix="/chats", tags=["chats"], dependencies=[Depends(require_token)])
logger = structlog.get_logger(__name__)


def _receiver(receiver: str, is_group: bool) -> str:
    return format_group(receiver) if is_group else format_phone(receiver)


@router.get("", response_model=ApiResponse)
async def list_chats(handle: SessionHandle = Depends(require_session)) -> ApiResponse:
    """List one-to-one chats seen by the session."""
    return ApiResponse(success=True, data=handle.history.chat_list(f"@{USER_SERVER}"))


@router.get("/{jid}", response_model=ApiResponse)
async def get_messages(
    jid: str,
    limit: int = Query(25, ge=1, le=500),
    cursor_id: str | None = Query(None),
    handle: SessionHandle = Depends(require_session),
) -> ApiResponse:
    """Return cached messages of a chat, oldest first."""
    cursor = {"before": cursor_id} if cursor_id else None
    messages = handle.history.load_messages(format_phone(jid), limit, cursor)
    return ApiResponse(success=True, data=messages)


@router.post("/send", response_model=ApiResponse)
async def send(
    payload: SendMessageRequest,
    handle: SessionHandle = Depends(require_session),
    manager: SessionManager = Depends(get_manager),
) -> ApiResponse:
    receiver = _receiver(payload.receiver, payload.is_group)
    if not await actions.is_exists(handle.connection, receiver, payload.is_group):
        raise_http_error("BAD_REQUEST", "The receiver number is not exists.", 400)
    try:
        await actions.send_message(
            handle.connection, receiver, payload.message, 0, lid_map=manager.lid_map
        )
    except ActionError:
        raise_http_error("INTERNAL_ERROR", "Failed to send the message.", 500)
    return ApiResponse(success=True, message="The message has been successfully sent.")


@router.post("/send-bulk", response_model=ApiResponse)
async def send_bulk(
    payload: list[BulkMessageItem],
    handle: SessionHandle = Depends(require_session),
    manager: SessionManager = Depends(get_manager),
) -> ApiResponse:
    """Send messages one by one; failed entries are reported by index."""
    errors: list[int] = []
    for index, item in enumerate(payload):
        if not item.receiver or not item.message:
            errors.append(index)
            continue
        delay = item.delay if item.delay is not None else actions.DEFAULT_SEND_DELAY_MS
        receiver = format_phone(item.receiver)
        if not await actions.is_exists(handle.connection, receiver):
            errors.append(index)
            continue
        try:
            await actions.send_message(
                handle.connection, receiver, item.message, delay, lid_map=manager.lid_map
            )
        except ActionError:
            errors.append(index)

    if not errors:
        return ApiResponse(success=True, message="All messages has been successfully sent.")
    if len(errors) == len(payload):
        raise_http_error("INTERNAL_ERROR", "Failed to send all messages.", 500, {"errors": errors})
    logger.info("Bulk send partially failed", failed=len(errors), total=len(payload))
    return ApiResponse(
        success=True,
        message="Some messages has been successfully sent.",
        data={"errors": errors},
    )


@router.post("/delete", response_model=ApiResponse)
async def delete_message(
    payload: DeleteMessageRequest,
    handle: SessionHandle = Depends(require_session),
    manager: SessionManager = Depends(get_manager),
) -> ApiResponse:
    receiver = _receiver(payload.receiver, payload.is_group)
    try:
        await actions.send_message(
            handle.connection, receiver, {"delete": payload.message}, lid_map=manager.lid_map
        )
    except ActionError:
        raise_http_error("INTERNAL_ERROR", "Failed to delete message.", 500)
    return ApiResponse(success=True, message="Message has been successfully deleted.")


@router.post("/forward", response_model=ApiResponse)
async def forward(
    payload: ForwardMessageRequest,
    handle: SessionHandle = Depends(require_session),
    manager: SessionManager = Depends(get_manager),
) -> ApiResponse:
    """Forward a cached message to another chat."""
    receiver = _receiver(payload.receiver, payload.is_group)
    try:
        message = actions.get_store_message(
            handle.history, payload.forward.id, payload.forward.remote_jid
        )
        await actions.send_message(
            handle.connection, receiver, {"forward": message}, 0, lid_map=manager.lid_map
        )
    except ActionError:
        raise_http_error("INTERNAL_ERROR", "Failed to forward the message.", 500)
    return ApiResponse(success=True, message="The message has been successfully forwarded.")


@router.post("/read", response_model=ApiResponse)
async def read(
    payload: ReadMessagesRequest,
    handle: SessionHandle = Depends(require_session),
) -> ApiResponse:
    if not payload.keys[0].get("id"):
        raise_http_error("INTERNAL_ERROR", "Failed to mark the message as read.", 500)
    try:
        await actions.read_messages(handle.connection, payload.keys)
    except ActionError:
        raise_http_error("INTERNAL_ERROR", "Failed to mark the message as read.", 500)
    return ApiResponse(success=True, message="The message has been successfully marked as read.")


@router.post("/send-presence", response_model=ApiResponse)
async def send_presence(
    payload: PresenceRequest,
    handle: SessionHandle = Depends(require_session),
) -> ApiResponse:
    receiver = _receiver(payload.receiver, payload.is_group)
    try:
        await actions.send_presence(handle.connection, payload.presence, receiver)
    except ActionError:
        raise_http_error("INTERNAL_ERROR", "Failed to send presence.", 500)
    return ApiResponse(success=True, message="Presence has been successfully sent.")


@router.post("/download-media", response_model=ApiResponse)
async def download_media(
    payload: DownloadMediaRequest,
    handle: SessionHandle = Depends(require_session),
) -> ApiResponse:
    """Download the media of a cached message as base64."""
    try:
        message = actions.get_store_message(handle.history, payload.message_id, payload.remote_jid)
        media = await actions.get_message_media(handle.connection, message)
    except ActionError:
        raise_http_error("INTERNAL_ERROR", "Failed to download the media.", 500)
    return ApiResponse(success=True, data=media)
