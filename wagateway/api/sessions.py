"""Session lifecycle endpoints."""

from __future__ import annotations

import asyncio

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from wagateway.api.deps import get_manager, require_token
from wagateway.api.errors import raise_http_error
from wagateway.api.schemas import CreateSessionRequest
from wagateway.context import RequestContext
from wagateway.manager import CREATE_FAILED, SessionManager
from wagateway.models import ApiResponse, SessionState
from wagateway.settings import settings

router = APIRouter(prefix="/sessions", tags=["sessions"], dependencies=[Depends(require_token)])
logger = structlog.get_logger(__name__)

CONNECTING_STATES = (SessionState.INITIALIZING, SessionState.PAIRING, SessionState.RECONNECTING)


@router.post("/add", response_model=ApiResponse)
async def add_session(
    payload: CreateSessionRequest,
    manager: SessionManager = Depends(get_manager),
) -> JSONResponse:
    """Create a session and answer with its QR code, pairing code or connection."""
    if manager.is_registered(payload.id):
        raise_http_error("ALREADY_EXISTS", "Session already exists, please use another id.", 409)
    logger.info(
        "Create session requested",
        session_id=payload.id,
        use_pairing_code=payload.use_pairing_code,
    )
    context = RequestContext()
    manager.start_create(
        payload.id,
        context,
        use_pairing_code=payload.use_pairing_code,
        phone_number=payload.phone_number,
    )
    try:
        status_code, body = await context.wait(timeout=settings.create_timeout_seconds())
    except asyncio.TimeoutError:
        logger.warning("Create session timed out", session_id=payload.id)
        context.fail(CREATE_FAILED)
        raise_http_error("INTERNAL_ERROR", CREATE_FAILED, 500)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@router.get("/list", response_model=ApiResponse)
async def list_sessions(manager: SessionManager = Depends(get_manager)) -> ApiResponse:
    """List ids of sessions in the registry."""
    return ApiResponse(success=True, data=manager.list())


@router.get("/find/{session_id}", response_model=ApiResponse)
async def find_session(
    session_id: str,
    manager: SessionManager = Depends(get_manager),
) -> ApiResponse:
    if not manager.is_registered(session_id):
        raise_http_error("NOT_FOUND", "Session not found.", 404)
    return ApiResponse(success=True, message="Session found.")


@router.get("/status/{session_id}", response_model=ApiResponse)
async def session_status(
    session_id: str,
    manager: SessionManager = Depends(get_manager),
) -> ApiResponse:
    """Report connected, connecting or disconnected."""
    handle = manager.get(session_id)
    if handle is None:
        raise_http_error("NOT_FOUND", "Session not found.", 404)
    if await manager.is_connected(session_id):
        status = "connected"
    elif handle.state in CONNECTING_STATES:
        status = "connecting"
    else:
        status = "disconnected"
    return ApiResponse(success=True, data={"status": status, "state": handle.state.value})


@router.delete("/delete/{session_id}", response_model=ApiResponse)
async def delete_session(
    session_id: str,
    manager: SessionManager = Depends(get_manager),
) -> ApiResponse:
    """Log the device out and remove the session."""
    if not manager.is_registered(session_id):
        raise_http_error("NOT_FOUND", "Session not found.", 404)
    try:
        await manager.logout(session_id)
    except OSError:
        logger.exception("Failed to delete session", session_id=session_id)
        raise_http_error("INTERNAL_ERROR", "Unable to delete session.", 500)
    return ApiResponse(success=True, message="The session has been successfully deleted.")
