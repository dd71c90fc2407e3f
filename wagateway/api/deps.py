"""Shared FastAPI dependencies."""

from __future__ import annotations

import structlog
from fastapi import Depends, Query, Request

from wagateway.api.errors import raise_http_error
from wagateway.manager import SessionHandle, SessionManager


async def require_token(request: Request) -> None:
    """Enforce bearer token auth when configured.

    Args:
        request: Incoming request to validate.
    """
    token = request.app.state.api_token
    if not token:
        return
    auth = request.headers.get("authorization")
    if not auth or not auth.lower().startswith("bearer ") or auth.split(" ", 1)[1] != token:
        # Drain request body to avoid hanging ASGI clients on early auth failure.
        await request.body()
        raise_http_error("UNAUTHORIZED", "Missing or invalid bearer token", 401)


def get_manager(request: Request) -> SessionManager:
    return request.app.state.manager


async def require_session(
    id: str = Query(..., min_length=1),
    manager: SessionManager = Depends(get_manager),
) -> SessionHandle:
    """Resolve the ``id`` query parameter to a live session."""
    handle = manager.get(id)
    if handle is None:
        raise_http_error("NOT_FOUND", "Session not found.", 404)
    structlog.contextvars.bind_contextvars(session_id=id)
    return handle
