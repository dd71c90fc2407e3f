"""HTTP middleware and exception handlers."""

from __future__ import annotations

import time
import uuid

import structlog
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from wagateway.models import ApiResponse, ErrorDetail

logger = structlog.get_logger(__name__)

CODE_MAP = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "ALREADY_EXISTS",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
}


HEALTH_PATH = "/health"


async def request_logging_middleware(request: Request, call_next):
    """Log each request with a request id and, when present, its session id.

    Session routes take the session as the ``id`` query parameter, so it is
    bound before routing and every log line of the request carries it.
    """
    context = {
        "request_id": request.headers.get("x-request-id") or uuid.uuid4().hex,
        "method": request.method,
        "path": request.url.path,
    }
    session_id = request.query_params.get("id")
    if session_id:
        context["session_id"] = session_id
    structlog.contextvars.bind_contextvars(**context)
    # Health checks poll often; keep them out of the info stream.
    log = logger.debug if request.url.path == HEALTH_PATH else logger.info
    start_time = time.monotonic()
    try:
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("Request failed", duration_ms=_elapsed_ms(start_time))
            raise
        log(
            "Request completed",
            status_code=response.status_code,
            duration_ms=_elapsed_ms(start_time),
        )
        response.headers["X-Request-ID"] = context["request_id"]
        return response
    finally:
        structlog.contextvars.unbind_contextvars(*context)


def _elapsed_ms(start_time: float) -> float:
    return round((time.monotonic() - start_time) * 1000, 2)


def _envelope(status_code: int, code: str, message: str, details: object = None) -> JSONResponse:
    body = ApiResponse(
        success=False,
        message=message,
        error=ErrorDetail(code=code, message=message, details=details),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail)
    if exc.status_code == 404:
        message = "The requested url cannot be found."
    else:
        message = str(exc.detail)
    return _envelope(exc.status_code, CODE_MAP.get(exc.status_code, "INTERNAL_ERROR"), message)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # errors() may carry exception objects in "ctx"; keep it JSON-safe.
    details = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    return _envelope(422, "VALIDATION_ERROR", "Invalid request", details)
