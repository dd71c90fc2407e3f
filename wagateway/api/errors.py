"""Helpers for consistent API error responses."""

from __future__ import annotations

from fastapi import HTTPException

from wagateway.models import ApiResponse, ErrorDetail


def raise_http_error(code: str, message: str, status_code: int, details: object = None) -> None:
    """Raise an HTTPException carrying a failure envelope.

    Args:
        code: Stable error code string.
        message: Human-readable error message.
        status_code: HTTP status to return.
        details: Optional structured data returned alongside the error.
    """
    raise HTTPException(
        status_code=status_code,
        detail=ApiResponse(
            success=False,
            message=message,
            data=details,
            error=ErrorDetail(code=code, message=message, details=details),
        ).model_dump(),
    )
