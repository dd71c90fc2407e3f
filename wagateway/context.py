"""Single-use reply channel between an HTTP request and a session lifecycle."""

from __future__ import annotations

import asyncio
from typing import Any

from wagateway.models import ApiResponse


class RequestContext:
    """Carries at most one response back to a waiting caller.

    The session lifecycle answers through ``succeed``/``fail`` from whichever
    event arrives first (QR challenge, pairing code, connection open or a
    terminal close). Later answers are ignored.
    """

    def __init__(self) -> None:
        self._future: asyncio.Future[tuple[int, ApiResponse]] = (
            asyncio.get_running_loop().create_future()
        )

    @property
    def responded(self) -> bool:
        return self._future.done()

    def respond(self, status_code: int, success: bool, message: str = "", data: Any = None) -> bool:
        """Deliver a response unless one was already sent. Returns True if delivered."""
        if self._future.done():
            return False
        self._future.set_result(
            (status_code, ApiResponse(success=success, message=message, data=data))
        )
        return True

    def succeed(self, message: str = "", data: Any = None) -> bool:
        return self.respond(200, True, message, data)

    def fail(self, message: str, status_code: int = 500, data: Any = None) -> bool:
        return self.respond(status_code, False, message, data)

    async def wait(self, timeout: float | None = None) -> tuple[int, ApiResponse]:
        """Wait for the response.

        Raises:
            asyncio.TimeoutError: Nothing was delivered within ``timeout`` seconds.
        """
        return await asyncio.wait_for(asyncio.shield(self._future), timeout=timeout)
