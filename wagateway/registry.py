"""In-memory session registry and reconnect attempt tracking."""

from __future__ import annotations

from typing import Generic, TypeVar

import structlog

logger = structlog.get_logger(__name__)

HandleT = TypeVar("HandleT")

UNLIMITED_RETRIES = -1


class SessionRegistry(Generic[HandleT]):
    """Maps session ids to live session handles.

    The registry is the single source of truth for whether a session is
    active. All access happens on the event loop thread.
    """

    def __init__(self) -> None:
        self._handles: dict[str, HandleT] = {}

    def set(self, session_id: str, handle: HandleT) -> None:
        self._handles[session_id] = handle

    def get(self, session_id: str) -> HandleT | None:
        return self._handles.get(session_id)

    def has(self, session_id: str) -> bool:
        return session_id in self._handles

    def delete(self, session_id: str) -> HandleT | None:
        """Remove and return the handle for a session, if any."""
        return self._handles.pop(session_id, None)

    def list_ids(self) -> list[str]:
        return list(self._handles)

    def values(self) -> list[HandleT]:
        return list(self._handles.values())

    def __len__(self) -> int:
        return len(self._handles)


class RetryTracker:
    """Counts reconnect attempts per session.

    Counters only grow on recoverable disconnects and are cleared when a
    connection opens; they never decay with time.
    """

    def __init__(self, max_retries: int) -> None:
        self.max_retries = max_retries
        self._attempts: dict[str, int] = {}

    def should_reconnect(self, session_id: str) -> bool:
        """Consume one reconnect attempt if the budget allows it."""
        attempts = self._attempts.get(session_id, 0)
        if self.max_retries == UNLIMITED_RETRIES or attempts < self.max_retries:
            attempts += 1
            self._attempts[session_id] = attempts
            logger.info("Reconnecting", session_id=session_id, attempts=attempts)
            return True
        return False

    def attempts(self, session_id: str) -> int:
        return self._attempts.get(session_id, 0)

    def clear(self, session_id: str) -> None:
        self._attempts.pop(session_id, None)
