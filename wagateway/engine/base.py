"""Protocol definitions for the WhatsApp protocol engine and its connections."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Protocol

# Looks up a previously seen message by its key; returns the message content.
MessageResolver = Callable[[dict], Awaitable[dict | None]]


class EngineError(RuntimeError):
    """Raised when the protocol engine rejects or fails a call."""


class DisconnectReason(IntEnum):
    """Close codes reported in ``lastDisconnect`` of a connection update."""
    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503


class MessageStatus(IntEnum):
    """Delivery status values attached to messages and updates."""
    ERROR = 0
    PENDING = 1
    SERVER_ACK = 2
    DELIVERY_ACK = 3
    READ = 4
    PLAYED = 5


@dataclass
class EngineEvent:
    """A single notification emitted by an engine connection.

    ``name`` uses the engine's dotted vocabulary (``connection.update``,
    ``messages.upsert``, ...); ``data`` is the event-specific payload.
    """

    name: str
    data: Any = None


@dataclass
class CredentialState:
    """Authentication material for one session."""

    creds: dict = field(default_factory=dict)
    keys: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def registered(self) -> bool:
        return bool(self.creds.get("registered"))


def disconnect_status_code(update: dict) -> int | None:
    """Extract the close code from a ``connection.update`` payload."""
    last = update.get("lastDisconnect") or {}
    error = last.get("error") or {}
    output = error.get("output") or {}
    code = output.get("statusCode", last.get("statusCode"))
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


class EngineConnection(Protocol):
    """One live protocol connection for a session."""

    session_id: str

    @property
    def registered(self) -> bool:
        """Whether the credentials are already paired with a device."""
        ...

    def events(self) -> AsyncIterator[EngineEvent]:
        """Yield events in emission order until the connection is gone."""
        ...

    async def is_open(self) -> bool:
        """Ask the transport whether it is open right now."""
        ...

    async def request_pairing_code(self, phone_number: str) -> str: ...

    async def send_message(self, jid: str, content: dict) -> dict: ...

    async def on_whatsapp(self, jid: str) -> list[dict]: ...

    async def group_metadata(self, jid: str) -> dict: ...

    async def group_fetch_all_participating(self) -> dict: ...

    async def group_participants_update(self, jid: str, participants: list[str], action: str) -> list[dict]: ...

    async def group_update_subject(self, jid: str, subject: str) -> None: ...

    async def group_update_description(self, jid: str, description: str) -> None: ...

    async def group_setting_update(self, jid: str, setting: str) -> None: ...

    async def group_leave(self, jid: str) -> None: ...

    async def group_invite_code(self, jid: str) -> str: ...

    async def group_revoke_invite(self, jid: str) -> str: ...

    async def group_accept_invite(self, code: str) -> str: ...

    async def update_profile_status(self, status: str) -> None: ...

    async def update_profile_name(self, name: str) -> None: ...

    async def update_profile_picture(self, jid: str, image: bytes) -> None: ...

    async def profile_picture_url(self, jid: str, kind: str = "image") -> str | None: ...

    async def update_block_status(self, jid: str, action: str) -> None: ...

    async def read_messages(self, keys: list[dict]) -> None: ...

    async def send_presence_update(self, presence: str, jid: str) -> None: ...

    async def download_media(self, message: dict) -> bytes: ...

    async def aggregate_poll_votes(self, message: dict, poll_updates: list[dict]) -> list[dict]: ...

    async def logout(self) -> None: ...

    async def close(self) -> None: ...


class ProtocolEngine(Protocol):
    """Factory for engine connections."""

    async def open(
        self,
        session_id: str,
        credentials: CredentialState,
        get_message: MessageResolver,
    ) -> EngineConnection: ...

    async def aclose(self) -> None: ...
