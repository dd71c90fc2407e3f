"""Engine adapter that delegates the WhatsApp protocol to a local sidecar service.

The sidecar owns the protocol library and exposes a small HTTP surface:

    POST /sessions/open              open a connection with the given credentials
    GET  /sessions/{id}/events       SSE stream of engine events
    GET  /sessions/{id}/status       point-in-time transport state
    POST /sessions/{id}/call         invoke a connection method
    POST /sessions/{id}/resolve      answer a ``message.resolve`` request
    POST /sessions/{id}/close        drop the connection without logging out
"""

from __future__ import annotations

import asyncio
import base64
import json
from collections.abc import AsyncIterator
from contextlib import suppress
from typing import Any

import httpx
import structlog

from wagateway.engine.base import (
    CredentialState,
    DisconnectReason,
    EngineError,
    EngineEvent,
    MessageResolver,
)
from wagateway.settings import settings

logger = structlog.get_logger(__name__)

STREAM_READ_TIMEOUT_SECONDS = 60.0


class SidecarEngine:
    """Opens sidecar-backed connections over a shared HTTP client."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url or settings.engine_url()
        token = settings.engine_token() if token is None else token
        headers = {"X-Sidecar-Token": token} if token else {}
        self.client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=httpx.Timeout(30.0),
            transport=transport,
        )

    async def open(
        self,
        session_id: str,
        credentials: CredentialState,
        get_message: MessageResolver,
    ) -> SidecarConnection:
        """Open a connection and start consuming its event stream.

        Args:
            session_id: Gateway session identifier.
            credentials: Stored authentication state (may be empty).
            get_message: Resolver used to answer message lookups from the engine.
        """
        data = await self.post_json(
            "/sessions/open",
            {"session_id": session_id, "creds": credentials.creds, "keys": credentials.keys},
        )
        registered = bool(data.get("registered", credentials.registered))
        connection = SidecarConnection(self, session_id, get_message, registered=registered)
        connection.start()
        logger.info("Engine connection opened", session_id=session_id, registered=registered)
        return connection

    async def aclose(self) -> None:
        await self.client.aclose()

    async def post_json(self, path: str, payload: dict) -> dict:
        """POST JSON to the sidecar and raise EngineError on failure.

        Args:
            path: Sidecar API path, e.g. "/sessions/open".
            payload: JSON body to send.
        """
        try:
            resp = await self.client.post(path, json=payload)
        except httpx.HTTPError as exc:
            raise EngineError(f"Engine request failed: {exc}") from exc
        if resp.status_code < 200 or resp.status_code >= 300:
            raise EngineError(f"Engine request failed: {resp.status_code} {resp.text}")
        if not resp.content:
            return {}
        body = resp.json()
        return body if isinstance(body, dict) else {"result": body}


class SidecarConnection:
    """Connection handle for one session hosted by the sidecar."""

    def __init__(
        self,
        engine: SidecarEngine,
        session_id: str,
        get_message: MessageResolver,
        *,
        registered: bool = False,
    ) -> None:
        self._engine = engine
        self.session_id = session_id
        self._get_message = get_message
        self._registered = registered
        self._queue: asyncio.Queue[EngineEvent | None] = asyncio.Queue()
        self._stream_task: asyncio.Task | None = None
        self._closing = False

    @property
    def registered(self) -> bool:
        return self._registered

    def start(self) -> None:
        """Begin reading the sidecar event stream for this session."""
        if self._stream_task is None:
            self._stream_task = asyncio.create_task(self._consume_stream())

    async def events(self) -> AsyncIterator[EngineEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def _consume_stream(self) -> None:
        """Read SSE lines and turn them into queued engine events."""
        path = f"/sessions/{self.session_id}/events"
        timeout = httpx.Timeout(10.0, read=STREAM_READ_TIMEOUT_SECONDS)
        try:
            async with self._engine.client.stream("GET", path, timeout=timeout) as resp:
                if resp.status_code != 200:
                    logger.error(
                        "Engine event stream refused",
                        session_id=self.session_id,
                        status=resp.status_code,
                    )
                    return
                async for line in resp.aiter_lines():
                    if not line.startswith("data: "):
                        continue
                    payload = line[len("data: "):].strip()
                    try:
                        event = json.loads(payload)
                    except json.JSONDecodeError as exc:
                        logger.warning(
                            "Failed to parse engine event",
                            session_id=self.session_id,
                            payload=payload[:200],
                            error=str(exc),
                        )
                        continue
                    if await self._handle_event(event):
                        return
        except httpx.HTTPError as exc:
            logger.warning("Engine event stream failed", session_id=self.session_id, error=str(exc))
        finally:
            if not self._closing:
                # The stream ended without a close event; report it as a lost
                # connection so the lifecycle takes the reconnect branch.
                self._queue.put_nowait(
                    EngineEvent(
                        "connection.update",
                        {
                            "connection": "close",
                            "lastDisconnect": {
                                "error": {
                                    "output": {"statusCode": int(DisconnectReason.CONNECTION_LOST)}
                                }
                            },
                        },
                    )
                )
            self._queue.put_nowait(None)

    async def _handle_event(self, event: dict) -> bool:
        """Route one sidecar event. Returns True once the connection closed.

        Args:
            event: Parsed event payload from the sidecar stream.
        """
        event_type = event.get("type")
        data = event.get("data")
        if not event_type:
            return False
        if event_type == "message.resolve":
            await self._answer_resolve(data or {})
            return False
        if event_type == "creds.update":
            creds = (data or {}).get("creds") or {}
            if "registered" in creds:
                self._registered = bool(creds["registered"])
        self._queue.put_nowait(EngineEvent(event_type, data))
        if event_type == "connection.update" and (data or {}).get("connection") == "close":
            # A close event is terminal for this connection; don't synthesize another.
            self._closing = True
            return True
        return False

    async def _answer_resolve(self, data: dict) -> None:
        request_id = data.get("request_id")
        try:
            message = await self._get_message(data.get("key") or {})
        except Exception:
            logger.exception("Message resolver failed", session_id=self.session_id)
            message = None
        try:
            await self._engine.post_json(
                f"/sessions/{self.session_id}/resolve",
                {"request_id": request_id, "message": message},
            )
        except EngineError as exc:
            logger.warning("Failed to answer message lookup", session_id=self.session_id, error=str(exc))

    async def call(self, method: str, **params: Any) -> Any:
        """Invoke a method on the sidecar-side connection and return its result."""
        data = await self._engine.post_json(
            f"/sessions/{self.session_id}/call",
            {"method": method, "params": params},
        )
        return data.get("result")

    async def is_open(self) -> bool:
        try:
            resp = await self._engine.client.get(f"/sessions/{self.session_id}/status")
        except httpx.HTTPError:
            return False
        if resp.status_code != 200:
            return False
        try:
            return bool(resp.json().get("open"))
        except (ValueError, AttributeError):
            logger.warning("Unexpected engine status body", session_id=self.session_id)
            return False

    async def request_pairing_code(self, phone_number: str) -> str:
        return await self.call("requestPairingCode", phoneNumber=phone_number)

    async def send_message(self, jid: str, content: dict) -> dict:
        return await self.call("sendMessage", jid=jid, content=content)

    async def on_whatsapp(self, jid: str) -> list[dict]:
        return await self.call("onWhatsApp", jid=jid) or []

    async def group_metadata(self, jid: str) -> dict:
        return await self.call("groupMetadata", jid=jid) or {}

    async def group_fetch_all_participating(self) -> dict:
        return await self.call("groupFetchAllParticipating") or {}

    async def group_participants_update(self, jid: str, participants: list[str], action: str) -> list[dict]:
        return await self.call("groupParticipantsUpdate", jid=jid, participants=participants, action=action) or []

    async def group_update_subject(self, jid: str, subject: str) -> None:
        await self.call("groupUpdateSubject", jid=jid, subject=subject)

    async def group_update_description(self, jid: str, description: str) -> None:
        await self.call("groupUpdateDescription", jid=jid, description=description)

    async def group_setting_update(self, jid: str, setting: str) -> None:
        await self.call("groupSettingUpdate", jid=jid, setting=setting)

    async def group_leave(self, jid: str) -> None:
        await self.call("groupLeave", jid=jid)

    async def group_invite_code(self, jid: str) -> str:
        return await self.call("groupInviteCode", jid=jid)

    async def group_revoke_invite(self, jid: str) -> str:
        return await self.call("groupRevokeInvite", jid=jid)

    async def group_accept_invite(self, code: str) -> str:
        return await self.call("groupAcceptInvite", code=code)

    async def update_profile_status(self, status: str) -> None:
        await self.call("updateProfileStatus", status=status)

    async def update_profile_name(self, name: str) -> None:
        await self.call("updateProfileName", name=name)

    async def update_profile_picture(self, jid: str, image: bytes) -> None:
        await self.call(
            "updateProfilePicture", jid=jid, image=base64.b64encode(image).decode("ascii")
        )

    async def profile_picture_url(self, jid: str, kind: str = "image") -> str | None:
        return await self.call("profilePictureUrl", jid=jid, type=kind)

    async def update_block_status(self, jid: str, action: str) -> None:
        await self.call("updateBlockStatus", jid=jid, action=action)

    async def read_messages(self, keys: list[dict]) -> None:
        await self.call("readMessages", keys=keys)

    async def send_presence_update(self, presence: str, jid: str) -> None:
        await self.call("sendPresenceUpdate", presence=presence, jid=jid)

    async def download_media(self, message: dict) -> bytes:
        encoded = await self.call("downloadMediaMessage", message=message)
        return base64.b64decode(encoded or "")

    async def aggregate_poll_votes(self, message: dict, poll_updates: list[dict]) -> list[dict]:
        return await self.call("getAggregateVotesInPollMessage", message=message, pollUpdates=poll_updates) or []

    async def logout(self) -> None:
        await self.call("logout")

    async def close(self) -> None:
        """Drop the connection without logging the device out."""
        self._closing = True
        try:
            await self._engine.post_json(f"/sessions/{self.session_id}/close", {})
        except EngineError as exc:
            logger.debug("Engine close failed", session_id=self.session_id, error=str(exc))
        task = self._stream_task
        self._stream_task = None
        if task and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
