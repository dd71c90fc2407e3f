"""Outbound session actions used by the HTTP layer.

Engine failures are logged and re-raised as ``ActionError`` so the API can
answer with a failure envelope.
"""

from __future__ import annotations

import asyncio
import base64
from collections.abc import Awaitable
from typing import Any, TypeVar

import httpx
import structlog

from wagateway.engine.base import EngineConnection, EngineError
from wagateway.history import HistoryCache
from wagateway.jid import is_pn_user, jid_normalized_user

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_SEND_DELAY_MS = 1000
IMAGE_DOWNLOAD_TIMEOUT_SECONDS = 30.0


class ActionError(RuntimeError):
    """Raised when an outbound session action fails."""


async def _engine_call(action: str, awaitable: Awaitable[T]) -> T:
    try:
        return await awaitable
    except EngineError as exc:
        logger.warning("Engine action failed", action=action, error=str(exc))
        raise ActionError(action) from exc


async def is_exists(connection: EngineConnection, jid: str, is_group: bool = False) -> Any:
    """Check that a user or group exists.

    Any engine failure counts as "does not exist".

    Returns:
        For groups, a bool. For users, the engine's lookup result or False.
    """
    try:
        if is_group:
            metadata = await connection.group_metadata(jid)
            return bool((metadata or {}).get("id"))
        results = await connection.on_whatsapp(jid)
    except EngineError as exc:
        logger.info("Existence check failed; treating as missing", jid=jid, error=str(exc))
        return False
    return results[0] if results else False


async def send_message(
    connection: EngineConnection,
    receiver: str,
    message: dict,
    delay_ms: int = DEFAULT_SEND_DELAY_MS,
    *,
    lid_map: dict[str, str] | None = None,
) -> dict:
    """Send a message after ``delay_ms``.

    Phone-number JIDs are normalized; LIDs are mapped to their phone-number
    JID when the mapping is known.
    """
    if delay_ms > 0:
        await asyncio.sleep(delay_ms / 1000)
    if is_pn_user(receiver):
        to = jid_normalized_user(receiver)
    else:
        to = (lid_map or {}).get(receiver, receiver)
    return await _engine_call("send_message", connection.send_message(to, message))


async def update_profile_status(connection: EngineConnection, status: str) -> None:
    await _engine_call("update_profile_status", connection.update_profile_status(status))


async def update_profile_name(connection: EngineConnection, name: str) -> None:
    await _engine_call("update_profile_name", connection.update_profile_name(name))


async def get_profile_picture(connection: EngineConnection, jid: str, kind: str = "image") -> str | None:
    return await _engine_call("profile_picture_url", connection.profile_picture_url(jid, kind))


async def block_and_unblock_user(connection: EngineConnection, jid: str, action: str) -> None:
    await _engine_call("update_block_status", connection.update_block_status(jid, action))


async def download_image(url: str, *, transport: httpx.AsyncBaseTransport | None = None) -> bytes:
    """Fetch an image to use as a profile picture."""
    try:
        async with httpx.AsyncClient(
            timeout=IMAGE_DOWNLOAD_TIMEOUT_SECONDS, follow_redirects=True, transport=transport
        ) as client:
            resp = await client.get(url)
            resp.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("Image download failed", url=url, error=str(exc))
        raise ActionError("download_image") from exc
    return resp.content


async def update_profile_picture(
    connection: EngineConnection,
    jid: str,
    url: str,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    image = await download_image(url, transport=transport)
    await _engine_call("update_profile_picture", connection.update_profile_picture(jid, image))


async def get_groups_with_participants(connection: EngineConnection) -> dict:
    return await _engine_call("group_fetch_all_participating", connection.group_fetch_all_participating())


async def group_metadata(connection: EngineConnection, jid: str) -> dict:
    return await _engine_call("group_metadata", connection.group_metadata(jid))


async def participants_update(
    connection: EngineConnection, jid: str, participants: list[str], action: str
) -> list[dict]:
    return await _engine_call(
        "group_participants_update", connection.group_participants_update(jid, participants, action)
    )


async def update_subject(connection: EngineConnection, jid: str, subject: str) -> None:
    await _engine_call("group_update_subject", connection.group_update_subject(jid, subject))


async def update_description(connection: EngineConnection, jid: str, description: str) -> None:
    await _engine_call("group_update_description", connection.group_update_description(jid, description))


async def setting_update(connection: EngineConnection, jid: str, setting: str) -> None:
    await _engine_call("group_setting_update", connection.group_setting_update(jid, setting))


async def leave(connection: EngineConnection, jid: str) -> None:
    await _engine_call("group_leave", connection.group_leave(jid))


async def invite_code(connection: EngineConnection, jid: str) -> str:
    return await _engine_call("group_invite_code", connection.group_invite_code(jid))


async def revoke_invite(connection: EngineConnection, jid: str) -> str:
    return await _engine_call("group_revoke_invite", connection.group_revoke_invite(jid))


async def accept_invite(connection: EngineConnection, code: str) -> str:
    return await _engine_call("group_accept_invite", connection.group_accept_invite(code))


async def read_messages(connection: EngineConnection, keys: list[dict]) -> None:
    await _engine_call("read_messages", connection.read_messages(keys))


async def send_presence(connection: EngineConnection, presence: str, jid: str) -> None:
    await _engine_call("send_presence_update", connection.send_presence_update(presence, jid))


def get_store_message(history: HistoryCache, message_id: str, remote_jid: str) -> dict:
    """Look up a cached message.

    Raises:
        ActionError: The message is not in the history cache.
    """
    message = history.load_message(remote_jid, message_id)
    if message is None:
        raise ActionError("get_store_message")
    return message


async def get_message_media(connection: EngineConnection, message: dict) -> dict:
    """Download a media message and describe it."""
    content = message.get("message") or {}
    if not content:
        raise ActionError("get_message_media")
    message_type = next(iter(content))
    media = content[message_type] or {}
    raw = await _engine_call("download_media", connection.download_media(message))
    return {
        "messageType": message_type,
        "fileName": media.get("fileName", ""),
        "caption": media.get("caption", ""),
        "size": {
            "fileLength": media.get("fileLength"),
            "height": media.get("height", 0),
            "width": media.get("width", 0),
        },
        "mimetype": media.get("mimetype"),
        "base64": base64.b64encode(raw).decode("ascii"),
    }
