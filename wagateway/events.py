"""Translation of engine events into webhook event types and payloads."""

from __future__ import annotations

import base64
from typing import Any

import structlog

from wagateway.engine.base import EngineConnection, MessageResolver, MessageStatus
from wagateway.jid import jid_normalized_user, resolve_canonical_jid

logger = structlog.get_logger(__name__)

EVENT_TYPES: dict[str, str] = {
    "chats.set": "CHATS_SET",
    "chats.upsert": "CHATS_UPSERT",
    "chats.update": "CHATS_UPDATE",
    "chats.delete": "CHATS_DELETE",
    "labels.association": "LABELS_ASSOCIATION",
    "labels.edit": "LABELS_EDIT",
    "messages.upsert": "MESSAGES_UPSERT",
    "messages.update": "MESSAGES_UPDATE",
    "messages.delete": "MESSAGES_DELETE",
    "message-receipt.update": "MESSAGES_RECEIPT_UPDATE",
    "messages.reaction": "MESSAGES_REACTION",
    "messages.media-update": "MESSAGES_MEDIA_UPDATE",
    "messaging-history.set": "MESSAGING_HISTORY_SET",
    "connection.update": "CONNECTION_UPDATE",
    "groups.upsert": "GROUPS_UPSERT",
    "groups.update": "GROUPS_UPDATE",
    "group-participants.update": "GROUP_PARTICIPANTS_UPDATE",
    "blocklist.set": "BLOCKLIST_SET",
    "blocklist.update": "BLOCKLIST_UPDATE",
    "contacts.set": "CONTACTS_SET",
    "contacts.upsert": "CONTACTS_UPSERT",
    "contacts.update": "CONTACTS_UPDATE",
    "presence.update": "PRESENCE_UPDATE",
    "lid-mapping.update": "LID_MAPPING_UPDATE",
}

QRCODE_UPDATED = "QRCODE_UPDATED"

MEDIA_MESSAGE_KINDS = ("documentMessage", "imageMessage", "videoMessage", "audioMessage")
BINARY_MEDIA_FIELDS = (
    "fileEncSha256",
    "mediaKey",
    "fileSha256",
    "jpegThumbnail",
    "thumbnailSha256",
    "thumbnailEncSha256",
    "streamingSidecar",
)


def status_name(value: Any) -> Any:
    """Replace a numeric message status with its name; unknown numbers become UNKNOWN."""
    if isinstance(value, bool) or not isinstance(value, int):
        return value
    try:
        return MessageStatus(value).name
    except ValueError:
        return "UNKNOWN"


def to_base64(value: Any) -> Any:
    """Encode byte-like payload fields. Strings are assumed to be encoded already."""
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, list) and all(isinstance(item, int) for item in value):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, dict) and value and all(str(k).isdigit() for k in value):
        # Typed arrays serialized as {"0": 12, "1": 34, ...}
        ordered = [value[k] for k in sorted(value, key=lambda k: int(k))]
        return base64.b64encode(bytes(ordered)).decode("ascii")
    return value


def _with_canonical_key(message: dict) -> dict:
    key = dict(message.get("key") or {})
    canonical = resolve_canonical_jid(key)
    if canonical:
        key["remoteJid"] = canonical
    return {**message, "key": key}


async def shape_messages_upsert(
    data: dict,
    connection: EngineConnection,
    *,
    inline_media: bool,
) -> list[dict] | None:
    """Build the MESSAGES_UPSERT payload. Returns None when nothing is inbound.

    Args:
        data: ``{"messages": [...], "type": "notify" | "append"}``.
        connection: Used to download media when ``inline_media`` is set.
        inline_media: Embed media content as base64 (``fileBase64``).
    """
    inbound = [
        m for m in (data or {}).get("messages") or [] if (m.get("key") or {}).get("fromMe") is False
    ]
    if not inbound:
        return None
    shaped: list[dict] = []
    for message in inbound:
        try:
            shaped.append(await _shape_inbound(message, connection, inline_media=inline_media))
        except Exception:
            logger.exception("Failed to shape inbound message", message_id=(message.get("key") or {}).get("id"))
            shaped.append({})
    return shaped


async def _shape_inbound(message: dict, connection: EngineConnection, *, inline_media: bool) -> dict:
    result = _with_canonical_key(message)
    if result.get("status") is not None:
        result["status"] = status_name(result["status"])
    content = message.get("message") or {}
    kind = next(iter(content), None)
    if inline_media and kind in MEDIA_MESSAGE_KINDS:
        media = dict(content[kind] or {})
        raw = await connection.download_media(message)
        for field in BINARY_MEDIA_FIELDS:
            if media.get(field) is not None:
                media[field] = to_base64(media[field])
        media["fileBase64"] = base64.b64encode(raw).decode("ascii")
        result["message"] = {kind: media}
    return result


async def shape_messages_update(data: list, get_message: MessageResolver) -> list[dict]:
    """Build one MESSAGES_UPDATE item per update whose message is known."""
    items: list[dict] = []
    for entry in data or []:
        key = entry.get("key") or {}
        message = await get_message(key)
        if not message:
            continue
        update = dict(entry.get("update") or {})
        if update.get("status") is not None:
            update["status"] = status_name(update["status"])
        canonical_key = {**key, "remoteJid": resolve_canonical_jid(key)}
        items.append({"key": canonical_key, "update": update, "message": message})
    return items


async def shape_receipt_update(
    data: list,
    connection: EngineConnection,
    get_message: MessageResolver,
) -> list:
    """Attach aggregated poll votes to the first poll receipt whose poll is known.

    Otherwise the batch is forwarded untouched.
    """
    for entry in data or []:
        update = entry.get("update") or {}
        poll_updates = update.get("pollUpdates")
        if not poll_updates:
            continue
        poll_creation = await get_message(entry.get("key") or {})
        if not poll_creation:
            continue
        votes = await connection.aggregate_poll_votes(poll_creation, poll_updates)
        poll_updates = [dict(p) for p in poll_updates]
        poll_updates[0]["vote"] = votes
        return [{**entry, "update": {**update, "pollUpdates": poll_updates}}]
    return data


def shape_group_participants(data: dict) -> dict:
    """Normalize the group id and participant addresses."""
    participants = []
    for participant in (data or {}).get("participants") or []:
        if isinstance(participant, dict):
            participants.append({**participant, "id": jid_normalized_user(participant.get("id"))})
        else:
            participants.append(jid_normalized_user(participant))
    return {**(data or {}), "id": jid_normalized_user((data or {}).get("id")), "participants": participants}


def lid_mappings(data: dict) -> list[tuple[str, str]]:
    """Return normalized (lid, phone JID) pairs from a lid-mapping update."""
    pairs: list[tuple[str, str]] = []
    for mapping in (data or {}).get("mappings") or []:
        lid, pn = (mapping or {}).get("lid"), (mapping or {}).get("pn")
        if lid and pn:
            pairs.append((jid_normalized_user(lid), jid_normalized_user(pn)))
    return pairs
