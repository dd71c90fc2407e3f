"""In-memory history of chats, contacts and messages seen by a session."""

from __future__ import annotations

import json
import os

import structlog

from wagateway.credentials import write_json_atomic
from wagateway.engine.base import EngineEvent
from wagateway.jid import resolve_canonical_jid

logger = structlog.get_logger(__name__)


def _message_chat(message: dict) -> str | None:
    key = message.get("key") or {}
    return resolve_canonical_jid(key) or key.get("remoteJid")


class HistoryCache:
    """Chats, contacts and messages bound to one session's event stream.

    Answers the engine's message lookups and the chat/message listing
    endpoints. Persisted as ``<session_id>_store.json``.
    """

    def __init__(self) -> None:
        self.chats: dict[str, dict] = {}
        self.contacts: dict[str, dict] = {}
        # chat jid -> message id -> message, in arrival order
        self.messages: dict[str, dict[str, dict]] = {}

    # ------------------------------------------------------------------
    # Event binding
    # ------------------------------------------------------------------

    def apply(self, event: EngineEvent) -> None:
        """Fold an engine event into the cache. Unrelated events are ignored."""
        handler = self._handlers.get(event.name)
        if handler is None:
            return
        handler(self, event.data)

    def _on_history_set(self, data: dict) -> None:
        data = data or {}
        self._upsert_chats(data.get("chats") or [])
        self._upsert_contacts(data.get("contacts") or [])
        for message in data.get("messages") or []:
            self._insert_message(message)

    def _on_chats_set(self, data: dict | list) -> None:
        chats = data.get("chats") if isinstance(data, dict) else data
        self._upsert_chats(chats or [])

    def _on_chats_upsert(self, data: list) -> None:
        self._upsert_chats(data or [])

    def _on_chats_delete(self, data: list) -> None:
        for chat_id in data or []:
            self.chats.pop(chat_id, None)

    def _on_contacts_set(self, data: dict | list) -> None:
        contacts = data.get("contacts") if isinstance(data, dict) else data
        self._upsert_contacts(contacts or [])

    def _on_contacts_upsert(self, data: list) -> None:
        self._upsert_contacts(data or [])

    def _on_messages_upsert(self, data: dict) -> None:
        for message in (data or {}).get("messages") or []:
            self._insert_message(message)

    def _on_messages_update(self, data: list) -> None:
        for item in data or []:
            key = item.get("key") or {}
            message = self.load_message(_message_chat(item) or "", key.get("id", ""))
            if message is not None:
                message.update(item.get("update") or {})

    def _on_messages_delete(self, data: dict) -> None:
        data = data or {}
        if data.get("all"):
            self.messages.pop(data.get("jid", ""), None)
            return
        for key in data.get("keys") or []:
            chat = resolve_canonical_jid(key) or key.get("remoteJid")
            self.messages.get(chat or "", {}).pop(key.get("id", ""), None)

    def _upsert_chats(self, chats: list[dict]) -> None:
        for chat in chats:
            chat_id = chat.get("id")
            if chat_id:
                self.chats.setdefault(chat_id, {}).update(chat)

    def _upsert_contacts(self, contacts: list[dict]) -> None:
        for contact in contacts:
            contact_id = contact.get("id")
            if contact_id:
                self.contacts.setdefault(contact_id, {}).update(contact)

    def _insert_message(self, message: dict) -> None:
        chat = _message_chat(message)
        message_id = (message.get("key") or {}).get("id")
        if not chat or not message_id:
            return
        bucket = self.messages.setdefault(chat, {})
        if message_id in bucket:
            bucket[message_id].update(message)
        else:
            bucket[message_id] = message

    _handlers = {
        "messaging-history.set": _on_history_set,
        "chats.set": _on_chats_set,
        "chats.upsert": _on_chats_upsert,
        "chats.update": _on_chats_upsert,
        "chats.delete": _on_chats_delete,
        "contacts.set": _on_contacts_set,
        "contacts.upsert": _on_contacts_upsert,
        "contacts.update": _on_contacts_upsert,
        "messages.upsert": _on_messages_upsert,
        "messages.update": _on_messages_update,
        "messages.delete": _on_messages_delete,
    }

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def load_message(self, jid: str, message_id: str) -> dict | None:
        return self.messages.get(jid, {}).get(message_id)

    def load_messages(self, jid: str, limit: int = 25, cursor: dict | None = None) -> list[dict]:
        """Return up to ``limit`` messages of a chat, oldest first.

        Args:
            jid: Chat address.
            limit: Maximum number of messages.
            cursor: ``{"before": <message id>}`` to page backwards.
        """
        messages = list(self.messages.get(jid, {}).values())
        before = (cursor or {}).get("before")
        if before:
            ids = [(m.get("key") or {}).get("id") for m in messages]
            if before in ids:
                messages = messages[: ids.index(before)]
        if limit > 0:
            messages = messages[-limit:]
        return messages

    def chat_list(self, suffix: str | None = None) -> list[dict]:
        """List chats, optionally only those whose id ends with ``suffix``."""
        return [
            chat for chat_id, chat in self.chats.items() if suffix is None or chat_id.endswith(suffix)
        ]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {"chats": self.chats, "contacts": self.contacts, "messages": self.messages}

    @classmethod
    def read_from_file(cls, path: str) -> HistoryCache:
        """Load a cache from disk; a missing or corrupt file yields an empty cache."""
        cache = cls()
        if not os.path.exists(path):
            return cache
        try:
            with open(path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable history file", path=path, error=str(exc))
            return cache
        cache.chats = data.get("chats") or {}
        cache.contacts = data.get("contacts") or {}
        cache.messages = data.get("messages") or {}
        return cache

    def write_to_file(self, path: str) -> None:
        write_json_atomic(path, self.to_dict())
