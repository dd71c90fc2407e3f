"""Helpers for WhatsApp addresses (JIDs)."""

from __future__ import annotations

import re

USER_SERVER = "s.whatsapp.net"
GROUP_SERVER = "g.us"
LID_SERVER = "lid"
LEGACY_USER_SERVER = "c.us"


def split_jid(jid: str) -> tuple[str, str, str | None]:
    """Split a JID into (user, server, device).

    ``"123:4@s.whatsapp.net"`` -> ``("123", "s.whatsapp.net", "4")``.
    """
    user_part, sep, server = jid.partition("@")
    if not sep:
        return jid, "", None
    user, _, agent_device = user_part.partition(":")
    user, _, _agent = user.partition("_")
    return user, server, agent_device or None


def jid_normalized_user(jid: str | None) -> str:
    """Strip device and agent suffixes, folding the legacy c.us server."""
    if not jid:
        return ""
    user, server, _ = split_jid(jid)
    if not server:
        return jid
    if server == LEGACY_USER_SERVER:
        server = USER_SERVER
    return f"{user}@{server}"


def is_pn_user(jid: str | None) -> bool:
    """True for phone-number user JIDs (as opposed to LIDs or groups)."""
    return bool(jid) and jid.endswith(f"@{USER_SERVER}")


def is_group(jid: str | None) -> bool:
    return bool(jid) and jid.endswith(f"@{GROUP_SERVER}")


def resolve_canonical_jid(key: dict | None) -> str | None:
    """Return the canonical chat address for a message key.

    Alternate addressing (``remoteJidAlt``/``participantAlt``) wins over the
    primary ``remoteJid`` when the engine reports it.
    """
    if not key:
        return None
    base = key.get("remoteJidAlt") or key.get("participantAlt") or key.get("remoteJid")
    return jid_normalized_user(base) if base else None


def format_phone(phone: str) -> str:
    """Turn a phone number into a user JID."""
    if phone.endswith(f"@{USER_SERVER}"):
        return phone
    return re.sub(r"\D", "", phone) + f"@{USER_SERVER}"


def format_group(group: str) -> str:
    """Turn a group id into a group JID."""
    if group.endswith(f"@{GROUP_SERVER}"):
        return group
    return re.sub(r"[^\d-]", "", group) + f"@{GROUP_SERVER}"
