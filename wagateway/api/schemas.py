"""Pydantic request/response models for API endpoints.

Request bodies accept both snake_case and the camelCase names used by
existing clients (``isGroup``, ``usePairingCode``, ...).
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# --- Sessions ---


class CreateSessionRequest(_Request):
    """Request body for creating a session."""

    id: str = Field(..., min_length=1, max_length=128, pattern=r"^[A-Za-z0-9_.-]+$")
    use_pairing_code: bool = Field(False, alias="usePairingCode")
    phone_number: str = Field("", alias="phoneNumber")


# --- Chats ---


class SendMessageRequest(_Request):
    """Request body for sending a message to a user or group."""

    receiver: str = Field(..., min_length=1)
    message: dict
    is_group: bool = Field(False, alias="isGroup")


class BulkMessageItem(_Request):
    """One entry of a bulk send. Invalid entries are reported, not rejected."""

    receiver: str | None = None
    message: dict | None = None
    delay: int | None = None


class DeleteMessageRequest(_Request):
    receiver: str = Field(..., min_length=1)
    message: dict
    is_group: bool = Field(False, alias="isGroup")


class ForwardKey(_Request):
    id: str
    remote_jid: str = Field(..., alias="remoteJid")


class ForwardMessageRequest(_Request):
    forward: ForwardKey
    receiver: str = Field(..., min_length=1)
    is_group: bool = Field(False, alias="isGroup")


class ReadMessagesRequest(_Request):
    keys: list[dict] = Field(..., min_length=1)


class PresenceRequest(_Request):
    receiver: str = Field(..., min_length=1)
    presence: Literal["unavailable", "available", "composing", "recording", "paused"]
    is_group: bool = Field(False, alias="isGroup")


class DownloadMediaRequest(_Request):
    remote_jid: str = Field(..., alias="remoteJid")
    message_id: str = Field(..., alias="messageId")


# --- Groups ---


class GroupSendRequest(_Request):
    receiver: str = Field(..., min_length=1)
    message: dict


class ParticipantsUpdateRequest(_Request):
    group_id: str = Field(..., alias="groupId")
    participants: list[str] = Field(..., min_length=1)
    action: Literal["add", "remove", "promote", "demote"]


class GroupSubjectRequest(_Request):
    group_id: str = Field(..., alias="groupId")
    subject: str = Field(..., min_length=1)


class GroupDescriptionRequest(_Request):
    group_id: str = Field(..., alias="groupId")
    description: str


class GroupSettingRequest(_Request):
    group_id: str = Field(..., alias="groupId")
    setting: Literal["announcement", "not_announcement", "locked", "unlocked"]


class AcceptInviteRequest(_Request):
    invite: str = Field(..., min_length=1)


# --- Misc ---


class ProfileStatusRequest(_Request):
    status: str = Field(..., min_length=1)


class ProfileNameRequest(_Request):
    name: str = Field(..., min_length=1)


class ProfilePictureRequest(_Request):
    url: str = Field(..., min_length=1)
    jid: str = Field(..., min_length=1)


class BlockRequest(_Request):
    jid: str = Field(..., min_length=1)
    is_block: bool = Field(True, alias="isBlock")


# --- Health ---


class HealthResponse(BaseModel):
    ok: bool
    version: str
    sessions: int
