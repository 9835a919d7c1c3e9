"""Messaging gateway contract — what a channel hands to the engine and gets back."""

from __future__ import annotations

from pydantic import BaseModel, Field

from stewardbot.models.enums import MediaType


class Attachment(BaseModel):
    """A media item the channel has already uploaded to object storage."""

    url: str
    storage_key: str
    media_type: MediaType
    caption: str | None = None


class InboundMessage(BaseModel):
    conversation_identity: str
    raw_text: str = ""
    attachments: list[Attachment] = Field(default_factory=list)
    message_id: str | None = Field(default=None, description="Provider message id, used for duplicate detection")


class Reply(BaseModel):
    reply_text: str
