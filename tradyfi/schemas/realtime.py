"""Schemas for real-time chat messaging."""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChatSendMessage(BaseModel):
    """Inbound message when a participant posts to the room."""

    type: Literal["send_message"]
    content: str = Field(min_length=1, max_length=4000)
    sender_name: Optional[str] = Field(default=None, alias="senderName")

    model_config = ConfigDict(populate_by_name=True)


class ChatTypingMessage(BaseModel):
    """Inbound typing indicator payload."""

    type: Literal["typing"]
    is_typing: bool = True


class ChatHeartbeatMessage(BaseModel):
    """Inbound heartbeat event to keep the connection alive."""

    type: Literal["heartbeat"]
    sent_at: datetime | None = None


ChatClientMessage = Annotated[
    ChatSendMessage | ChatTypingMessage | ChatHeartbeatMessage,
    Field(discriminator="type"),
]


class ChatMessageCreate(BaseModel):
    """HTTP body for posting a chat message."""

    content: str = Field(min_length=1, max_length=4000)
    sender_name: Optional[str] = Field(default=None, alias="senderName")

    model_config = ConfigDict(populate_by_name=True)


class ChatMessageRead(BaseModel):
    id: int
    room_id: int
    sender_id: str
    content: str
    created_at: Optional[datetime] = None
    notified_devices: int = 0
