"""Persist chat messages and push them to the offline participant."""
from __future__ import annotations

import uuid
from dataclasses import dataclass

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tradyfi.db.models.chat import ChatMessage, ChatRoom
from tradyfi.db.models.user import User
from tradyfi.services.dispatch import DispatchResult
from tradyfi.services.notification_service import NotificationService
from tradyfi.utils.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    TradyfiException,
)


@dataclass
class Recipient:
    user_id: uuid.UUID
    is_trader: bool


@dataclass
class RelayOutcome:
    message: ChatMessage
    recipient: Recipient
    dispatch: DispatchResult


class ChatRelay:
    """Run after-send side effects for chat messages."""

    def __init__(self, db: Session, notifier: NotificationService):
        self.db = db
        self.notifier = notifier

    def get_room_for(self, room_id: int, user: User) -> ChatRoom:
        """Load a room and ensure ``user`` takes part in it."""

        room = self.db.get(ChatRoom, room_id)
        if room is None:
            raise NotFoundError("Chat room not found", {"room_id": room_id})
        if user.id not in (room.user_id, room.trader.user_id):
            raise PermissionDeniedError("Not a participant of this chat room")
        return room

    @staticmethod
    def resolve_recipient(room: ChatRoom, sender_id: uuid.UUID) -> Recipient:
        if sender_id == room.user_id:
            return Recipient(user_id=room.trader.user_id, is_trader=True)
        return Recipient(user_id=room.user_id, is_trader=False)

    def persist(self, room: ChatRoom, sender_id: uuid.UUID, content: str) -> ChatMessage:
        message = ChatMessage(room_id=room.id, sender_id=sender_id, content=content)
        self.db.add(message)
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise TradyfiException("Failed to save chat message", {"error": str(exc)}) from exc
        self.db.refresh(message)
        return message

    async def relay_message(
        self,
        room: ChatRoom,
        sender: User,
        content: str,
        sender_name: str | None = None,
    ) -> RelayOutcome:
        """Save the message, then notify the other participant.

        Notification problems are logged and never fail the send.
        """

        message = self.persist(room, sender.id, content)
        recipient, dispatch = await self.notify_recipient(room, sender, content, sender_name)
        return RelayOutcome(message=message, recipient=recipient, dispatch=dispatch)

    async def notify_recipient(
        self,
        room: ChatRoom,
        sender: User,
        content: str,
        sender_name: str | None = None,
    ) -> tuple[Recipient, DispatchResult]:
        recipient = self.resolve_recipient(room, sender.id)
        dispatch = DispatchResult()
        if recipient.user_id == sender.id:
            return recipient, dispatch
        try:
            dispatch = await self.notifier.send_chat_notification(
                recipient.user_id,
                sender_name or sender.display_name,
                content,
                room.id,
                recipient_is_trader=recipient.is_trader,
            )
        except TradyfiException as exc:
            logger.error("Chat push notification failed", room_id=room.id, error=exc.message)
        return recipient, dispatch
