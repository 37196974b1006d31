"""Chat messaging over HTTP and WebSocket."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from loguru import logger
from pydantic import TypeAdapter, ValidationError

from tradyfi.api import deps
from tradyfi.core.security import InvalidTokenError
from tradyfi.db.models.chat import ChatMessage
from tradyfi.db.models.user import User
from tradyfi.schemas import ChatMessageCreate, ChatMessageRead
from tradyfi.schemas.realtime import (
    ChatClientMessage,
    ChatHeartbeatMessage,
    ChatSendMessage,
    ChatTypingMessage,
)
from tradyfi.services.chat_relay import ChatRelay
from tradyfi.services.realtime import ChatConnectionManager
from tradyfi.utils.exceptions import TradyfiException

router = APIRouter(prefix="/chat", tags=["chat"])

client_message_adapter = TypeAdapter(ChatClientMessage)


def message_to_schema(message: ChatMessage, notified_devices: int = 0) -> ChatMessageRead:
    return ChatMessageRead(
        id=message.id,
        room_id=message.room_id,
        sender_id=str(message.sender_id),
        content=message.content,
        created_at=message.created_at,
        notified_devices=notified_devices,
    )


@router.post("/rooms/{room_id}/messages", response_model=ChatMessageRead)
async def post_message(
    room_id: int,
    payload: ChatMessageCreate,
    relay: ChatRelay = Depends(deps.get_chat_relay),
    connection_manager: ChatConnectionManager = Depends(deps.get_connection_manager),
    current_user: User = Depends(deps.get_current_user),
):
    room = relay.get_room_for(room_id, current_user)
    outcome = await relay.relay_message(room, current_user, payload.content, payload.sender_name)
    response = message_to_schema(outcome.message, outcome.dispatch.success_count)
    await connection_manager.broadcast(
        room_id=room.id,
        message={"type": "new_message", "data": response.model_dump(mode="json")},
    )
    return response


def _extract_token(websocket: WebSocket) -> str | None:
    header = websocket.headers.get("Authorization")
    if header and header.lower().startswith("bearer "):
        return header.split(" ", 1)[1]
    return websocket.query_params.get("token")


def _resolve_user(token: str, relay: ChatRelay) -> User | None:
    try:
        token_data = deps.resolve_token(token)
    except (InvalidTokenError, ValidationError, ValueError, KeyError):
        return None
    user = relay.db.get(User, uuid.UUID(str(token_data.sub)))
    if user is None or not user.is_active:
        return None
    return user


@router.websocket("/rooms/{room_id}/ws")
async def chat_stream(
    websocket: WebSocket,
    room_id: int,
    connection_manager: ChatConnectionManager = Depends(deps.get_connection_manager),
    relay: ChatRelay = Depends(deps.get_chat_relay),
) -> None:
    token = _extract_token(websocket)
    if not token:
        await websocket.close(code=1008)
        return

    user = _resolve_user(token, relay)
    if not user:
        await websocket.close(code=1008)
        return

    try:
        room = relay.get_room_for(room_id, user)
    except TradyfiException:
        await websocket.close(code=1008)
        return

    await connection_manager.connect(websocket=websocket, room_id=room.id, user_id=user.id)
    active_users = await connection_manager.list_active_users(room.id)
    await connection_manager.send_personal_message(
        room_id=room.id,
        user_id=user.id,
        message={"type": "room_ready", "data": {"room_id": room.id, "active_user_ids": active_users}},
    )

    try:
        while True:
            try:
                data = await websocket.receive_json()
            except WebSocketDisconnect:
                break

            try:
                message = client_message_adapter.validate_python(data)
            except ValidationError as exc:
                await connection_manager.send_personal_message(
                    room_id=room.id,
                    user_id=user.id,
                    message={"type": "error", "data": {"detail": "invalid_payload", "errors": exc.errors()}},
                )
                continue

            if isinstance(message, ChatHeartbeatMessage):
                await connection_manager.send_personal_message(
                    room_id=room.id,
                    user_id=user.id,
                    message={"type": "heartbeat", "data": {"server_time": datetime.now(timezone.utc).isoformat()}},
                )
                continue

            if isinstance(message, ChatTypingMessage):
                await connection_manager.broadcast(
                    room_id=room.id,
                    message={"type": "typing", "data": {"user_id": str(user.id), "is_typing": message.is_typing}},
                )
                continue

            if isinstance(message, ChatSendMessage):
                try:
                    saved = relay.persist(room, user.id, message.content)
                except TradyfiException as exc:
                    await connection_manager.send_personal_message(
                        room_id=room.id,
                        user_id=user.id,
                        message={"type": "error", "data": {"detail": "send_failed", "message": exc.message}},
                    )
                    continue

                # Echo to the room before the push fan-out, which may wait on provider timeouts.
                await connection_manager.broadcast(
                    room_id=room.id,
                    message={"type": "new_message", "data": message_to_schema(saved).model_dump(mode="json")},
                )
                await relay.notify_recipient(room, user, message.content, message.sender_name)
                continue

            logger.debug("Unhandled WebSocket message", payload=data)
    finally:
        await connection_manager.disconnect(room_id=room.id, user_id=user.id)
