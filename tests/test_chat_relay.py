"""Tests for chat message persistence and push relay."""
from __future__ import annotations

import pytest
from sqlalchemy import select
from starlette.testclient import WebSocketDenialResponse
from starlette.websockets import WebSocketDisconnect

from tradyfi.api import deps
from tradyfi.db.models import ChatMessage
from tradyfi.services.channel_store import ChannelStore
from tradyfi.services.chat_relay import ChatRelay
from tradyfi.services.notification_service import NotificationService
from tradyfi.services.realtime import ChatConnectionManager
from tradyfi.utils.exceptions import PermissionDeniedError

OWNER_TOKEN = "owner-device-token-0123456789"
USER_TOKEN = "user-device-token-0123456789"


@pytest.fixture()
def relay(db_session, dispatcher) -> ChatRelay:
    return ChatRelay(db_session, NotificationService(db_session, dispatcher))


@pytest.fixture()
def registered_devices(db_session, user, trader_owner):
    store = ChannelStore(db_session)
    store.save_fcm_token(trader_owner.id, OWNER_TOKEN, user_type="trader")
    store.save_fcm_token(user.id, USER_TOKEN)


async def test_message_from_user_notifies_trader_owner(relay, chat_room, user, fcm_stub, registered_devices):
    outcome = await relay.relay_message(chat_room, user, "Is the blue ankara still available?", "Ada")

    assert outcome.message.id is not None
    assert outcome.recipient.is_trader is True
    assert outcome.dispatch.success_count == 1
    token, payload = fcm_stub.sent[0]
    assert token == OWNER_TOKEN
    assert payload.title == "New message from Ada"
    assert payload.click_action == f"/trader/dashboard?tab=chats&room={chat_room.id}"


async def test_reply_from_trader_notifies_user(relay, chat_room, trader_owner, fcm_stub, registered_devices):
    outcome = await relay.relay_message(chat_room, trader_owner, "Yes, 6 yards left.")

    assert outcome.recipient.is_trader is False
    token, payload = fcm_stub.sent[0]
    assert token == USER_TOKEN
    assert payload.title == "New message from Chidi Okafor"
    assert payload.click_action == f"/chat/{chat_room.id}"


async def test_push_failure_does_not_fail_the_send(db_session, relay, chat_room, user, fcm_stub, registered_devices):
    fcm_stub.invalid_tokens = {OWNER_TOKEN}

    outcome = await relay.relay_message(chat_room, user, "Hello?")

    assert outcome.dispatch.failure_count == 1
    assert db_session.scalars(select(ChatMessage)).one().content == "Hello?"


async def test_message_is_saved_when_recipient_has_no_devices(db_session, relay, chat_room, user, fcm_stub):
    outcome = await relay.relay_message(chat_room, user, "Anyone there?")

    assert outcome.dispatch.attempted == 0
    assert fcm_stub.sent == []
    assert db_session.scalars(select(ChatMessage)).one().id == outcome.message.id


def test_outsiders_cannot_open_the_room(relay, chat_room, admin_user):
    with pytest.raises(PermissionDeniedError):
        relay.get_room_for(chat_room.id, admin_user)


def test_post_message_endpoint(client, chat_room, user, auth_headers, fcm_stub, registered_devices):
    response = client.post(
        f"/api/v1/chat/rooms/{chat_room.id}/messages",
        json={"content": "Do you deliver to Ikeja?", "senderName": "Ada"},
        headers=auth_headers(user),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["content"] == "Do you deliver to Ikeja?"
    assert body["notified_devices"] == 1
    assert fcm_stub.sent[0][0] == OWNER_TOKEN


def test_post_message_to_missing_room_returns_404(client, user, auth_headers):
    response = client.post("/api/v1/chat/rooms/4040/messages", json={"content": "hi"}, headers=auth_headers(user))

    assert response.status_code == 404


def test_post_message_by_outsider_returns_403(client, chat_room, admin_user, auth_headers):
    response = client.post(
        f"/api/v1/chat/rooms/{chat_room.id}/messages", json={"content": "hi"}, headers=auth_headers(admin_user)
    )

    assert response.status_code == 403


def test_websocket_rejects_missing_token(client, chat_room):
    try:
        with client.websocket_connect(f"/api/v1/chat/rooms/{chat_room.id}/ws") as websocket:
            with pytest.raises((WebSocketDenialResponse, WebSocketDisconnect, RuntimeError)):
                websocket.receive_json()
    except (WebSocketDenialResponse, WebSocketDisconnect):
        # Close before accept surfaces at connect time on some Starlette versions.
        pass


def test_websocket_send_message_broadcasts_and_pushes(
    client, chat_room, user, auth_headers, fcm_stub, registered_devices
):
    token = auth_headers(user)["Authorization"].split(" ", 1)[1]

    with client.websocket_connect(f"/api/v1/chat/rooms/{chat_room.id}/ws?token={token}") as websocket:
        ready = websocket.receive_json()
        assert ready["type"] == "room_ready"
        assert ready["data"]["active_user_ids"] == [str(user.id)]

        websocket.send_json({"type": "heartbeat"})
        assert websocket.receive_json()["type"] == "heartbeat"

        websocket.send_json({"type": "send_message", "content": "Still open today?", "senderName": "Ada"})
        message = websocket.receive_json()
        websocket.send_json({"type": "heartbeat"})
        assert websocket.receive_json()["type"] == "heartbeat"

    assert message["type"] == "new_message"
    assert message["data"]["content"] == "Still open today?"
    assert fcm_stub.sent[0][0] == OWNER_TOKEN


def test_websocket_reports_invalid_payload(client, chat_room, user, auth_headers):
    with client.websocket_connect(
        f"/api/v1/chat/rooms/{chat_room.id}/ws", headers=auth_headers(user)
    ) as websocket:
        websocket.receive_json()
        websocket.send_json({"type": "send_message"})
        error = websocket.receive_json()

    assert error["type"] == "error"
    assert error["data"]["detail"] == "invalid_payload"


class RecordingConnectionManager(ChatConnectionManager):
    def __init__(self):
        super().__init__(redis_url=None)
        self.broadcasts = []

    async def broadcast(self, *, room_id, message):
        self.broadcasts.append(message)
        await super().broadcast(room_id=room_id, message=message)


def test_websocket_echoes_message_before_push_fan_out(
    client, chat_room, user, auth_headers, fcm_stub, registered_devices, monkeypatch
):
    manager = RecordingConnectionManager()
    client.app.dependency_overrides[deps.get_connection_manager] = lambda: manager
    broadcasts_seen_at_push = []
    send_to_token = fcm_stub.send_to_token

    def recording_send(token, payload):
        broadcasts_seen_at_push.append([event["type"] for event in manager.broadcasts])
        return send_to_token(token, payload)

    monkeypatch.setattr(fcm_stub, "send_to_token", recording_send)

    with client.websocket_connect(
        f"/api/v1/chat/rooms/{chat_room.id}/ws", headers=auth_headers(user)
    ) as websocket:
        websocket.receive_json()
        websocket.send_json({"type": "send_message", "content": "Can I pick up at 5?"})
        assert websocket.receive_json()["type"] == "new_message"
        websocket.send_json({"type": "heartbeat"})
        websocket.receive_json()

    assert broadcasts_seen_at_push == [["new_message"]]
    assert fcm_stub.sent[0][0] == OWNER_TOKEN
