"""Tests for push subscription and FCM token persistence."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from tradyfi.core.payloads import Channel
from tradyfi.db.models import FCMToken, PushSubscription
from tradyfi.services.channel_store import ChannelStore
from tradyfi.utils.exceptions import ValidationError

ENDPOINT = "https://fcm.googleapis.com/fcm/send/endpoint-one"


def _count(db_session, model) -> int:
    return db_session.scalar(select(func.count()).select_from(model))


def test_resubscribing_same_endpoint_keeps_one_row(db_session, user):
    store = ChannelStore(db_session)

    store.save_subscription(user.id, ENDPOINT, {"p256dh": "key-a", "auth": "auth-a"})
    store.save_subscription(user.id, ENDPOINT, {"p256dh": "key-b", "auth": "auth-b"}, user_type="trader")

    assert _count(db_session, PushSubscription) == 1
    subscription = db_session.scalars(select(PushSubscription)).one()
    assert subscription.p256dh == "key-b"
    assert subscription.auth == "auth-b"
    assert subscription.user_type == "trader"


def test_resubscribing_reactivates_retired_endpoint(db_session, user):
    store = ChannelStore(db_session)
    store.save_subscription(user.id, ENDPOINT, {"p256dh": "key", "auth": "auth"})
    store.retire_channels([Channel.webpush(ENDPOINT, "key", "auth", user_id=user.id)])
    assert store.list_active_channels_for_user(user.id).push_subscriptions == []

    store.save_subscription(user.id, ENDPOINT, {"p256dh": "key", "auth": "auth"})

    active = store.list_active_channels_for_user(user.id)
    assert [sub.endpoint for sub in active.push_subscriptions] == [ENDPOINT]


@pytest.mark.parametrize(
    "endpoint, keys",
    [
        (None, {"p256dh": "key", "auth": "auth"}),
        (ENDPOINT, None),
        (ENDPOINT, {"p256dh": "key"}),
    ],
)
def test_save_subscription_rejects_incomplete_data(db_session, user, endpoint, keys):
    with pytest.raises(ValidationError):
        ChannelStore(db_session).save_subscription(user.id, endpoint, keys)
    assert _count(db_session, PushSubscription) == 0


def test_remove_subscription_without_endpoint_clears_all(db_session, user):
    store = ChannelStore(db_session)
    store.save_subscription(user.id, ENDPOINT, {"p256dh": "key", "auth": "auth"})
    store.save_subscription(user.id, ENDPOINT + "-laptop", {"p256dh": "key", "auth": "auth"})

    assert store.remove_subscription(user.id) == 2
    assert _count(db_session, PushSubscription) == 0


def test_fcm_token_is_unique_by_value_and_latest_owner_wins(db_session, user, trader_owner):
    store = ChannelStore(db_session)

    store.save_fcm_token(user.id, "shared-device-token", device_info="Pixel 8")
    store.save_fcm_token(trader_owner.id, "shared-device-token", user_type="trader")

    tokens = db_session.scalars(select(FCMToken)).all()
    assert len(tokens) == 1
    assert tokens[0].user_id == trader_owner.id
    assert tokens[0].user_type == "trader"
    assert tokens[0].device_info == "Pixel 8"
    assert store.list_fcm_tokens(user.id) == []


def test_save_fcm_token_requires_value(db_session, user):
    with pytest.raises(ValidationError):
        ChannelStore(db_session).save_fcm_token(user.id, "")


def test_retire_channels_deactivates_subscriptions_and_deletes_tokens(db_session, user):
    store = ChannelStore(db_session)
    store.save_subscription(user.id, ENDPOINT, {"p256dh": "key", "auth": "auth"})
    store.save_fcm_token(user.id, "dead-token")
    store.save_fcm_token(user.id, "live-token")

    retired = store.retire_channels(
        [
            Channel.webpush(ENDPOINT, "key", "auth", user_id=user.id),
            Channel.fcm("dead-token", user_id=user.id),
        ]
    )

    assert retired == 2
    subscription = db_session.scalars(select(PushSubscription)).one()
    db_session.refresh(subscription)
    assert subscription.is_active is False
    assert [token.token for token in store.list_fcm_tokens(user.id)] == ["live-token"]


def test_cleanup_removes_inactive_and_idle_tokens(db_session, user):
    now = datetime.now(timezone.utc)
    db_session.add_all(
        [
            FCMToken(user_id=user.id, token="fresh-token", is_active=True, last_used=now),
            FCMToken(user_id=user.id, token="disabled-token", is_active=False, last_used=now),
            FCMToken(user_id=user.id, token="idle-token", is_active=True, last_used=now - timedelta(days=45)),
        ]
    )
    db_session.commit()

    deleted = ChannelStore(db_session).cleanup_invalid_fcm_tokens(max_idle_days=30)

    assert deleted == 2
    assert [token.token for token in db_session.scalars(select(FCMToken)).all()] == ["fresh-token"]


def test_list_fcm_tokens_orders_by_most_recent_use(db_session, user):
    now = datetime.now(timezone.utc)
    db_session.add_all(
        [
            FCMToken(user_id=user.id, token="older-token", last_used=now - timedelta(days=2)),
            FCMToken(user_id=user.id, token="newer-token", last_used=now),
        ]
    )
    db_session.commit()

    tokens = ChannelStore(db_session).list_fcm_tokens(user.id)

    assert [token.token for token in tokens] == ["newer-token", "older-token"]
    assert tokens[0].token_preview == "newer-token..."


def test_deactivate_subscription_keeps_row_but_hides_it(db_session, user):
    store = ChannelStore(db_session)
    store.save_subscription(user.id, ENDPOINT, {"p256dh": "key", "auth": "auth"})

    assert store.deactivate_subscription(ENDPOINT, user_id=user.id) == 1

    assert _count(db_session, PushSubscription) == 1
    assert store.list_active_channels_for_user(user.id).as_channels() == []
