"""Service for registering channels and delivering user notifications."""
from __future__ import annotations

import uuid
from typing import Mapping, Optional, Sequence

from loguru import logger
from sqlalchemy.orm import Session

from tradyfi.core.payloads import Channel, NotificationPayload, epoch_millis
from tradyfi.db.models.push_subscription import FCMToken, PushSubscription
from tradyfi.services.channel_store import ChannelStore
from tradyfi.services.dispatch import BulkDispatchResult, BulkJob, DispatchResult, DispatchService
from tradyfi.utils.exceptions import ChannelStoreError, ValidationError


class NotificationService:
    """Glue between the channel store and the dispatcher.

    The dispatcher reports invalid channels; this service owns retiring them.
    """

    def __init__(self, db: Session, dispatcher: DispatchService, store: ChannelStore | None = None):
        self.db = db
        self.dispatcher = dispatcher
        self.store = store or ChannelStore(db)

    def subscribe(
        self,
        user_id: uuid.UUID,
        subscription_info: Optional[Mapping],
        user_type: str = "user",
        user_agent: Optional[str] = None,
    ) -> PushSubscription:
        """Register a new push subscription."""

        if not subscription_info or not subscription_info.get("endpoint"):
            raise ValidationError("Invalid subscription data")
        return self.store.save_subscription(
            user_id,
            subscription_info.get("endpoint"),
            subscription_info.get("keys"),
            user_type=user_type,
            user_agent=user_agent,
        )

    def unsubscribe(self, user_id: uuid.UUID, endpoint: Optional[str] = None) -> int:
        return self.store.remove_subscription(user_id, endpoint)

    def save_fcm_token(
        self, user_id: uuid.UUID, token: Optional[str], user_type: str = "user", device_info: Optional[str] = None
    ) -> FCMToken:
        return self.store.save_fcm_token(user_id, token, user_type=user_type, device_info=device_info)

    def remove_fcm_token(self, user_id: uuid.UUID, token: Optional[str]) -> int:
        return self.store.remove_fcm_token_for_user(user_id, token)

    def reconcile(self, result: DispatchResult | BulkDispatchResult) -> int:
        """Retire the channels a dispatch reported as permanently invalid."""

        if not result.invalid_channels:
            return 0
        try:
            return self.store.retire_channels(result.invalid_channels)
        except ChannelStoreError as exc:
            logger.error("Failed to retire invalid channels", error=exc.message, count=len(result.invalid_channels))
            return 0

    async def deliver(self, channels: Sequence[Channel], payload: NotificationPayload) -> DispatchResult:
        """Send to explicit channels, refreshing token usage and retiring dead channels."""

        if not channels:
            return DispatchResult()
        fcm_tokens = [channel.address for channel in channels if channel.kind == "fcm"]
        try:
            self.store.touch_fcm_tokens(fcm_tokens)
        except ChannelStoreError as exc:
            logger.warning("Failed to refresh FCM token usage", error=exc.message)

        result = await self.dispatcher.send_to_many(channels, payload)
        self.reconcile(result)
        return result

    async def send_to_user(self, user_id: uuid.UUID, payload: NotificationPayload) -> DispatchResult:
        """Send a notification to every active device of a user."""

        try:
            channels = self.store.list_active_channels_for_user(user_id).as_channels()
        except ChannelStoreError as exc:
            logger.error("Failed to load channels", user_id=str(user_id), error=exc.message)
            return DispatchResult()

        if not channels:
            logger.info("No notification channels registered", user_id=str(user_id))
            return DispatchResult()
        return await self.deliver(channels, payload)

    async def send_webpush_test(self, user_id: uuid.UUID) -> DispatchResult:
        subscriptions = self.store.list_active_channels_for_user(user_id).push_subscriptions
        channels = [
            Channel.webpush(sub.endpoint, sub.p256dh, sub.auth, user_id=sub.user_id) for sub in subscriptions
        ]
        payload = NotificationPayload(
            title="Test Notification",
            body="This is a test push notification from Tradyfi.ng",
            data={"type": "test", "timestamp": epoch_millis()},
        )
        return await self.deliver(channels, payload)

    async def send_fcm_test(self, user_id: uuid.UUID, message: str) -> DispatchResult:
        tokens = self.store.list_fcm_tokens(user_id)
        if not tokens:
            raise ValidationError("No FCM tokens found for user")

        logger.info("Sending test notification", user_id=str(user_id), devices=len(tokens))
        payload = NotificationPayload(
            title="Test Notification",
            body=message,
            click_action="/",
            data={"type": "test", "timestamp": epoch_millis(), "userId": str(user_id)},
        )
        return await self.deliver([Channel.fcm(token.token, user_id=user_id) for token in tokens], payload)

    async def send_chat_notification(
        self,
        recipient_id: uuid.UUID,
        sender_name: str,
        message: str,
        room_id: int,
        recipient_is_trader: bool = False,
    ) -> DispatchResult:
        payload = self.dispatcher.build_chat_payload(sender_name, message, room_id, recipient_is_trader)
        return await self.send_to_user(recipient_id, payload)

    async def send_bulk(
        self,
        user_ids: Sequence[uuid.UUID],
        payload: NotificationPayload,
        rate_limit_per_second: Optional[int] = None,
    ) -> BulkDispatchResult:
        """Fan one payload out to many users through the throttled bulk path."""

        jobs = []
        for user_id in user_ids:
            try:
                channels = self.store.list_active_channels_for_user(user_id).as_channels()
            except ChannelStoreError as exc:
                logger.error("Failed to load channels", user_id=str(user_id), error=exc.message)
                continue
            if channels:
                jobs.append(BulkJob(channels=channels, payload=payload))

        result = await self.dispatcher.send_bulk(jobs, rate_limit_per_second=rate_limit_per_second)
        self.reconcile(result)
        return result
