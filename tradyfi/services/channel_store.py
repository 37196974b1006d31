"""Persistence for web-push subscriptions and FCM device tokens."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Mapping, Optional, Sequence

from loguru import logger
from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tradyfi.core.payloads import Channel
from tradyfi.db.models.push_subscription import FCMToken, PushSubscription
from tradyfi.utils.exceptions import ChannelStoreError, ValidationError


@dataclass
class ActiveChannels:
    """Every active delivery channel registered for one user."""

    push_subscriptions: List[PushSubscription] = field(default_factory=list)
    fcm_tokens: List[FCMToken] = field(default_factory=list)

    def as_channels(self) -> List[Channel]:
        channels = [
            Channel.webpush(sub.endpoint, sub.p256dh, sub.auth, user_id=sub.user_id)
            for sub in self.push_subscriptions
        ]
        channels.extend(Channel.fcm(token.token, user_id=token.user_id) for token in self.fcm_tokens)
        return channels


class ChannelStore:
    """Upsert, look up and retire notification channels."""

    def __init__(self, db: Session):
        self.db = db

    def _execute(self, stmt) -> int:
        # Rows touched here are re-read after commit, so skip in-session sync.
        result = self.db.execute(stmt, execution_options={"synchronize_session": False})
        return result.rowcount

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise ChannelStoreError(f"Failed to {action}", {"error": str(exc)}) from exc

    def save_subscription(
        self,
        user_id: uuid.UUID,
        endpoint: Optional[str],
        keys: Optional[Mapping[str, Optional[str]]],
        user_type: str = "user",
        user_agent: Optional[str] = None,
    ) -> PushSubscription:
        """Register a browser subscription, refreshing it when the endpoint is known."""

        if not endpoint:
            raise ValidationError("Invalid subscription data", {"field": "endpoint"})
        keys = keys or {}
        p256dh, auth = keys.get("p256dh"), keys.get("auth")
        if not p256dh or not auth:
            raise ValidationError("Invalid subscription data", {"field": "keys"})

        stmt = select(PushSubscription).where(
            PushSubscription.user_id == user_id,
            PushSubscription.endpoint == endpoint,
        )
        try:
            existing = self.db.scalars(stmt).first()
        except SQLAlchemyError as exc:
            raise ChannelStoreError("Failed to load push subscription", {"error": str(exc)}) from exc

        if existing:
            subscription = existing
            subscription.p256dh = p256dh
            subscription.auth = auth
            subscription.user_type = user_type
            subscription.user_agent = user_agent
            subscription.is_active = True
        else:
            subscription = PushSubscription(
                user_id=user_id,
                user_type=user_type,
                endpoint=endpoint,
                p256dh=p256dh,
                auth=auth,
                user_agent=user_agent,
                is_active=True,
            )
            self.db.add(subscription)

        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent subscribe inserted the same (user, endpoint) first.
            self.db.rollback()
            if existing is not None:
                raise ChannelStoreError("Failed to save push subscription")
            return self.save_subscription(user_id, endpoint, keys, user_type, user_agent)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise ChannelStoreError("Failed to save push subscription", {"error": str(exc)}) from exc

        logger.info(
            "Push subscription saved",
            user_id=str(user_id),
            user_type=user_type,
            created=existing is None,
        )
        return subscription

    def remove_subscription(self, user_id: uuid.UUID, endpoint: Optional[str] = None) -> int:
        """Hard delete one subscription, or all of the user's when no endpoint is given."""

        stmt = delete(PushSubscription).where(PushSubscription.user_id == user_id)
        if endpoint:
            stmt = stmt.where(PushSubscription.endpoint == endpoint)
        try:
            deleted = self._execute(stmt)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise ChannelStoreError("Failed to delete push subscription", {"error": str(exc)}) from exc
        self._commit("delete push subscription")
        logger.info("Push subscriptions removed", user_id=str(user_id), deleted=deleted)
        return deleted

    def deactivate_subscription(self, endpoint: str, user_id: Optional[uuid.UUID] = None) -> int:
        """Soft-deactivate a subscription the provider reported as gone."""

        stmt = update(PushSubscription).where(PushSubscription.endpoint == endpoint)
        if user_id is not None:
            stmt = stmt.where(PushSubscription.user_id == user_id)
        try:
            updated = self._execute(
                stmt.values(is_active=False, updated_at=datetime.now(timezone.utc))
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise ChannelStoreError("Failed to deactivate push subscription", {"error": str(exc)}) from exc
        self._commit("deactivate push subscription")
        return updated

    def save_fcm_token(
        self,
        user_id: uuid.UUID,
        token: Optional[str],
        user_type: str = "user",
        device_info: Optional[str] = None,
    ) -> FCMToken:
        """Upsert a device token keyed by its value; the latest owner wins."""

        if not token:
            raise ValidationError("FCM token is required", {"field": "fcmToken"})

        now = datetime.now(timezone.utc)
        try:
            existing = self.db.scalars(select(FCMToken).where(FCMToken.token == token)).first()
        except SQLAlchemyError as exc:
            raise ChannelStoreError("Failed to load FCM token", {"error": str(exc)}) from exc

        if existing:
            record = existing
            record.user_id = user_id
            record.user_type = user_type
            record.is_active = True
            record.last_used = now
            if device_info:
                record.device_info = device_info
        else:
            record = FCMToken(
                user_id=user_id,
                user_type=user_type,
                token=token,
                device_info=device_info or "",
                is_active=True,
                last_used=now,
            )
            self.db.add(record)

        self._commit("save FCM token")
        logger.info(
            "FCM token saved",
            user_id=str(user_id),
            user_type=user_type,
            created=existing is None,
        )
        return record

    def remove_fcm_token(self, token: str) -> int:
        return self._delete_tokens(delete(FCMToken).where(FCMToken.token == token))

    def remove_fcm_token_for_user(self, user_id: uuid.UUID, token: Optional[str]) -> int:
        if not token:
            raise ValidationError("FCM token is required", {"field": "fcmToken"})
        return self._delete_tokens(
            delete(FCMToken).where(FCMToken.user_id == user_id, FCMToken.token == token)
        )

    def _delete_tokens(self, stmt) -> int:
        try:
            deleted = self._execute(stmt)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise ChannelStoreError("Failed to delete FCM token", {"error": str(exc)}) from exc
        self._commit("delete FCM token")
        return deleted

    def list_fcm_tokens(self, user_id: uuid.UUID) -> List[FCMToken]:
        """Active tokens for a user, most recently used first."""

        stmt = (
            select(FCMToken)
            .where(FCMToken.user_id == user_id, FCMToken.is_active.is_(True))
            .order_by(FCMToken.last_used.desc())
        )
        try:
            return list(self.db.scalars(stmt).all())
        except SQLAlchemyError as exc:
            raise ChannelStoreError("Failed to list FCM tokens", {"error": str(exc)}) from exc

    def list_active_channels_for_user(self, user_id: uuid.UUID) -> ActiveChannels:
        stmt = select(PushSubscription).where(
            PushSubscription.user_id == user_id,
            PushSubscription.is_active.is_(True),
        )
        try:
            subscriptions = list(self.db.scalars(stmt).all())
        except SQLAlchemyError as exc:
            raise ChannelStoreError("Failed to list push subscriptions", {"error": str(exc)}) from exc
        return ActiveChannels(push_subscriptions=subscriptions, fcm_tokens=self.list_fcm_tokens(user_id))

    def touch_fcm_tokens(self, tokens: Sequence[str]) -> None:
        """Refresh ``last_used`` for tokens that are about to be sent to."""

        if not tokens:
            return
        try:
            self._execute(
                update(FCMToken)
                .where(FCMToken.token.in_(list(tokens)))
                .values(last_used=datetime.now(timezone.utc))
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise ChannelStoreError("Failed to refresh FCM tokens", {"error": str(exc)}) from exc
        self._commit("refresh FCM tokens")

    def retire_channels(self, channels: Iterable[Channel]) -> int:
        """Apply provider verdicts: deactivate gone subscriptions, delete dead tokens."""

        retired = 0
        for channel in channels:
            if channel.kind == "webpush":
                retired += self.deactivate_subscription(channel.address, user_id=channel.user_id)
            else:
                retired += self.remove_fcm_token(channel.address)
        if retired:
            logger.info("Invalid channels retired", retired=retired)
        return retired

    def cleanup_invalid_fcm_tokens(self, max_idle_days: int = 30) -> int:
        """Delete tokens that are inactive or have not been used for ``max_idle_days``."""

        cutoff = datetime.now(timezone.utc) - timedelta(days=max_idle_days)
        stmt = delete(FCMToken).where(
            or_(FCMToken.is_active.is_(False), FCMToken.last_used < cutoff)
        )
        deleted = self._delete_tokens(stmt)
        logger.info("Stale FCM tokens purged", deleted=deleted, max_idle_days=max_idle_days)
        return deleted
