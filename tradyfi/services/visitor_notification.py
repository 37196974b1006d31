"""Visitor-arrival alerts for traders with a per-visitor cooldown."""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tradyfi.config import settings
from tradyfi.core.payloads import NotificationPayload, epoch_millis
from tradyfi.db.models.user import Trader
from tradyfi.db.models.visitor_notification import VisitorNotification
from tradyfi.services.notification_service import NotificationService
from tradyfi.utils.exceptions import ChannelStoreError, NotFoundError, TradyfiException


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive timestamps; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class VisitorCooldownTracker:
    """Remember when each (trader, visitor) pair was last alerted.

    Only the latest send time is kept: a simple debounce, not a sliding window.
    """

    def __init__(self, db: Session, cooldown: timedelta | None = None):
        self.db = db
        self.cooldown = cooldown or timedelta(minutes=settings.VISITOR_COOLDOWN_MINUTES)

    def get_last(self, trader_id: int, user_id: uuid.UUID) -> Optional[VisitorNotification]:
        stmt = select(VisitorNotification).where(
            VisitorNotification.trader_id == trader_id,
            VisitorNotification.user_id == user_id,
        )
        try:
            return self.db.scalars(stmt).first()
        except SQLAlchemyError as exc:
            raise ChannelStoreError("Failed to load visitor notification", {"error": str(exc)}) from exc

    def remaining(self, record: Optional[VisitorNotification], now: datetime) -> timedelta:
        """Time left before the pair may be alerted again (zero when cooled down)."""

        if record is None:
            return timedelta(0)
        elapsed = now - _as_utc(record.last_notification_sent)
        return max(self.cooldown - elapsed, timedelta(0))

    def should_notify(self, record: Optional[VisitorNotification], now: datetime) -> bool:
        return self.remaining(record, now) == timedelta(0)

    def record_sent(
        self, trader_id: int, user_id: uuid.UUID, visitor_name: str, sent_at: datetime
    ) -> VisitorNotification:
        record = self.get_last(trader_id, user_id)
        if record is None:
            record = VisitorNotification(
                trader_id=trader_id,
                user_id=user_id,
                visitor_name=visitor_name,
                last_notification_sent=sent_at,
            )
            self.db.add(record)
        else:
            record.visitor_name = visitor_name
            record.last_notification_sent = sent_at
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise ChannelStoreError("Failed to record visitor notification", {"error": str(exc)}) from exc
        return record


class VisitorNotificationService:
    """Alert a trader when a user logs into their portal."""

    def __init__(
        self,
        db: Session,
        notifier: NotificationService,
        tracker: VisitorCooldownTracker | None = None,
        base_domain: str | None = None,
    ):
        self.db = db
        self.notifier = notifier
        self.tracker = tracker or VisitorCooldownTracker(db)
        self.base_domain = base_domain or settings.PORTAL_BASE_DOMAIN

    def build_payload(self, trader: Trader, visitor_name: str) -> NotificationPayload:
        return NotificationPayload(
            title=f"{visitor_name} is now on your portal",
            body=f"{visitor_name} just logged into {trader.business_name}. Reach out while they are online!",
            click_action=trader.portal_url(self.base_domain),
            data={"type": "visitor", "traderId": str(trader.id), "visitorName": visitor_name, "timestamp": epoch_millis()},
        )

    async def handle_visitor_login(
        self,
        trader_id: int,
        user_id: uuid.UUID,
        visitor_name: str,
        now: datetime | None = None,
    ) -> bool:
        """Send the alert unless the pair is still cooling down; return whether it was sent.

        The record is written only after a successful send, so a failed alert
        does not suppress the next attempt.
        """

        now = _as_utc(now or datetime.now(timezone.utc))
        trader = self.db.get(Trader, trader_id)
        if trader is None:
            raise NotFoundError("Trader not found", {"trader_id": trader_id})

        record = self.tracker.get_last(trader_id, user_id)
        remaining = self.tracker.remaining(record, now)
        if remaining > timedelta(0):
            logger.info(
                "Visitor alert suppressed",
                trader_id=trader_id,
                user_id=str(user_id),
                remaining_minutes=round(remaining.total_seconds() / 60),
            )
            return False

        try:
            result = await self.notifier.send_to_user(trader.user_id, self.build_payload(trader, visitor_name))
        except TradyfiException as exc:
            logger.error("Visitor alert failed", trader_id=trader_id, user_id=str(user_id), error=exc.message)
            return False

        if result.success_count == 0:
            logger.warning(
                "Visitor alert not delivered to any device",
                trader_id=trader_id,
                user_id=str(user_id),
                failed=result.failure_count,
            )
            return False

        try:
            self.tracker.record_sent(trader_id, user_id, visitor_name, now)
        except ChannelStoreError as exc:
            logger.error("Failed to record visitor alert", trader_id=trader_id, error=exc.message)
        logger.info(
            "Visitor alert sent",
            trader_id=trader_id,
            user_id=str(user_id),
            first_visit=record is None,
            delivered=result.success_count,
        )
        return True
