"""Celery tasks for push channel maintenance and bulk delivery."""
from __future__ import annotations

import asyncio
import uuid
from typing import Any, Dict, Optional, Sequence

from loguru import logger

from tradyfi.celery_app import celery_app
from tradyfi.config import settings
from tradyfi.core.payloads import NotificationPayload
from tradyfi.db.session import SessionLocal
from tradyfi.services.channel_store import ChannelStore
from tradyfi.services.dispatch import DispatchService
from tradyfi.services.notification_service import NotificationService


def build_dispatcher() -> DispatchService:
    return DispatchService.from_settings(settings)


@celery_app.task(name="tradyfi.tasks.notifications.cleanup_invalid_fcm_tokens")
def cleanup_invalid_fcm_tokens(max_idle_days: Optional[int] = None) -> dict[str, int]:
    """Purge inactive FCM tokens and tokens unused for too long."""

    db = SessionLocal()
    try:
        deleted = ChannelStore(db).cleanup_invalid_fcm_tokens(max_idle_days or settings.FCM_TOKEN_MAX_IDLE_DAYS)
        logger.info("FCM token cleanup finished", deleted=deleted)
        return {"deleted": deleted}
    finally:
        db.close()


@celery_app.task(name="tradyfi.tasks.notifications.send_bulk_notifications")
def send_bulk_notifications(
    user_ids: Sequence[str],
    title: str,
    body: str,
    data: Optional[Dict[str, Any]] = None,
    rate_limit_per_second: Optional[int] = None,
) -> dict[str, int]:
    """Fan a notification out to many users through the throttled dispatcher."""

    db = SessionLocal()
    dispatcher = build_dispatcher()
    try:
        service = NotificationService(db, dispatcher)
        result = asyncio.run(
            service.send_bulk(
                [uuid.UUID(str(user_id)) for user_id in user_ids],
                NotificationPayload(title=title, body=body, data=data or {}),
                rate_limit_per_second=rate_limit_per_second,
            )
        )
        logger.info(
            "Bulk notifications processed",
            users=len(user_ids),
            sent=result.total_sent,
            failed=result.total_failed,
            batches=result.batches,
        )
        return {
            "sent": result.total_sent,
            "failed": result.total_failed,
            "batches": result.batches,
            "invalid_channels": len(result.invalid_channels),
        }
    finally:
        dispatcher.close()
        db.close()
