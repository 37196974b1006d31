"""Firebase Cloud Messaging token and delivery endpoints."""
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Header, HTTPException, status
from loguru import logger

from tradyfi.api import deps
from tradyfi.config import settings
from tradyfi.core.payloads import NotificationPayload
from tradyfi.db.models.user import User
from tradyfi.schemas import (
    DispatchSummary,
    FCMTokenRead,
    FCMTokenRequest,
    SampleNotificationRequest,
    SendToTopicRequest,
    SendToUserRequest,
    StatusResponse,
    TopicRequest,
)
from tradyfi.services.dispatch import DispatchService
from tradyfi.services.notification_service import NotificationService
from tradyfi.utils.exceptions import ValidationError

router = APIRouter(prefix="/fcm", tags=["fcm"])


def _summary(result, message: str) -> DispatchSummary:
    return DispatchSummary(
        message=message,
        sent=result.success_count,
        failed=result.failure_count,
        invalid_channels=len(result.invalid_channels),
    )


def _require_topic_fields(payload: TopicRequest) -> None:
    if not payload.token or not payload.topic:
        raise ValidationError("token and topic are required")


@router.post("/save-token", response_model=StatusResponse)
def save_token(
    payload: FCMTokenRequest,
    user_agent: str | None = Header(default=None),
    service: NotificationService = Depends(deps.get_notification_service),
    current_user: User = Depends(deps.get_current_user),
):
    service.save_fcm_token(current_user.id, payload.fcm_token, payload.user_type, user_agent)
    return StatusResponse(message="FCM token saved successfully")


@router.post("/remove-token", response_model=StatusResponse)
def remove_token(
    payload: FCMTokenRequest,
    service: NotificationService = Depends(deps.get_notification_service),
    current_user: User = Depends(deps.get_current_user),
):
    service.remove_fcm_token(current_user.id, payload.fcm_token)
    return StatusResponse(message="FCM token removed successfully")


@router.post("/subscribe-topic", response_model=StatusResponse)
async def subscribe_topic(
    payload: TopicRequest,
    dispatcher: DispatchService = Depends(deps.get_dispatch_service),
    current_user: User = Depends(deps.get_current_user),
):
    _require_topic_fields(payload)
    if not await dispatcher.subscribe_to_topic([payload.token], payload.topic):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to subscribe to topic")
    return StatusResponse(message="Subscribed to topic successfully")


@router.post("/unsubscribe-topic", response_model=StatusResponse)
async def unsubscribe_topic(
    payload: TopicRequest,
    dispatcher: DispatchService = Depends(deps.get_dispatch_service),
    current_user: User = Depends(deps.get_current_user),
):
    _require_topic_fields(payload)
    if not await dispatcher.unsubscribe_from_topic([payload.token], payload.topic):
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to unsubscribe from topic"
        )
    return StatusResponse(message="Unsubscribed from topic successfully")


@router.post("/test", response_model=DispatchSummary)
async def test_notification(
    payload: SampleNotificationRequest | None = None,
    service: NotificationService = Depends(deps.get_notification_service),
    current_user: User = Depends(deps.get_current_user),
):
    message = payload.message if payload else SampleNotificationRequest().message
    result = await service.send_fcm_test(current_user.id, message)
    return _summary(result, "Test notification sent")


@router.post("/send-to-user", response_model=DispatchSummary)
async def send_to_user(
    payload: SendToUserRequest,
    service: NotificationService = Depends(deps.get_notification_service),
    admin: User = Depends(deps.get_current_admin),
):
    if not payload.target_user_id or not payload.title or not payload.body:
        raise ValidationError("targetUserId, title, and body are required")

    result = await service.send_to_user(
        payload.target_user_id,
        NotificationPayload(title=payload.title, body=payload.body, data=payload.data),
    )
    logger.info(
        "Admin notification sent",
        admin_id=str(admin.id),
        target_user_id=str(payload.target_user_id),
        sent=result.success_count,
    )
    return _summary(result, "Notification sent" if result.attempted else "No devices registered for user")


@router.post("/send-to-topic", response_model=DispatchSummary)
async def send_to_topic(
    payload: SendToTopicRequest,
    dispatcher: DispatchService = Depends(deps.get_dispatch_service),
    admin: User = Depends(deps.get_current_admin),
):
    if not payload.topic or not payload.title or not payload.body:
        raise ValidationError("topic, title, and body are required")

    success = await dispatcher.send_to_topic(
        payload.topic,
        NotificationPayload(title=payload.title, body=payload.body, data=payload.data),
    )
    return DispatchSummary(
        success=success,
        message="Notification sent to topic" if success else "Failed to send notification",
    )


@router.get("/tokens", response_model=List[FCMTokenRead])
def list_tokens(
    service: NotificationService = Depends(deps.get_notification_service),
    current_user: User = Depends(deps.get_current_user),
):
    return service.store.list_fcm_tokens(current_user.id)


@router.post("/cleanup-invalid", response_model=StatusResponse)
def cleanup_invalid(
    service: NotificationService = Depends(deps.get_notification_service),
    admin: User = Depends(deps.get_current_admin),
):
    deleted = service.store.cleanup_invalid_fcm_tokens(settings.FCM_TOKEN_MAX_IDLE_DAYS)
    return StatusResponse(message=f"Cleaned up {deleted} invalid FCM tokens")
