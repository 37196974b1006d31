"""Web Push subscription endpoints."""
from fastapi import APIRouter, Depends, Header

from tradyfi.api import deps
from tradyfi.config import settings
from tradyfi.db.models.user import User
from tradyfi.schemas import DispatchSummary, PushSubscribeRequest, PushUnsubscribeRequest, StatusResponse
from tradyfi.services.notification_service import NotificationService

router = APIRouter(prefix="/push", tags=["push"])


@router.get("/vapid-public-key")
def get_vapid_public_key(current_user: User = Depends(deps.get_current_user)):
    return {"publicKey": settings.VAPID_PUBLIC_KEY}


@router.post("/subscribe", response_model=StatusResponse)
def subscribe(
    payload: PushSubscribeRequest,
    user_agent: str | None = Header(default=None),
    service: NotificationService = Depends(deps.get_notification_service),
    current_user: User = Depends(deps.get_current_user),
):
    subscription = payload.subscription.model_dump() if payload.subscription else None
    service.subscribe(current_user.id, subscription, payload.user_type, user_agent)
    return StatusResponse(message="Subscription saved successfully")


@router.post("/unsubscribe", response_model=StatusResponse)
def unsubscribe(
    payload: PushUnsubscribeRequest,
    service: NotificationService = Depends(deps.get_notification_service),
    current_user: User = Depends(deps.get_current_user),
):
    service.unsubscribe(current_user.id, payload.endpoint)
    return StatusResponse(message="Unsubscribed successfully")


@router.post("/test", response_model=DispatchSummary)
async def test_notification(
    service: NotificationService = Depends(deps.get_notification_service),
    current_user: User = Depends(deps.get_current_user),
):
    result = await service.send_webpush_test(current_user.id)
    return DispatchSummary(
        message="Test notification sent",
        sent=result.success_count,
        failed=result.failure_count,
        invalid_channels=len(result.invalid_channels),
    )
