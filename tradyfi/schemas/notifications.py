"""Pydantic models for push and FCM notification endpoints."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

UserType = Literal["user", "trader"]


class CamelModel(BaseModel):
    """Accept and emit the camelCase keys the web client uses."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PushKeys(CamelModel):
    p256dh: Optional[str] = None
    auth: Optional[str] = None


class PushSubscriptionIn(CamelModel):
    """Browser ``PushSubscription.toJSON()`` shape."""

    endpoint: Optional[str] = None
    keys: Optional[PushKeys] = None


class PushSubscribeRequest(CamelModel):
    subscription: Optional[PushSubscriptionIn] = None
    user_type: UserType = "user"


class PushUnsubscribeRequest(CamelModel):
    endpoint: Optional[str] = None


class FCMTokenRequest(CamelModel):
    fcm_token: Optional[str] = None
    user_type: UserType = "user"


class TopicRequest(CamelModel):
    token: Optional[str] = None
    topic: Optional[str] = None


class SampleNotificationRequest(CamelModel):
    message: str = "This is a test notification from Tradyfi!"


class SendToUserRequest(CamelModel):
    target_user_id: Optional[uuid.UUID] = None
    title: Optional[str] = None
    body: Optional[str] = None
    data: Dict[str, str] = Field(default_factory=dict)


class SendToTopicRequest(CamelModel):
    topic: Optional[str] = None
    title: Optional[str] = None
    body: Optional[str] = None
    data: Dict[str, str] = Field(default_factory=dict)


class DispatchSummary(CamelModel):
    """Aggregate outcome of a notification request."""

    success: bool = True
    message: Optional[str] = None
    sent: int = 0
    failed: int = 0
    invalid_channels: int = 0


class StatusResponse(CamelModel):
    success: bool = True
    message: str


class FCMTokenRead(CamelModel):
    """Token metadata; the raw token is never returned."""

    id: uuid.UUID
    user_type: str
    device_info: Optional[str] = None
    is_active: bool
    last_used: Optional[datetime] = None
    created_at: Optional[datetime] = None
    token_preview: str

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class VisitorLoginRequest(CamelModel):
    visitor_name: Optional[str] = None


class VisitorLoginResponse(CamelModel):
    notified: bool
    trader_id: int
