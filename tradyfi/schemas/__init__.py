"""Pydantic schemas package."""

from tradyfi.schemas.auth import TokenPayload
from tradyfi.schemas.notifications import (
    DispatchSummary,
    FCMTokenRead,
    FCMTokenRequest,
    PushSubscribeRequest,
    PushUnsubscribeRequest,
    SampleNotificationRequest,
    SendToTopicRequest,
    SendToUserRequest,
    StatusResponse,
    TopicRequest,
    VisitorLoginRequest,
    VisitorLoginResponse,
)
from tradyfi.schemas.realtime import ChatMessageCreate, ChatMessageRead

__all__ = [
    "TokenPayload",
    "DispatchSummary",
    "FCMTokenRead",
    "FCMTokenRequest",
    "PushSubscribeRequest",
    "PushUnsubscribeRequest",
    "SampleNotificationRequest",
    "SendToTopicRequest",
    "SendToUserRequest",
    "StatusResponse",
    "TopicRequest",
    "VisitorLoginRequest",
    "VisitorLoginResponse",
    "ChatMessageCreate",
    "ChatMessageRead",
]
