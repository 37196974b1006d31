"""Service layer package."""

from tradyfi.services.channel_store import ChannelStore
from tradyfi.services.chat_relay import ChatRelay
from tradyfi.services.dispatch import DispatchService
from tradyfi.services.notification_service import NotificationService
from tradyfi.services.visitor_notification import VisitorCooldownTracker, VisitorNotificationService

__all__ = [
    "ChannelStore",
    "ChatRelay",
    "DispatchService",
    "NotificationService",
    "VisitorCooldownTracker",
    "VisitorNotificationService",
]
