"""Database models package."""
from tradyfi.db.models.user import Trader, User
from tradyfi.db.models.push_subscription import FCMToken, PushSubscription
from tradyfi.db.models.visitor_notification import VisitorNotification
from tradyfi.db.models.chat import ChatMessage, ChatRoom

__all__ = [
    "User",
    "Trader",
    "PushSubscription",
    "FCMToken",
    "VisitorNotification",
    "ChatRoom",
    "ChatMessage",
]
