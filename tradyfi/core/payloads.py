"""Notification payload and delivery channel value objects."""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Literal, Optional

ChannelKind = Literal["webpush", "fcm"]

ELLIPSIS = "..."


def truncate_body(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters, marking the cut with an ellipsis."""

    if len(text) <= limit:
        return text
    return text[:limit] + ELLIPSIS


def epoch_millis() -> str:
    return str(int(time.time() * 1000))


@dataclass(frozen=True)
class Channel:
    """One delivery destination: a web-push endpoint or an FCM token."""

    kind: ChannelKind
    address: str
    keys: Optional[Dict[str, str]] = field(default=None, compare=False, hash=False)
    user_id: Optional[uuid.UUID] = field(default=None, compare=False, hash=False)

    @classmethod
    def webpush(cls, endpoint: str, p256dh: str, auth: str, user_id: uuid.UUID | None = None) -> "Channel":
        return cls("webpush", endpoint, {"p256dh": p256dh, "auth": auth}, user_id)

    @classmethod
    def fcm(cls, token: str, user_id: uuid.UUID | None = None) -> "Channel":
        return cls("fcm", token, None, user_id)

    @property
    def subscription_info(self) -> Dict[str, Any]:
        """Browser subscription shape expected by the web-push client."""

        return {"endpoint": self.address, "keys": dict(self.keys or {})}

    @property
    def preview(self) -> str:
        return f"{self.address[:20]}..."


@dataclass
class NotificationPayload:
    """Provider-neutral notification content."""

    title: str
    body: str
    icon: Optional[str] = None
    badge: Optional[str] = None
    click_action: Optional[str] = None
    image: Optional[str] = None
    data: Dict[str, str] = field(default_factory=dict)

    def truncated(self, limit: int) -> "NotificationPayload":
        return replace(self, body=truncate_body(self.body, limit), data=dict(self.data))

    def fcm_data(self) -> Dict[str, str]:
        """FCM only accepts string values in the data map."""

        data = {key: str(value) for key, value in self.data.items() if value is not None}
        if self.click_action:
            data.setdefault("clickAction", self.click_action)
        return data

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "body": self.body,
            "icon": self.icon,
            "badge": self.badge,
            "clickAction": self.click_action,
            "data": dict(self.data),
        }
