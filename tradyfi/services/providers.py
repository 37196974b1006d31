"""Push provider clients for Web Push (VAPID) and Firebase Cloud Messaging.

Both SDKs are synchronous. The clients expose blocking methods and raise
:class:`ProviderError` with ``invalid=True`` when the provider reports that a
destination is permanently gone; the dispatcher runs them off the event loop.
firebase-admin validates messages while encoding them and raises a plain
``ValueError`` (e.g. a malformed topic name); that is reported as a
non-invalid :class:`ProviderError` too.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import firebase_admin
import requests
from firebase_admin import credentials, messaging
from firebase_admin import exceptions as firebase_exceptions
from loguru import logger
from pywebpush import WebPushException, webpush

from tradyfi.config import Settings
from tradyfi.core.payloads import NotificationPayload
from tradyfi.utils.exceptions import ProviderError

GONE_STATUS_CODES = (404, 410)
INVALID_FCM_CODES = {
    "messaging/registration-token-not-registered",
    "messaging/invalid-registration-token",
    "registration-token-not-registered",
    "invalid-registration-token",
}
# FCM rejects multicast messages with more tokens than this.
FCM_MULTICAST_LIMIT = 500
FCM_APP_NAME = "tradyfi-fcm"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"


class WebPushClient:
    """Deliver encrypted payloads to browser push endpoints."""

    def __init__(
        self,
        vapid_private_key: Optional[str],
        vapid_subject: str,
        timeout: float = 10.0,
    ) -> None:
        self.vapid_private_key = vapid_private_key
        self.vapid_subject = vapid_subject
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.vapid_private_key)

    def send(self, subscription_info: Dict[str, object], payload: NotificationPayload) -> None:
        if not self.enabled:
            raise ProviderError("VAPID keys not configured")

        try:
            webpush(
                subscription_info=subscription_info,
                data=json.dumps(payload.to_dict()),
                vapid_private_key=self.vapid_private_key,
                # pywebpush mutates the claims dict (aud/exp), so pass a fresh one.
                vapid_claims={"sub": self.vapid_subject},
                timeout=self.timeout,
            )
        except WebPushException as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            raise ProviderError(
                f"Web push rejected: {exc}",
                invalid=status_code in GONE_STATUS_CODES,
                code=str(status_code) if status_code is not None else None,
            ) from exc
        except requests.RequestException as exc:
            raise ProviderError(f"Web push transport failure: {exc}") from exc

    def close(self) -> None:
        return None


def is_invalid_fcm_error(exc: Exception) -> bool:
    """Return True when FCM reports the registration token as permanently unusable."""

    if isinstance(exc, messaging.UnregisteredError):
        return True
    code = getattr(exc, "code", None)
    if isinstance(code, str) and code in INVALID_FCM_CODES:
        return True
    if isinstance(exc, firebase_exceptions.InvalidArgumentError):
        return "registration token" in str(exc).lower()
    return False


def _fcm_error(exc: Exception) -> ProviderError:
    return ProviderError(
        f"FCM rejected: {exc}",
        invalid=is_invalid_fcm_error(exc),
        code=getattr(exc, "code", None),
    )


@dataclass
class MulticastOutcome:
    """Per-token result of a multicast send, aligned with the input tokens."""

    token: str
    error: Optional[ProviderError] = None

    @property
    def success(self) -> bool:
        return self.error is None


class FCMClient:
    """Wrap one explicitly initialised firebase-admin application."""

    def __init__(self, app: Optional[firebase_admin.App] = None, default_icon: str = "/favicon.ico") -> None:
        self._app = app
        self.default_icon = default_icon

    @classmethod
    def from_settings(cls, settings: Settings) -> "FCMClient":
        if not settings.firebase_configured:
            logger.warning("Firebase credentials not configured, FCM delivery disabled")
            return cls(None, default_icon=settings.DEFAULT_NOTIFICATION_ICON)

        certificate = credentials.Certificate(
            {
                "type": "service_account",
                "project_id": settings.FIREBASE_PROJECT_ID,
                "client_email": settings.FIREBASE_CLIENT_EMAIL,
                "private_key": settings.FIREBASE_PRIVATE_KEY,
                "token_uri": GOOGLE_TOKEN_URI,
            }
        )
        app = firebase_admin.initialize_app(
            certificate,
            options={
                "projectId": settings.FIREBASE_PROJECT_ID,
                "httpTimeout": settings.PROVIDER_TIMEOUT_SECONDS,
            },
            name=FCM_APP_NAME,
        )
        logger.info("Firebase app initialised", project_id=settings.FIREBASE_PROJECT_ID)
        return cls(app, default_icon=settings.DEFAULT_NOTIFICATION_ICON)

    @property
    def enabled(self) -> bool:
        return self._app is not None

    def _require_app(self) -> firebase_admin.App:
        if self._app is None:
            raise ProviderError("Firebase credentials not configured")
        return self._app

    def _webpush_config(self, payload: NotificationPayload) -> messaging.WebpushConfig:
        link = payload.click_action if payload.click_action and payload.click_action.startswith("https://") else None
        return messaging.WebpushConfig(
            notification=messaging.WebpushNotification(
                title=payload.title,
                body=payload.body,
                icon=payload.icon or self.default_icon,
                badge=payload.badge or self.default_icon,
                image=payload.image,
                require_interaction=True,
            ),
            fcm_options=messaging.WebpushFCMOptions(link=link) if link else None,
        )

    def _platform_kwargs(self, payload: NotificationPayload) -> dict:
        return {
            "notification": messaging.Notification(
                title=payload.title, body=payload.body, image=payload.image
            ),
            "data": payload.fcm_data(),
            "webpush": self._webpush_config(payload),
            "android": messaging.AndroidConfig(
                priority="high",
                notification=messaging.AndroidNotification(
                    priority="high",
                    default_sound=True,
                    default_vibrate_timings=True,
                    click_action=payload.click_action,
                ),
            ),
            "apns": messaging.APNSConfig(
                payload=messaging.APNSPayload(aps=messaging.Aps(badge=1, sound="default"))
            ),
        }

    def send_to_token(self, token: str, payload: NotificationPayload) -> str:
        app = self._require_app()
        message = messaging.Message(token=token, **self._platform_kwargs(payload))
        try:
            return messaging.send(message, app=app)
        except (firebase_exceptions.FirebaseError, ValueError) as exc:
            raise _fcm_error(exc) from exc

    def send_multicast(self, tokens: Sequence[str], payload: NotificationPayload) -> List[MulticastOutcome]:
        app = self._require_app()
        message = messaging.MulticastMessage(tokens=list(tokens), **self._platform_kwargs(payload))
        try:
            batch = messaging.send_each_for_multicast(message, app=app)
        except (firebase_exceptions.FirebaseError, ValueError) as exc:
            raise _fcm_error(exc) from exc

        outcomes: List[MulticastOutcome] = []
        for token, response in zip(tokens, batch.responses):
            error = None if response.success else _fcm_error(response.exception)
            outcomes.append(MulticastOutcome(token=token, error=error))
        return outcomes

    def send_to_topic(self, topic: str, payload: NotificationPayload) -> str:
        app = self._require_app()
        message = messaging.Message(topic=topic, **self._platform_kwargs(payload))
        try:
            return messaging.send(message, app=app)
        except (firebase_exceptions.FirebaseError, ValueError) as exc:
            raise _fcm_error(exc) from exc

    def subscribe_to_topic(self, tokens: Sequence[str], topic: str) -> int:
        """Return the number of tokens the provider failed to subscribe."""

        app = self._require_app()
        try:
            response = messaging.subscribe_to_topic(list(tokens), topic, app=app)
        except (firebase_exceptions.FirebaseError, ValueError) as exc:
            raise _fcm_error(exc) from exc
        return response.failure_count

    def unsubscribe_from_topic(self, tokens: Sequence[str], topic: str) -> int:
        app = self._require_app()
        try:
            response = messaging.unsubscribe_from_topic(list(tokens), topic, app=app)
        except (firebase_exceptions.FirebaseError, ValueError) as exc:
            raise _fcm_error(exc) from exc
        return response.failure_count

    def close(self) -> None:
        if self._app is not None:
            firebase_admin.delete_app(self._app)
            self._app = None


def build_provider_clients(settings: Settings) -> tuple[FCMClient, WebPushClient]:
    """Construct both provider clients once for the process."""

    webpush_client = WebPushClient(
        vapid_private_key=settings.VAPID_PRIVATE_KEY,
        vapid_subject=settings.VAPID_SUBJECT,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
    )
    if not webpush_client.enabled:
        logger.warning("VAPID keys not configured, web push delivery disabled")
    return FCMClient.from_settings(settings), webpush_client
