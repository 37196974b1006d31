"""Tests for provider error classification."""
from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import patch

import pytest
from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging
from pywebpush import WebPushException

from tradyfi.core.payloads import NotificationPayload
from tradyfi.services.providers import FCMClient, WebPushClient, is_invalid_fcm_error
from tradyfi.utils.exceptions import ProviderError

SUBSCRIPTION = {"endpoint": "https://push.example.com/e1", "keys": {"p256dh": "key", "auth": "auth"}}
PAYLOAD = NotificationPayload(title="Hi", body="there", click_action="https://chidifabrics.tradyfi.ng")


def _webpush_failure(status_code: int) -> WebPushException:
    return WebPushException(
        f"Push failed: {status_code}", response=SimpleNamespace(status_code=status_code, text="")
    )


@pytest.mark.parametrize("status_code, invalid", [(404, True), (410, True), (429, False), (503, False)])
def test_webpush_status_codes_classify_channel(status_code, invalid):
    client = WebPushClient("private-key", "mailto:ops@tradyfi.ng")

    with patch("tradyfi.services.providers.webpush", side_effect=_webpush_failure(status_code)):
        with pytest.raises(ProviderError) as exc_info:
            client.send(SUBSCRIPTION, PAYLOAD)

    assert exc_info.value.invalid is invalid
    assert exc_info.value.code == str(status_code)


def test_webpush_passes_fresh_vapid_claims_and_json_payload():
    client = WebPushClient("private-key", "mailto:ops@tradyfi.ng", timeout=3)

    with patch("tradyfi.services.providers.webpush") as webpush_mock:
        client.send(SUBSCRIPTION, PAYLOAD)

    kwargs = webpush_mock.call_args.kwargs
    assert kwargs["subscription_info"] == SUBSCRIPTION
    assert kwargs["vapid_claims"] == {"sub": "mailto:ops@tradyfi.ng"}
    assert kwargs["timeout"] == 3
    assert '"clickAction": "https://chidifabrics.tradyfi.ng"' in kwargs["data"]


def test_unconfigured_webpush_fails_without_invalidating():
    with pytest.raises(ProviderError) as exc_info:
        WebPushClient(None, "mailto:ops@tradyfi.ng").send(SUBSCRIPTION, PAYLOAD)

    assert exc_info.value.invalid is False


@pytest.mark.parametrize(
    "error, invalid",
    [
        (messaging.UnregisteredError("Requested entity was not found."), True),
        (firebase_exceptions.InvalidArgumentError("The registration token is not a valid FCM registration token"), True),
        (firebase_exceptions.InvalidArgumentError("Message payload too large"), False),
        (firebase_exceptions.UnavailableError("Service unavailable"), False),
    ],
)
def test_fcm_error_classification(error, invalid):
    assert is_invalid_fcm_error(error) is invalid


def test_fcm_multicast_maps_per_token_responses():
    client = FCMClient(app=object())
    batch = SimpleNamespace(
        responses=[
            SimpleNamespace(success=True, exception=None),
            SimpleNamespace(success=False, exception=messaging.UnregisteredError("gone")),
            SimpleNamespace(success=False, exception=firebase_exceptions.UnavailableError("busy")),
        ]
    )

    with patch("tradyfi.services.providers.messaging.send_each_for_multicast", return_value=batch):
        outcomes = client.send_multicast(["t1", "t2", "t3"], PAYLOAD)

    assert [outcome.success for outcome in outcomes] == [True, False, False]
    assert outcomes[1].error.invalid is True
    assert outcomes[2].error.invalid is False


def test_unconfigured_fcm_client_raises_provider_error():
    client = FCMClient(app=None)

    assert client.enabled is False
    with pytest.raises(ProviderError):
        client.send_to_token("token", PAYLOAD)
