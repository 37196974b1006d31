"""Multi-channel notification dispatch.

The dispatcher only talks to provider clients. It never mutates the channel
store: channels the providers report as permanently invalid are returned in
the result so the caller can retire them.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence, TypeVar

from loguru import logger

from tradyfi.config import Settings
from tradyfi.core.payloads import Channel, NotificationPayload, epoch_millis
from tradyfi.services.providers import (
    FCM_MULTICAST_LIMIT,
    MulticastOutcome,
    build_provider_clients,
)
from tradyfi.utils.exceptions import ProviderError

T = TypeVar("T")


class FCMProvider(Protocol):
    enabled: bool

    def send_to_token(self, token: str, payload: NotificationPayload) -> str: ...

    def send_multicast(self, tokens: Sequence[str], payload: NotificationPayload) -> List[MulticastOutcome]: ...

    def send_to_topic(self, topic: str, payload: NotificationPayload) -> str: ...

    def subscribe_to_topic(self, tokens: Sequence[str], topic: str) -> int: ...

    def unsubscribe_from_topic(self, tokens: Sequence[str], topic: str) -> int: ...

    def close(self) -> None: ...


class WebPushProvider(Protocol):
    enabled: bool

    def send(self, subscription_info: dict, payload: NotificationPayload) -> None: ...

    def close(self) -> None: ...


@dataclass
class DispatchResult:
    """Aggregate outcome of sending one payload to a set of channels."""

    success_count: int = 0
    failure_count: int = 0
    invalid_channels: List[Channel] = field(default_factory=list)
    transient_channels: List[Channel] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.success_count + self.failure_count

    @property
    def all_failed(self) -> bool:
        return self.attempted > 0 and self.success_count == 0

    def record(self, channel: Channel, error: Optional[ProviderError]) -> None:
        if error is None:
            self.success_count += 1
            return
        self.failure_count += 1
        if error.invalid:
            self.invalid_channels.append(channel)
        else:
            self.transient_channels.append(channel)


@dataclass
class BulkJob:
    channels: Sequence[Channel]
    payload: NotificationPayload


@dataclass
class BulkDispatchResult:
    total_sent: int = 0
    total_failed: int = 0
    batches: int = 0
    invalid_channels: List[Channel] = field(default_factory=list)


class DispatchService:
    """Fan notifications out across web-push and FCM channels."""

    def __init__(
        self,
        fcm_client: FCMProvider,
        webpush_client: WebPushProvider,
        *,
        timeout: float = 10.0,
        body_max_length: int = 100,
        batch_size: int = 100,
        batch_pause: float = 1.0,
        default_icon: str = "/favicon.ico",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.fcm_client = fcm_client
        self.webpush_client = webpush_client
        self.timeout = timeout
        self.body_max_length = body_max_length
        self.batch_size = batch_size
        self.batch_pause = batch_pause
        self.default_icon = default_icon
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings) -> "DispatchService":
        fcm_client, webpush_client = build_provider_clients(settings)
        return cls(
            fcm_client,
            webpush_client,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            body_max_length=settings.NOTIFICATION_BODY_MAX_LENGTH,
            batch_size=settings.BULK_BATCH_SIZE,
            batch_pause=settings.BULK_BATCH_PAUSE_SECONDS,
            default_icon=settings.DEFAULT_NOTIFICATION_ICON,
        )

    def close(self) -> None:
        self.fcm_client.close()
        self.webpush_client.close()

    async def aclose(self) -> None:
        """Close the provider clients from inside a running event loop.

        ``firebase_admin.delete_app`` drives its own ``asyncio.run`` to shut
        down the messaging client, so it has to run in a worker thread.
        """

        await asyncio.to_thread(self.close)

    def _prepare(self, payload: NotificationPayload) -> NotificationPayload:
        prepared = payload.truncated(self.body_max_length)
        if prepared.icon is None:
            prepared.icon = self.default_icon
        return prepared

    async def _call(self, func: Callable[..., T], *args) -> T:
        """Run a blocking provider call in a worker thread, bounded by the timeout."""

        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)

    async def _attempt(self, channel: Channel, payload: NotificationPayload) -> Optional[ProviderError]:
        try:
            if channel.kind == "webpush":
                await self._call(self.webpush_client.send, channel.subscription_info, payload)
            else:
                await self._call(self.fcm_client.send_to_token, channel.address, payload)
        except ProviderError as exc:
            self._log_failure(channel, exc)
            return exc
        except asyncio.TimeoutError:
            error = ProviderError(f"Provider call exceeded {self.timeout}s")
            self._log_failure(channel, error)
            return error
        except Exception as exc:
            logger.exception("Unexpected provider failure", kind=channel.kind, channel=channel.preview)
            return ProviderError(str(exc))
        return None

    async def _attempt_multicast(
        self, channels: Sequence[Channel], payload: NotificationPayload
    ) -> List[tuple[Channel, Optional[ProviderError]]]:
        tokens = [channel.address for channel in channels]
        try:
            outcomes = await self._call(self.fcm_client.send_multicast, tokens, payload)
        except asyncio.TimeoutError:
            error = ProviderError(f"FCM multicast exceeded {self.timeout}s")
            logger.warning("FCM multicast timed out", tokens=len(tokens))
            return [(channel, error) for channel in channels]
        except ProviderError as exc:
            logger.warning("FCM multicast failed", tokens=len(tokens), error=exc.message)
            return [(channel, exc) for channel in channels]
        except Exception as exc:
            logger.exception("Unexpected FCM multicast failure", tokens=len(tokens))
            error = ProviderError(str(exc))
            return [(channel, error) for channel in channels]

        pairs = []
        for channel, outcome in zip(channels, outcomes):
            if outcome.error is not None:
                self._log_failure(channel, outcome.error)
            pairs.append((channel, outcome.error))
        return pairs

    @staticmethod
    def _log_failure(channel: Channel, error: ProviderError) -> None:
        if error.invalid:
            logger.info("Channel reported invalid", kind=channel.kind, channel=channel.preview, code=error.code)
        else:
            logger.warning(
                "Transient delivery failure",
                kind=channel.kind,
                channel=channel.preview,
                error=error.message,
            )

    async def send_to_one(self, channel: Channel, payload: NotificationPayload) -> bool:
        """Deliver to a single channel and report whether the provider accepted it."""

        error = await self._attempt(channel, self._prepare(payload))
        return error is None

    async def send_to_many(self, channels: Sequence[Channel], payload: NotificationPayload) -> DispatchResult:
        """Deliver to every channel independently and aggregate the outcome.

        Web-push endpoints are sent one request each; FCM tokens go out as
        multicast batches with per-token results. All requests run
        concurrently and are joined before the counts are reported.
        """

        result = DispatchResult()
        if not channels:
            return result

        prepared = self._prepare(payload)
        single_channels = [channel for channel in channels if channel.kind == "webpush"]
        fcm_channels = [channel for channel in channels if channel.kind == "fcm"]
        # A lone token goes through the plain send API.
        if len(fcm_channels) == 1:
            single_channels.extend(fcm_channels)
            fcm_channels = []

        single_calls = [self._attempt(channel, prepared) for channel in single_channels]
        multicast_calls = [
            self._attempt_multicast(fcm_channels[start : start + FCM_MULTICAST_LIMIT], prepared)
            for start in range(0, len(fcm_channels), FCM_MULTICAST_LIMIT)
        ]

        gathered = await asyncio.gather(*single_calls, *multicast_calls)
        single_results = gathered[: len(single_calls)]
        multicast_results = gathered[len(single_calls) :]

        for channel, error in zip(single_channels, single_results):
            result.record(channel, error)
        for pairs in multicast_results:
            for channel, error in pairs:
                result.record(channel, error)

        logger.info(
            "Notification dispatched",
            channels=len(channels),
            success=result.success_count,
            failure=result.failure_count,
            invalid=len(result.invalid_channels),
        )
        return result

    async def send_to_topic(self, topic: str, payload: NotificationPayload) -> bool:
        """Broadcast to an FCM topic; no per-recipient tracking."""

        try:
            message_id = await self._call(self.fcm_client.send_to_topic, topic, self._prepare(payload))
        except (ProviderError, asyncio.TimeoutError) as exc:
            logger.warning("FCM topic send failed", topic=topic, error=str(exc))
            return False
        except Exception:
            logger.exception("Unexpected FCM topic send failure", topic=topic)
            return False
        logger.info("FCM topic message sent", topic=topic, message_id=message_id)
        return True

    async def subscribe_to_topic(self, tokens: Sequence[str], topic: str) -> bool:
        return await self._manage_topic(self.fcm_client.subscribe_to_topic, tokens, topic, "subscribe")

    async def unsubscribe_from_topic(self, tokens: Sequence[str], topic: str) -> bool:
        return await self._manage_topic(self.fcm_client.unsubscribe_from_topic, tokens, topic, "unsubscribe")

    async def _manage_topic(self, func, tokens: Sequence[str], topic: str, action: str) -> bool:
        try:
            failures = await self._call(func, list(tokens), topic)
        except (ProviderError, asyncio.TimeoutError) as exc:
            logger.warning(f"FCM topic {action} failed", topic=topic, error=str(exc))
            return False
        except Exception:
            logger.exception(f"Unexpected FCM topic {action} failure", topic=topic)
            return False
        if failures:
            logger.warning(f"FCM topic {action} partially failed", topic=topic, failures=failures)
        else:
            logger.info(f"FCM topic {action} succeeded", topic=topic, tokens=len(tokens))
        return True

    async def send_bulk(
        self, jobs: Sequence[BulkJob], rate_limit_per_second: Optional[int] = None
    ) -> BulkDispatchResult:
        """Dispatch many notifications in fixed-size batches with a pause in between."""

        batch_size = rate_limit_per_second or self.batch_size
        summary = BulkDispatchResult()
        for start in range(0, len(jobs), batch_size):
            batch = jobs[start : start + batch_size]
            results = await asyncio.gather(*(self.send_to_many(job.channels, job.payload) for job in batch))
            summary.batches += 1
            for result in results:
                summary.total_sent += result.success_count
                summary.total_failed += result.failure_count
                summary.invalid_channels.extend(result.invalid_channels)

            if start + batch_size < len(jobs):
                await self._sleep(self.batch_pause)

        logger.info(
            "Bulk dispatch finished",
            jobs=len(jobs),
            batches=summary.batches,
            sent=summary.total_sent,
            failed=summary.total_failed,
        )
        return summary

    def build_chat_payload(
        self, sender_name: str, message: str, room_id: int, recipient_is_trader: bool
    ) -> NotificationPayload:
        click_action = (
            f"/trader/dashboard?tab=chats&room={room_id}" if recipient_is_trader else f"/chat/{room_id}"
        )
        return NotificationPayload(
            title=f"New message from {sender_name}",
            body=message,
            icon=self.default_icon,
            badge=self.default_icon,
            click_action=click_action,
            data={
                "type": "chat",
                "chatRoomId": str(room_id),
                "senderName": sender_name,
                "isTrader": str(recipient_is_trader).lower(),
                "timestamp": epoch_millis(),
            },
        )
