"""
Web Push delivery.

Purpose:
- Send one reminder payload to one subscriber endpoint and classify the result
- Fan out to many subscribers with a bounded number of in-flight sends

Classification:
- 2xx                       -> delivered
- 404 / 410 (endpoint gone) -> expired  (signal only; nothing is written here)
- anything else / exception -> failed   (never retried within a run)
"""
import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol

from pywebpush import WebPushException, webpush

from core.errors import PushTransportError
from models.schemas import DeliveryOutcome, DeliveryStatus, NotificationPayload, Subscriber

logger = logging.getLogger(__name__)

EXPIRED_STATUS_CODES = frozenset({404, 410})


class PushTransport(Protocol):
    async def send(self, endpoint: Dict[str, Any], data: str) -> int:
        """Deliver `data` to the endpoint and return the push service's HTTP status."""
        ...


class WebPushTransport:
    """PushTransport backed by pywebpush with VAPID credentials."""

    def __init__(self, private_key: Optional[str], subject: str, timeout: float = 10.0):
        self.private_key = private_key
        self.subject = subject
        self.timeout = timeout
        if not private_key:
            logger.warning("VAPID private key not configured; push sends will fail. Generate keys with: vapid --gen")

    def _send_sync(self, endpoint: Dict[str, Any], data: str) -> int:
        if not self.private_key:
            raise PushTransportError("VAPID private key not configured")
        try:
            response = webpush(
                subscription_info=endpoint,
                data=data,
                vapid_private_key=self.private_key,
                # pywebpush adds aud/exp to the claims dict, so hand it a fresh one
                vapid_claims={"sub": self.subject},
                timeout=self.timeout,
            )
        except WebPushException as e:
            if e.response is not None:
                return e.response.status_code
            raise PushTransportError(str(e)) from e
        return response.status_code

    async def send(self, endpoint: Dict[str, Any], data: str) -> int:
        # pywebpush is blocking (requests); keep it off the event loop
        return await asyncio.to_thread(self._send_sync, endpoint, data)


class PushDispatcher:
    def __init__(self, transport: PushTransport, concurrency: int = 10):
        self.transport = transport
        self.concurrency = max(1, concurrency)

    async def dispatch(self, subscriber: Subscriber, payload: NotificationPayload) -> DeliveryOutcome:
        """One transport call for one subscriber. Never raises for delivery problems."""
        endpoint = subscriber.push_subscription
        if not endpoint or not endpoint.get("endpoint"):
            return DeliveryOutcome(
                subscriber_id=subscriber.id,
                status=DeliveryStatus.FAILED,
                error="no delivery endpoint registered",
            )

        try:
            status_code = await self.transport.send(endpoint, payload.to_json())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Push to %s failed: %s", subscriber.id, e)
            return DeliveryOutcome(subscriber_id=subscriber.id, status=DeliveryStatus.FAILED, error=str(e) or type(e).__name__)

        if 200 <= status_code < 300:
            logger.debug("Reminder delivered to %s", subscriber.id)
            return DeliveryOutcome(subscriber_id=subscriber.id, status=DeliveryStatus.DELIVERED, status_code=status_code)
        if status_code in EXPIRED_STATUS_CODES:
            logger.info("Push endpoint for %s has expired (HTTP %s)", subscriber.id, status_code)
            return DeliveryOutcome(subscriber_id=subscriber.id, status=DeliveryStatus.EXPIRED, status_code=status_code)
        logger.warning("Push to %s rejected with HTTP %s", subscriber.id, status_code)
        return DeliveryOutcome(
            subscriber_id=subscriber.id,
            status=DeliveryStatus.FAILED,
            status_code=status_code,
            error=f"push service responded with HTTP {status_code}",
        )

    def spawn(self, subscribers: Iterable[Subscriber], payload: NotificationPayload) -> List[asyncio.Task]:
        """Start one task per subscriber; at most `concurrency` sends are in flight."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(subscriber: Subscriber) -> DeliveryOutcome:
            async with semaphore:
                return await self.dispatch(subscriber, payload)

        return [
            asyncio.create_task(_bounded(s), name=f"push:{s.id}")
            for s in subscribers
        ]

    async def dispatch_all(self, subscribers: Iterable[Subscriber], payload: NotificationPayload) -> List[DeliveryOutcome]:
        tasks = self.spawn(subscribers, payload)
        if not tasks:
            return []
        return list(await asyncio.gather(*tasks))

