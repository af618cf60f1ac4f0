"""Notification webhook client - forwards domain events with exponential backoff"""

import asyncio
import logging
from typing import Any, Dict, Iterable, Optional

import httpx

from tanda_ledger.config import settings
from tanda_ledger.domain.events import DomainEvent
from tanda_ledger.infrastructure.observability.metrics import webhook_failure_counter, webhook_latency_histogram


class NotificationClient:
    """Posts pool events (round opened, payout released, ...) to the notification service"""

    def __init__(
        self,
        webhook_url: str | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = webhook_url or settings.notification_webhook_url
        self.timeout = settings.http_timeout_seconds
        self.max_retries = settings.webhook_max_retries
        self.backoff_base = settings.webhook_backoff_base
        self._transport = transport

    async def send_event(self, payload: Dict[str, Any]) -> None:
        """
        Deliver one event, retrying on 5xx responses and network failures.

        Retry strategy:
        - Exponential backoff: base, 2x, 4x, ... (base * 2^(attempt-1))
        - 4xx responses are not retried; the payload will not get better
        - Re-raises the last error once retries are exhausted
        """
        attempt = 0
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            while True:
                try:
                    with webhook_latency_histogram.time():
                        response = await client.post(self.webhook_url, json=payload)
                        response.raise_for_status()
                        return

                except httpx.HTTPStatusError as e:
                    webhook_failure_counter.inc()
                    if e.response.status_code < 500:
                        raise
                    attempt += 1
                    if attempt >= self.max_retries:
                        raise

                except httpx.RequestError:
                    webhook_failure_counter.inc()
                    attempt += 1
                    if attempt >= self.max_retries:
                        raise

                await asyncio.sleep(self.backoff_base * (2 ** (attempt - 1)))

    async def publish(self, events: Iterable[DomainEvent]) -> None:
        """Send events in order; a failed delivery is logged and does not stop the rest"""
        for event in events:
            try:
                await self.send_event(event.to_dict())
            except httpx.HTTPError as e:
                logging.error(
                    f"Notification delivery failed: {e}",
                    extra={"pool_id": event.pool_id, "event": event.type.value},
                )
