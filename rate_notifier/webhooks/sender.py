"""Webhook sender: signed delivery with immediate retries and queue hand-off."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx

from rate_notifier import metrics
from rate_notifier.config import get_settings
from rate_notifier.webhooks.config import WebhookConfig, WebhookConfigLoader
from rate_notifier.webhooks.deliveries import DeliveryRecorder, mask_url
from rate_notifier.webhooks.event import (
    DeploymentNotification,
    HealthCheck,
    RateData,
    RateNotification,
    StatusNotification,
    WebhookEventType,
    WebhookNotification,
)
from rate_notifier.webhooks.queue import WebhookQueue
from rate_notifier.webhooks.signer import WebhookSigner, canonical_json

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    """Result of a webhook delivery (one attempt or a whole retry loop)."""

    success: bool
    url: str
    status_code: int | None = None
    error: str | None = None
    attempt: int = 0
    duration_ms: int = 0
    queue_id: uuid.UUID | None = None


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class WebhookSender:
    """Delivers notifications to their family's configured URL.

    Delivery is best-effort: nothing raised while sending, recording or
    queuing escapes ``send_notification``.
    """

    def __init__(
        self,
        queue: WebhookQueue | None = None,
        recorder: DeliveryRecorder | None = None,
        config: WebhookConfig | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        user_agent: str | None = None,
    ):
        """
        Initialize the sender.

        Args:
            queue: Durable queue that receives notifications whose immediate
                retries are exhausted
            recorder: Delivery log
            config: Fixed configuration; defaults to the loaded (reloadable)
                webhook configuration
            client: Shared HTTP client; a short-lived client per attempt is
                used when omitted
            sleep: Coroutine used to wait between retries
            user_agent: User-Agent header value
        """
        self._queue = queue
        self._recorder = recorder
        self._config = config
        self._client = client
        self._sleep = sleep
        self.user_agent = user_agent or f"{get_settings().SERVICE_NAME}-Webhook/1.0"

    @property
    def config(self) -> WebhookConfig:
        if self._config is not None:
            return self._config
        return WebhookConfigLoader.get_config()

    # Notification families

    async def send_rate_update_notification(
        self,
        rate: RateData,
        previous: RateData | None = None,
    ) -> DeliveryResult:
        """Publish ``rate.updated`` (or ``rate.changed`` with a previous rate)."""
        return await self.notify(RateNotification(rate=rate, previous=previous))

    async def send_service_status_notification(
        self,
        event: WebhookEventType | str,
        status: str,
        uptime: float,
        checks: dict[str, HealthCheck] | None = None,
        previous_status: str | None = None,
    ) -> DeliveryResult:
        return await self.notify(
            StatusNotification(
                event_type=event,
                status=status,
                uptime=uptime,
                checks=checks or {},
                previous_status=previous_status,
            )
        )

    async def send_deployment_notification(
        self,
        event: WebhookEventType | str,
        deployment_id: str | None = None,
        environment: str | None = None,
        version: str | None = None,
        duration: float | None = None,
        message: str | None = None,
    ) -> DeliveryResult:
        return await self.notify(
            DeploymentNotification(
                event_type=event,
                deployment_id=deployment_id,
                environment=environment,
                version=version,
                duration=duration,
                message=message,
            )
        )

    async def notify(self, notification: WebhookNotification) -> DeliveryResult:
        """Send a notification to the URL configured for its family."""
        target_url = self.config.url_for(notification.family)
        return await self.send_notification(notification, target_url)

    # Delivery

    async def send_notification(
        self,
        notification: WebhookNotification,
        target_url: str | None,
    ) -> DeliveryResult:
        """
        Deliver a notification with immediate retries.

        Attempt 1 is sent at once; attempt n > 1 waits
        ``retry_base_delay_seconds * 2^(n-2)``. When every attempt fails the
        payload is handed to the durable queue.
        """
        event = notification.event

        if not target_url:
            logger.debug("Webhook notification %s skipped - no URL configured", event)
            return DeliveryResult(
                success=False,
                url="N/A",
                error=f"Webhook URL not configured for {notification.family.value} notifications",
            )

        settings = self.config.settings
        max_retries = max(settings.max_retries, 1)
        payload = notification.to_payload()
        start_time = time.perf_counter()

        result = DeliveryResult(success=False, url=target_url)
        for attempt in range(1, max_retries + 1):
            if attempt > 1:
                delay = settings.retry_base_delay_seconds * 2 ** (attempt - 2)
                logger.info(
                    "Retrying webhook delivery to %s (attempt %d/%d) after %.1fs",
                    mask_url(target_url),
                    attempt,
                    max_retries,
                    delay,
                )
                await self._sleep(delay)

            result = await self.attempt_delivery(target_url, event, payload, attempt)
            if result.success:
                break

            logger.warning(
                "Webhook delivery attempt %d/%d to %s failed (event: %s): %s",
                attempt,
                max_retries,
                mask_url(target_url),
                event,
                result.error,
            )

        result.duration_ms = _elapsed_ms(start_time)

        if result.success:
            logger.info(
                "Webhook delivered to %s (event: %s, status: %s, attempt: %d, %dms)",
                mask_url(target_url),
                event,
                result.status_code,
                result.attempt,
                result.duration_ms,
            )
            metrics.record_webhook_success(event, result.duration_ms)
        else:
            logger.error(
                "Webhook delivery to %s failed after %d attempts (event: %s): %s",
                mask_url(target_url),
                result.attempt,
                event,
                result.error,
            )
            metrics.record_webhook_failure(event, result.duration_ms)

        if self._recorder is not None:
            await self._recorder.record_delivery(
                event=event,
                url=target_url,
                payload=payload,
                success=result.success,
                attempts=result.attempt,
                duration_ms=result.duration_ms,
                status_code=result.status_code,
                error=result.error,
            )

        if not result.success:
            result.queue_id = await self._enqueue_for_retry(event, target_url, payload)

        return result

    async def _enqueue_for_retry(
        self,
        event: str,
        url: str,
        payload: dict[str, Any],
    ) -> uuid.UUID | None:
        """Hand a failed notification to the durable queue."""
        if self._queue is None:
            logger.warning("No webhook queue configured - %s notification dropped", event)
            return None

        settings = self.config.settings
        priority = self.config.priority_for(event)
        try:
            queue_id = await self._queue.enqueue(
                event,
                url,
                payload,
                max_attempts=settings.queue_max_attempts,
                priority=priority,
                delay_seconds=settings.queue_delay_seconds,
            )
        except Exception as e:
            logger.error("Failed to queue webhook notification %s for retry: %s", event, e)
            return None

        logger.info(
            "Webhook notification queued for retry (queue id: %s, event: %s, priority: %s)",
            queue_id,
            event,
            priority.value,
        )
        return queue_id

    async def attempt_delivery(
        self,
        url: str,
        event: str,
        payload: Any,
        attempt: int,
        extra_headers: dict[str, str] | None = None,
    ) -> DeliveryResult:
        """Make a single signed POST. Every failure becomes a failed result."""
        payload_json = canonical_json(payload)
        timestamp = payload.get("timestamp") if isinstance(payload, dict) else None
        headers = WebhookSigner.get_headers(
            payload_json,
            self.config.secret,
            event,
            timestamp or datetime.now(UTC).isoformat(),
            attempt,
            self.user_agent,
        )
        if extra_headers:
            headers.update(extra_headers)

        timeout = self.config.settings.timeout_seconds
        start_time = time.perf_counter()

        try:
            if self._client is not None:
                response = await self._client.post(
                    url,
                    content=payload_json.encode("utf-8"),
                    headers=headers,
                    timeout=timeout,
                )
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.post(
                        url,
                        content=payload_json.encode("utf-8"),
                        headers=headers,
                    )
        except httpx.TimeoutException:
            return DeliveryResult(
                success=False,
                url=url,
                error=f"Webhook request failed: timeout after {timeout}s",
                attempt=attempt,
                duration_ms=_elapsed_ms(start_time),
            )
        except (httpx.RequestError, httpx.InvalidURL) as e:
            return DeliveryResult(
                success=False,
                url=url,
                error=f"Webhook request failed: {e}"[:500],
                attempt=attempt,
                duration_ms=_elapsed_ms(start_time),
            )
        except Exception as e:
            logger.exception("Unexpected error delivering webhook to %s", mask_url(url))
            return DeliveryResult(
                success=False,
                url=url,
                error=f"Webhook request failed: {e}"[:500],
                attempt=attempt,
                duration_ms=_elapsed_ms(start_time),
            )

        if 200 <= response.status_code < 300:
            return DeliveryResult(
                success=True,
                url=url,
                status_code=response.status_code,
                attempt=attempt,
                duration_ms=_elapsed_ms(start_time),
            )

        return DeliveryResult(
            success=False,
            url=url,
            status_code=response.status_code,
            error=f"HTTP {response.status_code}: {response.reason_phrase}",
            attempt=attempt,
            duration_ms=_elapsed_ms(start_time),
        )

    def verify_signature(self, payload: str, signature: str) -> bool:
        """Check a signature against the configured secret."""
        return WebhookSigner.verify(payload, self.config.secret, signature)
