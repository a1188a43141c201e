"""Durable webhook queue worker."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from rate_notifier import metrics
from rate_notifier.webhooks.config import WebhookConfigLoader, WebhookSettings
from rate_notifier.webhooks.deliveries import DeliveryRecorder, mask_url
from rate_notifier.webhooks.models import WebhookQueueItem
from rate_notifier.webhooks.queue import WebhookQueue
from rate_notifier.webhooks.sender import WebhookSender

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 24 * 60 * 60


class QueueWorker:
    """Processes due items from the durable webhook queue.

    At most one worker may run against a given queue store: the
    ``is_processing`` guard only prevents overlapping passes within this
    process.
    """

    def __init__(
        self,
        queue: WebhookQueue,
        sender: WebhookSender,
        recorder: DeliveryRecorder | None = None,
        settings: WebhookSettings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._queue = queue
        self._sender = sender
        self._recorder = recorder
        self._settings = settings
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self._cleanup_task: asyncio.Task | None = None
        self.is_processing = False

    @property
    def settings(self) -> WebhookSettings:
        if self._settings is not None:
            return self._settings
        return WebhookConfigLoader.get_config().settings

    @property
    def is_running(self) -> bool:
        return self._task is not None

    async def start(self, interval_seconds: float | None = None) -> None:
        """Run one pass now, then every ``interval_seconds``; sweep daily."""
        if self._task is not None:
            logger.warning("Webhook queue worker already started")
            return

        interval = interval_seconds
        if interval is None:
            interval = self.settings.worker_interval_seconds
        self._task = asyncio.create_task(self._process_loop(interval))
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info("Webhook queue worker started (interval: %ss)", interval)

    async def stop(self) -> None:
        """Cancel the processing and cleanup timers."""
        if self._task is None:
            return

        for task in (self._task, self._cleanup_task):
            if task is None:
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        self._task = None
        self._cleanup_task = None
        logger.info("Webhook queue worker stopped")

    async def _process_loop(self, interval: float) -> None:
        while True:
            try:
                await self.process_queue()
            except Exception as e:
                logger.error("Error in webhook queue worker: %s", e)
            await self._sleep(interval)

    async def _cleanup_loop(self) -> None:
        while True:
            await self._sleep(CLEANUP_INTERVAL_SECONDS)
            try:
                await self._queue.clean_old_webhooks(self.settings.retention_days)
            except Exception as e:
                logger.error("Error in webhook queue cleanup: %s", e)

    async def process_queue(self) -> int:
        """
        Attempt every due item of one batch concurrently.

        Returns:
            Number of items taken from the queue (0 when a pass is already
            running)
        """
        if self.is_processing:
            logger.debug("Webhook queue already being processed, skipping")
            return 0

        self.is_processing = True
        try:
            webhooks = await self._queue.get_pending_webhooks(self.settings.worker_batch_size)
            if not webhooks:
                logger.debug("No pending webhooks to process")
                return 0

            logger.info("Processing %d queued webhook(s)", len(webhooks))
            results = await asyncio.gather(
                *(self._process_webhook(webhook) for webhook in webhooks),
                return_exceptions=True,
            )
            for webhook, outcome in zip(webhooks, results):
                if isinstance(outcome, Exception):
                    logger.error("Error processing queued webhook %s: %s", webhook.id, outcome)

            return len(webhooks)
        finally:
            self.is_processing = False

    async def _process_webhook(self, webhook: WebhookQueueItem) -> None:
        if not await self._queue.claim(webhook.id):
            logger.debug("Queued webhook %s was claimed elsewhere, skipping", webhook.id)
            return

        attempt = webhook.attempts + 1
        try:
            result = await self._sender.attempt_delivery(
                webhook.url,
                webhook.event,
                webhook.payload,
                attempt,
                extra_headers={"X-Webhook-Queue-Id": str(webhook.id)},
            )
        except Exception as e:
            # A claimed item must leave processing or it is never retired
            logger.exception("Error delivering queued webhook %s", webhook.id)
            metrics.record_queue_attempt(webhook.event, False)
            await self._queue.mark_as_failed(webhook.id, str(e) or type(e).__name__)
            return
        metrics.record_queue_attempt(webhook.event, result.success)

        if result.success:
            await self._queue.mark_as_completed(webhook.id)
            logger.info(
                "Queued webhook %s delivered to %s (event: %s, attempt: %d)",
                webhook.id,
                mask_url(webhook.url),
                webhook.event,
                attempt,
            )
        else:
            logger.warning(
                "Queued webhook %s failed (event: %s, attempt: %d/%d): %s",
                webhook.id,
                webhook.event,
                attempt,
                webhook.max_attempts,
                result.error,
            )
            await self._queue.mark_as_failed(webhook.id, result.error or "Unknown error")

        if self._recorder is not None:
            await self._recorder.record_delivery(
                event=webhook.event,
                url=webhook.url,
                payload=webhook.payload,
                success=result.success,
                attempts=attempt,
                duration_ms=result.duration_ms,
                status_code=result.status_code,
                error=result.error,
            )
