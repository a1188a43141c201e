"""Durable webhook queue backed by the database.

Items survive restarts and move through ``pending -> processing ->
completed | failed``; failed attempts go back to ``pending`` with an
exponential backoff until ``max_attempts`` is reached.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rate_notifier.db.base import utcnow
from rate_notifier.webhooks.deliveries import mask_url
from rate_notifier.webhooks.models import QueuePriority, QueueStatus, WebhookQueueItem

logger = logging.getLogger(__name__)

# Queued retry backoff: 5 * 2^attempts minutes, capped
RETRY_BASE_MINUTES = 5
RETRY_MAX_MINUTES = 60

_PRIORITY_ORDER = case(
    {priority.value: priority.rank for priority in QueuePriority},
    value=WebhookQueueItem.priority,
    else_=QueuePriority.NORMAL.rank,
)


class WebhookQueueError(Exception):
    """The queue store could not persist an item."""


@dataclass
class QueueStats:
    """Item counts per status."""

    pending: int = 0
    processing: int = 0
    failed: int = 0
    completed: int = 0
    total: int = 0


def retry_delay_minutes(attempts: int) -> int:
    """Backoff before the next queued attempt, given attempts made so far."""
    return min(RETRY_BASE_MINUTES * 2**attempts, RETRY_MAX_MINUTES)


class WebhookQueue:
    """Persistent store of webhook jobs awaiting (re)delivery."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    async def enqueue(
        self,
        event: str,
        url: str,
        payload: Any,
        max_attempts: int = 5,
        priority: QueuePriority | str = QueuePriority.NORMAL,
        delay_seconds: float = 0,
    ) -> uuid.UUID:
        """
        Add a webhook to the queue.

        Args:
            event: Event name (e.g., "rate.changed")
            url: Destination URL
            payload: JSON-serializable body, delivered verbatim
            max_attempts: Attempts allowed before the item fails permanently
            priority: high, normal or low
            delay_seconds: Delay before the item becomes eligible

        Returns:
            The new item's id

        Raises:
            WebhookQueueError: if the item could not be persisted
        """
        now = self._clock()
        item = WebhookQueueItem(
            id=uuid.uuid4(),
            event=event,
            url=url,
            payload=payload,
            status=QueueStatus.PENDING.value,
            priority=QueuePriority(priority).value,
            attempts=0,
            max_attempts=max_attempts,
            next_attempt_at=now + timedelta(seconds=delay_seconds),
            created_at=now,
        )

        try:
            async with self._session_factory() as session:
                session.add(item)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to enqueue webhook (event: %s): %s", event, e)
            raise WebhookQueueError(f"Webhook queue not available: {e}") from e

        logger.debug(
            "Webhook queued (id: %s, event: %s, url: %s)",
            item.id,
            event,
            mask_url(url),
        )
        return item.id

    async def get(self, item_id: uuid.UUID) -> WebhookQueueItem | None:
        async with self._session_factory() as session:
            return await session.get(WebhookQueueItem, item_id)

    async def get_pending_webhooks(self, limit: int = 10) -> list[WebhookQueueItem]:
        """Ready items: pending and due, highest priority then oldest-due first."""
        query = (
            select(WebhookQueueItem)
            .where(
                WebhookQueueItem.status == QueueStatus.PENDING.value,
                WebhookQueueItem.next_attempt_at <= self._clock(),
            )
            .order_by(_PRIORITY_ORDER, WebhookQueueItem.next_attempt_at)
            .limit(limit)
        )

        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Failed to get pending webhooks: %s", e)
            return []

    async def claim(self, item_id: uuid.UUID) -> bool:
        """
        Mark a pending item as processing before it is attempted.

        Returns False when the item is no longer pending (claimed elsewhere
        or already finished).
        """
        query = (
            update(WebhookQueueItem)
            .where(
                WebhookQueueItem.id == item_id,
                WebhookQueueItem.status == QueueStatus.PENDING.value,
            )
            .values(status=QueueStatus.PROCESSING.value, last_attempt_at=self._clock())
        )

        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to claim webhook %s: %s", item_id, e)
            return False

        return result.rowcount == 1

    async def mark_as_completed(self, item_id: uuid.UUID) -> None:
        query = (
            update(WebhookQueueItem)
            .where(WebhookQueueItem.id == item_id)
            .values(status=QueueStatus.COMPLETED.value, completed_at=self._clock())
        )

        try:
            async with self._session_factory() as session:
                await session.execute(query)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to mark webhook %s as completed: %s", item_id, e)

    async def mark_as_failed(self, item_id: uuid.UUID, error: str) -> None:
        """Record a failed attempt: reschedule with backoff, or fail permanently."""
        try:
            async with self._session_factory() as session:
                item = await session.get(WebhookQueueItem, item_id)
                if item is None:
                    logger.warning("Webhook %s not found for failure marking", item_id)
                    return
                if item.status in (QueueStatus.COMPLETED.value, QueueStatus.FAILED.value):
                    logger.warning("Webhook %s already %s, ignoring failure", item_id, item.status)
                    return

                now = self._clock()
                attempts = item.attempts + 1
                item.attempts = attempts
                item.error = error

                if attempts < item.max_attempts:
                    delay_minutes = retry_delay_minutes(attempts)
                    item.status = QueueStatus.PENDING.value
                    item.next_attempt_at = now + timedelta(minutes=delay_minutes)
                    await session.commit()

                    logger.info(
                        "Webhook %s will be retried in %d minutes (attempt %d/%d)",
                        item_id,
                        delay_minutes,
                        attempts,
                        item.max_attempts,
                    )
                else:
                    item.status = QueueStatus.FAILED.value
                    item.completed_at = now
                    await session.commit()

                    logger.error(
                        "Webhook %s (event: %s) failed permanently after %d attempts: %s",
                        item_id,
                        item.event,
                        attempts,
                        error,
                    )
        except SQLAlchemyError as e:
            logger.error("Failed to mark webhook %s as failed: %s", item_id, e)

    async def recover_stuck_webhooks(self) -> int:
        """Return items orphaned in ``processing`` by a crash to ``pending``."""
        query = (
            update(WebhookQueueItem)
            .where(WebhookQueueItem.status == QueueStatus.PROCESSING.value)
            .values(status=QueueStatus.PENDING.value, next_attempt_at=self._clock())
        )

        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to recover stuck webhooks: %s", e)
            return 0

        if result.rowcount:
            logger.warning("Recovered %d stuck webhook(s)", result.rowcount)
        return result.rowcount

    async def clean_old_webhooks(self, older_than_days: int) -> int:
        """Delete completed items finished more than ``older_than_days`` ago."""
        cutoff = self._clock() - timedelta(days=older_than_days)
        query = delete(WebhookQueueItem).where(
            WebhookQueueItem.status == QueueStatus.COMPLETED.value,
            WebhookQueueItem.completed_at < cutoff,
        )

        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to clean old webhooks: %s", e)
            return 0

        if result.rowcount:
            logger.info(
                "Cleaned %d completed webhook(s) older than %d days",
                result.rowcount,
                older_than_days,
            )
        return result.rowcount

    async def get_queue_stats(self) -> QueueStats:
        query = select(WebhookQueueItem.status, func.count(WebhookQueueItem.id)).group_by(
            WebhookQueueItem.status
        )

        try:
            async with self._session_factory() as session:
                rows = (await session.execute(query)).all()
        except SQLAlchemyError as e:
            logger.error("Failed to get webhook queue stats: %s", e)
            return QueueStats()

        stats = QueueStats()
        for status, count in rows:
            if status in QueueStatus.__members__.values():
                setattr(stats, status, count)
            stats.total += count
        return stats
