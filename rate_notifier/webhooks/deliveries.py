"""Webhook delivery log: append-only records and aggregate statistics."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import urlparse

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rate_notifier.db.base import utcnow
from rate_notifier.webhooks.models import WebhookDelivery

logger = logging.getLogger(__name__)


def mask_url(url: str) -> str:
    """Strip credentials, query string and fragment from a URL."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***MASKED***"
    if not parsed.scheme or not parsed.hostname:
        return "***MASKED***"
    return f"{parsed.scheme}://{parsed.hostname}{parsed.path}"


@dataclass
class DeliveryStats:
    """Aggregated delivery outcomes."""

    total_deliveries: int = 0
    successful_deliveries: int = 0
    failed_deliveries: int = 0
    success_rate: float = 0.0
    average_duration: float = 0.0
    last_delivery: datetime | None = None
    last_success: datetime | None = None
    last_failure: datetime | None = None


class DeliveryRecorder:
    """Records webhook delivery outcomes for auditing and statistics.

    Writes never raise: losing an audit entry must not affect the delivery
    it describes.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    async def record_delivery(
        self,
        event: str,
        url: str,
        payload: Any,
        success: bool,
        attempts: int,
        duration_ms: int,
        status_code: int | None = None,
        error: str | None = None,
    ) -> None:
        """Insert one delivery record. Failures are logged and swallowed."""
        try:
            async with self._session_factory() as session:
                record = WebhookDelivery(
                    event=event,
                    url=mask_url(url),
                    payload=payload,
                    success=success,
                    status_code=status_code,
                    error=error,
                    attempts=attempts,
                    duration_ms=duration_ms,
                    timestamp=self._clock(),
                )
                session.add(record)
                await session.commit()
                logger.debug(
                    "Webhook delivery recorded (id: %s, event: %s, success: %s)",
                    record.id,
                    event,
                    success,
                )
        except Exception as e:
            logger.error("Failed to record webhook delivery for %s: %s", event, e)

    async def get_deliveries_by_event(self, event: str, limit: int = 50) -> list[WebhookDelivery]:
        return await self._list(limit, WebhookDelivery.event == event)

    async def get_deliveries_by_url(self, url: str, limit: int = 50) -> list[WebhookDelivery]:
        return await self._list(limit, WebhookDelivery.url == mask_url(url))

    async def get_recent_deliveries(self, limit: int = 50) -> list[WebhookDelivery]:
        return await self._list(limit)

    async def _list(self, limit: int, *criteria) -> list[WebhookDelivery]:
        query = select(WebhookDelivery).order_by(desc(WebhookDelivery.timestamp))
        if criteria:
            query = query.where(*criteria)
        query = query.limit(limit)

        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                return list(result.scalars().all())
        except Exception as e:
            logger.error("Failed to list webhook deliveries: %s", e)
            return []

    async def get_delivery_stats(
        self,
        since: datetime | None = None,
        event: str | None = None,
    ) -> DeliveryStats:
        """Aggregate outcomes, optionally scoped to a time window and event."""
        query = select(
            WebhookDelivery.success,
            func.count(WebhookDelivery.id),
            func.sum(WebhookDelivery.duration_ms),
            func.max(WebhookDelivery.timestamp),
        ).group_by(WebhookDelivery.success)
        if since is not None:
            query = query.where(WebhookDelivery.timestamp >= since)
        if event is not None:
            query = query.where(WebhookDelivery.event == event)

        try:
            async with self._session_factory() as session:
                rows = (await session.execute(query)).all()
        except Exception as e:
            logger.error("Failed to compute webhook delivery stats: %s", e)
            return DeliveryStats()

        stats = DeliveryStats()
        total_duration = 0
        for success, count, duration_sum, last_timestamp in rows:
            total_duration += duration_sum or 0
            if success:
                stats.successful_deliveries = count
                stats.last_success = last_timestamp
            else:
                stats.failed_deliveries = count
                stats.last_failure = last_timestamp

        stats.total_deliveries = stats.successful_deliveries + stats.failed_deliveries
        if stats.total_deliveries:
            stats.success_rate = round(
                stats.successful_deliveries / stats.total_deliveries * 100, 2
            )
            stats.average_duration = round(total_duration / stats.total_deliveries, 2)
        timestamps = [t for t in (stats.last_success, stats.last_failure) if t is not None]
        stats.last_delivery = max(timestamps) if timestamps else None

        return stats

    async def was_recently_delivered(self, event: str, hours: float) -> bool:
        """Whether ``event`` was successfully delivered within the last ``hours``."""
        since = self._clock() - timedelta(hours=hours)
        query = (
            select(WebhookDelivery.id)
            .where(
                WebhookDelivery.event == event,
                WebhookDelivery.success.is_(True),
                WebhookDelivery.timestamp >= since,
            )
            .limit(1)
        )

        try:
            async with self._session_factory() as session:
                return (await session.execute(query)).first() is not None
        except Exception as e:
            logger.error("Failed to check recent delivery of %s: %s", event, e)
            return False
