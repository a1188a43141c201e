"""Webhook SQLAlchemy models."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import JSON, Boolean, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from rate_notifier.db.base import Base, UTCDateTime, utcnow


class QueueStatus(StrEnum):
    """Durable queue item status."""

    PENDING = "pending"
    PROCESSING = "processing"
    FAILED = "failed"
    COMPLETED = "completed"


class QueuePriority(StrEnum):
    """Coarse ordering hint for ready queue items."""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort rank, lowest first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    QueuePriority.HIGH: 0,
    QueuePriority.NORMAL: 1,
    QueuePriority.LOW: 2,
}


class WebhookQueueItem(Base):
    """A pending webhook delivery obligation."""

    __tablename__ = "webhook_queue"
    __table_args__ = (
        Index("ix_webhook_queue_status_next_attempt", "status", "next_attempt_at"),
        Index("ix_webhook_queue_created_at", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    event: Mapped[str] = mapped_column(String(50), nullable=False)
    url: Mapped[str] = mapped_column(String(500), nullable=False)
    payload: Mapped[Any] = mapped_column(JSON, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=QueueStatus.PENDING.value,
    )
    priority: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=QueuePriority.NORMAL.value,
    )

    # Retry bookkeeping
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timing
    last_attempt_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    next_attempt_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class WebhookDelivery(Base):
    """Webhook delivery log entry. Written once, never updated."""

    __tablename__ = "webhook_deliveries"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    event: Mapped[str] = mapped_column(String(50), nullable=False)
    url: Mapped[str] = mapped_column(String(500), nullable=False)
    payload: Mapped[Any] = mapped_column(JSON, nullable=True)

    # Outcome
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timing
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


Index("ix_webhook_deliveries_timestamp", WebhookDelivery.timestamp.desc())
Index(
    "ix_webhook_deliveries_event_timestamp",
    WebhookDelivery.event,
    WebhookDelivery.timestamp.desc(),
)
Index(
    "ix_webhook_deliveries_url_timestamp",
    WebhookDelivery.url,
    WebhookDelivery.timestamp.desc(),
)
Index(
    "ix_webhook_deliveries_success_timestamp",
    WebhookDelivery.success,
    WebhookDelivery.timestamp.desc(),
)
