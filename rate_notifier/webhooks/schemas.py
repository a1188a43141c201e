"""Webhook Pydantic schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class WebhookDeliveryResponse(BaseModel):
    """Webhook delivery log entry response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Delivery record ID")
    event: str = Field(..., description="Event name (e.g., rate.changed)")
    url: str = Field(..., description="Target URL (masked)")
    success: bool = Field(..., description="Whether the delivery succeeded")
    status_code: int | None = Field(None, description="HTTP response status code")
    error: str | None = Field(None, description="Error message if failed")
    attempts: int = Field(..., description="Number of delivery attempts")
    duration_ms: int = Field(..., description="Delivery duration in milliseconds")
    timestamp: datetime = Field(..., description="When the delivery was recorded")


class WebhookDeliveryStatsResponse(BaseModel):
    """Aggregated delivery statistics."""

    model_config = ConfigDict(from_attributes=True)

    total_deliveries: int
    successful_deliveries: int
    failed_deliveries: int
    success_rate: float = Field(..., description="Successful deliveries, percent")
    average_duration: float = Field(..., description="Mean duration in milliseconds")
    last_delivery: datetime | None = None
    last_success: datetime | None = None
    last_failure: datetime | None = None


class WebhookQueueStatsResponse(BaseModel):
    """Durable queue item counts per status."""

    model_config = ConfigDict(from_attributes=True)

    pending: int
    processing: int
    failed: int
    completed: int
    total: int


class WebhookQueueItemResponse(BaseModel):
    """A durable queue item."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event: str
    url: str
    payload: Any
    status: str = Field(..., description="pending, processing, failed or completed")
    priority: str = Field(..., description="high, normal or low")
    attempts: int
    max_attempts: int
    error: str | None = None
    last_attempt_at: datetime | None = None
    next_attempt_at: datetime
    created_at: datetime
    completed_at: datetime | None = None


class WebhookReloadResponse(BaseModel):
    """Response for webhook configuration reload."""

    success: bool = Field(..., description="Whether reload succeeded")
    message: str = Field(..., description="Status message")
    target_count: int = Field(..., description="Number of configured targets")
