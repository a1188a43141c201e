"""Webhook admin API router."""

from datetime import timedelta
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from rate_notifier.db.base import utcnow
from rate_notifier.webhooks.config import WebhookConfigLoader
from rate_notifier.webhooks.deliveries import DeliveryRecorder
from rate_notifier.webhooks.queue import WebhookQueue
from rate_notifier.webhooks.schemas import (
    WebhookDeliveryResponse,
    WebhookDeliveryStatsResponse,
    WebhookQueueItemResponse,
    WebhookQueueStatsResponse,
    WebhookReloadResponse,
)

router = APIRouter(prefix="/webhooks", tags=["webhooks-admin"])


def get_delivery_recorder(request: Request) -> DeliveryRecorder:
    return request.app.state.delivery_recorder


def get_webhook_queue(request: Request) -> WebhookQueue:
    return request.app.state.webhook_queue


@router.post("/reload", response_model=WebhookReloadResponse)
async def reload_webhooks():
    """Reload webhook configuration from file."""
    try:
        config = WebhookConfigLoader.reload()
        return WebhookReloadResponse(
            success=True,
            message=f"Loaded {len(config.targets)} target(s)",
            target_count=len(config.targets),
        )
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to reload configuration: {e}",
        ) from e


@router.get("/deliveries", response_model=list[WebhookDeliveryResponse])
async def list_deliveries(
    event: str | None = Query(None, description="Filter by event name"),
    url: str | None = Query(None, description="Filter by target URL"),
    limit: int = Query(50, ge=1, le=1000, description="Maximum results"),
    recorder: DeliveryRecorder = Depends(get_delivery_recorder),
):
    """List recent webhook deliveries, newest first."""
    if event:
        return await recorder.get_deliveries_by_event(event, limit)
    if url:
        return await recorder.get_deliveries_by_url(url, limit)
    return await recorder.get_recent_deliveries(limit)


@router.get("/deliveries/stats", response_model=WebhookDeliveryStatsResponse)
async def delivery_stats(
    event: str | None = Query(None, description="Only this event"),
    since_hours: float | None = Query(None, gt=0, description="Only the last N hours"),
    recorder: DeliveryRecorder = Depends(get_delivery_recorder),
):
    """Delivery success rate, mean duration and last outcomes."""
    since = utcnow() - timedelta(hours=since_hours) if since_hours else None
    return await recorder.get_delivery_stats(since=since, event=event)


@router.get("/queue/stats", response_model=WebhookQueueStatsResponse)
async def queue_stats(queue: WebhookQueue = Depends(get_webhook_queue)):
    """Durable queue counts per status."""
    return await queue.get_queue_stats()


@router.get("/queue/{item_id}", response_model=WebhookQueueItemResponse)
async def get_queue_item(item_id: UUID, queue: WebhookQueue = Depends(get_webhook_queue)):
    """A single durable queue item."""
    item = await queue.get(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Queue item not found")
    return item
