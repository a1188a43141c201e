"""Prometheus metrics for webhook delivery."""

from prometheus_client import Counter, Histogram

# Immediate-path outcomes (one per send_notification call)
webhook_deliveries_total = Counter(
    "webhook_deliveries_total",
    "Webhook notifications delivered or given up on by the immediate path",
    ["event", "status"],
)

webhook_delivery_duration_seconds = Histogram(
    "webhook_delivery_duration_seconds",
    "Time spent delivering a webhook notification, retries included",
    ["event"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

# Queue-path outcomes (one per queued attempt)
webhook_queue_attempts_total = Counter(
    "webhook_queue_attempts_total",
    "Delivery attempts made by the durable queue worker",
    ["event", "status"],
)


def record_webhook_success(event: str, duration_ms: int) -> None:
    webhook_deliveries_total.labels(event=event, status="success").inc()
    webhook_delivery_duration_seconds.labels(event=event).observe(duration_ms / 1000)


def record_webhook_failure(event: str, duration_ms: int) -> None:
    webhook_deliveries_total.labels(event=event, status="failure").inc()
    webhook_delivery_duration_seconds.labels(event=event).observe(duration_ms / 1000)


def record_queue_attempt(event: str, success: bool) -> None:
    status = "success" if success else "failure"
    webhook_queue_attempts_total.labels(event=event, status=status).inc()
