"""Rate Notifier - Main application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from rate_notifier.config import configure_logging, get_settings
from rate_notifier.db.session import async_session_maker, engine
from rate_notifier.webhooks.config import WebhookConfigLoader
from rate_notifier.webhooks.deliveries import DeliveryRecorder
from rate_notifier.webhooks.queue import WebhookQueue
from rate_notifier.webhooks.router import router as webhooks_router
from rate_notifier.webhooks.sender import WebhookSender
from rate_notifier.webhooks.worker import QueueWorker

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - wire the webhook subsystem, start the worker."""
    configure_logging()
    config = WebhookConfigLoader.load()

    queue = WebhookQueue(async_session_maker)
    recorder = DeliveryRecorder(async_session_maker)
    sender = WebhookSender(queue=queue, recorder=recorder)
    worker = QueueWorker(queue, sender, recorder)

    app.state.webhook_queue = queue
    app.state.delivery_recorder = recorder
    app.state.webhook_sender = sender
    app.state.webhook_worker = worker

    # Items left in "processing" by a previous crash become due again
    await queue.recover_stuck_webhooks()

    if settings.WEBHOOK_WORKER_ENABLED and not settings.TESTING:
        await worker.start(config.settings.worker_interval_seconds)
    else:
        logger.info("Webhook queue worker disabled")

    yield

    # Cleanup on shutdown
    await worker.stop()
    await engine.dispose()


app = FastAPI(
    title="Rate Notifier",
    description="""
## Exchange-rate webhook notifications

Delivers rate, service-status and deployment notifications to configured
webhook endpoints.

### Delivery

- 🔏 **Signed** - `X-Webhook-Signature: sha256=<hmac>` when a secret is configured
- 🔄 **Immediate retries** - exponential backoff (1s, 2s, 4s, ...)
- 🗃️ **Durable queue** - exhausted notifications are retried later, across restarts
- 📊 **Delivery log** - every attempt recorded, with statistics

Configure targets in `config/webhooks.yaml` and reload with
`POST /api/v1/webhooks/reload`.
    """,
    version="1.0.0",
    lifespan=lifespan,
)

# Routes - all under /api/v1
API_PREFIX = "/api/v1"
app.include_router(webhooks_router, prefix=API_PREFIX)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Rate Notifier",
        "version": "1.0.0",
        "docs": "/docs",
    }
