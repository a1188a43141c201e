"""Tests for WebhookSender."""

import json
from datetime import timedelta

import httpx
import pytest
from conftest import DEPLOYMENT_URL, RATE_URL, STATUS_URL, TEST_SECRET, FakeEndpoint
from prometheus_client import REGISTRY

from rate_notifier.webhooks.config import WebhookConfig
from rate_notifier.webhooks.event import CurrencyRate, HealthCheck, RateData, RateNotification
from rate_notifier.webhooks.models import QueuePriority, QueueStatus
from rate_notifier.webhooks.queue import WebhookQueue
from rate_notifier.webhooks.signer import WebhookSigner


@pytest.fixture
def rates():
    return RateData(
        date="2026-01-15",
        rates=[
            CurrencyRate(currency="USD", rate=37.2, name="Dólar"),
            CurrencyRate(currency="EUR", rate=40.1, name="Euro"),
        ],
    )


def _sample(name: str, **labels) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestImmediateDelivery:
    @pytest.mark.asyncio
    async def test_first_attempt_success(self, make_sender, recorder, queue, sleeper, rates):
        endpoint = FakeEndpoint(200)
        sender = make_sender(endpoint)

        result = await sender.send_rate_update_notification(rates)

        assert result.success is True
        assert result.url == RATE_URL
        assert result.status_code == 200
        assert result.attempt == 1
        assert result.queue_id is None
        assert sleeper.delays == []
        assert len(endpoint.requests) == 1

        deliveries = await recorder.get_recent_deliveries()
        assert len(deliveries) == 1
        assert deliveries[0].success is True
        assert deliveries[0].attempts == 1
        assert (await queue.get_queue_stats()).total == 0

    @pytest.mark.asyncio
    async def test_retries_with_exponential_delay(self, make_sender, recorder, sleeper, rates):
        endpoint = FakeEndpoint(503, 502, 201)
        sender = make_sender(endpoint)

        result = await sender.send_rate_update_notification(rates)

        assert result.success is True
        assert result.attempt == 3
        assert result.status_code == 201
        assert sleeper.delays == [1, 2]
        assert [r.headers["X-Webhook-Attempt"] for r in endpoint.requests] == ["1", "2", "3"]

        # One record per notification, not per attempt
        deliveries = await recorder.get_recent_deliveries()
        assert len(deliveries) == 1
        assert deliveries[0].attempts == 3

    @pytest.mark.asyncio
    async def test_request_is_signed(self, make_sender, rates):
        endpoint = FakeEndpoint(200)
        sender = make_sender(endpoint)

        await sender.send_rate_update_notification(rates, previous=rates)

        request = endpoint.requests[0]
        body = request.content.decode("utf-8")
        assert request.method == "POST"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["User-Agent"] == "BCV-Service-Webhook/1.0"
        assert request.headers["X-Webhook-Event"] == "rate.changed"
        assert request.headers["X-Webhook-Signature"] == WebhookSigner.sign(body, TEST_SECRET)
        assert sender.verify_signature(body, request.headers["X-Webhook-Signature"])
        assert request.headers["X-Webhook-Timestamp"] == json.loads(body)["timestamp"]

    @pytest.mark.asyncio
    async def test_no_signature_without_secret(self, make_sender, webhook_config, rates):
        endpoint = FakeEndpoint(200)
        config = WebhookConfig(targets=webhook_config.targets, settings=webhook_config.settings)
        sender = make_sender(endpoint, config=config)

        await sender.send_rate_update_notification(rates)

        assert "X-Webhook-Signature" not in endpoint.requests[0].headers


class TestFamilies:
    @pytest.mark.asyncio
    async def test_status_notification_goes_to_status_url(self, make_sender):
        endpoint = FakeEndpoint(200)
        sender = make_sender(endpoint)

        result = await sender.send_service_status_notification(
            "service.degraded",
            status="degraded",
            uptime=120.0,
            checks={"redis": HealthCheck(status="degraded", message="slow")},
        )

        assert result.success is True
        assert str(endpoint.requests[0].url) == STATUS_URL
        assert endpoint.requests[0].headers["X-Webhook-Event"] == "service.degraded"

    @pytest.mark.asyncio
    async def test_deployment_notification_goes_to_deployment_url(self, make_sender):
        endpoint = FakeEndpoint(200)
        sender = make_sender(endpoint)

        result = await sender.send_deployment_notification(
            "deployment.started", deployment_id="deploy-7", environment="production"
        )

        assert result.success is True
        assert str(endpoint.requests[0].url) == DEPLOYMENT_URL

    @pytest.mark.asyncio
    async def test_missing_url_is_skipped(self, make_sender, recorder, queue, rates):
        endpoint = FakeEndpoint(200)
        sender = make_sender(endpoint, config=WebhookConfig())

        result = await sender.send_rate_update_notification(rates)

        assert result.success is False
        assert result.url == "N/A"
        assert result.attempt == 0
        assert "not configured" in result.error
        assert endpoint.requests == []
        assert await recorder.get_recent_deliveries() == []
        assert (await queue.get_queue_stats()).total == 0


class TestFailureHandOff:
    @pytest.mark.asyncio
    async def test_exhausted_notification_is_queued(
        self, make_sender, recorder, queue, clock, sleeper, rates
    ):
        endpoint = FakeEndpoint(503)
        sender = make_sender(endpoint)

        result = await sender.send_rate_update_notification(rates)

        assert result.success is False
        assert result.attempt == 3
        assert result.status_code == 503
        assert result.error == "HTTP 503: Service Unavailable"
        assert len(endpoint.requests) == 3
        assert sleeper.delays == [1, 2]

        item = await queue.get(result.queue_id)
        assert item.status == QueueStatus.PENDING
        assert item.event == "rate.updated"
        assert item.url == RATE_URL
        assert item.priority == QueuePriority.LOW
        assert item.attempts == 0
        assert item.max_attempts == 5
        assert item.next_attempt_at == clock.now + timedelta(seconds=300)
        assert item.payload["event"] == "rate.updated"
        assert item.payload["data"]["rates"][0]["currency"] == "USD"

        deliveries = await recorder.get_recent_deliveries()
        assert len(deliveries) == 1
        assert deliveries[0].success is False
        assert deliveries[0].attempts == 3
        assert deliveries[0].error == "HTTP 503: Service Unavailable"

    @pytest.mark.asyncio
    async def test_unhealthy_status_is_queued_with_high_priority(self, make_sender, queue):
        sender = make_sender(FakeEndpoint(500))

        result = await sender.send_service_status_notification(
            "service.unhealthy", status="unhealthy", uptime=10.0, previous_status="healthy"
        )

        item = await queue.get(result.queue_id)
        assert item.priority == QueuePriority.HIGH

    @pytest.mark.asyncio
    async def test_transport_error(self, make_sender, rates):
        sender = make_sender(FakeEndpoint(httpx.ConnectError("connection refused")))

        result = await sender.send_rate_update_notification(rates)

        assert result.success is False
        assert result.status_code is None
        assert result.error == "Webhook request failed: connection refused"
        assert result.queue_id is not None

    @pytest.mark.asyncio
    async def test_timeout(self, make_sender, rates):
        sender = make_sender(FakeEndpoint(httpx.ReadTimeout("timed out")))

        result = await sender.send_rate_update_notification(rates)

        assert result.success is False
        assert result.error == "Webhook request failed: timeout after 5s"

    @pytest.mark.asyncio
    async def test_invalid_url_fails_without_raising(self, make_sender, queue, rates):
        endpoint = FakeEndpoint(200)
        sender = make_sender(endpoint)
        url = "https://hooks.example.com:notaport/rates"

        result = await sender.send_notification(RateNotification(rate=rates), url)

        assert result.success is False
        assert result.attempt == 3
        assert result.error.startswith("Webhook request failed")
        assert endpoint.requests == []
        assert (await queue.get(result.queue_id)).url == url

    @pytest.mark.asyncio
    async def test_unexpected_transport_error_fails_attempt(self, make_sender, rates):
        sender = make_sender(FakeEndpoint(RuntimeError("receiver exploded")))

        result = await sender.send_rate_update_notification(rates)

        assert result.success is False
        assert result.error == "Webhook request failed: receiver exploded"
        assert result.queue_id is not None

    @pytest.mark.asyncio
    async def test_queue_failure_is_not_raised(
        self, make_sender, broken_session_factory, clock, rates
    ):
        broken_queue = WebhookQueue(broken_session_factory, clock=clock)
        sender = make_sender(FakeEndpoint(503), queue=broken_queue)

        result = await sender.send_rate_update_notification(rates)

        assert result.success is False
        assert result.queue_id is None

    @pytest.mark.asyncio
    async def test_without_queue_failure_is_dropped(self, make_sender, rates):
        sender = make_sender(FakeEndpoint(503), queue=None)

        result = await sender.send_rate_update_notification(rates)

        assert result.success is False
        assert result.queue_id is None


class TestMetrics:
    @pytest.mark.asyncio
    async def test_outcomes_are_counted(self, make_sender):
        labels = {"event": "deployment.failure"}
        success_before = _sample("webhook_deliveries_total", status="success", **labels)
        failure_before = _sample("webhook_deliveries_total", status="failure", **labels)
        observed_before = _sample("webhook_delivery_duration_seconds_count", **labels)

        await make_sender(FakeEndpoint(200)).send_deployment_notification("deployment.failure")
        await make_sender(FakeEndpoint(500)).send_deployment_notification("deployment.failure")

        assert _sample("webhook_deliveries_total", status="success", **labels) == success_before + 1
        assert _sample("webhook_deliveries_total", status="failure", **labels) == failure_before + 1
        assert _sample("webhook_delivery_duration_seconds_count", **labels) == observed_before + 2
