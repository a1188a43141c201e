"""Pytest configuration and fixtures."""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Set test environment before importing the package
os.environ["TESTING"] = "1"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

from rate_notifier.db.base import Base
from rate_notifier.webhooks import models  # noqa: F401  (registers tables)
from rate_notifier.webhooks.config import WebhookConfig, WebhookSettings
from rate_notifier.webhooks.deliveries import DeliveryRecorder
from rate_notifier.webhooks.event import NotificationFamily
from rate_notifier.webhooks.queue import WebhookQueue
from rate_notifier.webhooks.sender import WebhookSender

RATE_URL = "https://hooks.example.com/rates"
STATUS_URL = "https://hooks.example.com/status"
DEPLOYMENT_URL = "https://hooks.example.com/deployments"
TEST_SECRET = "test-secret-key"


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeEndpoint:
    """Scripted webhook receiver for httpx.MockTransport.

    ``responses`` is consumed in order; the last entry repeats. Entries are
    status codes or exceptions to raise.
    """

    def __init__(self, *responses):
        self.responses = list(responses) or [200]
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests) - 1, len(self.responses) - 1)
        outcome = self.responses[index]
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, json={"ok": 200 <= outcome < 300})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Create test database engine (file-backed so concurrent sessions work)."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'webhooks.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def broken_session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Session factory whose database has no tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def queue(session_factory, clock) -> WebhookQueue:
    return WebhookQueue(session_factory, clock=clock)


@pytest.fixture
def recorder(session_factory, clock) -> DeliveryRecorder:
    return DeliveryRecorder(session_factory, clock=clock)


@pytest.fixture
def webhook_config() -> WebhookConfig:
    """Webhook config with every family configured and no retry delay."""
    return WebhookConfig(
        targets={
            NotificationFamily.RATE: RATE_URL,
            NotificationFamily.STATUS: STATUS_URL,
            NotificationFamily.DEPLOYMENT: DEPLOYMENT_URL,
        },
        secret=TEST_SECRET,
        settings=WebhookSettings(
            timeout_seconds=5,
            max_retries=3,
            retry_base_delay_seconds=1,
            queue_max_attempts=5,
            queue_delay_seconds=300,
        ),
    )


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_sender(queue, recorder, webhook_config, sleeper):
    """Build a WebhookSender talking to a FakeEndpoint."""

    def _make(endpoint: FakeEndpoint, **kwargs) -> WebhookSender:
        options = {
            "queue": queue,
            "recorder": recorder,
            "config": webhook_config,
            "client": endpoint.client(),
            "sleep": sleeper,
            "user_agent": "BCV-Service-Webhook/1.0",
        }
        options.update(kwargs)
        return WebhookSender(**options)

    return _make
