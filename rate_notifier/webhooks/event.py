"""Webhook notification payloads.

Each notification family builds its own ``data`` contract; the sender
only relies on ``event`` and ``to_payload()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, ClassVar


class WebhookEventType(StrEnum):
    """Event names published to webhook subscribers."""

    RATE_UPDATED = "rate.updated"
    RATE_CHANGED = "rate.changed"
    SERVICE_HEALTHY = "service.healthy"
    SERVICE_UNHEALTHY = "service.unhealthy"
    SERVICE_DEGRADED = "service.degraded"
    DEPLOYMENT_STARTED = "deployment.started"
    DEPLOYMENT_SUCCESS = "deployment.success"
    DEPLOYMENT_FAILURE = "deployment.failure"


class NotificationFamily(StrEnum):
    """Notification families; each resolves its own target URL."""

    RATE = "rate"
    STATUS = "status"
    DEPLOYMENT = "deployment"


STATUS_EVENTS = frozenset(
    {
        WebhookEventType.SERVICE_HEALTHY,
        WebhookEventType.SERVICE_UNHEALTHY,
        WebhookEventType.SERVICE_DEGRADED,
    }
)
DEPLOYMENT_EVENTS = frozenset(
    {
        WebhookEventType.DEPLOYMENT_STARTED,
        WebhookEventType.DEPLOYMENT_SUCCESS,
        WebhookEventType.DEPLOYMENT_FAILURE,
    }
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class CurrencyRate:
    """A single published exchange rate."""

    currency: str
    rate: float
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"currency": self.currency, "rate": self.rate, "name": self.name}


@dataclass
class RateData:
    """A scraped set of rates for one publication date."""

    date: str
    rates: list[CurrencyRate] = field(default_factory=list)

    def get_rate(self, currency: str) -> float:
        """Rate for a currency code, 0 when absent."""
        for rate in self.rates:
            if rate.currency.upper() == currency.upper():
                return rate.rate
        return 0.0


@dataclass
class HealthCheck:
    """Outcome of one named health check."""

    status: str
    message: str | None = None
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status}
        if self.message is not None:
            data["message"] = self.message
        if self.details is not None:
            data["details"] = self.details
        return data


@dataclass(kw_only=True)
class WebhookNotification:
    """Base class for all notification variants."""

    family: ClassVar[NotificationFamily]

    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def event(self) -> str:
        raise NotImplementedError

    def build_data(self) -> dict[str, Any]:
        raise NotImplementedError

    def to_payload(self) -> dict[str, Any]:
        """Convert to the JSON-serializable wire body."""
        return {
            "event": self.event,
            "timestamp": self.timestamp.isoformat(),
            "data": self.build_data(),
        }


@dataclass(kw_only=True)
class RateNotification(WebhookNotification):
    """``rate.updated`` or, when a previous rate set is known, ``rate.changed``."""

    family: ClassVar[NotificationFamily] = NotificationFamily.RATE
    reference_currency: ClassVar[str] = "USD"

    rate: RateData
    previous: RateData | None = None

    @property
    def event(self) -> str:
        if self.previous is not None:
            return WebhookEventType.RATE_CHANGED.value
        return WebhookEventType.RATE_UPDATED.value

    def build_data(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "date": self.rate.date,
            "rates": [r.to_dict() for r in self.rate.rates],
        }

        if self.previous is None:
            return data

        previous_rate = self.previous.get_rate(self.reference_currency)
        if previous_rate > 0:
            current_rate = self.rate.get_rate(self.reference_currency)
            percentage_change = (current_rate - previous_rate) / previous_rate * 100
            data["change"] = {
                "previousRate": previous_rate,
                "currentRate": current_rate,
                "percentageChange": round(percentage_change, 4),
            }

        return data


@dataclass(kw_only=True)
class StatusNotification(WebhookNotification):
    """``service.healthy``, ``service.unhealthy`` or ``service.degraded``."""

    family: ClassVar[NotificationFamily] = NotificationFamily.STATUS

    event_type: WebhookEventType
    status: str
    uptime: float
    checks: dict[str, HealthCheck] = field(default_factory=dict)
    previous_status: str | None = None

    def __post_init__(self) -> None:
        self.event_type = WebhookEventType(self.event_type)
        if self.event_type not in STATUS_EVENTS:
            raise ValueError(f"Not a service status event: {self.event_type}")

    @property
    def event(self) -> str:
        return self.event_type.value

    def build_data(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "status": self.status,
            "uptime": self.uptime,
            "checks": {name: check.to_dict() for name, check in self.checks.items()},
        }
        if self.previous_status is not None:
            data["previousStatus"] = self.previous_status
        return data


@dataclass(kw_only=True)
class DeploymentNotification(WebhookNotification):
    """``deployment.started``, ``deployment.success`` or ``deployment.failure``."""

    family: ClassVar[NotificationFamily] = NotificationFamily.DEPLOYMENT

    event_type: WebhookEventType
    deployment_id: str | None = None
    environment: str | None = None
    version: str | None = None
    duration: float | None = None
    message: str | None = None

    def __post_init__(self) -> None:
        self.event_type = WebhookEventType(self.event_type)
        if self.event_type not in DEPLOYMENT_EVENTS:
            raise ValueError(f"Not a deployment event: {self.event_type}")

    @property
    def event(self) -> str:
        return self.event_type.value

    def build_data(self) -> dict[str, Any]:
        fields = {
            "deploymentId": self.deployment_id,
            "environment": self.environment,
            "version": self.version,
            "duration": self.duration,
            "message": self.message,
        }
        return {key: value for key, value in fields.items() if value is not None}
