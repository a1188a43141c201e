"""Webhook configuration loader."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml

from rate_notifier.config import get_settings
from rate_notifier.webhooks.event import NotificationFamily
from rate_notifier.webhooks.models import QueuePriority

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(get_settings().WEBHOOK_CONFIG_PATH)
DOCKER_SECRETS_PATH = Path("/run/secrets")

_VAR_REF = re.compile(r"^\$\{(\w+)\}$")

DEFAULT_PRIORITIES: dict[str, QueuePriority] = {
    "service.unhealthy": QueuePriority.HIGH,
    "deployment.failure": QueuePriority.HIGH,
    "deployment.*": QueuePriority.NORMAL,
    "service.*": QueuePriority.NORMAL,
    "rate.*": QueuePriority.LOW,
}


@dataclass
class WebhookSettings:
    """Global webhook delivery settings."""

    timeout_seconds: float = 5.0
    max_retries: int = 3
    retry_base_delay_seconds: float = 1.0
    queue_max_attempts: int = 5
    queue_delay_seconds: int = 300
    worker_interval_seconds: int = 60
    worker_batch_size: int = 10
    retention_days: int = 7


@dataclass
class WebhookConfig:
    """Complete webhook configuration."""

    targets: dict[NotificationFamily, str] = field(default_factory=dict)
    secret: str | None = None
    settings: WebhookSettings = field(default_factory=WebhookSettings)
    priorities: dict[str, QueuePriority] = field(default_factory=lambda: dict(DEFAULT_PRIORITIES))

    def url_for(self, family: NotificationFamily) -> str | None:
        """Target URL configured for a notification family, if any."""
        return self.targets.get(family)

    def priority_for(self, event: str) -> QueuePriority:
        """Queue priority for an event: exact name, then ``family.*``, then normal."""
        if event in self.priorities:
            return self.priorities[event]
        prefix = event.split(".", 1)[0]
        return self.priorities.get(f"{prefix}.*", QueuePriority.NORMAL)


class WebhookConfigLoader:
    """Loads and manages the webhook configuration."""

    _config: WebhookConfig | None = None

    @classmethod
    def load(cls) -> WebhookConfig:
        """Load configuration from the webhook YAML file."""
        if not CONFIG_PATH.exists():
            logger.info(
                "Webhook configuration not found at %s. Webhooks disabled.",
                CONFIG_PATH,
            )
            cls._config = WebhookConfig()
            return cls._config

        try:
            with open(CONFIG_PATH) as f:
                raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error("Failed to parse webhook configuration: %s", e)
            cls._config = WebhookConfig()
            return cls._config

        cls._config = cls.parse(raw_config)

        logger.info(
            "Loaded webhook configuration from %s (%d target(s))",
            CONFIG_PATH,
            len(cls._config.targets),
        )
        return cls._config

    @classmethod
    def reload(cls) -> WebhookConfig:
        """Reload configuration (for hot-reload)."""
        return cls.load()

    @classmethod
    def get_config(cls) -> WebhookConfig:
        """Get current configuration, loading if necessary."""
        if cls._config is None:
            cls.load()
        return cls._config  # type: ignore

    @classmethod
    def parse(cls, raw_config: dict[str, Any]) -> WebhookConfig:
        """Build a WebhookConfig from already-decoded YAML data."""
        targets: dict[NotificationFamily, str] = {}
        for family_name, url_ref in (raw_config.get("targets") or {}).items():
            try:
                family = NotificationFamily(family_name)
                url = cls._parse_url(family, url_ref)
            except ValueError as e:
                logger.warning("Skipping invalid webhook target: %s", e)
                continue
            if url:
                targets[family] = url

        secret = None
        secret_ref = raw_config.get("secret")
        if secret_ref:
            secret = cls._resolve_value(str(secret_ref), "secret")
            if not secret:
                logger.warning("Webhook secret could not be resolved: %s", secret_ref)

        if targets and not secret:
            logger.warning(
                "Webhook secret not configured - Signatures will not be generated. "
                "This is not recommended for production."
            )

        return WebhookConfig(
            targets=targets,
            secret=secret,
            settings=cls._parse_settings(raw_config.get("settings") or {}),
            priorities=cls._parse_priorities(raw_config.get("priorities") or {}),
        )

    @classmethod
    def _parse_url(cls, family: NotificationFamily, url_ref: Any) -> str | None:
        """Resolve and validate a target URL."""
        if not url_ref:
            return None

        url = cls._resolve_value(str(url_ref), f"targets.{family.value}")
        if not url:
            logger.info("Webhook URL for '%s' not set - notifications disabled", family.value)
            return None

        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ValueError(f"Target '{family.value}' URL is not an http(s) URL: {url}")
        try:
            parsed.port
        except ValueError as e:
            raise ValueError(f"Target '{family.value}' URL has an invalid port: {url}") from e
        if parsed.scheme == "http":
            logger.warning("Target '%s' uses plain HTTP", family.value)

        return url

    @classmethod
    def _parse_settings(cls, data: dict[str, Any]) -> WebhookSettings:
        defaults = WebhookSettings()
        values: dict[str, Any] = {}
        for setting in fields(WebhookSettings):
            raw = data.get(setting.name, getattr(defaults, setting.name))
            cast = type(getattr(defaults, setting.name))
            try:
                values[setting.name] = cast(raw)
            except (TypeError, ValueError):
                logger.warning(
                    "Invalid webhook setting %s=%r, using default %r",
                    setting.name,
                    raw,
                    getattr(defaults, setting.name),
                )
                values[setting.name] = getattr(defaults, setting.name)
        return WebhookSettings(**values)

    @classmethod
    def _parse_priorities(cls, data: dict[str, Any]) -> dict[str, QueuePriority]:
        priorities = dict(DEFAULT_PRIORITIES)
        for event, value in data.items():
            try:
                priorities[str(event)] = QueuePriority(str(value).lower())
            except ValueError:
                logger.warning("Ignoring invalid priority %r for event %s", value, event)
        return priorities

    @classmethod
    def _resolve_value(cls, ref: str, name: str) -> str | None:
        """
        Resolve a value from Docker Secrets or an environment variable.

        ``${VAR_NAME}`` is looked up in /run/secrets/<var_name> first, then in
        the environment. Anything else is taken literally.
        """
        match = _VAR_REF.match(ref)
        if not match:
            if name == "secret":
                logger.warning(
                    "Webhook config uses literal secret value. "
                    "Use ${VAR_NAME} or Docker Secrets instead."
                )
            return ref

        var_name = match.group(1)

        # Try Docker Secrets first (preferred)
        secret_file = DOCKER_SECRETS_PATH / var_name.lower()
        if secret_file.exists():
            try:
                return secret_file.read_text().strip()
            except OSError as e:
                logger.warning(
                    "Failed to read Docker Secret %s: %s",
                    secret_file,
                    e,
                )

        # Fall back to environment variable
        return os.environ.get(var_name) or None
