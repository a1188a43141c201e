"""Webhook payload signer using HMAC-SHA256."""

import hashlib
import hmac
import json
from typing import Any


def canonical_json(payload: Any) -> str:
    """Serialize a payload to the exact string that is sent and signed."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


class WebhookSigner:
    """Signs webhook payloads for verification."""

    SIGNATURE_PREFIX = "sha256="

    @staticmethod
    def sign(payload: str, secret: str) -> str:
        """
        Generate HMAC-SHA256 signature for a webhook payload.

        Args:
            payload: The JSON payload string to sign
            secret: The shared secret key

        Returns:
            Signature formatted as ``sha256=<hex-digest>``
        """
        signature = hmac.new(
            secret.encode("utf-8"),
            payload.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

        return f"{WebhookSigner.SIGNATURE_PREFIX}{signature}"

    @staticmethod
    def verify(payload: str, secret: str | None, signature: str) -> bool:
        """
        Verify a webhook signature.

        Args:
            payload: The JSON payload string
            secret: The shared secret key (no secret never verifies)
            signature: The signature from X-Webhook-Signature header

        Returns:
            True if signature is valid, False otherwise
        """
        if not secret or not signature:
            return False

        expected_signature = WebhookSigner.sign(payload, secret)
        if len(signature) != len(expected_signature):
            return False

        return hmac.compare_digest(
            expected_signature.encode("utf-8"),
            signature.encode("utf-8"),
        )

    @staticmethod
    def get_headers(
        payload: str,
        secret: str | None,
        event: str,
        timestamp: str,
        attempt: int,
        user_agent: str,
    ) -> dict[str, str]:
        """
        Generate all webhook HTTP headers, including the signature when a
        secret is configured.

        Args:
            payload: The JSON payload string
            secret: The shared secret key, or None to send unsigned
            event: The event name (e.g., "rate.changed")
            timestamp: ISO-8601 timestamp of the notification
            attempt: 1-based attempt number
            user_agent: User-Agent header value

        Returns:
            Dictionary of HTTP headers
        """
        headers = {
            "Content-Type": "application/json",
            "User-Agent": user_agent,
            "X-Webhook-Event": event,
            "X-Webhook-Timestamp": timestamp,
            "X-Webhook-Attempt": str(attempt),
        }
        if secret:
            headers["X-Webhook-Signature"] = WebhookSigner.sign(payload, secret)

        return headers
