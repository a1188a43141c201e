"""Webhook delivery: sender, durable queue, worker and delivery log."""
