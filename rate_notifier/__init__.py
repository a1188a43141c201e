"""Exchange-rate webhook notifications with durable retries."""

__version__ = "1.0.0"
