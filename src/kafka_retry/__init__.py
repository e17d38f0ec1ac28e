"""Persisted retry with exponential backoff for failed Kafka messages."""

__version__ = "0.1.0"
