"""Exception hierarchy for the retry engine."""

from __future__ import annotations


class RetryEngineError(Exception):
    """Base class for all errors raised by kafka_retry."""


class ConfigError(RetryEngineError, ValueError):
    """Invalid or unreadable retry configuration."""


class InvalidTransitionError(RetryEngineError):
    """A terminal failed record was asked to change state."""


class HandlerNotRegisteredError(RetryEngineError):
    """No retry callback is registered for a resolved handler."""

    def __init__(self, handler_id: str, direction: str) -> None:
        self.handler_id = handler_id
        self.direction = direction
        super().__init__(
            f"No retry callback registered for handler '{handler_id}' "
            f"({direction})"
        )
