"""Registry of application retry callbacks."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable

from kafka_retry.core.records import Direction, FailedRecord
from kafka_retry.errors import HandlerNotRegisteredError

# Raising means the retry attempt failed; returning means it succeeded.
RetryCallback = Callable[[FailedRecord], Awaitable[None]]


def _is_async(callback: object) -> bool:
    return inspect.iscoroutinefunction(callback) or inspect.iscoroutinefunction(
        getattr(callback, "__call__", None)
    )


class HandlerRegistry:
    """Callbacks keyed by (direction, handler id).

    Consumer and producer handler ids live in separate namespaces, matching
    the direction-qualified handler tables in the configuration.
    """

    def __init__(self) -> None:
        self._callbacks: dict[tuple[Direction, str], RetryCallback] = {}

    def register(
        self, direction: Direction, handler_id: str, callback: RetryCallback
    ) -> None:
        if not _is_async(callback):
            msg = (
                f"Retry callback for {direction.value}:{handler_id} must be an "
                f"async function, got {callback!r}"
            )
            raise TypeError(msg)
        key = (direction, handler_id)
        if key in self._callbacks:
            msg = (
                "A retry callback is already registered for "
                f"{direction.value}:{handler_id}"
            )
            raise ValueError(msg)
        self._callbacks[key] = callback

    def consumer(self, handler_id: str) -> Callable[[RetryCallback], RetryCallback]:
        """Decorator form of ``register(Direction.CONSUMER, handler_id, fn)``."""

        def _decorate(fn: RetryCallback) -> RetryCallback:
            self.register(Direction.CONSUMER, handler_id, fn)
            return fn

        return _decorate

    def producer(self, handler_id: str) -> Callable[[RetryCallback], RetryCallback]:
        """Decorator form of ``register(Direction.PRODUCER, handler_id, fn)``."""

        def _decorate(fn: RetryCallback) -> RetryCallback:
            self.register(Direction.PRODUCER, handler_id, fn)
            return fn

        return _decorate

    def lookup(self, direction: Direction, handler_id: str) -> RetryCallback:
        try:
            return self._callbacks[(direction, handler_id)]
        except KeyError:
            raise HandlerNotRegisteredError(handler_id, direction.value) from None

    def __contains__(self, key: object) -> bool:
        return key in self._callbacks

    def __len__(self) -> int:
        return len(self._callbacks)
