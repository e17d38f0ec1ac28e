"""Process-local lock provider."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog

from kafka_retry.core.records import utcnow

logger = structlog.get_logger()


@dataclass
class _Hold:
    locked_at: datetime
    lock_until: datetime
    token: object


class InMemoryLockGuard:
    def __init__(
        self,
        provider: InMemoryLockProvider,
        name: str,
        token: object,
        lock_at_least: timedelta,
    ) -> None:
        self._provider = provider
        self._name = name
        self._token = token
        self._lock_at_least = lock_at_least
        self._released = False

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._provider._release(self._name, self._token, self._lock_at_least)


class InMemoryLockProvider:
    """Lock provider for a single process (tests, local runs).

    *clock* is injectable so hold times can be exercised deterministically.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._holds: dict[str, _Hold] = {}
        self._mutex = threading.Lock()

    def try_acquire(
        self,
        name: str,
        lock_at_least: timedelta,
        lock_at_most: timedelta,
    ) -> InMemoryLockGuard | None:
        with self._mutex:
            now = self._clock()
            hold = self._holds.get(name)
            if hold is not None and hold.lock_until > now:
                logger.debug("lock.busy", name=name, lock_until=hold.lock_until)
                return None
            token = object()
            self._holds[name] = _Hold(
                locked_at=now, lock_until=now + lock_at_most, token=token
            )
        logger.debug("lock.acquired", name=name)
        return InMemoryLockGuard(self, name, token, lock_at_least)

    def _release(self, name: str, token: object, lock_at_least: timedelta) -> None:
        with self._mutex:
            hold = self._holds.get(name)
            if hold is None or hold.token is not token:
                # Expired and taken over by someone else.
                return
            hold.lock_until = max(hold.locked_at + lock_at_least, self._clock())
        logger.debug("lock.released", name=name, lock_until=hold.lock_until)
