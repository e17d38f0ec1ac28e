"""Cluster-wide execution lock protocol.

Locks follow ShedLock semantics: a holder keeps the lock for at most
``lock_at_most`` (so a crashed instance cannot block retries forever), and
releasing never shortens the hold below ``lock_at_least`` (so two instances
ticking a few seconds apart do not both run).
"""

from __future__ import annotations

from datetime import timedelta
from typing import Protocol, runtime_checkable


@runtime_checkable
class LockGuard(Protocol):
    """Handle for an acquired lock."""

    def release(self) -> None:
        """Release the lock, honouring the minimum hold time."""
        ...


@runtime_checkable
class LockProvider(Protocol):
    """Distributed compare-and-set lock service."""

    def try_acquire(
        self,
        name: str,
        lock_at_least: timedelta,
        lock_at_most: timedelta,
    ) -> LockGuard | None:
        """Atomically take the named lock, or return ``None`` if it is held."""
        ...
