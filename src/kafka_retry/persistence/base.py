"""Failed record repository protocol.

The engine only reads and writes failed records through this protocol.
Implementations of :meth:`FailedRecordRepository.find_due` must apply
exactly the eligibility predicate of :func:`kafka_retry.core.backoff.is_due`:

- ``status == FAILED`` and ``retry_count < max_retries``;
- never attempted, or ``now >= last_attempt_at + base * 2**retry_count``
  minutes;
- ordered by ``last_attempt_at`` ascending, never-attempted first, then by
  ``created_at`` and ``record_id``;
- at most ``batch_size`` rows.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from kafka_retry.core.records import FailedRecord


@runtime_checkable
class FailedRecordRepository(Protocol):
    """Durable storage for failed records."""

    def save(self, record: FailedRecord) -> None:
        """Insert a new record or update an existing one by ``record_id``."""
        ...

    def find_due(
        self,
        now: datetime,
        base_interval_minutes: int,
        max_retries: int,
        batch_size: int,
    ) -> list[FailedRecord]:
        """Return records eligible for retry at *now*."""
        ...

    def get(self, record_id: str) -> FailedRecord | None:
        """Fetch one record by id."""
        ...
