"""In-process failed record store."""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime

import structlog

from kafka_retry.core.backoff import is_due
from kafka_retry.core.records import FailedRecord
from kafka_retry.errors import InvalidTransitionError

logger = structlog.get_logger()


class InMemoryFailedRecordRepository:
    """Dictionary-backed repository for tests and single-process use.

    Records are copied on the way in and out, so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._records: dict[str, FailedRecord] = {}
        self._lock = threading.Lock()

    def save(self, record: FailedRecord) -> None:
        with self._lock:
            existing = self._records.get(record.record_id)
            if existing is not None and existing.status.terminal:
                msg = (
                    f"Failed record {record.record_id} is {existing.status} "
                    "and cannot be overwritten"
                )
                raise InvalidTransitionError(msg)
            self._records[record.record_id] = replace(record)
        logger.debug(
            "memory_repository.saved",
            record_id=record.record_id,
            status=record.status.value,
            retry_count=record.retry_count,
        )

    def find_due(
        self,
        now: datetime,
        base_interval_minutes: int,
        max_retries: int,
        batch_size: int,
    ) -> list[FailedRecord]:
        with self._lock:
            due = [
                r
                for r in self._records.values()
                if is_due(
                    r,
                    now,
                    base_interval_minutes=base_interval_minutes,
                    max_retries=max_retries,
                )
            ]
        due.sort(
            key=lambda r: (
                r.last_attempt_at is not None,
                r.last_attempt_at or r.created_at,
                r.created_at,
                r.record_id,
            )
        )
        return [replace(r) for r in due[:batch_size]]

    def get(self, record_id: str) -> FailedRecord | None:
        with self._lock:
            record = self._records.get(record_id)
            return replace(record) if record is not None else None

    def all(self) -> list[FailedRecord]:
        with self._lock:
            return [replace(r) for r in self._records.values()]
