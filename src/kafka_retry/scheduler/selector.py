"""Select the failed records that are due for a retry."""

from __future__ import annotations

from datetime import datetime

import structlog

from kafka_retry.config.models import RetryConfig
from kafka_retry.core.backoff import is_due
from kafka_retry.core.records import FailedRecord
from kafka_retry.persistence.base import FailedRecordRepository

logger = structlog.get_logger()


class RetrySelector:
    """Bounded, ordered due-record query.

    The batch size caps the work done per scheduler tick no matter how large
    the backlog grows.  Every row the repository returns is re-checked with
    the in-process predicate, so a drifting query can never hand a terminal
    or exhausted record to the dispatcher.
    """

    def __init__(
        self, repository: FailedRecordRepository, config: RetryConfig
    ) -> None:
        self._repository = repository
        self._base_interval = config.initial_interval_minutes
        self._max_retries = config.max_retries
        self._batch_size = config.batch_size

    @property
    def batch_size(self) -> int:
        return self._batch_size

    def select_due(self, now: datetime) -> list[FailedRecord]:
        candidates = self._repository.find_due(
            now, self._base_interval, self._max_retries, self._batch_size
        )
        selected: list[FailedRecord] = []
        for record in candidates:
            if not is_due(
                record,
                now,
                base_interval_minutes=self._base_interval,
                max_retries=self._max_retries,
            ):
                logger.warning(
                    "selector.predicate_drift",
                    record_id=record.record_id,
                    status=record.status.value,
                    retry_count=record.retry_count,
                    last_attempt_at=record.last_attempt_at,
                )
                continue
            selected.append(record)
            if len(selected) == self._batch_size:
                break
        return selected
