"""Failed record model, the persisted unit of retry state."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from kafka_retry.errors import InvalidTransitionError


class Direction(StrEnum):
    """Which side of the transport a failure came from."""

    PRODUCER = "producer"
    CONSUMER = "consumer"


class RecordStatus(StrEnum):
    """Lifecycle states of a failed record.

    ``FAILED`` is the only non-terminal state.  ``PROCESSED`` and
    ``PERMANENT_FAILURE`` are never left once entered.
    """

    FAILED = "FAILED"
    PROCESSED = "PROCESSED"
    PERMANENT_FAILURE = "PERMANENT_FAILURE"

    @property
    def terminal(self) -> bool:
        return self is not RecordStatus.FAILED


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class FailedRecord:
    """A message that failed and is (or was) awaiting retry."""

    payload: bytes
    handler_id: str
    direction: Direction
    status: RecordStatus = RecordStatus.FAILED
    retry_count: int = 0
    last_attempt_at: datetime | None = None
    last_error: str | None = None
    topic: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    record_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        if self.retry_count < 0:
            msg = f"retry_count must be >= 0, got {self.retry_count}"
            raise ValueError(msg)

    @classmethod
    def new(
        cls,
        *,
        payload: bytes | str,
        handler_id: str,
        direction: Direction,
        retryable: bool,
        topic: str | None = None,
        error: str | None = None,
        now: datetime | None = None,
    ) -> FailedRecord:
        """Build a freshly ingested record.

        The live failure counts as the first attempt: ``last_attempt_at`` is
        the ingestion time and ``retry_count`` is 0, so the first retry is
        due one base interval later.
        """
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        now = now or utcnow()
        return cls(
            payload=payload,
            handler_id=handler_id,
            direction=direction,
            status=RecordStatus.FAILED if retryable else RecordStatus.PERMANENT_FAILURE,
            topic=topic,
            last_attempt_at=now,
            last_error=error,
            created_at=now,
        )

    def _ensure_open(self) -> None:
        if self.status.terminal:
            msg = (
                f"Failed record {self.record_id} is {self.status} "
                "and cannot change state"
            )
            raise InvalidTransitionError(msg)

    def mark_processed(self) -> None:
        self._ensure_open()
        self.status = RecordStatus.PROCESSED

    def record_failure(self, error: str, *, at: datetime, max_retries: int) -> None:
        """Count a failed retry; exhausting the budget makes the record terminal."""
        self._ensure_open()
        self.retry_count += 1
        self.last_attempt_at = at
        self.last_error = error
        if self.retry_count >= max_retries:
            self.status = RecordStatus.PERMANENT_FAILURE
