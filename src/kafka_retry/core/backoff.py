"""Exponential backoff arithmetic.

This is the single in-process definition of retry eligibility.  The
PostgreSQL repository evaluates the same expression in SQL
(``base << retry_count`` whole minutes), so both sides always agree on
which records are due.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from kafka_retry.core.records import FailedRecord, RecordStatus

# Upper bound of PostgreSQL make_interval(mins => integer).
MAX_BACKOFF_MINUTES = 2**31 - 1


def backoff_minutes(base_interval_minutes: int, retry_count: int) -> int:
    """Whole minutes to wait after an attempt: ``base * 2**retry_count``."""
    if base_interval_minutes < 0 or retry_count < 0:
        msg = (
            "base_interval_minutes and retry_count must be non-negative "
            f"(got {base_interval_minutes}, {retry_count})"
        )
        raise ValueError(msg)
    return base_interval_minutes << retry_count


def backoff_interval(base_interval_minutes: int, retry_count: int) -> timedelta:
    return timedelta(minutes=backoff_minutes(base_interval_minutes, retry_count))


def next_eligible_at(
    last_attempt_at: datetime | None,
    base_interval_minutes: int,
    retry_count: int,
) -> datetime | None:
    """When a record may next be retried; ``None`` means immediately."""
    if last_attempt_at is None:
        return None
    return last_attempt_at + backoff_interval(base_interval_minutes, retry_count)


def is_due(
    record: FailedRecord,
    now: datetime,
    *,
    base_interval_minutes: int,
    max_retries: int,
) -> bool:
    """Eligibility predicate shared by the selector and in-memory repository."""
    if record.status is not RecordStatus.FAILED:
        return False
    if record.retry_count >= max_retries:
        return False
    eligible_at = next_eligible_at(
        record.last_attempt_at, base_interval_minutes, record.retry_count
    )
    return eligible_at is None or now >= eligible_at
