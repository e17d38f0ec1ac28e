"""Unit tests for backoff arithmetic and the due predicate."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from kafka_retry.core.backoff import (
    MAX_BACKOFF_MINUTES,
    backoff_interval,
    backoff_minutes,
    is_due,
    next_eligible_at,
)
from kafka_retry.core.records import Direction, FailedRecord, RecordStatus

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


def _record(**kwargs) -> FailedRecord:
    defaults = {
        "payload": b"{}",
        "handler_id": "orderHandler",
        "direction": Direction.CONSUMER,
        "last_attempt_at": T0,
    }
    defaults.update(kwargs)
    return FailedRecord(**defaults)


class TestBackoffMinutes:
    @pytest.mark.parametrize(
        ("retry_count", "expected"),
        [(0, 5), (1, 10), (2, 20), (3, 40), (10, 5120)],
    )
    def test_doubles_per_retry(self, retry_count: int, expected: int):
        assert backoff_minutes(5, retry_count) == expected

    def test_strictly_increasing(self):
        values = [backoff_minutes(3, n) for n in range(8)]
        assert values == sorted(set(values))

    def test_interval_is_whole_minutes(self):
        assert backoff_interval(5, 2) == timedelta(minutes=20)

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            backoff_minutes(-1, 0)
        with pytest.raises(ValueError):
            backoff_minutes(5, -1)

    def test_longest_configurable_backoff_fits(self):
        assert backoff_minutes(127, 24) <= MAX_BACKOFF_MINUTES
        assert backoff_interval(127, 24) == timedelta(minutes=127 * 2**24)


class TestNextEligibleAt:
    def test_never_attempted_is_immediate(self):
        assert next_eligible_at(None, 5, 0) is None

    def test_offsets_last_attempt(self):
        assert next_eligible_at(T0, 5, 1) == T0 + timedelta(minutes=10)


class TestIsDue:
    def test_due_exactly_at_boundary(self):
        record = _record(retry_count=1)
        due_at = T0 + timedelta(minutes=10)
        assert not is_due(
            record,
            due_at - timedelta(seconds=1),
            base_interval_minutes=5,
            max_retries=5,
        )
        assert is_due(record, due_at, base_interval_minutes=5, max_retries=5)

    def test_never_attempted_is_due(self):
        record = _record(last_attempt_at=None)
        assert is_due(record, T0, base_interval_minutes=5, max_retries=5)

    def test_exhausted_is_not_due(self):
        record = _record(retry_count=3)
        later = T0 + timedelta(days=30)
        assert not is_due(record, later, base_interval_minutes=5, max_retries=3)

    @pytest.mark.parametrize(
        "status", [RecordStatus.PROCESSED, RecordStatus.PERMANENT_FAILURE]
    )
    def test_terminal_is_not_due(self, status: RecordStatus):
        record = _record(status=status, last_attempt_at=None)
        assert not is_due(record, T0, base_interval_minutes=5, max_retries=5)
