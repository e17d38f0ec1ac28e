"""Unit tests for the failed record lifecycle."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from kafka_retry.core.records import Direction, FailedRecord, RecordStatus
from kafka_retry.errors import InvalidTransitionError

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


def _new(retryable: bool = True, payload: bytes | str = b"payload") -> FailedRecord:
    return FailedRecord.new(
        payload=payload,
        handler_id="orderHandler",
        direction=Direction.CONSUMER,
        retryable=retryable,
        topic="orders.eu.retail",
        error="boom",
        now=T0,
    )


class TestNew:
    def test_retryable_starts_failed(self):
        record = _new()
        assert record.status is RecordStatus.FAILED
        assert record.retry_count == 0
        assert record.last_attempt_at == T0
        assert record.created_at == T0
        assert record.last_error == "boom"
        assert record.topic == "orders.eu.retail"

    def test_non_retryable_starts_permanent(self):
        assert _new(retryable=False).status is RecordStatus.PERMANENT_FAILURE

    def test_string_payload_encoded(self):
        assert _new(payload="héllo").payload == "héllo".encode()

    def test_ids_are_unique(self):
        assert _new().record_id != _new().record_id

    def test_negative_retry_count_rejected(self):
        with pytest.raises(ValueError):
            FailedRecord(
                payload=b"",
                handler_id="h",
                direction=Direction.PRODUCER,
                retry_count=-1,
            )


class TestTransitions:
    def test_mark_processed(self):
        record = _new()
        record.mark_processed()
        assert record.status is RecordStatus.PROCESSED
        assert record.status.terminal

    def test_record_failure_increments(self):
        record = _new()
        at = T0 + timedelta(minutes=5)
        record.record_failure("still down", at=at, max_retries=3)
        assert record.status is RecordStatus.FAILED
        assert record.retry_count == 1
        assert record.last_attempt_at == at
        assert record.last_error == "still down"

    def test_exhaustion_is_terminal(self):
        record = _new()
        for _ in range(3):
            record.record_failure("down", at=T0, max_retries=3)
        assert record.retry_count == 3
        assert record.status is RecordStatus.PERMANENT_FAILURE

    @pytest.mark.parametrize("retryable", [True, False])
    def test_terminal_records_cannot_change(self, retryable: bool):
        record = _new(retryable=retryable)
        if retryable:
            record.mark_processed()
        with pytest.raises(InvalidTransitionError):
            record.mark_processed()
        with pytest.raises(InvalidTransitionError):
            record.record_failure("again", at=T0, max_retries=5)
