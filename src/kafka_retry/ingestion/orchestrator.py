"""Failure ingestion: the single entry point for live message failures."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog

from kafka_retry.core.records import Direction, FailedRecord, utcnow
from kafka_retry.persistence.base import FailedRecordRepository
from kafka_retry.policy.evaluator import RetryabilityPolicy
from kafka_retry.routing.router import PatternRouter

if TYPE_CHECKING:
    from confluent_kafka import Message

logger = structlog.get_logger()


@dataclass(frozen=True)
class FailureContext:
    """What the transport knows about a failed message.

    Consumer failures carry the topic the message was received from;
    producer failures carry the destination it was being sent to.
    """

    error: BaseException | None
    payload: Any
    received_topic: str | None = None
    target_destination: str | None = None
    headers: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_kafka_message(
        cls, msg: Message, error: BaseException | None
    ) -> FailureContext:
        """Context for a message that failed after being consumed."""
        headers = {k: v for k, v in (msg.headers() or [])}
        return cls(
            error=error,
            payload=msg.value(),
            received_topic=msg.topic(),
            headers=headers,
        )

    @classmethod
    def for_destination(
        cls,
        destination: str,
        payload: Any,
        error: BaseException | None,
        headers: Mapping[str, Any] | None = None,
    ) -> FailureContext:
        """Context for a message that could not be produced to *destination*."""
        return cls(
            error=error,
            payload=payload,
            target_destination=destination,
            headers=dict(headers or {}),
        )

    def topic_and_direction(self) -> tuple[str, Direction] | None:
        if self.received_topic:
            return self.received_topic, Direction.CONSUMER
        if self.target_destination:
            return self.target_destination, Direction.PRODUCER
        return None


def root_cause(error: BaseException | None) -> BaseException | None:
    """Innermost explicitly chained cause (``raise ... from ...``)."""
    seen: set[int] = set()
    while error is not None and error.__cause__ is not None and id(error) not in seen:
        seen.add(id(error))
        error = error.__cause__
    return error


class RetryOrchestrator:
    """Routes a live failure to a handler and persists it for retry.

    ``process_failure`` runs inside transport error handling, so it never
    raises: every problem is logged and the message is dropped.
    """

    def __init__(
        self,
        router: PatternRouter,
        policy: RetryabilityPolicy,
        repository: FailedRecordRepository,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._router = router
        self._policy = policy
        self._repository = repository
        self._clock = clock

    def process_failure(self, failure: FailureContext) -> FailedRecord | None:
        """Persist *failure*; returns the stored record, or ``None`` if dropped."""
        try:
            return self._process(failure)
        except Exception as exc:
            logger.exception(
                "orchestrator.ingest_failed",
                topic=failure.received_topic or failure.target_destination,
                error=str(exc),
            )
            return None

    def _process(self, failure: FailureContext) -> FailedRecord | None:
        resolved = failure.topic_and_direction()
        if resolved is None:
            logger.error(
                "orchestrator.no_topic",
                headers=sorted(failure.headers),
                error=str(failure.error),
            )
            return None
        topic, direction = resolved

        payload = failure.payload
        if not isinstance(payload, (bytes, str)):
            logger.error(
                "orchestrator.unsupported_payload",
                topic=topic,
                direction=direction.value,
                payload_type=type(payload).__name__,
            )
            return None

        handler_id = self._router.resolve(topic, direction)
        if handler_id is None:
            logger.error(
                "orchestrator.no_handler", topic=topic, direction=direction.value
            )
            return None

        cause = root_cause(failure.error)
        retryable = self._policy.is_retryable(cause, handler_id, direction)
        record = FailedRecord.new(
            payload=payload,
            handler_id=handler_id,
            direction=direction,
            retryable=retryable,
            topic=topic,
            error=str(cause) if cause is not None else None,
            now=self._clock(),
        )
        self._repository.save(record)

        log_fn = logger.info if retryable else logger.error
        log_fn(
            "orchestrator.saved_for_retry"
            if retryable
            else "orchestrator.saved_as_permanent_failure",
            record_id=record.record_id,
            topic=topic,
            direction=direction.value,
            handler_id=handler_id,
            status=record.status.value,
        )
        return record
