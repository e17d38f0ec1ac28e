"""ErrorRouter adapter that persists failed events for retry instead of a DLQ."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import structlog

from kafka_retry.ingestion.orchestrator import FailureContext, RetryOrchestrator

logger = structlog.get_logger()


@runtime_checkable
class ErrorRouter(Protocol):
    """Receives consumer failures that could not be processed in place.

    Consumers call ``send`` with the failed record's coordinates; the
    implementation decides whether the event is stored for a later retry.
    """

    def send(
        self,
        *,
        source_topic: str,
        partition: int,
        offset: int,
        key: bytes | None,
        value: bytes | None,
        error: Exception,
        extra_headers: dict[str, str] | None = None,
    ) -> None:
        """Hand over one failed event; never raises."""
        ...


class RetryErrorRouter:
    """Drop-in ``ErrorRouter`` that hands consumer failures to the orchestrator."""

    def __init__(self, orchestrator: RetryOrchestrator) -> None:
        self._orchestrator = orchestrator

    def send(
        self,
        *,
        source_topic: str,
        partition: int,
        offset: int,
        key: bytes | None,
        value: bytes | None,
        error: Exception,
        extra_headers: dict[str, str] | None = None,
    ) -> None:
        headers: dict[str, str] = {
            "retry.source.partition": str(partition),
            "retry.source.offset": str(offset),
        }
        if extra_headers:
            headers.update(extra_headers)
        record = self._orchestrator.process_failure(
            FailureContext(
                error=error,
                payload=value,
                received_topic=source_topic,
                headers=headers,
            )
        )
        if record is None:
            logger.warning(
                "retry_router.dropped",
                source_topic=source_topic,
                partition=partition,
                offset=offset,
                error=str(error),
            )
