"""Kafka republish callback that replays a failed payload onto a topic."""

from __future__ import annotations

import asyncio

import structlog
from confluent_kafka import KafkaError, KafkaException, Message, Producer

from kafka_retry.config.models import KafkaConfig
from kafka_retry.core.records import FailedRecord

logger = structlog.get_logger()


def create_producer(config: KafkaConfig) -> Producer:
    """Create an idempotent Kafka producer."""
    return Producer(
        {
            "bootstrap.servers": config.bootstrap_servers,
            "enable.idempotence": config.enable_idempotence,
            "acks": config.acks,
        }
    )


class KafkaRepublishHandler:
    """Re-produces the stored payload and waits for delivery.

    The target is the configured *topic*, or else the topic the failure was
    observed on.  A delivery error or an unflushed message fails the attempt.
    """

    def __init__(
        self,
        producer: Producer,
        *,
        topic: str | None = None,
        flush_timeout: float = 10.0,
    ) -> None:
        self._producer = producer
        self._topic = topic
        self._flush_timeout = flush_timeout

    async def handle(self, record: FailedRecord) -> None:
        topic = self._topic or record.topic
        if not topic:
            msg = f"Failed record {record.record_id} has no topic to republish to"
            raise ValueError(msg)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._produce, topic, record)
        logger.info(
            "kafka_republish.delivered",
            record_id=record.record_id,
            handler_id=record.handler_id,
            topic=topic,
        )

    def _produce(self, topic: str, record: FailedRecord) -> None:
        errors: list[KafkaError] = []

        def _on_delivery(err: KafkaError | None, msg: Message) -> None:
            if err is not None:
                errors.append(err)

        self._producer.produce(
            topic=topic,
            value=record.payload,
            headers=[
                ("retry.record_id", record.record_id.encode()),
                ("retry.attempt", str(record.retry_count + 1).encode()),
            ],
            on_delivery=_on_delivery,
        )
        remaining = self._producer.flush(timeout=self._flush_timeout)
        if errors:
            raise KafkaException(errors[0])
        if remaining:
            msg = f"{remaining} message(s) still in flight after flush to '{topic}'"
            raise TimeoutError(msg)
