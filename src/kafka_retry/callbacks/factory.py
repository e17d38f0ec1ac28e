"""Maps CallbackType to the built-in retry callbacks."""

from __future__ import annotations

from confluent_kafka import Producer

from kafka_retry.callbacks.kafka import KafkaRepublishHandler, create_producer
from kafka_retry.callbacks.webhook import WebhookRetryHandler
from kafka_retry.config.models import CallbackConfig, CallbackType, KafkaConfig


class CallbackFactory:
    """Builds configured callbacks, sharing one Kafka producer between them."""

    def __init__(
        self, kafka_config: KafkaConfig | None, producer: Producer | None = None
    ) -> None:
        self._kafka_config = kafka_config
        self._producer = producer
        self.webhooks: list[WebhookRetryHandler] = []

    def _shared_producer(self) -> Producer:
        if self._producer is None:
            if self._kafka_config is None:
                msg = "kafka config is required for 'kafka_republish' callbacks"
                raise ValueError(msg)
            self._producer = create_producer(self._kafka_config)
        return self._producer

    def create(
        self, config: CallbackConfig
    ) -> KafkaRepublishHandler | WebhookRetryHandler:
        if config.callback_type == CallbackType.KAFKA_REPUBLISH:
            kafka = self._kafka_config or KafkaConfig()
            return KafkaRepublishHandler(
                self._shared_producer(),
                topic=config.topic,
                flush_timeout=kafka.flush_timeout_seconds,
            )
        if config.callback_type == CallbackType.WEBHOOK:
            assert config.webhook is not None
            handler = WebhookRetryHandler(config.webhook)
            self.webhooks.append(handler)
            return handler
        msg = f"Unknown callback type: {config.callback_type}"
        raise ValueError(msg)
