"""Composition root that builds every engine component from one config."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime

import structlog

from kafka_retry.callbacks.factory import CallbackFactory
from kafka_retry.config.models import RetryConfig
from kafka_retry.core.records import Direction, FailedRecord, utcnow
from kafka_retry.ingestion.error_router import ErrorRouter, RetryErrorRouter
from kafka_retry.ingestion.orchestrator import FailureContext, RetryOrchestrator
from kafka_retry.locking.base import LockProvider
from kafka_retry.persistence.base import FailedRecordRepository
from kafka_retry.policy.evaluator import RetryabilityPolicy
from kafka_retry.policy.taxonomy import ErrorTaxonomy
from kafka_retry.routing.router import PatternRouter
from kafka_retry.scheduler.dispatcher import RetryScheduler
from kafka_retry.scheduler.handlers import HandlerRegistry
from kafka_retry.scheduler.selector import RetrySelector

logger = structlog.get_logger()


class RetryEngine:
    """Wires the router, policy, orchestrator and scheduler together.

    The configuration is shared read-only by every component; the repository
    and lock provider are the only seams to infrastructure.
    """

    def __init__(
        self,
        config: RetryConfig,
        repository: FailedRecordRepository,
        lock_provider: LockProvider,
        *,
        handlers: HandlerRegistry | None = None,
        taxonomy: ErrorTaxonomy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config
        self.repository = repository
        self.lock_provider = lock_provider
        self.handlers = handlers if handlers is not None else HandlerRegistry()
        self.router = PatternRouter(config.handler_mappings, config.topic_delimiter)
        self.policy = RetryabilityPolicy(config, taxonomy)
        self.orchestrator = RetryOrchestrator(
            self.router, self.policy, repository, clock=clock
        )
        self.selector = RetrySelector(repository, config)
        self.scheduler = RetryScheduler(
            config,
            repository,
            lock_provider,
            self.handlers,
            selector=self.selector,
            clock=clock,
        )
        self.error_router: ErrorRouter = RetryErrorRouter(self.orchestrator)
        self._callback_factory: CallbackFactory | None = None

    def process_failure(self, failure: FailureContext) -> FailedRecord | None:
        return self.orchestrator.process_failure(failure)

    def register_configured_callbacks(
        self, factory: CallbackFactory | None = None
    ) -> list[str]:
        """Register built-in callbacks declared in the handler tables.

        Returns the ``direction:handler`` keys that were registered.
        """
        factory = factory or CallbackFactory(self.config.kafka)
        self._callback_factory = factory
        registered: list[str] = []
        for direction in Direction:
            table = self.config.handler_mappings.for_direction(direction)
            for handler_id, policy in table.items():
                if policy.callback is None:
                    continue
                handler = factory.create(policy.callback)
                self.handlers.register(direction, handler_id, handler.handle)
                registered.append(f"{direction.value}:{handler_id}")
        logger.info("engine.callbacks_registered", handlers=registered)
        return registered

    def unhandled(self) -> list[str]:
        """Routable handlers that have no registered callback."""
        return [
            f"{direction.value}:{handler_id}"
            for direction in Direction
            for handler_id in self.router.handlers(direction)
            if (direction, handler_id) not in self.handlers
        ]

    async def start_callbacks(self) -> None:
        if self._callback_factory is not None:
            for webhook in self._callback_factory.webhooks:
                await webhook.start()

    async def start(self) -> None:
        await self.start_callbacks()
        missing = self.unhandled()
        if missing:
            logger.warning("engine.handlers_without_callback", handlers=missing)
        if self.config.enabled and self.config.scheduler.enabled:
            await self.scheduler.start()
        else:
            logger.info("engine.scheduler_disabled")

    async def stop(self) -> None:
        await self.scheduler.stop()
        if self._callback_factory is not None:
            for webhook in self._callback_factory.webhooks:
                await webhook.stop()

    def run(self) -> None:
        """Start the engine and block until cancelled (e.g. Ctrl-C)."""
        asyncio.run(self._run_async())

    async def _run_async(self) -> None:
        await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()

    def close(self) -> None:
        """Close infrastructure connections that support it."""
        for resource in (self.repository, self.lock_provider):
            close = getattr(resource, "close", None)
            if close is not None:
                close()


def create_postgres_engine(
    config: RetryConfig,
    *,
    handlers: HandlerRegistry | None = None,
    taxonomy: ErrorTaxonomy | None = None,
) -> RetryEngine:
    """Engine backed by the PostgreSQL repository and lock provider."""
    from kafka_retry.locking.postgres import PostgresLockProvider
    from kafka_retry.persistence.postgres import PostgresFailedRecordRepository

    if config.database is None:
        msg = "database config is required for the PostgreSQL engine"
        raise ValueError(msg)
    return RetryEngine(
        config,
        PostgresFailedRecordRepository(config.database),
        PostgresLockProvider(config.database),
        handlers=handlers,
        taxonomy=taxonomy,
    )
