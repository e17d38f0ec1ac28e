"""End-to-end tests through the composition root with in-memory collaborators."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import MagicMock

import pytest

from kafka_retry.callbacks.factory import CallbackFactory
from kafka_retry.config.models import RetryConfig
from kafka_retry.core.records import FailedRecord, RecordStatus
from kafka_retry.engine import RetryEngine, create_postgres_engine
from kafka_retry.ingestion.error_router import ErrorRouter
from kafka_retry.ingestion.orchestrator import FailureContext
from kafka_retry.locking.memory import InMemoryLockProvider
from kafka_retry.persistence.memory import InMemoryFailedRecordRepository
from kafka_retry.policy.taxonomy import ErrorTaxonomy
from kafka_retry.scheduler.handlers import HandlerRegistry

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


class IllegalStateError(RuntimeError):
    pass


class FakeClock:
    def __init__(self) -> None:
        self.now = T0

    def __call__(self) -> datetime:
        return self.now

    def at(self, minutes: float) -> None:
        self.now = T0 + timedelta(minutes=minutes)


def _engine(
    handlers: HandlerRegistry | None = None, **config: Any
) -> tuple[RetryEngine, InMemoryFailedRecordRepository, FakeClock]:
    clock = FakeClock()
    repo = InMemoryFailedRecordRepository()
    settings: dict[str, Any] = {
        "initial_interval_minutes": 5,
        "max_retries": 3,
        "handler_mappings": {
            "consumer": {"orderHandler": {"topic": "orders.*.retail"}},
        },
    }
    settings.update(config)
    engine = RetryEngine(
        RetryConfig(**settings),
        repo,
        InMemoryLockProvider(clock),
        handlers=handlers,
        taxonomy=ErrorTaxonomy(),
        clock=clock,
    )
    return engine, repo, clock


def _ingest(engine: RetryEngine) -> FailedRecord:
    record = engine.process_failure(
        FailureContext(
            error=IllegalStateError("order 1 is not open"),
            payload=b'{"order": 1}',
            received_topic="orders.eu.retail",
        )
    )
    assert record is not None
    return record


@pytest.mark.asyncio
class TestEndToEnd:
    async def test_ingest_then_retry_succeeds(self):
        handlers = HandlerRegistry()
        seen: list[str] = []

        @handlers.consumer("orderHandler")
        async def handle(record: FailedRecord) -> None:
            seen.append(record.record_id)

        engine, repo, clock = _engine(handlers)
        record = _ingest(engine)
        assert record.handler_id == "orderHandler"
        assert record.status is RecordStatus.FAILED
        assert record.retry_count == 0

        clock.at(4)
        result = await engine.scheduler.run_tick()
        assert result.lock_acquired
        assert result.selected == 0
        assert seen == []

        clock.at(5)
        result = await engine.scheduler.run_tick()
        assert result.processed == 1
        assert seen == [record.record_id]
        stored = repo.get(record.record_id)
        assert stored is not None
        assert stored.status is RecordStatus.PROCESSED

    async def test_failing_retries_back_off_then_exhaust(self):
        handlers = HandlerRegistry()
        attempts: list[datetime] = []

        engine, repo, clock = _engine(handlers)

        @handlers.consumer("orderHandler")
        async def handle(record: FailedRecord) -> None:
            attempts.append(clock.now)
            raise ConnectionError("downstream unavailable")

        record = _ingest(engine)

        clock.at(5)
        await engine.scheduler.run_tick()
        stored = repo.get(record.record_id)
        assert stored is not None
        assert stored.retry_count == 1
        assert stored.status is RecordStatus.FAILED

        # Second retry waits base * 2 minutes after the first.
        clock.at(14)
        assert (await engine.scheduler.run_tick()).selected == 0
        clock.at(15)
        await engine.scheduler.run_tick()

        clock.at(34)
        assert (await engine.scheduler.run_tick()).selected == 0
        clock.at(35)
        result = await engine.scheduler.run_tick()
        assert result.exhausted == 1

        stored = repo.get(record.record_id)
        assert stored is not None
        assert stored.retry_count == 3
        assert stored.status is RecordStatus.PERMANENT_FAILURE
        assert stored.last_error == "downstream unavailable"

        clock.at(60 * 24 * 30)
        assert (await engine.scheduler.run_tick()).selected == 0
        assert len(attempts) == 3

    async def test_non_retryable_never_dispatched(self):
        handlers = HandlerRegistry()
        calls: list[str] = []

        @handlers.consumer("orderHandler")
        async def handle(record: FailedRecord) -> None:
            calls.append(record.record_id)

        engine, _repo, clock = _engine(
            handlers,
            handler_mappings={
                "consumer": {
                    "orderHandler": {
                        "topic": "orders.*.retail",
                        "non_retryable_exceptions": ["RuntimeError"],
                    }
                }
            },
        )
        record = _ingest(engine)
        assert record.status is RecordStatus.PERMANENT_FAILURE

        clock.at(60)
        assert (await engine.scheduler.run_tick()).selected == 0
        assert calls == []


class TestWiring:
    def test_error_router_feeds_orchestrator(self):
        engine, repo, _clock = _engine()
        assert isinstance(engine.error_router, ErrorRouter)
        engine.error_router.send(
            source_topic="orders.eu.retail",
            partition=0,
            offset=1,
            key=None,
            value=b"{}",
            error=RuntimeError("boom"),
        )
        assert len(repo.all()) == 1

    def test_register_configured_callbacks(self):
        engine, _repo, _clock = _engine(
            handler_mappings={
                "consumer": {
                    "orderHandler": {
                        "topic": "orders.*.retail",
                        "callback": {"callback_type": "kafka_republish"},
                    },
                    "paymentHandler": {"topic": "payments.**"},
                },
                "producer": {
                    "auditHandler": {
                        "topic": "audit.**",
                        "callback": {
                            "callback_type": "webhook",
                            "webhook": {"url": "http://example.com/audit"},
                        },
                    },
                },
            },
        )
        factory = CallbackFactory(None, producer=MagicMock())

        registered = engine.register_configured_callbacks(factory)

        assert registered == ["producer:auditHandler", "consumer:orderHandler"]
        assert engine.unhandled() == ["consumer:paymentHandler"]
        assert len(factory.webhooks) == 1

    def test_postgres_engine_requires_database(self):
        with pytest.raises(ValueError, match="database config is required"):
            create_postgres_engine(RetryConfig())

    def test_close_closes_resources(self):
        repo = MagicMock()
        locks = MagicMock()
        engine = RetryEngine(RetryConfig(), repo, locks)
        engine.close()
        repo.close.assert_called_once()
        locks.close.assert_called_once()


@pytest.mark.asyncio
class TestLifecycle:
    async def test_disabled_scheduler_not_started(self):
        engine, _repo, _clock = _engine(scheduler={"enabled": False})
        await engine.start()
        assert engine.scheduler._task is None
        await engine.stop()

    async def test_start_and_stop(self):
        engine, _repo, _clock = _engine()
        await engine.start()
        assert engine.scheduler._task is not None
        await engine.stop()
        assert engine.scheduler._task is None
