"""Retry scheduler: lock, select, dispatch and record each outcome."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

import structlog

from kafka_retry.config.models import RetryConfig
from kafka_retry.core.records import FailedRecord, RecordStatus, utcnow
from kafka_retry.locking.base import LockGuard, LockProvider
from kafka_retry.persistence.base import FailedRecordRepository
from kafka_retry.scheduler.handlers import HandlerRegistry
from kafka_retry.scheduler.selector import RetrySelector

logger = structlog.get_logger()


class TickState(StrEnum):
    IDLE = "idle"
    LOCK_ACQUIRED = "lock_acquired"
    SELECTING = "selecting"
    DISPATCHING = "dispatching"


@dataclass
class TickResult:
    """Outcome counters for one scheduler tick."""

    lock_acquired: bool = False
    selected: int = 0
    processed: int = 0
    retried: int = 0
    exhausted: int = 0
    aborted: bool = False


class RetryScheduler:
    """Runs retry ticks on a fixed cadence, one instance at a time cluster-wide.

    Records within a tick are dispatched sequentially in selection order.
    Each record's outcome is persisted as soon as its callback returns, so a
    crash mid-batch loses at most the in-flight record's update.  A callback
    error only affects its own record; a lock or repository error aborts the
    tick, which is simply attempted again on the next cadence.
    """

    def __init__(
        self,
        config: RetryConfig,
        repository: FailedRecordRepository,
        lock_provider: LockProvider,
        handlers: HandlerRegistry,
        *,
        selector: RetrySelector | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config
        self._repository = repository
        self._lock_provider = lock_provider
        self._handlers = handlers
        self._selector = selector or RetrySelector(repository, config)
        self._clock = clock
        self._lock_at_least = timedelta(seconds=config.lock.lock_at_least_seconds)
        self._lock_at_most = timedelta(seconds=config.lock.lock_at_most_seconds)
        self._callback_timeout = config.scheduler.callback_timeout_seconds
        self._state = TickState.IDLE
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]

    @property
    def state(self) -> TickState:
        return self._state

    async def start(self) -> None:
        self._task = asyncio.create_task(self._tick_loop())
        logger.info(
            "scheduler.started",
            interval_seconds=self._config.scheduler.interval_seconds,
            lock=self._config.lock.name,
        )

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info("scheduler.stopped")

    async def _tick_loop(self) -> None:
        while True:
            await self.run_tick()
            await asyncio.sleep(self._config.scheduler.interval_seconds)

    async def _blocking(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    async def run_tick(self) -> TickResult:
        """Run one tick; a busy lock makes it a no-op."""
        result = TickResult()
        name = self._config.lock.name
        try:
            guard: LockGuard | None = await self._blocking(
                self._lock_provider.try_acquire,
                name,
                self._lock_at_least,
                self._lock_at_most,
            )
        except Exception as exc:
            logger.error("scheduler.lock_unavailable", lock=name, error=str(exc))
            result.aborted = True
            return result
        if guard is None:
            logger.debug("scheduler.lock_held_elsewhere", lock=name)
            return result

        result.lock_acquired = True
        self._state = TickState.LOCK_ACQUIRED
        try:
            await self._run_locked(result)
        finally:
            self._state = TickState.IDLE
            try:
                await self._blocking(guard.release)
            except Exception as exc:
                logger.error("scheduler.lock_release_failed", lock=name, error=str(exc))
        return result

    async def _run_locked(self, result: TickResult) -> None:
        self._state = TickState.SELECTING
        now = self._clock()
        try:
            records: list[FailedRecord] = await self._blocking(
                self._selector.select_due, now
            )
        except Exception as exc:
            logger.error("scheduler.select_failed", error=str(exc))
            result.aborted = True
            return

        result.selected = len(records)
        if not records:
            logger.info("scheduler.nothing_due")
            return
        logger.info("scheduler.tick_started", due=len(records))

        self._state = TickState.DISPATCHING
        for record in records:
            await self._attempt(record)
            try:
                await self._blocking(self._repository.save, record)
            except Exception as exc:
                logger.error(
                    "scheduler.save_failed",
                    record_id=record.record_id,
                    handler_id=record.handler_id,
                    status=record.status.value,
                    retry_count=record.retry_count,
                    error=str(exc),
                )
                result.aborted = True
                return

            if record.status is RecordStatus.PROCESSED:
                result.processed += 1
            elif record.status is RecordStatus.PERMANENT_FAILURE:
                result.exhausted += 1
            else:
                result.retried += 1

        logger.info(
            "scheduler.tick_finished",
            processed=result.processed,
            retried=result.retried,
            exhausted=result.exhausted,
        )

    async def _attempt(self, record: FailedRecord) -> None:
        """Invoke the record's callback and apply the outcome in memory."""
        log = logger.bind(
            record_id=record.record_id,
            handler_id=record.handler_id,
            direction=record.direction.value,
            topic=record.topic,
            attempt=record.retry_count + 1,
        )
        try:
            callback = self._handlers.lookup(record.direction, record.handler_id)
            if self._callback_timeout is None:
                await callback(record)
            else:
                await asyncio.wait_for(callback(record), self._callback_timeout)
        except Exception as exc:
            record.record_failure(
                str(exc) or type(exc).__name__,
                at=self._clock(),
                max_retries=self._config.max_retries,
            )
            if record.status is RecordStatus.PERMANENT_FAILURE:
                log.error(
                    "scheduler.retries_exhausted",
                    max_retries=self._config.max_retries,
                    error=record.last_error,
                )
            else:
                log.warning("scheduler.retry_failed", error=record.last_error)
            return
        record.mark_processed()
        log.info("scheduler.record_processed")
