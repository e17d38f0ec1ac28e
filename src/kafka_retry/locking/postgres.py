"""PostgreSQL lock provider (ShedLock-compatible table layout)."""

from __future__ import annotations

import os
import socket
import uuid
from contextlib import suppress
from datetime import timedelta
from typing import Any

import structlog

from kafka_retry.config.models import PostgresConfig
from kafka_retry.persistence.postgres import (
    connect,
    discard_if_broken,
    table_identifier,
)

logger = structlog.get_logger()

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS {table} (
    name       VARCHAR(64) PRIMARY KEY,
    lock_until TIMESTAMPTZ NOT NULL,
    locked_at  TIMESTAMPTZ NOT NULL,
    locked_by  VARCHAR(255) NOT NULL
)
"""

# One statement, so concurrent instances race on the row lock, not in Python.
# All arithmetic uses database time.
_ACQUIRE = """
INSERT INTO {table} (name, lock_until, locked_at, locked_by)
VALUES (
    %(name)s,
    now() + make_interval(secs => %(at_most)s),
    now(),
    %(locked_by)s
)
ON CONFLICT (name) DO UPDATE SET
    lock_until = EXCLUDED.lock_until,
    locked_at = EXCLUDED.locked_at,
    locked_by = EXCLUDED.locked_by
WHERE {table}.lock_until <= now()
"""

_RELEASE = """
UPDATE {table}
SET lock_until = GREATEST(locked_at + make_interval(secs => %(at_least)s), now())
WHERE name = %(name)s AND locked_by = %(locked_by)s
"""


def _holder_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:12]}"


class PostgresLockGuard:
    def __init__(
        self,
        provider: PostgresLockProvider,
        name: str,
        locked_by: str,
        lock_at_least: timedelta,
    ) -> None:
        self._provider = provider
        self._name = name
        self._locked_by = locked_by
        self._lock_at_least = lock_at_least
        self._released = False

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._provider._release(self._name, self._locked_by, self._lock_at_least)


class PostgresLockProvider:
    """Cluster lock backed by a row per lock name."""

    def __init__(self, config: PostgresConfig, connection: Any = None) -> None:
        self._config = config
        self._conn = connection

    def _connection(self) -> Any:
        if self._conn is None:
            self._conn = connect(self._config)
        return self._conn

    def _run(self, template: str, params: dict[str, Any] | None = None) -> int:
        from psycopg2 import sql

        conn = self._connection()
        query = sql.SQL(template).format(
            table=table_identifier(self._config.lock_table)
        )
        cur = conn.cursor()
        try:
            cur.execute(query, params)
            rowcount = cur.rowcount
            conn.commit()
        except Exception as exc:
            if discard_if_broken(conn, exc):
                self._conn = None
            raise
        finally:
            with suppress(Exception):
                cur.close()
        return int(rowcount)

    def ensure_schema(self) -> None:
        self._run(_CREATE_TABLE)
        logger.info("postgres_lock.schema_ready", table=self._config.lock_table)

    def try_acquire(
        self,
        name: str,
        lock_at_least: timedelta,
        lock_at_most: timedelta,
    ) -> PostgresLockGuard | None:
        locked_by = _holder_id()
        acquired = self._run(
            _ACQUIRE,
            {
                "name": name,
                "at_most": lock_at_most.total_seconds(),
                "locked_by": locked_by,
            },
        )
        if acquired == 0:
            logger.debug("postgres_lock.busy", name=name)
            return None
        logger.debug("postgres_lock.acquired", name=name, locked_by=locked_by)
        return PostgresLockGuard(self, name, locked_by, lock_at_least)

    def _release(self, name: str, locked_by: str, lock_at_least: timedelta) -> None:
        self._run(
            _RELEASE,
            {
                "name": name,
                "locked_by": locked_by,
                "at_least": lock_at_least.total_seconds(),
            },
        )
        logger.debug("postgres_lock.released", name=name, locked_by=locked_by)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
