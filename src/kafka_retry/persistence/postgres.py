"""PostgreSQL failed record store."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from datetime import datetime
from typing import Any

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from kafka_retry.config.models import PostgresConfig
from kafka_retry.core.records import Direction, FailedRecord, RecordStatus
from kafka_retry.errors import InvalidTransitionError

logger = structlog.get_logger()

_COLUMNS = (
    "record_id",
    "payload",
    "handler_id",
    "direction",
    "status",
    "retry_count",
    "last_attempt_at",
    "last_error",
    "topic",
    "created_at",
)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS {table} (
    record_id       TEXT PRIMARY KEY,
    payload         BYTEA NOT NULL,
    handler_id      TEXT NOT NULL,
    direction       TEXT NOT NULL,
    status          TEXT NOT NULL,
    retry_count     INTEGER NOT NULL DEFAULT 0 CHECK (retry_count >= 0),
    last_attempt_at TIMESTAMPTZ,
    last_error      TEXT,
    topic           TEXT,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""

_CREATE_INDEX = """
CREATE INDEX IF NOT EXISTS {index}
    ON {table} (status, last_attempt_at NULLS FIRST)
"""

# Terminal rows are never overwritten and retry_count never decreases.
_UPSERT = """
INSERT INTO {table} ({columns})
VALUES (
    %(record_id)s, %(payload)s, %(handler_id)s, %(direction)s, %(status)s,
    %(retry_count)s, %(last_attempt_at)s, %(last_error)s, %(topic)s,
    %(created_at)s
)
ON CONFLICT (record_id) DO UPDATE SET
    status = EXCLUDED.status,
    retry_count = GREATEST({table}.retry_count, EXCLUDED.retry_count),
    last_attempt_at = EXCLUDED.last_attempt_at,
    last_error = EXCLUDED.last_error
WHERE {table}.status = 'FAILED'
"""

# base << retry_count is the same whole-minute figure as backoff_minutes().
# The shift is capped at max_retries so rows outside the retry window, which
# PostgreSQL may still evaluate, stay within make_interval's integer range.
_FIND_DUE = """
SELECT {columns} FROM {table}
WHERE status = 'FAILED'
  AND retry_count < %(max_retries)s
  AND (
    last_attempt_at IS NULL
    OR last_attempt_at + make_interval(
         mins => (%(base)s::bigint << LEAST(retry_count, %(max_retries)s))::integer
       ) <= %(now)s
  )
ORDER BY last_attempt_at ASC NULLS FIRST, created_at ASC, record_id ASC
LIMIT %(batch_size)s
"""

_GET = "SELECT {columns} FROM {table} WHERE record_id = %(record_id)s"


def _import_psycopg2() -> Any:
    try:
        import psycopg2
    except ImportError:
        msg = (
            "psycopg2 is required for the PostgreSQL repository. "
            "Install it with: pip install kafka-retry[postgres]"
        )
        raise ImportError(msg) from None
    return psycopg2


def table_identifier(name: str) -> Any:
    """``failed_records`` or ``schema.failed_records`` as a quoted identifier."""
    from psycopg2 import sql

    return sql.Identifier(*name.split("."))


def connect(config: PostgresConfig) -> Any:
    """Open a psycopg2 connection, retrying while the server is unreachable."""
    psycopg2 = _import_psycopg2()

    @retry(
        stop=stop_after_attempt(config.connect_max_attempts),
        wait=wait_exponential_jitter(
            initial=config.connect_wait_seconds, jitter=config.connect_wait_seconds
        ),
        retry=retry_if_exception_type(psycopg2.OperationalError),
        reraise=True,
    )
    def _connect() -> Any:
        conn = psycopg2.connect(
            host=config.host,
            port=config.port,
            dbname=config.database,
            user=config.username,
            password=config.password.get_secret_value(),
        )
        conn.autocommit = False
        return conn

    conn = _connect()
    logger.info("postgres.connected", host=config.host, database=config.database)
    return conn


def discard_if_broken(conn: Any, exc: BaseException) -> bool:
    """Roll back after a failed statement, closing *conn* if it is unusable.

    Returns True when the connection was closed and must be reopened.
    """
    psycopg2 = _import_psycopg2()
    lost = isinstance(exc, (psycopg2.OperationalError, psycopg2.InterfaceError))
    if not lost:
        try:
            conn.rollback()
        except Exception:
            lost = True
    if lost:
        logger.warning("postgres.connection_lost", error=str(exc))
        with suppress(Exception):
            conn.close()
    return lost


def _row_to_record(row: tuple[Any, ...]) -> FailedRecord:
    data = dict(zip(_COLUMNS, row, strict=True))
    return FailedRecord(
        record_id=data["record_id"],
        payload=bytes(data["payload"]),
        handler_id=data["handler_id"],
        direction=Direction(data["direction"]),
        status=RecordStatus(data["status"]),
        retry_count=data["retry_count"],
        last_attempt_at=data["last_attempt_at"],
        last_error=data["last_error"],
        topic=data["topic"],
        created_at=data["created_at"],
    )


class PostgresFailedRecordRepository:
    """Failed records in a single PostgreSQL table, both directions together.

    Calls are serialized on one connection; ingestion threads and the
    scheduler executor share it.
    """

    def __init__(self, config: PostgresConfig, connection: Any = None) -> None:
        self._config = config
        self._conn = connection
        self._lock = threading.Lock()

    def _connection(self) -> Any:
        if self._conn is None:
            self._conn = connect(self._config)
        return self._conn

    def _render(self, template: str) -> Any:
        from psycopg2 import sql

        table_name = self._config.records_table
        return sql.SQL(template).format(
            table=table_identifier(table_name),
            index=sql.Identifier(f"{table_name.rsplit('.', 1)[-1]}_due_idx"),
            columns=sql.SQL(", ").join(sql.Identifier(c) for c in _COLUMNS),
        )

    @contextmanager
    def _cursor(self) -> Iterator[Any]:
        """Cursor in a transaction, committed on success.

        A lost connection is dropped so the next call reconnects.
        """
        conn = self._connection()
        cur = conn.cursor()
        try:
            yield cur
            conn.commit()
        except Exception as exc:
            if discard_if_broken(conn, exc):
                self._conn = None
            raise
        finally:
            with suppress(Exception):
                cur.close()

    def ensure_schema(self) -> None:
        """Create the records table and its due-query index if missing."""
        with self._lock, self._cursor() as cur:
            for template in (_CREATE_TABLE, _CREATE_INDEX):
                cur.execute(self._render(template))
        logger.info(
            "postgres_repository.schema_ready", table=self._config.records_table
        )

    def save(self, record: FailedRecord) -> None:
        params = {
            "record_id": record.record_id,
            "payload": _import_psycopg2().Binary(record.payload),
            "handler_id": record.handler_id,
            "direction": record.direction.value,
            "status": record.status.value,
            "retry_count": record.retry_count,
            "last_attempt_at": record.last_attempt_at,
            "last_error": record.last_error,
            "topic": record.topic,
            "created_at": record.created_at,
        }
        with self._lock, self._cursor() as cur:
            cur.execute(self._render(_UPSERT), params)
            if cur.rowcount == 0:
                msg = (
                    f"Failed record {record.record_id} is terminal "
                    "and cannot be overwritten"
                )
                raise InvalidTransitionError(msg)

    def find_due(
        self,
        now: datetime,
        base_interval_minutes: int,
        max_retries: int,
        batch_size: int,
    ) -> list[FailedRecord]:
        params = {
            "now": now,
            "base": base_interval_minutes,
            "max_retries": max_retries,
            "batch_size": batch_size,
        }
        with self._lock, self._cursor() as cur:
            cur.execute(self._render(_FIND_DUE), params)
            rows = cur.fetchall()
        return [_row_to_record(row) for row in rows]

    def get(self, record_id: str) -> FailedRecord | None:
        with self._lock, self._cursor() as cur:
            cur.execute(self._render(_GET), {"record_id": record_id})
            row = cur.fetchone()
        return _row_to_record(row) if row is not None else None

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
