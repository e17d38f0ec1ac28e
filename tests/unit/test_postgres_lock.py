"""Unit tests for the PostgreSQL lock provider (mocked connection)."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock, patch

import psycopg2
import pytest

from kafka_retry.config.models import PostgresConfig
from kafka_retry.locking.postgres import PostgresLockProvider

AT_LEAST = timedelta(seconds=30)
AT_MOST = timedelta(minutes=5)


def _provider(rowcount: int = 1) -> tuple[PostgresLockProvider, MagicMock]:
    conn = MagicMock()
    conn.cursor.return_value.rowcount = rowcount
    return PostgresLockProvider(PostgresConfig(database="retrydb"), conn), conn


class TestPostgresLockProvider:
    def test_acquired(self):
        provider, conn = _provider(rowcount=1)
        guard = provider.try_acquire("failed-record-retry", AT_LEAST, AT_MOST)

        assert guard is not None
        _query, params = conn.cursor.return_value.execute.call_args.args
        assert params["name"] == "failed-record-retry"
        assert params["at_most"] == 300.0
        assert params["locked_by"]
        conn.commit.assert_called_once()

    def test_busy(self):
        provider, _conn = _provider(rowcount=0)
        assert provider.try_acquire("failed-record-retry", AT_LEAST, AT_MOST) is None

    def test_holder_ids_are_unique(self):
        provider, conn = _provider()
        provider.try_acquire("a", AT_LEAST, AT_MOST)
        provider.try_acquire("b", AT_LEAST, AT_MOST)
        calls = conn.cursor.return_value.execute.call_args_list
        assert calls[0].args[1]["locked_by"] != calls[1].args[1]["locked_by"]

    def test_release_uses_minimum_hold(self):
        provider, conn = _provider()
        guard = provider.try_acquire("job", AT_LEAST, AT_MOST)
        assert guard is not None
        acquire_params = conn.cursor.return_value.execute.call_args.args[1]

        guard.release()

        _query, params = conn.cursor.return_value.execute.call_args.args
        assert params == {
            "name": "job",
            "locked_by": acquire_params["locked_by"],
            "at_least": 30.0,
        }

    def test_release_is_idempotent(self):
        provider, conn = _provider()
        guard = provider.try_acquire("job", AT_LEAST, AT_MOST)
        assert guard is not None
        guard.release()
        guard.release()
        assert conn.cursor.return_value.execute.call_count == 2

    def test_error_rolls_back(self):
        provider, conn = _provider()
        conn.cursor.return_value.execute.side_effect = RuntimeError("db down")
        with pytest.raises(RuntimeError):
            provider.try_acquire("job", AT_LEAST, AT_MOST)
        conn.rollback.assert_called_once()
        conn.cursor.return_value.close.assert_called_once()

    def test_ensure_schema(self):
        provider, conn = _provider()
        provider.ensure_schema()
        conn.cursor.return_value.execute.assert_called_once()
        conn.commit.assert_called_once()

    def test_lost_connection_is_reopened(self):
        provider, dead = _provider()
        dead.cursor.return_value.execute.side_effect = psycopg2.OperationalError(
            "terminating connection due to administrator command"
        )
        fresh = MagicMock()
        fresh.cursor.return_value.rowcount = 1

        with pytest.raises(psycopg2.OperationalError):
            provider.try_acquire("job", AT_LEAST, AT_MOST)
        dead.close.assert_called_once()

        with patch(
            "kafka_retry.locking.postgres.connect", return_value=fresh
        ) as reconnect:
            guard = provider.try_acquire("job", AT_LEAST, AT_MOST)
        assert guard is not None
        reconnect.assert_called_once()
