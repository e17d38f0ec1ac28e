"""Unit tests for the webhook retry callback."""

from __future__ import annotations

import httpx
import pytest
import respx

from kafka_retry.callbacks.webhook import WebhookRetryHandler
from kafka_retry.config.models import HttpRetryConfig, WebhookCallbackConfig
from kafka_retry.core.records import Direction, FailedRecord

URL = "http://example.com/retry"


def _handler(auth_token: str | None = None, max_attempts: int = 2):
    return WebhookRetryHandler(
        WebhookCallbackConfig(
            url=URL,
            auth_token=auth_token,
            headers={"X-Team": "orders"},
            retry=HttpRetryConfig(
                max_attempts=max_attempts,
                initial_wait_seconds=0.01,
                max_wait_seconds=0.1,
                jitter=False,
            ),
        )
    )


def _record() -> FailedRecord:
    return FailedRecord(
        payload=b'{"order": 1}',
        handler_id="orderHandler",
        direction=Direction.CONSUMER,
        retry_count=2,
        record_id="r1",
    )


@pytest.mark.asyncio
class TestWebhookRetryHandler:
    async def test_posts_raw_payload(self, respx_mock: respx.MockRouter):
        route = respx_mock.post(URL).mock(return_value=httpx.Response(200))
        handler = _handler()
        await handler.start()
        try:
            await handler.handle(_record())
        finally:
            await handler.stop()

        assert route.call_count == 1
        request = route.calls[0].request
        assert request.read() == b'{"order": 1}'
        assert request.headers["Content-Type"] == "application/octet-stream"
        assert request.headers["X-Team"] == "orders"
        assert request.headers["X-Retry-Record-Id"] == "r1"
        assert request.headers["X-Retry-Handler"] == "orderHandler"
        assert request.headers["X-Retry-Attempt"] == "3"

    async def test_auth_header_set(self, respx_mock: respx.MockRouter):
        route = respx_mock.post(URL).mock(return_value=httpx.Response(204))
        handler = _handler(auth_token="my-secret-token")
        await handler.start()
        try:
            await handler.handle(_record())
        finally:
            await handler.stop()
        assert route.calls[0].request.headers["Authorization"] == (
            "Bearer my-secret-token"
        )

    async def test_retries_server_errors(self, respx_mock: respx.MockRouter):
        route = respx_mock.post(URL).mock(
            side_effect=[httpx.Response(503), httpx.Response(200)]
        )
        handler = _handler(max_attempts=3)
        await handler.start()
        try:
            await handler.handle(_record())
        finally:
            await handler.stop()
        assert route.call_count == 2

    async def test_persistent_error_fails_attempt(self, respx_mock: respx.MockRouter):
        respx_mock.post(URL).mock(return_value=httpx.Response(500))
        handler = _handler(max_attempts=2)
        await handler.start()
        try:
            with pytest.raises(httpx.HTTPStatusError):
                await handler.handle(_record())
        finally:
            await handler.stop()

    async def test_handle_before_start(self):
        with pytest.raises(RuntimeError, match="not started"):
            await _handler().handle(_record())
