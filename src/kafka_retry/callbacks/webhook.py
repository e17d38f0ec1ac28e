"""Webhook retry callback that forwards a failed payload over HTTP."""

from __future__ import annotations

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from kafka_retry.config.models import WebhookCallbackConfig
from kafka_retry.core.records import FailedRecord

logger = structlog.get_logger()


class WebhookRetryHandler:
    """Sends the raw payload to a configured endpoint; non-2xx fails the attempt."""

    def __init__(self, config: WebhookCallbackConfig) -> None:
        self._config = config
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        headers: dict[str, str] = {
            "Content-Type": self._config.content_type,
            **self._config.headers,
        }
        token = self._config.auth_token
        # An empty token (e.g. an unset ${VAR:-}) means no auth.
        if token is not None and token.get_secret_value():
            headers["Authorization"] = f"Bearer {token.get_secret_value()}"
        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(self._config.timeout_seconds),
        )
        logger.info("webhook_callback.started", url=self._config.url)

    async def handle(self, record: FailedRecord) -> None:
        if self._client is None:
            msg = "WebhookRetryHandler not started; call start() first"
            raise RuntimeError(msg)
        client = self._client
        retry_cfg = self._config.retry

        @retry(
            stop=stop_after_attempt(retry_cfg.max_attempts),
            wait=wait_exponential_jitter(
                initial=retry_cfg.initial_wait_seconds,
                max=retry_cfg.max_wait_seconds,
                jitter=retry_cfg.initial_wait_seconds if retry_cfg.jitter else 0,
            ),
            retry=retry_if_exception_type(
                (httpx.HTTPStatusError, httpx.TransportError)
            ),
            reraise=True,
        )
        async def _send() -> None:
            response = await client.request(
                method=self._config.method,
                url=self._config.url,
                content=record.payload,
                headers={
                    "X-Retry-Record-Id": record.record_id,
                    "X-Retry-Handler": record.handler_id,
                    "X-Retry-Attempt": str(record.retry_count + 1),
                },
            )
            response.raise_for_status()

        await _send()
        logger.debug(
            "webhook_callback.delivered",
            record_id=record.record_id,
            handler_id=record.handler_id,
            url=self._config.url,
        )

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("webhook_callback.stopped", url=self._config.url)
