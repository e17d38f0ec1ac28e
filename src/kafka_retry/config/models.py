"""Pydantic configuration models for the retry engine."""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)

from kafka_retry.core.backoff import MAX_BACKOFF_MINUTES
from kafka_retry.core.records import Direction


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class CallbackType(StrEnum):
    """Built-in retry callbacks."""

    KAFKA_REPUBLISH = "kafka_republish"
    WEBHOOK = "webhook"


class HttpRetryConfig(_Frozen):
    """In-call retry for a single webhook attempt."""

    max_attempts: int = Field(default=3, ge=1)
    initial_wait_seconds: float = Field(default=1.0, gt=0)
    max_wait_seconds: float = Field(default=30.0, gt=0)
    jitter: bool = True


class WebhookCallbackConfig(_Frozen):
    """Forward the failed payload to an HTTP endpoint."""

    url: str
    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    content_type: str = "application/octet-stream"
    timeout_seconds: float = Field(default=30.0, gt=0)
    auth_token: SecretStr | None = None
    retry: HttpRetryConfig = HttpRetryConfig()


class CallbackConfig(_Frozen):
    """Built-in callback for a handler, for deployments without custom code."""

    callback_type: CallbackType
    # Republish target; defaults to the topic the failure was observed on
    topic: str | None = None
    webhook: WebhookCallbackConfig | None = None

    @model_validator(mode="after")
    def check_matching_sub_config(self) -> Self:
        if self.callback_type == CallbackType.WEBHOOK and self.webhook is None:
            msg = "webhook config is required when callback_type is 'webhook'"
            raise ValueError(msg)
        return self


class HandlerPolicyConfig(_Frozen):
    """Topic pattern and exception policy for one logical handler.

    A handler that declares either exception list (even an empty one) has
    its own policy, and its lists replace the global lists entirely; they
    are never merged.  A handler that declares neither uses the global lists.
    """

    topic: str = Field(min_length=1)
    non_retryable_exceptions: tuple[str, ...] | None = None
    retryable_exceptions: tuple[str, ...] | None = None
    callback: CallbackConfig | None = None

    @property
    def has_exception_policy(self) -> bool:
        return (
            self.non_retryable_exceptions is not None
            or self.retryable_exceptions is not None
        )


class HandlerMappings(_Frozen):
    """Direction-qualified handler tables.

    Consumer and producer handlers are independent namespaces.  Declaration
    order is significant: the first matching pattern wins.
    """

    consumer: dict[str, HandlerPolicyConfig] = Field(default_factory=dict)
    producer: dict[str, HandlerPolicyConfig] = Field(default_factory=dict)

    def for_direction(self, direction: Direction) -> dict[str, HandlerPolicyConfig]:
        if direction is Direction.CONSUMER:
            return self.consumer
        return self.producer


class SchedulerConfig(_Frozen):
    """Retry scheduler cadence."""

    enabled: bool = True
    interval_seconds: float = Field(default=60.0, gt=0)
    # None leaves callback timeouts to the callback itself
    callback_timeout_seconds: float | None = Field(default=None, gt=0)


class LockConfig(_Frozen):
    """Cluster-wide execution lock bounds."""

    name: str = Field(default="failed-record-retry", min_length=1)
    lock_at_least_seconds: float = Field(default=30.0, ge=0)
    lock_at_most_seconds: float = Field(default=300.0, gt=0)

    @model_validator(mode="after")
    def check_hold_bounds(self) -> Self:
        if self.lock_at_most_seconds <= self.lock_at_least_seconds:
            msg = (
                "lock_at_most_seconds must be greater than lock_at_least_seconds "
                f"({self.lock_at_most_seconds} <= {self.lock_at_least_seconds})"
            )
            raise ValueError(msg)
        return self


_TABLE_NAME = re.compile(r"^[a-zA-Z_]\w*(\.[a-zA-Z_]\w*)?$")


class PostgresConfig(_Frozen):
    """PostgreSQL connection for the failed record store and lock table."""

    host: str = "localhost"
    port: int = 5432
    database: str
    username: str = "retry_user"
    password: SecretStr = SecretStr("retry_password")
    records_table: str = "failed_records"
    lock_table: str = "retry_locks"
    connect_max_attempts: int = Field(default=5, ge=1)
    connect_wait_seconds: float = Field(default=2.0, gt=0)

    @field_validator("records_table", "lock_table")
    @classmethod
    def validate_table_name(cls, v: str) -> str:
        if not _TABLE_NAME.match(v):
            msg = (
                f"Table name '{v}' must be a plain or schema-qualified identifier "
                "(e.g. 'failed_records' or 'retry.failed_records')"
            )
            raise ValueError(msg)
        return v


class KafkaConfig(_Frozen):
    """Kafka producer settings used by the republish callback."""

    bootstrap_servers: str = "localhost:9092"
    enable_idempotence: bool = True
    acks: str = "all"
    flush_timeout_seconds: float = Field(default=10.0, gt=0)


class RetryConfig(_Frozen):
    """Root configuration: global policy, handler tables and infrastructure."""

    enabled: bool = True
    initial_interval_minutes: int = Field(default=5, ge=1)
    max_retries: int = Field(default=5, ge=1, le=24)
    batch_size: int = Field(default=100, ge=1)
    topic_delimiter: str = Field(default=".", min_length=1)
    # Global lists, consulted only for handlers without their own policy
    non_retryable_exceptions: tuple[str, ...] = ()
    retryable_exceptions: tuple[str, ...] = ()
    handler_mappings: HandlerMappings = HandlerMappings()
    scheduler: SchedulerConfig = SchedulerConfig()
    lock: LockConfig = LockConfig()
    database: PostgresConfig | None = None
    kafka: KafkaConfig | None = None

    @model_validator(mode="after")
    def check_backoff_range(self) -> Self:
        longest = self.initial_interval_minutes << self.max_retries
        if longest > MAX_BACKOFF_MINUTES:
            msg = (
                f"initial_interval_minutes={self.initial_interval_minutes} with "
                f"max_retries={self.max_retries} gives a backoff of {longest} "
                f"minutes, above the supported {MAX_BACKOFF_MINUTES}"
            )
            raise ValueError(msg)
        return self

    def handler_policy(
        self, handler_id: str, direction: Direction
    ) -> HandlerPolicyConfig | None:
        return self.handler_mappings.for_direction(direction).get(handler_id)
