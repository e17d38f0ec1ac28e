"""Decide whether a failure may be retried or is permanent."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from kafka_retry.config.models import RetryConfig
from kafka_retry.core.records import Direction
from kafka_retry.policy.taxonomy import DEFAULT_TAXONOMY, ErrorTaxonomy

logger = structlog.get_logger()


@dataclass(frozen=True)
class ExceptionRules:
    """Resolved blacklist/whitelist for one policy scope."""

    scope: str
    non_retryable: tuple[type[BaseException], ...]
    retryable: tuple[type[BaseException], ...]
    # A whitelist that was configured but resolved to nothing still gates.
    whitelist_configured: bool

    @classmethod
    def build(
        cls,
        *,
        scope: str,
        non_retryable: tuple[str, ...],
        retryable: tuple[str, ...],
        taxonomy: ErrorTaxonomy,
    ) -> ExceptionRules:
        return cls(
            scope=scope,
            non_retryable=taxonomy.resolve_all(non_retryable, scope=scope),
            retryable=taxonomy.resolve_all(retryable, scope=scope),
            whitelist_configured=bool(retryable),
        )


class RetryabilityPolicy:
    """Layered retry policy: handler rules fully shadow the global rules.

    Precedence for the chosen scope: blacklist, then whitelist (when one is
    configured), then retry by default.  A missing error is retryable.
    """

    def __init__(
        self, config: RetryConfig, taxonomy: ErrorTaxonomy | None = None
    ) -> None:
        taxonomy = taxonomy or DEFAULT_TAXONOMY
        self.taxonomy = taxonomy
        self._global = ExceptionRules.build(
            scope="global",
            non_retryable=config.non_retryable_exceptions,
            retryable=config.retryable_exceptions,
            taxonomy=taxonomy,
        )
        self._handlers: dict[tuple[Direction, str], ExceptionRules] = {}
        for direction in Direction:
            table = config.handler_mappings.for_direction(direction)
            for handler_id, policy in table.items():
                if not policy.has_exception_policy:
                    continue
                self._handlers[(direction, handler_id)] = ExceptionRules.build(
                    scope=f"{direction.value}:{handler_id}",
                    non_retryable=policy.non_retryable_exceptions or (),
                    retryable=policy.retryable_exceptions or (),
                    taxonomy=taxonomy,
                )

    def rules_for(self, handler_id: str, direction: Direction) -> ExceptionRules:
        return self._handlers.get((direction, handler_id), self._global)

    def is_retryable(
        self,
        error: BaseException | None,
        handler_id: str,
        direction: Direction,
    ) -> bool:
        if error is None:
            logger.warning(
                "policy.missing_error",
                handler_id=handler_id,
                direction=direction.value,
                decision="retry",
            )
            return True
        return self.is_retryable_type(type(error), handler_id, direction)

    def is_retryable_type(
        self,
        error_type: type[BaseException],
        handler_id: str,
        direction: Direction,
    ) -> bool:
        rules = self.rules_for(handler_id, direction)
        log = logger.bind(
            handler_id=handler_id,
            direction=direction.value,
            scope=rules.scope,
            error_type=f"{error_type.__module__}.{error_type.__qualname__}",
        )

        if issubclass(error_type, rules.non_retryable):
            log.warning("policy.non_retryable", decision="permanent")
            return False

        if rules.whitelist_configured:
            if issubclass(error_type, rules.retryable):
                log.info("policy.retryable", decision="retry")
                return True
            log.warning("policy.not_whitelisted", decision="permanent")
            return False

        log.info("policy.retry_by_default", decision="retry")
        return True
