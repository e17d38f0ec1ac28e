"""Resolve a failed message's topic to the logical handler that owns it."""

from __future__ import annotations

import structlog

from kafka_retry.config.models import HandlerMappings
from kafka_retry.core.records import Direction
from kafka_retry.routing.patterns import TopicPattern

logger = structlog.get_logger()


class PatternRouter:
    """First-match-wins routing over direction-qualified pattern tables.

    Table order is part of the contract: when two patterns match the same
    topic, the handler declared first is returned.
    """

    def __init__(self, mappings: HandlerMappings, delimiter: str = ".") -> None:
        self._tables: dict[Direction, list[tuple[str, TopicPattern]]] = {
            direction: [
                (handler_id, TopicPattern(policy.topic, delimiter))
                for handler_id, policy in mappings.for_direction(direction).items()
            ]
            for direction in Direction
        }

    def resolve(self, topic: str | None, direction: Direction) -> str | None:
        """Return the handler id for *topic*, or ``None`` when unroutable."""
        if not topic:
            return None
        for handler_id, pattern in self._tables[direction]:
            if pattern.matches(topic):
                logger.debug(
                    "router.resolved",
                    topic=topic,
                    direction=direction.value,
                    handler_id=handler_id,
                    pattern=pattern.pattern,
                )
                return handler_id
        return None

    def handlers(self, direction: Direction) -> list[str]:
        return [handler_id for handler_id, _ in self._tables[direction]]
