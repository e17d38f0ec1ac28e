"""Ant-style topic pattern matching.

Topics and patterns are split on a delimiter (``.`` by default) and compared
segment by segment:

- ``**`` as a whole segment matches zero or more segments;
- ``*`` inside a segment matches zero or more characters of that segment, so
  a lone ``*`` matches exactly one segment;
- ``?`` matches exactly one character of a segment;
- everything else matches literally and case-sensitively.

``orders.*.retail`` matches ``orders.eu.retail`` but not
``orders.eu.west.retail``; ``orders.**`` matches ``orders``, ``orders.eu``
and ``orders.eu.west.retail``.
"""

from __future__ import annotations

import re
from functools import lru_cache

DOUBLE_WILDCARD = "**"


def _segment_regex(segment: str) -> re.Pattern[str]:
    parts: list[str] = []
    for ch in segment:
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.DOTALL)


class TopicPattern:
    """A pattern compiled once and matched against many topics."""

    def __init__(self, pattern: str, delimiter: str = ".") -> None:
        if not pattern:
            msg = "Topic pattern must not be empty"
            raise ValueError(msg)
        if not delimiter:
            msg = "Topic delimiter must not be empty"
            raise ValueError(msg)
        self.pattern = pattern
        self.delimiter = delimiter
        self._segments: tuple[str | re.Pattern[str], ...] = tuple(
            seg if seg == DOUBLE_WILDCARD else _segment_regex(seg)
            for seg in pattern.split(delimiter)
        )

    def __repr__(self) -> str:
        return f"TopicPattern({self.pattern!r}, delimiter={self.delimiter!r})"

    def matches(self, topic: str) -> bool:
        if not topic:
            return False
        segments = tuple(topic.split(self.delimiter))
        pattern = self._segments

        @lru_cache(maxsize=None)
        def _match(pi: int, ti: int) -> bool:
            if pi == len(pattern):
                return ti == len(segments)
            current = pattern[pi]
            if current == DOUBLE_WILDCARD:
                # Consume zero segments, or one segment and stay on '**'.
                if _match(pi + 1, ti):
                    return True
                return ti < len(segments) and _match(pi, ti + 1)
            if ti == len(segments):
                return False
            assert isinstance(current, re.Pattern)
            return current.fullmatch(segments[ti]) is not None and _match(
                pi + 1, ti + 1
            )

        return _match(0, 0)
