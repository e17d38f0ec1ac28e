"""Stable identifiers for exception types.

Policy lists name errors by identifier.  Each identifier is resolved to an
exception type exactly once, when a policy is built, and decisions are then
plain ``isinstance`` checks against the resolved types.  Identifiers resolve,
in order, from:

1. explicit registrations (``taxonomy.register("orders.invalid", MyError)``
   or the ``@error_identifier(...)`` decorator on the default taxonomy);
2. built-in exception names (``TimeoutError``, ``ValueError``);
3. dotted import paths (``httpx.TimeoutException``).
"""

from __future__ import annotations

import builtins
import importlib
from collections.abc import Callable
from typing import TypeVar

import structlog

logger = structlog.get_logger()

E = TypeVar("E", bound=type[BaseException])


def _is_exception_type(obj: object) -> bool:
    return isinstance(obj, type) and issubclass(obj, BaseException)


class ErrorTaxonomy:
    """Closed-world mapping from identifiers to exception types."""

    def __init__(self) -> None:
        self._registered: dict[str, type[BaseException]] = {}

    def register(self, identifier: str, exc_type: type[BaseException]) -> None:
        if not _is_exception_type(exc_type):
            msg = f"{exc_type!r} is not an exception type"
            raise TypeError(msg)
        existing = self._registered.get(identifier)
        if existing is not None and existing is not exc_type:
            msg = (
                f"Error identifier '{identifier}' is already registered "
                f"to {existing.__module__}.{existing.__qualname__}"
            )
            raise ValueError(msg)
        self._registered[identifier] = exc_type

    def resolve(self, identifier: str) -> type[BaseException] | None:
        """Return the exception type named by *identifier*, or ``None``."""
        registered = self._registered.get(identifier)
        if registered is not None:
            return registered

        builtin = getattr(builtins, identifier, None)
        if _is_exception_type(builtin):
            return builtin  # type: ignore[return-value]

        module_name, _, attr = identifier.rpartition(".")
        if not module_name:
            return None
        try:
            module = importlib.import_module(module_name)
        except ImportError:
            return None
        found = getattr(module, attr, None)
        if not _is_exception_type(found):
            return None
        return found  # type: ignore[no-any-return]

    def resolve_all(
        self, identifiers: tuple[str, ...] | list[str], *, scope: str
    ) -> tuple[type[BaseException], ...]:
        """Resolve a policy list, warning about (and dropping) unknown names."""
        resolved: list[type[BaseException]] = []
        for identifier in identifiers:
            exc_type = self.resolve(identifier)
            if exc_type is None:
                logger.warning(
                    "policy.unresolved_error_identifier",
                    identifier=identifier,
                    scope=scope,
                )
                continue
            resolved.append(exc_type)
        return tuple(resolved)


DEFAULT_TAXONOMY = ErrorTaxonomy()


def error_identifier(
    identifier: str, taxonomy: ErrorTaxonomy | None = None
) -> Callable[[E], E]:
    """Class decorator registering an exception type under *identifier*."""

    def _decorate(exc_type: E) -> E:
        (taxonomy or DEFAULT_TAXONOMY).register(identifier, exc_type)
        return exc_type

    return _decorate
