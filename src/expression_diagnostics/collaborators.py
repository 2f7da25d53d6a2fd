"""Collaborator protocols and construction-time validation.

The analyzers depend on external collaborators (a logging sink, a
prototype lookup and a state generator).  Passed around as loose
objects, an incomplete one would only surface when a method call
failed deep inside a batch.  Each collaborator
now has an explicit :class:`~typing.Protocol`, and constructors call
:func:`validate_dependency` so that a missing or incomplete
collaborator fails immediately, naming itself.

Usage
-----
>>> validate_dependency(logger, "logger", LOGGER_METHODS)
>>> validate_dependency(None, "prototypes", ("get_prototype",))
Traceback (most recent call last):
MissingDependencyError: Missing required dependency 'prototypes'
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

__all__ = [
    "MissingDependencyError",
    "DiagnosticsLogger",
    "PrototypeSource",
    "StateGenerator",
    "LOGGER_METHODS",
    "validate_dependency",
    "resolve_logger",
]


class MissingDependencyError(ValueError):
    """A required collaborator is missing or lacks required methods."""

    def __init__(self, name: str, missing_methods: Sequence[str] = ()):
        self.dependency = name
        self.missing_methods = tuple(missing_methods)
        if self.missing_methods:
            msg = (f"Dependency {name!r} is missing required methods: "
                   f"{', '.join(self.missing_methods)}")
        else:
            msg = f"Missing required dependency {name!r}"
        super().__init__(msg)


# ═══════════════════════════════════════════════════════════════════
# Protocols
# ═══════════════════════════════════════════════════════════════════

@runtime_checkable
class DiagnosticsLogger(Protocol):
    """Logging sink.  :class:`logging.Logger` satisfies it."""

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        ...

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        ...

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        ...

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        ...


@runtime_checkable
class PrototypeSource(Protocol):
    """Lookup of prototype definitions by id and family.

    :class:`~expression_diagnostics.prototypes.PrototypeRegistry` is the
    in-memory implementation.
    """

    def get_prototype(self, prototype_id: str,
                      prototype_type: str = "emotion"):
        ...

    def get_all(self, prototype_type: str = "emotion"):
        ...


@runtime_checkable
class StateGenerator(Protocol):
    """Produces one random simulation state per call."""

    def generate(self):
        ...


LOGGER_METHODS = ("debug", "info", "warning", "error")


# ═══════════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════════

def validate_dependency(
    obj: Any,
    name: str,
    required_methods: Sequence[str] = (),
) -> Any:
    """Return *obj* if it is present and exposes *required_methods*.

    Raises
    ------
    MissingDependencyError
        If *obj* is ``None`` or any required method is missing or not
        callable.
    """
    if obj is None:
        raise MissingDependencyError(name)
    missing = [
        m for m in required_methods
        if not callable(getattr(obj, m, None))
    ]
    if missing:
        raise MissingDependencyError(name, missing)
    return obj


def resolve_logger(logger: Optional[Any], default: logging.Logger) -> Any:
    """Return *logger* (validated), or *default* when it is ``None``.

    Raises
    ------
    MissingDependencyError
        If an injected logger lacks any of :data:`LOGGER_METHODS`.
    """
    if logger is None:
        return default
    return validate_dependency(logger, "logger", LOGGER_METHODS)
