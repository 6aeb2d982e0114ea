"""
Exception types raised by the state store.

Caller-visible errors (bad paths, rejected values) derive from both
StateError and ValueError so existing ``except ValueError`` handlers in
collaborators keep working.
"""
from typing import Any, Optional


class StateError(Exception):
    """Base class for all store errors."""


class PathError(StateError, ValueError):
    """Malformed path, or a write through a non-mapping intermediate."""


class ValidationError(StateError, ValueError):
    """A write was rejected by a built-in rule or a custom predicate.

    The tree is left untouched when this is raised.
    """

    def __init__(self, path: str, value: Any, message: str, constraint: Optional[str] = None):
        self.path = path
        self.value = value
        self.message = message
        self.constraint = constraint
        text = f"Validation failed for {path}: {message} (got {value!r})"
        if constraint and constraint != message:
            text += f"; expected {constraint}"
        super().__init__(text)


class PersistenceError(StateError):
    """Persisted payload is missing, corrupted, or cannot be migrated.

    Only raised inside the persistence layer; load() converts it to False.
    """
