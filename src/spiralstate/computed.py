"""
Dependency-tracked derived values.

A computed property is declared once with an explicit list of dependency
paths. The engine subscribes to each dependency (as an internal listener)
and only flips the descriptor's dirty flag on change; the compute function
runs lazily on the next read and its result is cached until a dependency
changes again.
"""
from dataclasses import dataclass, field
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from spiralstate.path_store import ABSENT, clone_value
from spiralstate.subscriptions import SubscriptionGraph

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class ComputedDescriptor:
    name: str
    dependency_paths: List[str]
    compute_fn: Callable[..., Any]
    cached_value: Any = ABSENT
    dirty: bool = True
    compute_count: int = 0
    unsubscribers: List[Callable[[], None]] = field(default_factory=list, repr=False)


class ComputedEngine:
    """Registry of computed properties.

    Args:
        graph: Subscription graph the invalidation listeners are attached to
        reader: Returns a clone of the value at a path
    """

    def __init__(self, graph: SubscriptionGraph, reader: Callable[[str], Any]):
        self._graph = graph
        self._reader = reader
        self._descriptors: Dict[str, ComputedDescriptor] = {}

    def register(self, name: str, dependency_paths: Sequence[str], compute_fn: Callable[..., Any]) -> None:
        """Declare a computed property; replaces any earlier one with the same name."""
        if isinstance(dependency_paths, str) or not isinstance(dependency_paths, (list, tuple)):
            raise TypeError('Dependencies must be a list')
        if not callable(compute_fn):
            raise TypeError('Compute function must be a function')

        self.unregister(name)
        descriptor = ComputedDescriptor(name=name, dependency_paths=list(dependency_paths), compute_fn=compute_fn)

        def invalidate(*_args: Any) -> None:
            descriptor.dirty = True

        for dependency in descriptor.dependency_paths:
            descriptor.unsubscribers.append(self._graph.subscribe(dependency, invalidate, internal=True))

        self._descriptors[name] = descriptor
        logger.debug(f"Registered computed {name} <- {descriptor.dependency_paths}")

    def unregister(self, name: str) -> bool:
        descriptor = self._descriptors.pop(name, None)
        if descriptor is None:
            return False
        for unsubscribe in descriptor.unsubscribers:
            unsubscribe()
        return True

    def has(self, name: str) -> bool:
        return name in self._descriptors

    def get(self, name: str) -> Any:
        """Cached value of name, recomputing first if a dependency changed.

        A compute function that raises leaves the descriptor dirty and the
        exception propagates to the reader.
        """
        descriptor = self._descriptors[name]
        if descriptor.dirty:
            values = [self._reader(dependency) for dependency in descriptor.dependency_paths]
            descriptor.cached_value = descriptor.compute_fn(*values)
            descriptor.dirty = False
            descriptor.compute_count += 1
        return clone_value(descriptor.cached_value)

    def names(self) -> List[str]:
        return list(self._descriptors.keys())

    def describe(self, name: str) -> Optional[Dict[str, Any]]:
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            return None
        return {
            'name': descriptor.name,
            'dependencies': list(descriptor.dependency_paths),
            'dirty': descriptor.dirty,
            'compute_count': descriptor.compute_count,
        }
