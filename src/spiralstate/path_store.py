"""
Path-addressed storage for the state tree.

PathStore owns the nested tree and is the only holder of live references to
it. Every value crossing its boundary (reads, writes, snapshots) is passed
through clone_value(), so callers can never mutate internal state by holding
onto something they got back or something they handed in.

Paths are dot-delimited strings ('audio.isPlaying'). Reading a path that does
not exist returns the ABSENT sentinel instead of raising.
"""
from array import array
from dataclasses import dataclass
import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from spiralstate.errors import PathError

logger = logging.getLogger(__name__)


class _Absent:
    """Marker for a path that resolves to nothing."""
    _instance: Optional['_Absent'] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return '<ABSENT>'

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


ABSENT = _Absent()


def split_path(path: str) -> List[str]:
    """Split a dotted path into segments, rejecting malformed input."""
    if not isinstance(path, str):
        raise PathError(f"Path must be a string, got {type(path).__name__}")
    if not path:
        raise PathError("Path must be a non-empty string")
    segments = path.split('.')
    if any(not segment for segment in segments):
        raise PathError(f"Path {path!r} contains an empty segment")
    return segments


def lookup(tree: Any, segments: Sequence[str]) -> Any:
    """Walk segments through nested dicts; ABSENT if any segment is missing."""
    current = tree
    for segment in segments:
        if not isinstance(current, dict) or segment not in current:
            return ABSENT
        current = current[segment]
    return current


def clone_value(value: Any) -> Any:
    """Structural clone used at every read/write boundary.

    dicts recurse, lists/tuples clone element-wise, array.array buffers are
    copied with the same typecode. Everything else (scalars, timestamps, which
    are immutable, and opaque handles such as decoded audio objects) is
    passed through by reference.
    """
    if isinstance(value, dict):
        return {key: clone_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [clone_value(item) for item in value]
    if isinstance(value, tuple):
        items = [clone_value(item) for item in value]
        if hasattr(value, '_fields'):
            return type(value)(*items)
        return tuple(items)
    if isinstance(value, array):
        return array(value.typecode, value)
    if isinstance(value, bytearray):
        return bytearray(value)
    if isinstance(value, set):
        return set(value)
    return value


def deep_equals(a: Any, b: Any) -> bool:
    """Structural equality; bools never compare equal to numbers."""
    if a is b:
        return True
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    if isinstance(a, dict) or isinstance(b, dict):
        if not (isinstance(a, dict) and isinstance(b, dict)):
            return False
        if a.keys() != b.keys():
            return False
        return all(deep_equals(a[key], b[key]) for key in a)
    if isinstance(a, (list, tuple)) or isinstance(b, (list, tuple)):
        if type(a) is not type(b) or len(a) != len(b):
            return False
        return all(deep_equals(x, y) for x, y in zip(a, b))
    if isinstance(a, array) or isinstance(b, array):
        return (isinstance(a, array) and isinstance(b, array)
                and a.typecode == b.typecode and a == b)
    try:
        return bool(a == b)
    except Exception:
        # Objects whose __eq__ is elementwise or otherwise not a truth value
        return False


def deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Return a clone of base with overlay merged in (dicts merge, the rest replaces)."""
    merged = clone_value(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = clone_value(value)
    return merged


def iter_leaves(tree: Dict[str, Any], prefix: str = '') -> Iterator[Tuple[str, Any]]:
    """Yield (path, value) for every non-dict value; empty dicts count as leaves."""
    for key, value in tree.items():
        path = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict) and value:
            yield from iter_leaves(value, path)
        else:
            yield path, value


@dataclass(frozen=True)
class Commit:
    """A write that changed the tree. Values are private clones."""
    path: str
    old_value: Any
    new_value: Any


class PathStore:
    """Owner of the nested state tree.

    The root dict keeps its identity for the lifetime of the store;
    replace_all() rewrites it in place.
    """

    def __init__(self, initial: Dict[str, Any]):
        self._tree: Dict[str, Any] = clone_value(initial)

    def get(self, path: Optional[str] = None) -> Any:
        """Clone of the whole tree, or of the value at path (ABSENT if missing)."""
        if path is None:
            return clone_value(self._tree)
        return clone_value(lookup(self._tree, split_path(path)))

    def has(self, path: str) -> bool:
        return lookup(self._tree, split_path(path)) is not ABSENT

    def set(self, path: str, value: Any) -> Optional[Commit]:
        """Store a clone of value at path, creating intermediate dicts.

        Returns:
            Commit describing the change, or None when value is deep-equal
            to what is already stored (no-op).

        Raises:
            PathError: path is malformed or walks through a non-dict value.
        """
        segments = split_path(path)
        parent = self._tree
        for depth, segment in enumerate(segments[:-1]):
            child = parent.get(segment, ABSENT)
            if child is ABSENT:
                child = {}
                parent[segment] = child
            elif not isinstance(child, dict):
                walked = '.'.join(segments[:depth + 1])
                raise PathError(
                    f"Cannot set {path!r}: {walked!r} holds a {type(child).__name__}, not a mapping"
                )
            parent = child

        leaf = segments[-1]
        current = parent.get(leaf, ABSENT)
        if deep_equals(current, value):
            return None

        parent[leaf] = clone_value(value)
        logger.debug(f"Committed {path}")
        return Commit(path=path, old_value=current, new_value=clone_value(value))

    def replace_all(self, tree: Dict[str, Any]) -> List[Commit]:
        """Rewrite the whole tree in place.

        Returns:
            One Commit per top-level key whose value changed.
        """
        old_tree = self._tree.copy()
        self._tree.clear()
        self._tree.update(clone_value(tree))

        commits = []
        for key in list(old_tree.keys()) + [k for k in self._tree if k not in old_tree]:
            old_value = old_tree.get(key, ABSENT)
            new_value = self._tree.get(key, ABSENT)
            if not deep_equals(old_value, new_value):
                commits.append(Commit(path=key, old_value=old_value, new_value=clone_value(new_value)))
        return commits
