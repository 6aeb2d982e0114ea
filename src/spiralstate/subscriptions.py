"""
Listener registry and change dispatch.

Listeners are registered on a pattern:
- an exact path ('audio.isPlaying'), which also acts as an ancestor pattern
  for every write below it ('audio' hears 'audio.isPlaying');
- the wildcard '*', which hears every write as a ChangeEvent.

For a committed write at P the tiers run in a fixed order:
1. exact: listeners on P, then listeners on paths below P whose value the
   write actually changed (a mapping replaced wholesale)
2. ancestor: listeners on every strict prefix of P, nearest first
3. wildcard: ChangeEvent(P, new, old)

Internal listeners (computed-property invalidation) run across all tiers for
every commit before any external listener sees the first one, so external
callbacks never read a stale derived value.
"""
from dataclasses import dataclass
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from spiralstate.path_store import Commit, clone_value, deep_equals, lookup, split_path

logger = logging.getLogger(__name__)

WILDCARD = '*'


@dataclass(frozen=True)
class ChangeEvent:
    """Payload delivered to wildcard listeners."""
    path: str
    value: Any
    old_value: Any

    def to_dict(self) -> Dict[str, Any]:
        return {'path': self.path, 'value': self.value, 'old_value': self.old_value}


@dataclass(eq=False)
class Listener:
    pattern: str
    callback: Callable[..., None]
    once: bool = False
    immediate: bool = False
    internal: bool = False
    active: bool = True


class SubscriptionGraph:
    """Exact/ancestor/wildcard listener indices.

    Args:
        reader: Returns a clone of the value at a path (None = whole tree);
                used for immediate delivery at subscribe time.
    """

    def __init__(self, reader: Optional[Callable[[Optional[str]], Any]] = None):
        self._reader = reader
        self._by_path: Dict[str, List[Listener]] = {}
        self._wildcard: List[Listener] = []

    # ========== REGISTRATION ==========

    def subscribe(
        self,
        pattern: str,
        callback: Callable[..., None],
        immediate: bool = False,
        once: bool = False,
        internal: bool = False,
    ) -> Callable[[], None]:
        """Register callback on pattern.

        Returns:
            Zero-argument function that removes the listener (idempotent).
        """
        if not callable(callback):
            raise TypeError('Callback must be a function')
        if pattern != WILDCARD:
            split_path(pattern)

        listener = Listener(pattern=pattern, callback=callback, once=once,
                            immediate=immediate, internal=internal)
        bucket = self._wildcard if pattern == WILDCARD else self._by_path.setdefault(pattern, [])
        if internal:
            bucket.insert(sum(1 for existing in bucket if existing.internal), listener)
        else:
            bucket.append(listener)

        if immediate:
            self._deliver_immediate(listener)

        return lambda: self._remove(listener)

    def unsubscribe(self, pattern: str, callback: Callable[..., None]) -> bool:
        """Remove every listener on pattern registered with callback."""
        bucket = self._wildcard if pattern == WILDCARD else self._by_path.get(pattern, [])
        matches = [listener for listener in bucket if listener.callback == callback]
        for listener in matches:
            self._remove(listener)
        return bool(matches)

    def _remove(self, listener: Listener) -> None:
        listener.active = False
        if listener.pattern == WILDCARD:
            bucket = self._wildcard
        else:
            bucket = self._by_path.get(listener.pattern)
            if bucket is None:
                return
        if listener in bucket:
            bucket.remove(listener)
        if listener.pattern != WILDCARD and not bucket:
            del self._by_path[listener.pattern]

    def _deliver_immediate(self, listener: Listener) -> None:
        if self._reader is None:
            return
        if listener.pattern == WILDCARD:
            tree = self._reader(None)
            self._invoke(listener, ChangeEvent(path=WILDCARD, value=tree, old_value=clone_value(tree)))
        else:
            value = self._reader(listener.pattern)
            self._invoke(listener, value, clone_value(value))

    # ========== DISPATCH ==========

    def dispatch(self, commits: Iterable[Commit], external: bool = True, internal: bool = True) -> None:
        """Notify listeners of committed writes, internal listeners first.

        Args:
            commits: Writes in commit order
            external: False for silent writes
            internal: False when internal listeners already saw these commits
        """
        commits = list(commits)
        if internal:
            for commit in commits:
                self._run_tiers(commit, internal=True)
        if external:
            for commit in commits:
                self._run_tiers(commit, internal=False)

    def _run_tiers(self, commit: Commit, internal: bool) -> None:
        path, new_value, old_value = commit.path, commit.new_value, commit.old_value

        # 1. exact (including listeners below a replaced mapping)
        for listener in self._select(self._by_path.get(path, ()), internal):
            self._invoke(listener, clone_value(new_value), clone_value(old_value))
        for below, rest in self._descendant_patterns(path):
            sub_new = lookup(new_value, rest)
            sub_old = lookup(old_value, rest)
            if deep_equals(sub_new, sub_old):
                continue
            for listener in self._select(self._by_path.get(below, ()), internal):
                self._invoke(listener, clone_value(sub_new), clone_value(sub_old))

        # 2. ancestors, nearest first
        segments = path.split('.')
        for depth in range(len(segments) - 1, 0, -1):
            ancestor = '.'.join(segments[:depth])
            for listener in self._select(self._by_path.get(ancestor, ()), internal):
                self._invoke(listener, clone_value(new_value), clone_value(old_value))

        # 3. wildcard
        for listener in self._select(self._wildcard, internal):
            self._invoke(listener, ChangeEvent(path=path, value=clone_value(new_value),
                                               old_value=clone_value(old_value)))

    def _descendant_patterns(self, path: str) -> List[Tuple[str, List[str]]]:
        prefix = f"{path}."
        depth = path.count('.') + 1
        below = sorted((p for p in self._by_path if p.startswith(prefix)),
                       key=lambda p: (p.count('.'), p))
        return [(p, p.split('.')[depth:]) for p in below]

    @staticmethod
    def _select(bucket: Iterable[Listener], internal: bool) -> List[Listener]:
        # Copy so callbacks may subscribe/unsubscribe during dispatch
        return [listener for listener in bucket if listener.internal == internal]

    def _invoke(self, listener: Listener, *args: Any) -> None:
        if not listener.active:
            return
        if listener.once:
            self._remove(listener)
        try:
            listener.callback(*args)
        except Exception as e:
            logger.warning(f"Error in state listener for {listener.pattern}: {e}", exc_info=True)

    # ========== INTROSPECTION ==========

    def patterns(self) -> List[str]:
        result = list(self._by_path.keys())
        if self._wildcard:
            result.append(WILDCARD)
        return result

    def counts(self) -> List[Dict[str, Any]]:
        result = [{'path': path, 'count': len(bucket)} for path, bucket in self._by_path.items()]
        if self._wildcard:
            result.append({'path': WILDCARD, 'count': len(self._wildcard)})
        return result
