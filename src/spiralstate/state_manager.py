"""
StateManager: the single object collaborators talk to.

Audio control, render scheduling and the interaction adapters all read and
write the player state through this facade. A write flows:

    validate -> commit (PathStore) -> record history -> notify listeners

batch()/batching() hold back history and external notifications until the
outermost block exits, so observers only ever see the final value per path.
Everything runs synchronously on the caller's thread.
"""
from contextlib import contextmanager
import logging
import time
from typing import Any, Callable, Dict, Generator, List, Mapping, Optional, Sequence, Tuple

from spiralstate.computed import ComputedEngine
from spiralstate.config import StoreConfig
from spiralstate.defaults import DEFAULT_STATE
from spiralstate.errors import PathError, PersistenceError, StateError, ValidationError
from spiralstate.history import HistoryManager
from spiralstate.path_store import Commit, PathStore, clone_value, deep_equals, deep_merge, split_path
from spiralstate.persistence import PersistenceAdapter
from spiralstate.storage import KeyValueStorage, MemoryStorage
from spiralstate.subscriptions import SubscriptionGraph
from spiralstate.validation import Predicate, Validator

logger = logging.getLogger(__name__)


class StateManager:
    """Observable, validated, undoable state tree.

    Args:
        initial_state: Overlay deep-merged over the defaults at construction
        config: Store tunables (history size, storage key, persisted paths)
        storage: Key-value backend for save()/load(); in-memory if omitted
        defaults: Replacement default tree (DEFAULT_STATE if omitted)

    Not thread-safe: all operations are expected on one thread.
    """

    def __init__(
        self,
        initial_state: Optional[Dict[str, Any]] = None,
        config: Optional[StoreConfig] = None,
        storage: Optional[KeyValueStorage] = None,
        defaults: Optional[Dict[str, Any]] = None,
    ):
        self.config = config or StoreConfig()
        self._defaults: Dict[str, Any] = clone_value(DEFAULT_STATE if defaults is None else defaults)
        initial = deep_merge(self._defaults, initial_state) if initial_state else self._defaults

        self._store = PathStore(initial)
        self._validator = Validator()
        self._graph = SubscriptionGraph(reader=self.get)
        self._computed = ComputedEngine(self._graph, reader=self._store.get)
        self._history = HistoryManager(self._store.get, limit=self.config.history_limit)
        self._persistence = PersistenceAdapter(
            storage if storage is not None else MemoryStorage(), self.config
        )

        # (commit, silent) pairs collected while a batch is open; None outside batches
        self._pending: Optional[List[Tuple[Commit, bool]]] = None

        self._history.record('init')

    # ========== READ / WRITE ==========

    def get(self, path: Optional[str] = None) -> Any:
        """Clone of the value at path, a computed value, or the whole tree.

        Missing paths return ABSENT rather than raising.
        """
        if path is not None and self._computed.has(path):
            return self._computed.get(path)
        return self._store.get(path)

    def has(self, path: str) -> bool:
        return self._computed.has(path) or self._store.has(path)

    def set(
        self,
        path: str,
        value: Any,
        validate: bool = True,
        silent: bool = False,
        record_history: bool = True,
    ) -> None:
        """Write value at path.

        Args:
            path: Dot-separated path; intermediate mappings are created
            value: New value (stored as a clone)
            validate: Run built-in rules and custom predicates first
            silent: Commit without notifying external listeners
            record_history: Append a history entry for this write

        Raises:
            ValidationError: value rejected; the tree is unchanged
            PathError: path malformed or walks through a non-mapping
        """
        if validate:
            self._validator.check(path, value)

        commit = self._store.set(path, value)
        if commit is None:
            return
        self._after_commit([commit], silent=silent, record_history=record_history, label=f"set {path}")

    def batch(self, updates: Mapping[str, Any], validate: bool = True, label: str = 'batch') -> None:
        """Apply several writes as one undo step with one notification per changed path.

        Every value is validated before anything is committed, so a rejection
        leaves the tree untouched.
        """
        if not isinstance(updates, Mapping):
            raise TypeError(f"batch() expects a mapping of path -> value, got {type(updates).__name__}")
        for path, value in updates.items():
            split_path(path)
            if validate:
                self._validator.check(path, value)

        with self.batching(label):
            for path, value in updates.items():
                self.set(path, value, validate=False)

    @contextmanager
    def batching(self, label: str = 'batch') -> Generator[None, None, None]:
        """Context manager form of batch().

        Blocks nest; only the outermost one records history and notifies.
        An exception escaping a block restores the tree to its state at
        entry to that block.

        Example:
            with state.batching('seek'):
                state.set('audio.currentTime', 42.0)
                state.set('audio.playhead', 0.42)
        """
        outermost = self._pending is None
        if outermost:
            self._pending = []
        mark = len(self._pending)
        before = self._store.get()

        try:
            with self._history.atomic(label):
                try:
                    yield
                except BaseException:
                    rollback = self._store.replace_all(before)
                    self._graph.dispatch(rollback, external=False)
                    del self._pending[mark:]
                    if outermost:
                        self._history.discard_pending()
                    logger.debug(f"Rolled back batch '{label}'")
                    raise
                if outermost:
                    changes = self._coalesce(self._pending)
                    if not changes:
                        self._history.discard_pending()
        finally:
            if outermost:
                self._pending = None

        if outermost:
            audible = [commit for commit, silent in changes if not silent]
            self._graph.dispatch(audible, internal=False)
            self._maybe_auto_save([commit for commit, _ in changes])

    def _coalesce(self, pending: List[Tuple[Commit, bool]]) -> List[Tuple[Commit, bool]]:
        """One commit per path: first old value, final stored value."""
        order: List[str] = []
        first: Dict[str, Commit] = {}
        silent_flags: Dict[str, bool] = {}
        for commit, silent in pending:
            if commit.path not in first:
                order.append(commit.path)
                first[commit.path] = commit
                silent_flags[commit.path] = silent
            else:
                silent_flags[commit.path] = silent_flags[commit.path] and silent

        changes = []
        for path in order:
            old_value = first[path].old_value
            new_value = self._store.get(path)
            if deep_equals(old_value, new_value):
                continue
            changes.append((Commit(path=path, old_value=old_value, new_value=new_value), silent_flags[path]))
        return changes

    def _after_commit(self, commits: List[Commit], silent: bool, record_history: bool, label: str) -> None:
        if self._pending is not None:
            # Derived values must not go stale mid-batch; external listeners wait
            self._graph.dispatch(commits, external=False)
            self._pending.extend((commit, silent) for commit in commits)
            if record_history:
                self._history.record(label)
            return

        if record_history:
            self._history.record(label)
        self._graph.dispatch(commits, external=not silent)
        self._maybe_auto_save(commits)

    def _maybe_auto_save(self, commits: Sequence[Commit]) -> None:
        if any(self.config.should_auto_save(commit.path) for commit in commits):
            self.save()

    # ========== SUBSCRIPTIONS ==========

    def subscribe(
        self,
        pattern: str,
        callback: Callable[..., None],
        immediate: bool = False,
        once: bool = False,
    ) -> Callable[[], None]:
        """Listen for writes at pattern, below it, or everywhere ('*').

        Path listeners are called as callback(new_value, old_value); wildcard
        listeners receive a ChangeEvent.

        Returns:
            Function that removes the listener.
        """
        return self._graph.subscribe(pattern, callback, immediate=immediate, once=once)

    def unsubscribe(self, pattern: str, callback: Callable[..., None]) -> bool:
        return self._graph.unsubscribe(pattern, callback)

    # ========== COMPUTED / VALIDATION ==========

    def compute(self, name: str, dependency_paths: Sequence[str], compute_fn: Callable[..., Any]) -> None:
        """Declare a cached derived value readable with get(name)."""
        split_path(name)
        self._computed.register(name, dependency_paths, compute_fn)

    def remove_computed(self, name: str) -> bool:
        return self._computed.unregister(name)

    def validate(self, path: str, predicate: Predicate) -> None:
        """Add a custom predicate for path: value -> None (ok) or error text."""
        self._validator.add(path, predicate)

    # ========== HISTORY ==========

    def can_undo(self) -> bool:
        return self._history.can_undo()

    def can_redo(self) -> bool:
        return self._history.can_redo()

    def undo(self) -> bool:
        """Restore the previous history entry; False if already at the oldest."""
        self._ensure_not_batching('undo')
        state = self._history.undo()
        if state is None:
            return False
        self._restore(state)
        return True

    def redo(self) -> bool:
        """Restore the next history entry; False if already at the newest."""
        self._ensure_not_batching('redo')
        state = self._history.redo()
        if state is None:
            return False
        self._restore(state)
        return True

    def get_history(self) -> List[Dict[str, Any]]:
        return self._history.get_history()

    def _restore(self, state: Dict[str, Any]) -> None:
        commits = self._store.replace_all(state)
        self._graph.dispatch(commits)
        self._maybe_auto_save(commits)

    def _ensure_not_batching(self, operation: str) -> None:
        if self._pending is not None:
            raise StateError(f"Cannot {operation} while a batch is open")

    # ========== RESET ==========

    def reset(self, section: Optional[str] = None) -> None:
        """Restore defaults.

        With a section name this is an ordinary, undoable write of that
        section. Without one the whole tree is restored in place and history
        starts over from the defaults.
        """
        if section is not None:
            if section not in self._defaults:
                raise PathError(f"Unknown section {section!r}")
            self.set(section, self._defaults[section], validate=False)
            logger.info(f"Reset section {section}")
            return

        self._ensure_not_batching('reset')
        commits = self._store.replace_all(self._defaults)
        self._history.clear()
        self._graph.dispatch(commits)
        self._maybe_auto_save(commits)
        logger.info(f"Reset state to defaults ({len(commits)} section(s) changed)")

    # ========== PERSISTENCE ==========

    @property
    def persistence(self) -> PersistenceAdapter:
        return self._persistence

    def save(self) -> bool:
        """Write the persisted subset to storage; False on failure."""
        return self._persistence.save(self._store.get)

    def load(self) -> bool:
        """Merge persisted values into the live tree as one batch.

        Returns False, leaving the tree untouched, if nothing is stored, the
        payload is corrupted or of an unsupported version, or any value fails
        validation.
        """
        state = self._persistence.read()
        if state is None:
            return False

        try:
            updates = self._persistence.updates_from(state, reader=self._store.get)
            if not updates:
                return True
            self.batch(updates, label='load')
        except (ValidationError, PathError, PersistenceError, RecursionError) as e:
            logger.warning(f"PERSIST: Rejected stored state: {e}")
            return False
        logger.info(f"PERSIST: Loaded {len(updates)} value(s)")
        return True

    def export(self) -> Dict[str, Any]:
        """Snapshot of the whole tree with a timestamp and schema version."""
        return {
            'state': self._store.get(),
            'timestamp': time.time(),
            'version': self.config.schema_version,
        }

    # ========== DEBUG ==========

    def debug(self) -> Dict[str, Any]:
        return {
            'state': self._store.get(),
            'listeners': self._graph.patterns(),
            'listener_counts': self._graph.counts(),
            'computed': self._computed.names(),
            'computed_details': [self._computed.describe(name) for name in self._computed.names()],
            'validators': self._validator.paths(),
            'history': self._history.summary(),
        }
