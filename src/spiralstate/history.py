"""
Linear undo/redo history.

The history is a list of whole-tree snapshots plus a cursor. The entry under
the cursor is the current one; entries after it form the redo tail, which is
discarded as soon as a new entry is recorded. Recording can be deferred with
atomic(): nested blocks are allowed and only the outermost one records a
single coalesced entry.
"""
from contextlib import contextmanager
import logging
from typing import Any, Callable, Dict, Generator, List, Optional

from spiralstate.path_store import clone_value
from spiralstate.snapshot_model import HistoryEntry

logger = logging.getLogger(__name__)


class HistoryManager:
    """Snapshot list with a cursor.

    Args:
        snapshot_provider: Returns a private clone of the current tree
        limit: Maximum number of entries kept; the oldest are dropped first
    """

    def __init__(self, snapshot_provider: Callable[[], Dict[str, Any]], limit: int = 50):
        self._snapshot_provider = snapshot_provider
        self._limit = limit
        self._entries: List[HistoryEntry] = []
        self._cursor: int = -1

        # Deferred recording for atomic blocks
        self._atomic_depth: int = 0
        self._atomic_label: Optional[str] = None
        self._pending: bool = False

    @contextmanager
    def atomic(self, label: str = 'batch') -> Generator[None, None, None]:
        """Coalesce every record() inside the block into one entry.

        The entry is written when the outermost block exits, and only if
        something inside asked to be recorded.
        """
        self._atomic_depth += 1
        if self._atomic_depth == 1:
            self._atomic_label = label
        try:
            yield
        finally:
            self._atomic_depth -= 1
            if self._atomic_depth == 0:
                final_label = self._atomic_label or label
                self._atomic_label = None
                if self._pending:
                    self._pending = False
                    self.record(final_label)

    def discard_pending(self) -> None:
        """Forget a deferred record (used when an atomic block is rolled back)."""
        self._pending = False

    def record(self, label: str = '') -> bool:
        """Append a snapshot of the current tree and make it current.

        Returns:
            False if the record was deferred by an enclosing atomic block.
        """
        if self._atomic_depth > 0:
            self._pending = True
            logger.debug(f"HISTORY: Deferring '{label}' (depth={self._atomic_depth})")
            return False

        # Linear history: recording from the past drops the redo tail
        if self._cursor < len(self._entries) - 1:
            dropped = len(self._entries) - 1 - self._cursor
            del self._entries[self._cursor + 1:]
            logger.debug(f"HISTORY: Discarded {dropped} redo entr{'y' if dropped == 1 else 'ies'}")

        entry = HistoryEntry.create(label, self._snapshot_provider())
        self._entries.append(entry)
        self._cursor = len(self._entries) - 1

        if len(self._entries) > self._limit:
            overflow = len(self._entries) - self._limit
            del self._entries[:overflow]
            self._cursor -= overflow

        logger.debug(f"HISTORY: Recorded '{label}' (id={entry.id[:8]}, {len(self._entries)} entries)")
        return True

    def can_undo(self) -> bool:
        return self._cursor > 0

    def can_redo(self) -> bool:
        return self._cursor < len(self._entries) - 1

    def undo(self) -> Optional[Dict[str, Any]]:
        """Move the cursor back one entry.

        Returns:
            Clone of the tree to restore, or None if already at the oldest entry.
        """
        if not self.can_undo():
            return None
        self._cursor -= 1
        entry = self._entries[self._cursor]
        logger.debug(f"HISTORY: Undo to '{entry.label}' (index={self._cursor})")
        return clone_value(entry.state)

    def redo(self) -> Optional[Dict[str, Any]]:
        """Move the cursor forward one entry; None if already at the newest."""
        if not self.can_redo():
            return None
        self._cursor += 1
        entry = self._entries[self._cursor]
        logger.debug(f"HISTORY: Redo to '{entry.label}' (index={self._cursor})")
        return clone_value(entry.state)

    def clear(self) -> None:
        """Drop every entry and record a fresh baseline."""
        self._entries.clear()
        self._cursor = -1
        self._pending = False
        self.record('init')

    def get_history(self) -> List[Dict[str, Any]]:
        """Ordered metadata, oldest first; exactly one row has is_current=True."""
        return [entry.info(index, index == self._cursor) for index, entry in enumerate(self._entries)]

    def __len__(self) -> int:
        return len(self._entries)

    def summary(self) -> Dict[str, Any]:
        return {
            'length': len(self._entries),
            'index': self._cursor,
            'can_undo': self.can_undo(),
            'can_redo': self.can_redo(),
            'limit': self._limit,
        }
