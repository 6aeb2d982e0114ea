"""
History entry dataclass for linear undo/redo.

Design Philosophy: Correct by Construction
- Immutable entries (frozen dataclass)
- UUID-based identity
- Data only, no references into the live tree
"""

from dataclasses import dataclass
from typing import Any, Dict
import uuid
import time


@dataclass(frozen=True)
class HistoryEntry:
    """Immutable snapshot of the whole state tree at a point in time.

    The state dict is a private clone owned by the history; it is never
    handed out directly.
    """
    id: str  # UUID string
    timestamp: float
    label: str
    state: Dict[str, Any]

    @classmethod
    def create(cls, label: str, state: Dict[str, Any]) -> 'HistoryEntry':
        """Create a new entry with auto-generated ID and timestamp."""
        return cls(
            id=str(uuid.uuid4()),
            timestamp=time.time(),
            label=label,
            state=state,
        )

    def info(self, index: int, is_current: bool) -> Dict[str, Any]:
        """Metadata row for get_history()."""
        return {
            'index': index,
            'id': self.id,
            'timestamp': self.timestamp,
            'label': self.label or f"Snapshot #{index}",
            'is_current': is_current,
        }
