"""
Reactive state store for the spiral waveform player.

Every part of the player (audio control, visual and interaction adapters,
render scheduling) reads and writes one nested state tree through a
StateManager.

Key Features:
- Dot-path addressing with clone-on-read/clone-on-write isolation
- Exact, ancestor and wildcard listeners
- Cached computed properties with declared dependencies
- Built-in and custom validation that rejects bad writes
- Linear undo/redo with batch coalescing
- Versioned persistence that round-trips array.array buffers and datetimes

Quick Start:
    >>> from spiralstate import StateManager
    >>> state = StateManager()
    >>> unsubscribe = state.subscribe('audio', lambda new, old: print(new, old))
    >>> state.set('audio.isPlaying', True)
    True False
    >>> state.undo()
    True
    >>> state.get('audio.isPlaying')
    False

Modules:
    - path_store: PathStore, ABSENT, structural clone and equality
    - subscriptions: SubscriptionGraph and ChangeEvent
    - computed: ComputedEngine
    - validation: Validator and built-in rules
    - history: HistoryManager (snapshot_model: HistoryEntry)
    - persistence: PersistenceAdapter and the value codec (storage: backends)
    - state_manager: StateManager facade
    - config: StoreConfig
"""

# Facade
from spiralstate.state_manager import StateManager

# Building blocks
from spiralstate.path_store import ABSENT, PathStore, clone_value, deep_equals
from spiralstate.subscriptions import WILDCARD, ChangeEvent, SubscriptionGraph
from spiralstate.computed import ComputedEngine
from spiralstate.validation import BUILTIN_RULES, ChoiceRule, RangeRule, Validator
from spiralstate.history import HistoryManager
from spiralstate.snapshot_model import HistoryEntry

# Persistence
from spiralstate.persistence import PersistenceAdapter, decode_value, encode_value
from spiralstate.storage import FileStorage, MemoryStorage, SQLiteStorage

# Configuration and defaults
from spiralstate.config import DEFAULT_STORAGE_KEY, SCHEMA_VERSION, StoreConfig
from spiralstate.defaults import DEFAULT_STATE, SECTIONS

# Errors
from spiralstate.errors import PathError, PersistenceError, StateError, ValidationError

__all__ = [
    # Facade
    'StateManager',
    # Building blocks
    'ABSENT',
    'PathStore',
    'clone_value',
    'deep_equals',
    'WILDCARD',
    'ChangeEvent',
    'SubscriptionGraph',
    'ComputedEngine',
    'BUILTIN_RULES',
    'ChoiceRule',
    'RangeRule',
    'Validator',
    'HistoryManager',
    'HistoryEntry',
    # Persistence
    'PersistenceAdapter',
    'decode_value',
    'encode_value',
    'FileStorage',
    'MemoryStorage',
    'SQLiteStorage',
    # Configuration and defaults
    'DEFAULT_STORAGE_KEY',
    'SCHEMA_VERSION',
    'StoreConfig',
    'DEFAULT_STATE',
    'SECTIONS',
    # Errors
    'PathError',
    'PersistenceError',
    'StateError',
    'ValidationError',
]

__version__ = '1.0.0'
__description__ = 'Reactive path-addressed state store with undo/redo and persistence'
