"""
Store configuration.

A single frozen dataclass carries every tunable of the store so that a
StateManager can be built from one object and tests can derive variants with
``StoreConfig.replace(...)``.
"""
from dataclasses import dataclass, field, replace as dataclass_replace
from typing import Tuple

DEFAULT_STORAGE_KEY = 'spiral-waveform-state'

# Envelope schema version written by save(). Bump together with a migration
# step in spiralstate.persistence.MIGRATIONS.
SCHEMA_VERSION = 2


@dataclass(frozen=True)
class StoreConfig:
    """Tunables for StateManager and its collaborators.

    Attributes:
        history_limit: Maximum number of history entries kept (oldest dropped first)
        storage_key: Key the persistence envelope is written under
        schema_version: Version stamped on saved envelopes
        persisted_paths: Paths copied into the envelope by save()
        auto_save: Save synchronously after committed writes under auto_save_prefixes
        auto_save_prefixes: Path prefixes that trigger auto_save
    """
    history_limit: int = 50
    storage_key: str = DEFAULT_STORAGE_KEY
    schema_version: int = SCHEMA_VERSION
    persisted_paths: Tuple[str, ...] = ('settings', 'audio.volume')
    auto_save: bool = False
    auto_save_prefixes: Tuple[str, ...] = field(default=('settings',))

    def __post_init__(self):
        if self.history_limit < 1:
            raise ValueError(f"history_limit must be >= 1, got {self.history_limit}")
        if not self.storage_key:
            raise ValueError("storage_key must be a non-empty string")

    def replace(self, **changes) -> 'StoreConfig':
        """Return a copy with the given fields changed."""
        return dataclass_replace(self, **changes)

    def should_auto_save(self, path: str) -> bool:
        if not self.auto_save:
            return False
        return any(
            path == prefix or path.startswith(f"{prefix}.") or prefix.startswith(f"{path}.")
            for prefix in self.auto_save_prefixes
        )
