"""
Saving and restoring the persisted subset of the state tree.

The payload is a versioned envelope written under one storage key:

    {"state": {...}, "version": 2, "timestamp": "2026-01-01T12:00:00+00:00"}

Values JSON cannot represent are written as tagged objects so they come back
as the same kind, not as generic mappings:

    array.array       {"__kind__": "array", "typecode": "f", "data": [...]}
    datetime          {"__kind__": "datetime", "iso": "..."}
    date              {"__kind__": "date", "iso": "..."}
    tuple / set       {"__kind__": "tuple" | "set", "items": [...]}
    bytes / bytearray {"__kind__": "bytes" | "bytearray", "base64": "..."}
    dict with a "__kind__" key of its own: {"__kind__": "dict", "items": {...}}

Older payloads are migrated forward on read: the un-enveloped
{"settings": ..., "audio": {"volume": ...}} object (version 0) and the flat
settings object {"version": 1, "lastUrl": ..., "volume": ...} (version 1).
"""
from array import array
import base64
import datetime
import json
import logging
import sqlite3
from typing import Any, Callable, Dict, Optional, Tuple

from spiralstate.config import StoreConfig
from spiralstate.errors import PersistenceError
from spiralstate.path_store import ABSENT, iter_leaves
from spiralstate.storage import KeyValueStorage

logger = logging.getLogger(__name__)

KIND_KEY = '__kind__'


# ========== VALUE CODEC ==========

def encode_value(value: Any) -> Any:
    """Convert a state value to JSON-compatible data, tagging non-JSON kinds."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, dict):
        items = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise PersistenceError(f"Cannot persist non-string key {key!r}")
            items[key] = encode_value(item)
        if KIND_KEY in items:
            return {KIND_KEY: 'dict', 'items': items}
        return items
    if isinstance(value, list):
        return [encode_value(item) for item in value]
    if isinstance(value, tuple):
        return {KIND_KEY: 'tuple', 'items': [encode_value(item) for item in value]}
    if isinstance(value, array):
        return {KIND_KEY: 'array', 'typecode': value.typecode, 'data': value.tolist()}
    if isinstance(value, datetime.datetime):
        return {KIND_KEY: 'datetime', 'iso': value.isoformat()}
    if isinstance(value, datetime.date):
        return {KIND_KEY: 'date', 'iso': value.isoformat()}
    if isinstance(value, (set, frozenset)):
        return {KIND_KEY: 'set', 'items': [encode_value(item) for item in value]}
    if isinstance(value, (bytes, bytearray)):
        kind = 'bytearray' if isinstance(value, bytearray) else 'bytes'
        return {KIND_KEY: kind, 'base64': base64.b64encode(bytes(value)).decode('ascii')}
    raise PersistenceError(f"Cannot persist value of type {type(value).__name__}")


def decode_value(data: Any) -> Any:
    """Inverse of encode_value()."""
    if isinstance(data, list):
        return [decode_value(item) for item in data]
    if not isinstance(data, dict):
        return data
    if KIND_KEY not in data:
        return {key: decode_value(item) for key, item in data.items()}

    kind = data[KIND_KEY]
    if kind == 'dict':
        return {key: decode_value(item) for key, item in data['items'].items()}
    if kind == 'tuple':
        return tuple(decode_value(item) for item in data['items'])
    if kind == 'set':
        return {decode_value(item) for item in data['items']}
    if kind == 'array':
        return array(data['typecode'], data['data'])
    if kind == 'datetime':
        return datetime.datetime.fromisoformat(data['iso'])
    if kind == 'date':
        return datetime.date.fromisoformat(data['iso'])
    if kind == 'bytes':
        return base64.b64decode(data['base64'], validate=True)
    if kind == 'bytearray':
        return bytearray(base64.b64decode(data['base64'], validate=True))
    raise PersistenceError(f"Unknown value kind {kind!r}")


# ========== MIGRATIONS ==========

def _from_legacy_tree(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Version 0: the tree-shaped object written before envelopes existed."""
    state: Dict[str, Any] = {}
    if isinstance(payload.get('settings'), dict):
        state['settings'] = payload['settings']
    audio = payload.get('audio')
    if isinstance(audio, dict) and 'volume' in audio:
        state['audio'] = {'volume': audio['volume']}
    return state


def _from_flat_settings(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Version 1: flat settings object with a top-level volume."""
    settings = {key: value for key, value in payload.items() if key not in ('version', 'lastSaved', 'volume')}
    state: Dict[str, Any] = {'settings': settings}
    if 'volume' in payload:
        settings['lastVolume'] = payload['volume']
        state['audio'] = {'volume': payload['volume']}
    return state


# from_version -> (to_version, step)
MIGRATIONS: Dict[int, Tuple[int, Callable[[Dict[str, Any]], Dict[str, Any]]]] = {
    0: (2, _from_legacy_tree),
    1: (2, _from_flat_settings),
}


def migrate(state: Dict[str, Any], version: int, target: int) -> Dict[str, Any]:
    """Run migration steps until state is at target version.

    Raises:
        PersistenceError: version is newer than target or has no migration path
    """
    if version > target:
        raise PersistenceError(f"Payload version {version} is newer than supported version {target}")
    while version < target:
        if version not in MIGRATIONS:
            raise PersistenceError(f"No migration from version {version}")
        next_version, step = MIGRATIONS[version]
        logger.info(f"PERSIST: Migrating payload from v{version} to v{next_version}")
        state = step(state)
        version = next_version
    return state


def unwrap_envelope(payload: Any) -> Tuple[Dict[str, Any], int]:
    """Split a raw decoded payload into (state, version), recognising legacy shapes."""
    if not isinstance(payload, dict):
        raise PersistenceError(f"Payload must be an object, got {type(payload).__name__}")
    if 'state' in payload and 'version' in payload:
        version = payload['version']
        if isinstance(version, bool) or not isinstance(version, int):
            raise PersistenceError(f"Envelope version must be an integer, got {version!r}")
        if not isinstance(payload['state'], dict):
            raise PersistenceError("Envelope state must be an object")
        return payload['state'], version
    if 'version' in payload:
        return payload, 1
    return payload, 0


# ========== ADAPTER ==========

class PersistenceAdapter:
    """Reads and writes the persisted subset through a key-value storage.

    Args:
        storage: Backend holding the envelope
        config: Supplies storage_key, schema_version and persisted_paths
    """

    def __init__(self, storage: KeyValueStorage, config: Optional[StoreConfig] = None):
        self.storage = storage
        self.config = config or StoreConfig()

    @property
    def key(self) -> str:
        return self.config.storage_key

    def collect(self, reader: Callable[[str], Any]) -> Dict[str, Any]:
        """Build the nested subset of the tree named by persisted_paths."""
        subset: Dict[str, Any] = {}
        for path in self.config.persisted_paths:
            value = reader(path)
            if value is ABSENT:
                continue
            segments = path.split('.')
            node = subset
            for segment in segments[:-1]:
                node = node.setdefault(segment, {})
            node[segments[-1]] = value
        return subset

    def build_envelope(self, state: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'state': encode_value(state),
            'version': self.config.schema_version,
            'timestamp': datetime.datetime.now(datetime.timezone.utc).isoformat(),
        }

    def save(self, reader: Callable[[str], Any]) -> bool:
        """Write the persisted subset; False (logged) on any failure."""
        try:
            envelope = self.build_envelope(self.collect(reader))
            self.storage.set_item(self.key, json.dumps(envelope))
        except (PersistenceError, TypeError, ValueError, OSError, sqlite3.Error) as e:
            logger.error(f"PERSIST: Failed to save state under {self.key!r}: {e}")
            return False
        logger.info(f"PERSIST: Saved {len(self.config.persisted_paths)} path(s) under {self.key!r}")
        return True

    def read(self) -> Optional[Dict[str, Any]]:
        """Decoded, migrated state from storage, or None if missing/corrupted."""
        try:
            raw = self.storage.get_item(self.key)
            if raw is None:
                logger.debug(f"PERSIST: Nothing stored under {self.key!r}")
                return None
            state, version = unwrap_envelope(json.loads(raw))
            state = migrate(state, version, self.config.schema_version)
            decoded = decode_value(state)
            if not isinstance(decoded, dict):
                raise PersistenceError("Decoded state is not an object")
            return decoded
        except (PersistenceError, ValueError, TypeError, KeyError, AttributeError,
                RecursionError, OSError, sqlite3.Error) as e:
            logger.warning(f"PERSIST: Ignoring unreadable payload under {self.key!r}: {e}")
            return None

    def updates_from(self, state: Dict[str, Any],
                     reader: Optional[Callable[[str], Any]] = None) -> Dict[str, Any]:
        """Flatten a loaded tree to {path: value}, keeping only persisted paths.

        With a reader, the payload is checked against the live tree: a leaf
        that would replace a live mapping with a non-mapping means the payload
        is corrupted, and an empty mapping over a live mapping is skipped.

        Raises:
            PersistenceError: a persisted mapping would be clobbered
        """
        updates = {}
        for path, value in iter_leaves(state):
            if not self._is_persisted(path):
                continue
            if reader is not None and isinstance(reader(path), dict):
                if not isinstance(value, dict):
                    raise PersistenceError(
                        f"Stored {type(value).__name__} at {path!r} would replace a mapping"
                    )
                if not value:
                    continue
            updates[path] = value
        return updates

    def _is_persisted(self, path: str) -> bool:
        return any(path == persisted or path.startswith(f"{persisted}.")
                   for persisted in self.config.persisted_paths)

    def clear(self) -> None:
        self.storage.remove_item(self.key)
