"""
Write gatekeeping.

Each path can carry one built-in rule (range or choice checks for the fields
the player knows about) and any number of custom predicates. A predicate maps
a candidate value to None (accept) or an error description (reject). Built-in
rules run first, then custom predicates in registration order; the first
rejection aborts the write. A predicate that raises counts as a rejection.
"""
from dataclasses import dataclass
import logging
import math
from numbers import Real
from typing import Any, Callable, Dict, List, Optional, Tuple

from spiralstate.errors import ValidationError
from spiralstate.path_store import ABSENT, lookup, split_path

logger = logging.getLogger(__name__)

Predicate = Callable[[Any], Optional[str]]


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _format_bound(bound: float) -> str:
    return str(int(bound)) if float(bound).is_integer() else str(bound)


@dataclass(frozen=True)
class RangeRule:
    """Numeric range check with optional finiteness/integer requirements."""
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    finite: bool = False
    integer: bool = False

    @property
    def constraint(self) -> str:
        kind = 'integer' if self.integer else 'number'
        if self.minimum is not None and self.maximum is not None:
            return f"{kind} in [{_format_bound(self.minimum)}, {_format_bound(self.maximum)}]"
        if self.minimum is not None:
            return f"{kind} >= {_format_bound(self.minimum)}"
        if self.maximum is not None:
            return f"{kind} <= {_format_bound(self.maximum)}"
        return kind

    def __call__(self, value: Any) -> Optional[str]:
        if not _is_number(value):
            return 'Must be a number'
        if self.finite and not math.isfinite(value):
            return 'Must be finite'
        if self.integer and (not math.isfinite(value) or value != int(value)):
            return 'Must be an integer'
        if self.minimum is not None and self.maximum is not None:
            if not (self.minimum <= value <= self.maximum):
                return f"Must be between {_format_bound(self.minimum)} and {_format_bound(self.maximum)}"
        elif self.minimum is not None and not value >= self.minimum:
            return 'Must be non-negative' if self.minimum == 0 else f"Must be >= {_format_bound(self.minimum)}"
        elif self.maximum is not None and not value <= self.maximum:
            return f"Must be <= {_format_bound(self.maximum)}"
        return None


@dataclass(frozen=True)
class ChoiceRule:
    """Value must be one of a fixed set (compared with ==, bools excluded)."""
    choices: Tuple[Any, ...]

    @property
    def constraint(self) -> str:
        return 'one of ' + ', '.join(repr(choice) for choice in self.choices)

    def __call__(self, value: Any) -> Optional[str]:
        if isinstance(value, bool) or value not in self.choices:
            return 'Must be ' + ' or '.join(str(choice) for choice in self.choices)
        return None


_UNIT = RangeRule(minimum=0, maximum=1)

BUILTIN_RULES: Dict[str, Any] = {
    'audio.playhead': RangeRule(minimum=0, maximum=1, finite=True),
    'audio.volume': _UNIT,
    'audio.duration': RangeRule(minimum=0, finite=True),
    'visual.animationProgress': _UNIT,
    'interaction.scrubDirection': ChoiceRule(choices=(1, -1)),
    'settings.defaultVolume': _UNIT,
    'settings.scrubPreviewVolume': _UNIT,
    'settings.lastVolume': _UNIT,
    'settings.targetFPS': RangeRule(minimum=1, maximum=240, integer=True),
}


class Validator:
    """Per-path predicate registry.

    Rules registered below a path also apply when a whole mapping is written
    at that path: writing {'playhead': 2} to 'audio' is checked against the
    'audio.playhead' rule.
    """

    def __init__(self, builtin_rules: Optional[Dict[str, Any]] = None):
        self._builtin: Dict[str, Any] = dict(BUILTIN_RULES if builtin_rules is None else builtin_rules)
        self._custom: Dict[str, List[Predicate]] = {}

    def add(self, path: str, predicate: Predicate) -> None:
        """Register a custom predicate for path (all predicates must pass)."""
        split_path(path)
        if not callable(predicate):
            raise TypeError('Validator must be a function')
        self._custom.setdefault(path, []).append(predicate)
        logger.debug(f"Added validator for {path} ({len(self._custom[path])} custom)")

    def remove(self, path: str, predicate: Optional[Predicate] = None) -> None:
        """Drop one custom predicate, or all custom predicates for path."""
        if predicate is None:
            self._custom.pop(path, None)
            return
        predicates = self._custom.get(path, [])
        if predicate in predicates:
            predicates.remove(predicate)
        if not predicates:
            self._custom.pop(path, None)

    def paths(self) -> List[str]:
        """Every path that carries a built-in rule or custom predicate."""
        return sorted(set(self._builtin) | set(self._custom))

    def check(self, path: str, value: Any) -> None:
        """Run every rule that applies to a write of value at path.

        Raises:
            ValidationError: on the first rejection
        """
        segments = split_path(path)
        for rule_path in self._applicable_paths(path):
            if rule_path == path:
                subject = value
            else:
                subject = lookup(value, split_path(rule_path)[len(segments):])
                if subject is ABSENT:
                    continue
            self._check_one(rule_path, subject)

    def _applicable_paths(self, path: str) -> List[str]:
        prefix = f"{path}."
        candidates = set(self._builtin) | set(self._custom)
        return sorted(p for p in candidates if p == path or p.startswith(prefix))

    def _check_one(self, rule_path: str, value: Any) -> None:
        rule = self._builtin.get(rule_path)
        if rule is not None:
            error = rule(value)
            if error:
                raise ValidationError(rule_path, value, error, getattr(rule, 'constraint', None))

        for predicate in self._custom.get(rule_path, []):
            try:
                result = predicate(value)
            except ValidationError:
                raise
            except Exception as e:
                logger.debug(f"Validator for {rule_path} raised {type(e).__name__}: {e}")
                raise ValidationError(rule_path, value, f"Validator raised: {e}") from e
            if result is None or result is True or result == '':
                continue
            message = 'Rejected by validator' if result is False else str(result)
            raise ValidationError(rule_path, value, message, getattr(predicate, 'constraint', None))
