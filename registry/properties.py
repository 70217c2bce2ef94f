from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from shared.errors import TypeMismatchError


class ConfigKind(str, Enum):
    """The seven semantic types a configuration value can resolve to."""

    BOOLEAN = "boolean"
    STRING = "string"
    TIMESTAMP = "timestamp"
    DURATION = "duration"
    NUMBER = "number"
    OBJECT = "object"
    SEQUENCE = "sequence"

    @classmethod
    def from_string(cls, value: str) -> ConfigKind:
        """Convert string to ConfigKind, raise TypeMismatchError if unknown."""
        try:
            return cls(value)
        except ValueError:
            raise TypeMismatchError(f"Unknown config kind: {value!r}")

    @classmethod
    def is_valid(cls, value: str) -> bool:
        try:
            cls(value)
            return True
        except ValueError:
            return False


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


# payload check per kind; a property whose value fails its check is never stored
_PAYLOAD_CHECKS: Dict[ConfigKind, Callable[[Any], bool]] = {
    ConfigKind.BOOLEAN: lambda v: isinstance(v, bool),
    ConfigKind.STRING: lambda v: isinstance(v, str),
    ConfigKind.TIMESTAMP: lambda v: isinstance(v, datetime),
    ConfigKind.DURATION: lambda v: isinstance(v, timedelta),
    ConfigKind.NUMBER: _is_number,
    ConfigKind.OBJECT: lambda v: isinstance(v, Mapping),
    ConfigKind.SEQUENCE: lambda v: isinstance(v, list),
}


def payload_matches(kind: ConfigKind, value: Any) -> bool:
    return _PAYLOAD_CHECKS[kind](value)


@dataclass(frozen=True)
class ConfigProperty:
    """
    A single resolved configuration value.

    ``value`` is None only for nullable properties (an explicit null in a
    source). Any other payload must match ``kind``.
    """
    identity: int
    name: str
    priority: int
    kind: ConfigKind
    value: Any
    nullable: bool = False
    source: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.kind, ConfigKind):
            raise TypeMismatchError(f"{self.name}: {self.kind!r} is not a ConfigKind")
        if self.value is None:
            if not self.nullable:
                raise TypeMismatchError(f"{self.name}: null value for non-nullable {self.kind.value}")
            return
        if not payload_matches(self.kind, self.value):
            raise TypeMismatchError(
                f"{self.name}: {type(self.value).__name__} payload does not match kind {self.kind.value}"
            )


# ========================================
#           KIND INFERENCE
# ========================================

def infer_kind(value: Any) -> ConfigKind:
    """Pick the kind for a raw parser value. bool is checked before int on purpose."""
    if isinstance(value, bool):
        return ConfigKind.BOOLEAN
    if _is_number(value):
        return ConfigKind.NUMBER
    if isinstance(value, (datetime, date)):
        return ConfigKind.TIMESTAMP
    if isinstance(value, timedelta):
        return ConfigKind.DURATION
    if isinstance(value, Mapping):
        return ConfigKind.OBJECT
    if isinstance(value, (list, tuple)):
        return ConfigKind.SEQUENCE
    return ConfigKind.STRING


# ========================================
#           COERCION
# ========================================

_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0"}

# Go style durations, e.g. "1h30m", "250ms", "1.5s", "-2m"
_DURATION_RE = re.compile(r'^([-+]?)((?:\d+(?:\.\d*)?|\.\d+)(?:ns|us|µs|μs|ms|s|m|h))+$')
_DURATION_PART_RE = re.compile(r'(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)')
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def _seconds(seconds: float, text: Any) -> timedelta:
    try:
        return timedelta(seconds=seconds)
    except (OverflowError, ValueError):
        # inf, nan and anything past timedelta.max
        raise ValueError(f"duration {text!r} is out of range")


def parse_duration(text: str) -> timedelta:
    """
    Parse a duration string.

    Accepts Go style unit sequences ("1h30m", "250ms") and bare numbers,
    which are read as seconds.
    """
    text = text.strip()
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        return _seconds(seconds, text)
    match = _DURATION_RE.match(text)
    if not match:
        raise ValueError(f"invalid duration {text!r}")
    seconds = sum(float(amount) * _DURATION_UNITS[unit] for amount, unit in _DURATION_PART_RE.findall(text))
    total = _seconds(seconds, text)
    return -total if match.group(1) == "-" else total


def _to_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if _is_number(value) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    raise ValueError(f"cannot read {value!r} as boolean")


def _to_string(value: Any) -> str:
    if isinstance(value, (Mapping, list, tuple)):
        raise ValueError(f"cannot read {type(value).__name__} as string")
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value)


def _to_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, str):
        return datetime.fromisoformat(value.strip())
    raise ValueError(f"cannot read {value!r} as timestamp")


def _to_duration(value: Any) -> timedelta:
    if isinstance(value, timedelta):
        return value
    if _is_number(value):
        return _seconds(float(value), value)
    if isinstance(value, str):
        return parse_duration(value)
    raise ValueError(f"cannot read {value!r} as duration")


def _to_number(value: Any):
    if _is_number(value):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            return float(text)
    raise ValueError(f"cannot read {value!r} as number")


def _to_object(value: Any) -> Mapping:
    if isinstance(value, Mapping):
        return copy.deepcopy(dict(value))
    raise ValueError(f"cannot read {type(value).__name__} as object")


def _to_sequence(value: Any) -> list:
    if isinstance(value, (list, tuple)):
        return copy.deepcopy(list(value))
    if isinstance(value, str):
        # env vars carry lists as comma separated text
        return [part.strip() for part in value.split(",") if part.strip()]
    raise ValueError(f"cannot read {type(value).__name__} as sequence")


_COERCERS: Dict[ConfigKind, Callable[[Any], Any]] = {
    ConfigKind.BOOLEAN: _to_boolean,
    ConfigKind.STRING: _to_string,
    ConfigKind.TIMESTAMP: _to_timestamp,
    ConfigKind.DURATION: _to_duration,
    ConfigKind.NUMBER: _to_number,
    ConfigKind.OBJECT: _to_object,
    ConfigKind.SEQUENCE: _to_sequence,
}


def coerce(value: Any, declared: Optional[ConfigKind] = None) -> Tuple[ConfigKind, Any]:
    """
    Convert a raw value into (kind, payload).

    Without a declaration the kind is inferred from the Python type the
    parser produced. Raises ValueError when a declared kind cannot be met.
    """
    kind = declared if declared is not None else infer_kind(value)
    return kind, _COERCERS[kind](value)
