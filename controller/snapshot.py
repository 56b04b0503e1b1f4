"""
snapshot.py

Immutable view of the most recent telemetry frame received from the vision
coprocessor, with typed field accessors.
"""

import copy
import math
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Iterator

from .exceptions import FieldNotFound, FieldTypeError


def _freeze(value: Any) -> Any:
    """Recursively convert dicts to read-only mappings and lists to tuples."""
    if isinstance(value, dict):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return copy.copy(value)


class TelemetrySnapshot(Mapping):
    """
    One decoded telemetry frame, held as a single read-only unit.

    Readers may keep a snapshot for as long as they like; the receiver
    replaces it with a new object instead of mutating it.
    """

    __slots__ = ("_fields",)

    def __init__(self, fields: Mapping[str, Any]):
        self._fields = _freeze(dict(fields))

    def __getitem__(self, key: str) -> Any:
        return self._fields[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        return f"TelemetrySnapshot({dict(self._fields)!r})"

    def _require(self, key: str) -> Any:
        try:
            return self._fields[key]
        except KeyError:
            raise FieldNotFound(key) from None

    def get_int(self, key: str) -> int:
        """
        Return a numeric field as an int, truncating floats toward zero.

        Raises:
            FieldNotFound: If the field is absent.
            FieldTypeError: If the value is not a number (bools are rejected).
        """
        value = self._require(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise FieldTypeError(key, "number", value)
        if isinstance(value, float) and not math.isfinite(value):
            raise FieldTypeError(key, "finite number", value)
        return int(value)

    def get_float(self, key: str) -> float:
        value = self._require(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise FieldTypeError(key, "number", value)
        return float(value)

    def get_str(self, key: str) -> str:
        value = self._require(key)
        if not isinstance(value, str):
            raise FieldTypeError(key, "string", value)
        return value

    def get_bool(self, key: str) -> bool:
        value = self._require(key)
        if not isinstance(value, bool):
            raise FieldTypeError(key, "boolean", value)
        return value

    def to_dict(self) -> dict[str, Any]:
        """Return a mutable deep copy of the frame."""
        return _thaw(self._fields)
