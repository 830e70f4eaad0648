"""Property data types and the restricted conversion policy used by property inputs.

Only identity and numeric widening (int → float → double) are allowed.  Every
other pairing fails closed with ``ConversionError`` so callers can fall back
to the raw value.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class PropertyDataType(str, Enum):
    INT = "int"
    FLOAT = "float"
    DOUBLE = "double"
    STRING = "string"
    BOOLEAN = "boolean"


class ConversionError(Exception):
    def __init__(self, value: Any, source: PropertyDataType, target: PropertyDataType, reason: str = ""):
        self.value = value
        self.source = source
        self.target = target
        detail = f": {reason}" if reason else ""
        super().__init__(f"Cannot convert {value!r} from {source.value} to {target.value}{detail}")


_WIDENING: frozenset[tuple[PropertyDataType, PropertyDataType]] = frozenset({
    (PropertyDataType.INT, PropertyDataType.FLOAT),
    (PropertyDataType.INT, PropertyDataType.DOUBLE),
    (PropertyDataType.FLOAT, PropertyDataType.DOUBLE),
})


def parse_data_type(raw: Any, default: PropertyDataType = PropertyDataType.STRING) -> PropertyDataType:
    """Map a declared ``dataType`` string to the enum; unknown values use *default*."""
    if isinstance(raw, PropertyDataType):
        return raw
    try:
        return PropertyDataType(str(raw).lower())
    except ValueError:
        return default


def can_convert(source: PropertyDataType, target: PropertyDataType) -> bool:
    return source == target or (source, target) in _WIDENING


def infer_type(value: Any) -> PropertyDataType:
    # bool is checked first: it is a subclass of int
    if isinstance(value, bool):
        return PropertyDataType.BOOLEAN
    if isinstance(value, int):
        return PropertyDataType.INT
    if isinstance(value, float):
        return PropertyDataType.FLOAT
    return PropertyDataType.STRING


def convert(value: Any, source: PropertyDataType, target: PropertyDataType) -> Any:
    """Convert *value* from *source* to *target* or raise ``ConversionError``."""
    if not can_convert(source, target):
        raise ConversionError(value, source, target, "conversion not allowed")
    try:
        if target == PropertyDataType.INT:
            if isinstance(value, bool):
                raise ValueError("boolean is not an integer")
            number = float(value)
            if not number.is_integer():
                raise ValueError("not a whole number")
            return int(number)
        if target in (PropertyDataType.FLOAT, PropertyDataType.DOUBLE):
            if isinstance(value, bool):
                raise ValueError("boolean is not numeric")
            return float(value)
        if target == PropertyDataType.BOOLEAN:
            return coerce_boolean(value)
        return value if isinstance(value, str) else str(value)
    except (TypeError, ValueError) as exc:
        raise ConversionError(value, source, target, str(exc)) from exc


def coerce_boolean(value: Any) -> bool:
    """Lenient boolean coercion for literal and external-input nodes."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1", "on"):
            return True
        if lowered in ("false", "no", "0", "off", ""):
            return False
        raise ValueError(f"not a boolean: {value!r}")
    return bool(value)


def coerce_to_type(value: Any, data_type: PropertyDataType) -> Any:
    """Coerce a configured literal to its declared type (used by value nodes)."""
    if data_type == PropertyDataType.INT:
        if isinstance(value, str):
            value = value.strip()
        return int(float(value)) if not isinstance(value, int) or isinstance(value, bool) else value
    if data_type in (PropertyDataType.FLOAT, PropertyDataType.DOUBLE):
        return float(value)
    if data_type == PropertyDataType.BOOLEAN:
        return coerce_boolean(value)
    return "" if value is None else str(value)
