"""Dynamic value model of the expression language.

Evaluated expressions produce plain Python values: ``None``, ``bool``,
``int``, ``float``, ``str``, mappings and lists. Pydantic models (run records)
behave as mappings keyed by their field aliases. All coercion rules live in
this module so the evaluator and the built-in functions agree on them.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any

from pydantic import BaseModel

from gharun.expressions.errors import ExpressionEvaluationError

__all__ = [
    "ValueKind",
    "kind_of",
    "is_truthy",
    "to_number",
    "get_property",
    "get_index",
    "compare",
    "loose_equals",
    "stringify",
    "to_json",
    "to_plain",
]

_NUMERIC_PATTERN = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_HEX_PATTERN = re.compile(r"^0x[0-9a-fA-F]+$")


class ValueKind(str, Enum):
    """Kind of a dynamic value, used to pick comparison and coercion rules."""

    NULL = "null"
    BOOLEAN = "boolean"
    NUMBER = "number"
    STRING = "string"
    ARRAY = "array"
    OBJECT = "object"


def kind_of(value: Any) -> ValueKind:
    """Classify a value.

    Raises:
        ExpressionEvaluationError: If the value is not part of the value model.
    """
    if value is None:
        return ValueKind.NULL
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, (int, float)):
        return ValueKind.NUMBER
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, (Mapping, BaseModel)):
        return ValueKind.OBJECT
    if isinstance(value, Sequence):
        return ValueKind.ARRAY
    raise ExpressionEvaluationError(
        f"Unsupported value of type {type(value).__name__}"
    )


def is_truthy(value: Any) -> bool:
    """Coerce a value to a boolean.

    ``false``, ``null``, ``0``, ``NaN`` and ``''`` are falsy; everything else,
    including empty objects and arrays, is truthy.
    """
    kind = kind_of(value)
    if kind is ValueKind.NULL:
        return False
    if kind is ValueKind.BOOLEAN:
        return bool(value)
    if kind is ValueKind.NUMBER:
        return not (value == 0 or math.isnan(value))
    if kind is ValueKind.STRING:
        return value != ""
    return True


def to_number(value: Any) -> int | float:
    """Coerce a value to a number.

    ``null`` and ``''`` are 0, booleans are 1/0, numeric strings (decimal,
    exponent or ``0x`` hex, surrounding whitespace allowed) parse, and
    everything else is ``NaN``.
    """
    kind = kind_of(value)
    if kind is ValueKind.NULL:
        return 0
    if kind is ValueKind.BOOLEAN:
        return 1 if value else 0
    if kind is ValueKind.NUMBER:
        return value
    if kind is ValueKind.STRING:
        text = value.strip()
        if text == "":
            return 0
        if _HEX_PATTERN.match(text):
            return int(text, 16)
        if _NUMERIC_PATTERN.match(text):
            number = float(text)
            return int(number) if number.is_integer() and "." not in text else number
        if text in ("Infinity", "+Infinity"):
            return math.inf
        if text == "-Infinity":
            return -math.inf
    return math.nan


def get_property(value: Any, name: str) -> Any:
    """Look up ``name`` on a value.

    Mapping keys and model field aliases match case-insensitively. On an
    array, the lookup maps over the elements and drops missing results.
    Anything else yields ``None``.
    """
    if isinstance(value, Mapping):
        if name in value:
            return value[name]
        lowered = name.lower()
        for key, item in value.items():
            if isinstance(key, str) and key.lower() == lowered:
                return item
        return None
    if isinstance(value, BaseModel):
        lowered = name.lower()
        for field_name, field in type(value).model_fields.items():
            alias = field.alias or field_name
            if lowered in (alias.lower(), field_name.lower()):
                return getattr(value, field_name)
        return None
    if kind_of(value) is ValueKind.ARRAY:
        found = (get_property(item, name) for item in value)
        return [item for item in found if item is not None]
    return None


def get_index(value: Any, index: Any) -> Any:
    """Index a value: numbers index arrays, strings look up properties."""
    index_kind = kind_of(index)
    if index_kind is ValueKind.STRING:
        return get_property(value, index)
    if kind_of(value) is not ValueKind.ARRAY or index_kind is not ValueKind.NUMBER:
        return None
    if isinstance(index, float) and not index.is_integer():
        return None
    position = int(index)
    if position < 0 or position >= len(value):
        return None
    return value[position]


def compare(operator: str, left: Any, right: Any) -> bool:
    """Apply a comparison operator with the loose coercion rules.

    Operands of different kinds are both coerced to numbers. Strings compare
    case-insensitively; ``null``/``null`` compares as 0 to 0. Objects and
    arrays of the same kind cannot be compared.

    Raises:
        ExpressionEvaluationError: For object or array operands of equal kind,
            or an unknown operator.
    """
    left_kind = kind_of(left)
    right_kind = kind_of(right)

    if left_kind is not right_kind:
        return _apply(operator, to_number(left), to_number(right))
    if left_kind is ValueKind.STRING:
        return _apply(operator, left.casefold(), right.casefold())
    if left_kind in (ValueKind.NULL, ValueKind.BOOLEAN, ValueKind.NUMBER):
        return _apply(operator, to_number(left), to_number(right))
    raise ExpressionEvaluationError(
        f"Cannot compare {left_kind.value} with {right_kind.value} using '{operator}'"
    )


def _apply(operator: str, left: Any, right: Any) -> bool:
    if operator == "==":
        return bool(left == right)
    if operator == "!=":
        return bool(left != right)
    if operator == "<":
        return bool(left < right)
    if operator == "<=":
        return bool(left <= right)
    if operator == ">":
        return bool(left > right)
    if operator == ">=":
        return bool(left >= right)
    raise ExpressionEvaluationError(f"Unknown comparison operator '{operator}'")


def loose_equals(left: Any, right: Any) -> bool:
    """``==`` that also accepts objects and arrays (equal by value)."""
    left_kind = kind_of(left)
    if left_kind is kind_of(right) and left_kind in (ValueKind.ARRAY, ValueKind.OBJECT):
        return bool(to_plain(left) == to_plain(right))
    return compare("==", left, right)


def to_plain(value: Any) -> Any:
    """Convert models and tuples to plain dicts and lists."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, Mapping):
        return {str(key): to_plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(item) for item in value]
    return value


def stringify(value: Any) -> str:
    """Render a value the way string interpolation shows it.

    ``null`` is ``''``, booleans are ``true``/``false``, integral floats drop
    their fraction, and objects and arrays render as compact JSON.
    """
    kind = kind_of(value)
    if kind is ValueKind.NULL:
        return ""
    if kind is ValueKind.BOOLEAN:
        return "true" if value else "false"
    if kind is ValueKind.NUMBER:
        if isinstance(value, float):
            if math.isnan(value):
                return "NaN"
            if math.isinf(value):
                return "Infinity" if value > 0 else "-Infinity"
            if value.is_integer():
                return str(int(value))
        return str(value)
    if kind is ValueKind.STRING:
        return value
    return to_json(value)


def to_json(value: Any) -> str:
    """Serialize a value as compact JSON with sorted object keys."""
    return json.dumps(
        to_plain(value),
        separators=(",", ":"),
        sort_keys=True,
        ensure_ascii=False,
    )
