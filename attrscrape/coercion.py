"""Conversion of remote scalar values into metric values.

Every source value is first classified into a :class:`ValueKind`; one
conversion function per kind then produces the metric representation. The
output domain is always the configured one, the source value's shape never
changes it.

Integer representation is a signed 64-bit integer, floating representation a
double. Arbitrary-precision integers outside the 64-bit range wrap around
without an overflow check.
"""
import re
from decimal import Decimal
from enum import Enum
from fractions import Fraction
from multiprocessing.sharedctypes import Synchronized
from typing import Any, Callable, Dict, Tuple

import numpy as np

from attrscrape.errors import CoercionError
from attrscrape.series import MetricType, Number
from attrscrape.values import describe

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1

# Text forms accepted for the integer and floating representations; ASCII only
INTEGER_TEXT = re.compile(r"[+-]?[0-9]+\Z")
FLOATING_TEXT = re.compile(
    r"[+-]?(?:NaN|Infinity|(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?[fFdD]?)\Z"
)
CONTROL_AND_SPACE = "".join(chr(c) for c in range(0x21))


class ValueKind(Enum):
    """Source value classes understood by the coercer."""
    INTEGER = "integer"
    FLOATING = "floating"
    BIG_INTEGER = "big_integer"
    BIG_DECIMAL = "big_decimal"
    BOOLEAN = "boolean"
    TEXT = "text"
    COUNTER_CELL = "counter_cell"
    UNSUPPORTED = "unsupported"


def classify(value: Any) -> ValueKind:
    """Classify a source value."""
    # bool is a subclass of int, check it first
    if isinstance(value, (bool, np.bool_)):
        return ValueKind.BOOLEAN
    if isinstance(value, np.integer):
        return ValueKind.INTEGER
    if isinstance(value, int):
        if INT64_MIN <= value <= INT64_MAX:
            return ValueKind.INTEGER
        return ValueKind.BIG_INTEGER
    if isinstance(value, (float, np.floating)):
        return ValueKind.FLOATING
    if isinstance(value, (Decimal, Fraction)):
        return ValueKind.BIG_DECIMAL
    if isinstance(value, str):
        return ValueKind.TEXT
    if isinstance(value, Synchronized):
        return ValueKind.COUNTER_CELL
    return ValueKind.UNSUPPORTED


def wrap_int64(value: int) -> int:
    """Reduce an integer to its low 64 bits, interpreted as signed."""
    return ((value - INT64_MIN) % (2 ** 64)) + INT64_MIN


def _prefers_integer(metric_type: MetricType) -> bool:
    return metric_type is MetricType.COUNTER


def _from_integer(value: Any, metric_type: MetricType) -> Number:
    return int(value)


def _from_floating(value: Any, metric_type: MetricType) -> Number:
    return float(value)


def _from_big_integer(value: Any, metric_type: MetricType) -> Number:
    return wrap_int64(int(value))


def _from_big_decimal(value: Any, metric_type: MetricType) -> Number:
    return float(value)


def _from_boolean(value: Any, metric_type: MetricType) -> Number:
    if _prefers_integer(metric_type):
        return 1 if value else 0
    return 1.0 if value else 0.0


def _from_text(value: str, metric_type: MetricType) -> Number:
    if _prefers_integer(metric_type):
        if not INTEGER_TEXT.match(value):
            raise CoercionError(f"Cannot parse {value!r} as an integer")
        parsed = int(value)
        if not INT64_MIN <= parsed <= INT64_MAX:
            raise CoercionError(f"Integer {value!r} is out of range")
        return parsed

    # Surrounding whitespace and control characters are ignored
    text = value.strip(CONTROL_AND_SPACE)
    if not FLOATING_TEXT.match(text):
        raise CoercionError(f"Cannot parse {value!r} as a floating point number")
    return float(text.rstrip("fFdD"))


def _from_counter_cell(cell: Synchronized, metric_type: MetricType) -> Number:
    with cell.get_lock():
        current = cell.value
    kind = classify(current)
    if kind in (ValueKind.INTEGER, ValueKind.BIG_INTEGER):
        return _COERCERS[kind](current, metric_type)
    if kind is ValueKind.FLOATING:
        return float(current)
    raise CoercionError(f"Unsupported value type in shared cell: {describe(current)}")


_COERCERS: Dict[ValueKind, Callable[[Any, MetricType], Number]] = {
    ValueKind.INTEGER: _from_integer,
    ValueKind.FLOATING: _from_floating,
    ValueKind.BIG_INTEGER: _from_big_integer,
    ValueKind.BIG_DECIMAL: _from_big_decimal,
    ValueKind.BOOLEAN: _from_boolean,
    ValueKind.TEXT: _from_text,
    ValueKind.COUNTER_CELL: _from_counter_cell,
}


def coerce(value: Any, metric_type: MetricType) -> Tuple[MetricType, Number]:
    """Convert a source value into ``(domain, number)`` for the given domain.

    Raises:
        CoercionError: the value has an unsupported type or cannot be parsed.
    """
    kind = classify(value)
    converter = _COERCERS.get(kind)
    if converter is None:
        raise CoercionError(f"Unsupported value type: {describe(value)}")
    try:
        return metric_type, converter(value, metric_type)
    except (ValueError, OverflowError, TypeError) as e:
        raise CoercionError(f"Cannot convert {describe(value)} value: {e}")
