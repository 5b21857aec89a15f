"""Tests for converting remote scalar values into metric values."""
from decimal import Decimal
from fractions import Fraction
from multiprocessing.sharedctypes import Value

import numpy as np
import pytest

from attrscrape.coercion import INT64_MAX, INT64_MIN, ValueKind, classify, coerce, wrap_int64
from attrscrape.errors import CoercionError
from attrscrape.series import MetricType
from attrscrape.values import CompositeValue


def test_classify_source_values():
    """Every supported source class maps to its kind."""
    assert classify(True) is ValueKind.BOOLEAN
    assert classify(np.bool_(False)) is ValueKind.BOOLEAN
    assert classify(7) is ValueKind.INTEGER
    assert classify(np.int8(7)) is ValueKind.INTEGER
    assert classify(np.uint32(7)) is ValueKind.INTEGER
    assert classify(2 ** 70) is ValueKind.BIG_INTEGER
    assert classify(1.5) is ValueKind.FLOATING
    assert classify(np.float32(1.5)) is ValueKind.FLOATING
    assert classify(Decimal("1.25")) is ValueKind.BIG_DECIMAL
    assert classify(Fraction(1, 4)) is ValueKind.BIG_DECIMAL
    assert classify("12") is ValueKind.TEXT
    assert classify(Value("q", 3)) is ValueKind.COUNTER_CELL
    assert classify(None) is ValueKind.UNSUPPORTED
    assert classify(CompositeValue({"a": 1})) is ValueKind.UNSUPPORTED


def test_domain_is_always_the_configured_one():
    for metric_type in MetricType:
        domain, _ = coerce(3, metric_type)
        assert domain is metric_type


def test_integers_keep_integer_representation():
    assert coerce(42, MetricType.GAUGE) == (MetricType.GAUGE, 42)
    domain, value = coerce(np.int16(-5), MetricType.COUNTER)
    assert value == -5
    assert type(value) is int


def test_floating_values():
    _, value = coerce(np.float32(0.5), MetricType.GAUGE)
    assert value == 0.5
    assert type(value) is float
    _, value = coerce(2.5, MetricType.COUNTER)
    assert value == 2.5


def test_big_integers_wrap_to_64_bits():
    assert wrap_int64(INT64_MAX + 1) == INT64_MIN
    assert wrap_int64(-1) == -1
    assert coerce(2 ** 64 + 5, MetricType.COUNTER) == (MetricType.COUNTER, 5)


def test_big_decimals_become_floating():
    _, value = coerce(Decimal("3.75"), MetricType.COUNTER)
    assert value == 3.75
    assert type(value) is float
    assert coerce(Fraction(1, 2), MetricType.GAUGE)[1] == 0.5


def test_booleans_follow_the_domain():
    _, value = coerce(True, MetricType.COUNTER)
    assert value == 1
    assert type(value) is int
    _, value = coerce(False, MetricType.GAUGE)
    assert value == 0.0
    assert type(value) is float
    assert coerce(True, MetricType.UNKNOWN)[1] == 1.0


def test_text_parsing_follows_the_domain():
    _, value = coerce("12.5", MetricType.GAUGE)
    assert value == 12.5
    _, value = coerce("12", MetricType.UNKNOWN)
    assert type(value) is float
    _, value = coerce("-12", MetricType.COUNTER)
    assert value == -12
    assert type(value) is int
    assert coerce(" 2.5d\n", MetricType.GAUGE)[1] == 2.5
    assert coerce("1e3", MetricType.GAUGE)[1] == 1000.0
    assert coerce("-Infinity", MetricType.GAUGE)[1] == float("-inf")


@pytest.mark.parametrize("text,metric_type", [
    ("bad", MetricType.GAUGE),
    ("", MetricType.UNKNOWN),
    ("1.5", MetricType.COUNTER),
    (str(2 ** 64), MetricType.COUNTER),
    (" 12 ", MetricType.COUNTER),
    ("1_000", MetricType.COUNTER),
    ("1_000", MetricType.GAUGE),
    ("\u0661\u0662", MetricType.COUNTER),
    ("\u0661\u0662", MetricType.GAUGE),
    ("inf", MetricType.GAUGE),
    ("nan", MetricType.UNKNOWN),
    ("0x10", MetricType.GAUGE),
])
def test_unparsable_text_is_rejected(text, metric_type):
    with pytest.raises(CoercionError):
        coerce(text, metric_type)


def test_shared_counter_cells_are_read():
    cell = Value("q", 17)
    assert coerce(cell, MetricType.COUNTER) == (MetricType.COUNTER, 17)
    cell = Value("d", 0.25)
    assert coerce(cell, MetricType.GAUGE) == (MetricType.GAUGE, 0.25)


def test_unsupported_values_are_rejected():
    with pytest.raises(CoercionError, match="Unsupported value type"):
        coerce([1, 2], MetricType.GAUGE)
    with pytest.raises(CoercionError, match="Unsupported value type"):
        coerce(None, MetricType.GAUGE)


def test_conversion_failures_become_coercion_errors():
    """Numeric conversions that raise are reported as coercion errors."""
    with pytest.raises(CoercionError):
        coerce(Decimal("sNaN"), MetricType.GAUGE)
    with pytest.raises(CoercionError):
        coerce(Fraction(10 ** 400), MetricType.GAUGE)
