"""Structured values returned by remote attribute queries."""
from collections.abc import Mapping
from typing import Any, Iterator, List, Optional


class CompositeValue(Mapping):
    """Record-like value: named fields mapping to structured values."""

    def __init__(self, fields: Optional[Mapping] = None, type_name: str = "composite"):
        self._fields = dict(fields or {})
        self.type_name = type_name

    def __getitem__(self, key: str) -> Any:
        return self._fields[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        return f"CompositeValue({self._fields!r})"


class TabularValue:
    """Table-like value: rows that each carry a key field and a value field."""

    def __init__(
        self,
        rows: Optional[List[Mapping]] = None,
        key_field: str = "key",
        value_field: str = "value",
        type_name: str = "tabular"
    ):
        self.rows = [row if isinstance(row, CompositeValue) else CompositeValue(row) for row in rows or []]
        self.key_field = key_field
        self.value_field = value_field
        self.type_name = type_name

    def lookup(self, key: str) -> List[Any]:
        """Return the value field of every row whose key field equals ``key``."""
        found = []
        for row in self.rows:
            if self.key_field not in row or self.value_field not in row:
                continue
            row_key = row[self.key_field]
            if row_key is not None and str(row_key) == key:
                found.append(row[self.value_field])
        return found

    def __len__(self) -> int:
        return len(self.rows)

    def __repr__(self) -> str:
        return f"TabularValue(rows={len(self.rows)})"


class OpenTypeValue:
    """A value of a remote type this collector cannot descend into."""

    def __init__(self, type_name: str, raw: Any = None):
        self.type_name = type_name
        self.raw = raw

    def __repr__(self) -> str:
        return f"OpenTypeValue({self.type_name!r})"


def is_structured(value: Any) -> bool:
    """True for record and table values."""
    return isinstance(value, (CompositeValue, TabularValue))


def describe(value: Any) -> str:
    """Short type description used in log messages."""
    if value is None:
        return "null"
    if isinstance(value, (CompositeValue, TabularValue, OpenTypeValue)):
        return value.type_name
    return type(value).__name__
