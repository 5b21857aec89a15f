"""Object identifiers: concrete object names and wildcard patterns."""
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Dict, List, Optional, Tuple


class MalformedObjectNameError(ValueError):
    """Raised when a string is not a valid object name or pattern."""


def _split_properties(text: str) -> List[str]:
    """Split a key property list on commas that are not inside quotes."""
    parts = []
    current = []
    in_quotes = False
    escaped = False
    for char in text:
        if escaped:
            current.append(char)
            escaped = False
        elif char == "\\" and in_quotes:
            current.append(char)
            escaped = True
        elif char == '"':
            current.append(char)
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    if in_quotes:
        raise MalformedObjectNameError(f"Unterminated quote in key property list: {text}")
    parts.append("".join(current))
    return parts


def _parse(text: str, allow_wildcards: bool) -> Tuple[str, Tuple[Tuple[str, str], ...], bool]:
    if not isinstance(text, str) or ":" not in text:
        raise MalformedObjectNameError(f"Domain part must be followed by ':' in {text!r}")

    domain, _, property_text = text.partition(":")
    if not allow_wildcards and any(c in domain for c in "*?"):
        raise MalformedObjectNameError(f"Wildcards are not allowed in object name {text!r}")

    properties: List[Tuple[str, str]] = []
    seen = set()
    list_wildcard = False
    for part in _split_properties(property_text) if property_text else []:
        if part == "*":
            if not allow_wildcards:
                raise MalformedObjectNameError(f"Wildcards are not allowed in object name {text!r}")
            list_wildcard = True
            continue
        key, sep, value = part.partition("=")
        if not sep or not key or not value:
            raise MalformedObjectNameError(f"Invalid key property {part!r} in {text!r}")
        if key in seen:
            raise MalformedObjectNameError(f"Duplicate key property {key!r} in {text!r}")
        if not allow_wildcards and not value.startswith('"') and any(c in value for c in "*?"):
            raise MalformedObjectNameError(f"Wildcards are not allowed in object name {text!r}")
        seen.add(key)
        properties.append((key, value))

    if not properties and not list_wildcard:
        raise MalformedObjectNameError(f"Key property list cannot be empty in {text!r}")

    return domain, tuple(properties), list_wildcard


@dataclass(frozen=True)
class ObjectName:
    """A concrete object identifier: domain plus ordered key properties."""
    domain: str
    properties: Tuple[Tuple[str, str], ...]

    @classmethod
    def parse(cls, text: str) -> "ObjectName":
        domain, properties, _ = _parse(text, allow_wildcards=False)
        return cls(domain, properties)

    def key_property(self, name: str) -> Optional[str]:
        """Return the value of a key property, or None when absent."""
        for key, value in self.properties:
            if key == name:
                return value
        return None

    def key_properties(self) -> Dict[str, str]:
        return dict(self.properties)

    @property
    def canonical(self) -> str:
        """String form with key properties sorted by key."""
        props = ",".join(f"{k}={v}" for k, v in sorted(self.properties))
        return f"{self.domain}:{props}"

    def __str__(self) -> str:
        props = ",".join(f"{k}={v}" for k, v in self.properties)
        return f"{self.domain}:{props}"


@dataclass(frozen=True)
class ObjectNamePattern:
    """Domain and key property filter used to enumerate objects.

    ``*`` and ``?`` are accepted in the domain and in property values. A
    trailing ``*`` element in the property list allows matched names to carry
    additional properties; without it the property sets must be equal.
    """
    domain: str
    properties: Tuple[Tuple[str, str], ...]
    property_list_wildcard: bool = False

    @classmethod
    def parse(cls, text: str) -> "ObjectNamePattern":
        domain, properties, list_wildcard = _parse(text, allow_wildcards=True)
        return cls(domain, properties, list_wildcard)

    @property
    def is_pattern(self) -> bool:
        if self.property_list_wildcard or any(c in self.domain for c in "*?"):
            return True
        return any(
            not value.startswith('"') and any(c in value for c in "*?")
            for _, value in self.properties
        )

    def matches(self, name: ObjectName) -> bool:
        """Check whether a concrete object name satisfies this pattern."""
        if not fnmatchcase(name.domain, self.domain or "*"):
            return False

        candidate = name.key_properties()
        for key, wanted in self.properties:
            actual = candidate.get(key)
            if actual is None or not fnmatchcase(actual, wanted):
                return False

        if not self.property_list_wildcard and len(candidate) != len(self.properties):
            return False
        return True

    def __str__(self) -> str:
        elements = [f"{k}={v}" for k, v in self.properties]
        if self.property_list_wildcard:
            elements.append("*")
        return f"{self.domain}:{','.join(elements)}"
