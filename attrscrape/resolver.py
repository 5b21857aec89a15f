"""Resolution of dotted attribute paths against remote objects."""
import logging
from collections import deque
from typing import Any, Deque, List

from attrscrape.endpoint import AttributeNotFoundError, EndpointConnection, RemoteError
from attrscrape.errors import ResolutionError
from attrscrape.log import NOTICE
from attrscrape.objectname import ObjectName
from attrscrape.values import CompositeValue, OpenTypeValue, TabularValue, describe, is_structured

logger = logging.getLogger(__name__)


def split_path(path: str) -> List[str]:
    """Split a dotted attribute path into its segments."""
    segments = path.split(".")
    if not path or any(not segment for segment in segments):
        raise ValueError(f"Invalid attribute path: {path!r}")
    return segments


def fetch_base_attribute(conn: EndpointConnection, name: ObjectName, attribute: str) -> Any:
    """Read an attribute, falling back to a zero-argument operation of the same name.

    TransportError is not handled here and propagates to the caller.
    """
    try:
        return conn.get_attribute(name, attribute)
    except AttributeNotFoundError:
        logger.debug(f"Attribute {attribute} not found on {name}, invoking it as an operation")
    except RemoteError as e:
        raise ResolutionError(f"Reading attribute {attribute} of {name} failed: {e}")

    try:
        return conn.invoke(name, attribute)
    except RemoteError as e:
        raise ResolutionError(f"Reading attribute {attribute} of {name} failed: {e}")


def _descend(value: Any, segment: str, path: str, name: ObjectName) -> Any:
    if isinstance(value, CompositeValue):
        if segment not in value:
            raise ResolutionError(f"No field {segment!r} in {path} of {name}")
        return value[segment]

    if isinstance(value, TabularValue):
        matches = value.lookup(segment)
        if len(matches) != 1:
            raise ResolutionError(
                f"Table {path} of {name} has {len(matches)} rows with key {segment!r}"
            )
        return matches[0]

    if isinstance(value, OpenTypeValue):
        logger.log(NOTICE, f"Handling of open type {value.type_name!r} is not implemented ({path} of {name})")
        raise ResolutionError(f"Cannot descend into open type {value.type_name} at {path} of {name}")

    raise ResolutionError(
        f"Cannot descend into value of type {describe(value)} at {path} of {name}"
    )


def resolve(conn: EndpointConnection, name: ObjectName, path: str) -> Any:
    """Resolve ``path`` on object ``name`` and return the scalar leaf.

    The first segment names the base attribute; each further segment selects
    a record field or the value of the single table row whose key equals it.

    Raises:
        ResolutionError: the path cannot be resolved to a scalar.
        TransportError: the connection failed while fetching the attribute.
    """
    segments: Deque[str] = deque(split_path(path))
    attribute = segments.popleft()
    value = fetch_base_attribute(conn, name, attribute)

    walked = attribute
    while segments:
        segment = segments.popleft()
        value = _descend(value, segment, walked, name)
        walked = f"{walked}.{segment}"

    if value is None:
        raise ResolutionError(f"Attribute {path} of {name} has no value")
    if is_structured(value):
        raise ResolutionError(
            f"Attribute {path} of {name} is a {describe(value)} value, not a scalar"
        )
    if isinstance(value, OpenTypeValue):
        logger.log(NOTICE, f"Handling of open type {value.type_name!r} is not implemented ({path} of {name})")
        raise ResolutionError(f"Attribute {path} of {name} has unsupported open type {value.type_name}")
    return value
