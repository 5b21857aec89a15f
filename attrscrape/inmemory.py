"""In-process endpoint for tests and local experiments."""
import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from attrscrape.endpoint import (
    AttributeNotFoundError, Connector, Credentials, EndpointConnection, RemoteError, TransportError
)
from attrscrape.objectname import ObjectName, ObjectNamePattern

logger = logging.getLogger(__name__)

NameLike = Union[str, ObjectName]


def _name(name: NameLike) -> ObjectName:
    return name if isinstance(name, ObjectName) else ObjectName.parse(name)


class InMemoryEndpoint:
    """A set of objects with attributes and operations held in process.

    Attribute and operation values may be callables; they are invoked on
    every read. Failures can be injected per attribute or for discovery.
    """

    def __init__(self, credentials: Optional[Credentials] = None):
        self.credentials = credentials
        self.available = True
        self.attributes: Dict[ObjectName, Dict[str, Any]] = {}
        self.operations: Dict[ObjectName, Dict[str, Any]] = {}
        self.failures: Dict[Tuple[ObjectName, str], Exception] = {}
        self.discover_failure: Optional[Exception] = None
        self.calls: List[Tuple[str, str, str]] = []

    def register(
        self,
        name: NameLike,
        attributes: Optional[Dict[str, Any]] = None,
        operations: Optional[Dict[str, Any]] = None
    ) -> ObjectName:
        object_name = _name(name)
        self.attributes.setdefault(object_name, {}).update(attributes or {})
        self.operations.setdefault(object_name, {}).update(operations or {})
        return object_name

    def unregister(self, name: NameLike):
        object_name = _name(name)
        self.attributes.pop(object_name, None)
        self.operations.pop(object_name, None)

    def fail(self, name: NameLike, attribute: str, error: Exception):
        """Make reads of ``attribute`` on ``name`` raise ``error``."""
        self.failures[(_name(name), attribute)] = error


class InMemoryConnection(EndpointConnection):
    """Connection to an InMemoryEndpoint."""

    def __init__(self, endpoint: InMemoryEndpoint):
        self.endpoint = endpoint
        self.closed = False

    def _check_open(self):
        if self.closed or not self.endpoint.available:
            raise TransportError("Connection is closed")

    def discover(self, pattern: ObjectNamePattern) -> List[ObjectName]:
        self._check_open()
        self.endpoint.calls.append(("discover", str(pattern), ""))
        if self.endpoint.discover_failure is not None:
            raise self.endpoint.discover_failure
        names = [name for name in self.endpoint.attributes if pattern.matches(name)]
        return sorted(names, key=lambda n: n.canonical)

    def get_attribute(self, name: ObjectName, attribute: str) -> Any:
        self._check_open()
        self.endpoint.calls.append(("read", str(name), attribute))
        if (name, attribute) in self.endpoint.failures:
            raise self.endpoint.failures[(name, attribute)]
        if name not in self.endpoint.attributes:
            raise RemoteError(f"No such object: {name}", "InstanceNotFoundException")
        attributes = self.endpoint.attributes[name]
        if attribute not in attributes:
            raise AttributeNotFoundError(
                f"No such attribute: {attribute}", "AttributeNotFoundException"
            )
        value = attributes[attribute]
        return value() if callable(value) else value

    def invoke(self, name: ObjectName, operation: str) -> Any:
        self._check_open()
        self.endpoint.calls.append(("exec", str(name), operation))
        operations = self.endpoint.operations.get(name, {})
        if operation not in operations:
            raise RemoteError(f"No such operation: {operation}", "ReflectionException")
        value = operations[operation]
        return value() if callable(value) else value

    def close(self):
        self.closed = True


class InMemoryConnector(Connector):
    """Connector resolving service URLs to InMemoryEndpoint instances."""

    def __init__(self, endpoints: Optional[Dict[str, InMemoryEndpoint]] = None):
        self.endpoints = dict(endpoints or {})
        self.connect_count = 0
        self.last_credentials: Optional[Credentials] = None

    def connect(
        self,
        address: str,
        credentials: Optional[Credentials] = None,
        timeout_s: float = 5.0
    ) -> EndpointConnection:
        self.connect_count += 1
        self.last_credentials = credentials
        endpoint = self.endpoints.get(address)
        if endpoint is None or not endpoint.available:
            raise TransportError(f"Cannot connect to {address}")
        if endpoint.credentials is not None and credentials != endpoint.credentials:
            raise TransportError(f"Authentication to {address} failed")
        logger.debug(f"Connected to in-memory endpoint {address}")
        return InMemoryConnection(endpoint)
