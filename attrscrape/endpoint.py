"""Interface to remote manageable endpoints."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional

from attrscrape.objectname import ObjectName, ObjectNamePattern

# Identity used when a password is configured without a user name.
DEFAULT_USERNAME = "monitorRole"


class EndpointError(Exception):
    """Base class for errors raised by an endpoint connection."""
    pass


class TransportError(EndpointError):
    """The transport failed; the connection is no longer usable."""
    pass


class RemoteError(EndpointError):
    """The endpoint answered the request with an error."""

    def __init__(self, message: str, error_type: Optional[str] = None):
        super().__init__(message)
        self.error_type = error_type


class AttributeNotFoundError(RemoteError):
    """The requested attribute does not exist on the object."""
    pass


@dataclass(frozen=True)
class Credentials:
    """User name and password passed through to the endpoint."""
    username: str
    password: str

    @classmethod
    def from_config(cls, username: Optional[str], password: Optional[str]) -> Optional["Credentials"]:
        if password is None:
            return None
        return cls(username or DEFAULT_USERNAME, password)

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


class EndpointConnection(ABC):
    """An open connection to one remote endpoint."""

    @abstractmethod
    def discover(self, pattern: ObjectNamePattern) -> List[ObjectName]:
        """Return every object whose name matches the pattern."""
        pass

    @abstractmethod
    def get_attribute(self, name: ObjectName, attribute: str) -> Any:
        """Fetch one attribute value of an object."""
        pass

    @abstractmethod
    def invoke(self, name: ObjectName, operation: str) -> Any:
        """Invoke a zero-argument operation on an object and return its result."""
        pass

    @abstractmethod
    def close(self):
        """Release the underlying transport."""
        pass


class Connector(ABC):
    """Factory that opens endpoint connections."""

    @abstractmethod
    def connect(
        self,
        address: str,
        credentials: Optional[Credentials] = None,
        timeout_s: float = 5.0
    ) -> EndpointConnection:
        """Open a connection or raise EndpointError."""
        pass
