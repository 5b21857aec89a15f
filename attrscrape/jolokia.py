"""Endpoint connections over the Jolokia JSON/HTTP protocol."""
import logging
from typing import Any, Dict, List, Optional

import httpx

from attrscrape.endpoint import (
    AttributeNotFoundError, Connector, Credentials, EndpointConnection, RemoteError, TransportError
)
from attrscrape.objectname import MalformedObjectNameError, ObjectName, ObjectNamePattern
from attrscrape.values import CompositeValue, OpenTypeValue, TabularValue

logger = logging.getLogger(__name__)


def decode_value(value: Any) -> Any:
    """Map a JSON value onto scalars, records and tables."""
    if isinstance(value, dict):
        return CompositeValue({k: decode_value(v) for k, v in value.items()})

    if isinstance(value, list):
        if value and all(isinstance(row, dict) and "key" in row and "value" in row for row in value):
            return TabularValue([
                {k: decode_value(v) for k, v in row.items()} for row in value
            ])
        return OpenTypeValue("array", value)

    return value


class JolokiaConnection(EndpointConnection):
    """Connection to a Jolokia agent."""

    def __init__(self, client: httpx.Client, url: str):
        self.client = client
        self.url = url

    def request(self, payload: Dict[str, Any]) -> Any:
        """POST one request and return the ``value`` of the response."""
        try:
            response = self.client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            raise TransportError(f"Request to {self.url} failed: {e}")

        if response.status_code in (401, 403):
            raise TransportError(f"Request to {self.url} was rejected: HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            raise TransportError(
                f"Invalid response from {self.url}: HTTP {response.status_code}"
            )

        if not isinstance(body, dict):
            raise TransportError(f"Invalid response from {self.url}: expected an object")

        status = body.get("status", response.status_code)
        if status != 200:
            error_type = body.get("error_type") or ""
            error = body.get("error") or f"status {status}"
            if error_type.endswith("AttributeNotFoundException"):
                raise AttributeNotFoundError(error, error_type)
            raise RemoteError(error, error_type)

        return body.get("value")

    def discover(self, pattern: ObjectNamePattern) -> List[ObjectName]:
        found = self.request({"type": "search", "mbean": str(pattern)})
        if not isinstance(found, list):
            raise RemoteError(f"Search for {pattern} returned {type(found).__name__}")

        names = []
        for text in found:
            try:
                names.append(ObjectName.parse(text))
            except MalformedObjectNameError as e:
                logger.warning(f"Ignoring object name returned by {self.url}: {e}")
        return names

    def get_attribute(self, name: ObjectName, attribute: str) -> Any:
        value = self.request({"type": "read", "mbean": str(name), "attribute": attribute})
        return decode_value(value)

    def invoke(self, name: ObjectName, operation: str) -> Any:
        value = self.request({
            "type": "exec",
            "mbean": str(name),
            "operation": operation,
            "arguments": [],
        })
        return decode_value(value)

    def close(self):
        self.client.close()


class JolokiaConnector(Connector):
    """Opens JolokiaConnection instances with httpx."""

    def __init__(self, transport: Optional[httpx.BaseTransport] = None, verify: bool = True):
        self.transport = transport
        self.verify = verify

    def connect(
        self,
        address: str,
        credentials: Optional[Credentials] = None,
        timeout_s: float = 5.0
    ) -> EndpointConnection:
        auth = (credentials.username, credentials.password) if credentials else None
        client = httpx.Client(
            auth=auth,
            timeout=timeout_s,
            transport=self.transport,
            verify=self.verify,
        )
        connection = JolokiaConnection(client, address)

        try:
            version = connection.request({"type": "version"})
        except Exception as e:
            client.close()
            raise TransportError(f"Connecting to {address} failed: {e}")

        if isinstance(version, dict):
            logger.debug(f"Connected to Jolokia agent {version.get('agent')} at {address}")
        return connection
