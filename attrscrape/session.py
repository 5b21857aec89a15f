"""Connection lifecycle for one remote endpoint and the groups read through it."""
import logging
from enum import Enum
from typing import Dict, List, Optional

from attrscrape.config import ConnectionConfig
from attrscrape.definitions import GroupRegistry, ObjectGroupDefinition
from attrscrape.endpoint import Connector, Credentials, EndpointConnection
from attrscrape.errors import ConfigurationError, ConnectionUnusableError, DiscoveryError
from attrscrape.series import MetricFamily

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionSession:
    """Owns one endpoint connection and the ordered object groups that share it.

    The connection is opened lazily on the first poll. When the transport
    fails while a group is processed the connection is torn down, the
    remaining groups are skipped for this poll and the next poll reconnects
    from scratch.
    """

    def __init__(
        self,
        service_url: str,
        groups: List[ObjectGroupDefinition],
        connector: Connector,
        host: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout_s: float = 5.0,
        labels: Optional[Dict[str, str]] = None,
        labels_from: Optional[Dict[str, str]] = None,
        metric_prefix: Optional[str] = None
    ):
        self.service_url = service_url
        self.host = host
        self.groups = list(groups)
        self.connector = connector
        self.credentials = Credentials.from_config(username, password)
        self.timeout_s = timeout_s
        self.labels = dict(labels or {})
        self.labels_from = dict(labels_from or {})
        self.metric_prefix = metric_prefix

        self.state = ConnectionState.DISCONNECTED
        self._connection: Optional[EndpointConnection] = None

        # Counters exposed through the control API
        self.connect_failures = 0
        self.connection_losses = 0

    @classmethod
    def from_config(
        cls,
        config: ConnectionConfig,
        registry: GroupRegistry,
        connector: Connector
    ) -> "ConnectionSession":
        """Bind a connection block to already registered groups."""
        groups = []
        for alias in config.collect:
            group = registry.get(alias)
            if group is None:
                raise ConfigurationError(
                    f"No such object group defined: {alias}. Please make sure all "
                    f"object group blocks appear before (above) all connection blocks."
                )
            logger.debug(f"Connection {config.host or config.service_url}: Add {alias}")
            groups.append(group)

        return cls(
            service_url=config.service_url,
            groups=groups,
            connector=connector,
            host=config.host,
            username=config.user,
            password=config.password,
            timeout_s=config.timeout_s,
            labels=config.labels,
            labels_from=config.labels_from,
            metric_prefix=config.metric_prefix,
        )

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def ensure_connected(self) -> bool:
        """Open the connection unless it is already open; True when connected."""
        if self.connected:
            return True

        self.state = ConnectionState.CONNECTING
        try:
            self._connection = self.connector.connect(
                self.service_url, self.credentials, timeout_s=self.timeout_s
            )
        except Exception as e:
            logger.error(f"Connection {self}: Creating connection failed: {e}")
            self.connect_failures += 1
            self.disconnect()
            return False

        self.state = ConnectionState.CONNECTED
        logger.info(f"Connection {self}: connected")
        return True

    def disconnect(self):
        """Close the transport; errors while closing are ignored."""
        connection, self._connection = self._connection, None
        self.state = ConnectionState.DISCONNECTED
        if connection is None:
            return
        try:
            connection.close()
        except Exception as e:
            logger.debug(f"Connection {self}: error while closing: {e}")

    def poll(self) -> List[MetricFamily]:
        """Run every group in order and return the collected families.

        Families gathered before a connection failure are kept.
        """
        if not self.ensure_connected():
            return []

        logger.debug(f"Connection {self}: Reading {len(self.groups)} object groups")

        families: List[MetricFamily] = []
        for group in self.groups:
            try:
                families.extend(group.query(
                    self._connection,
                    connection_prefix=self.metric_prefix,
                    connection_labels=self.labels,
                    connection_labels_from=self.labels_from,
                ))
            except DiscoveryError as e:
                logger.error(f"Object group {group.alias}: {e}")
            except ConnectionUnusableError as e:
                logger.error(
                    f"Connection {self}: {e}; closing the connection and skipping the remaining groups"
                )
                self.connection_losses += 1
                self.disconnect()
                break
            except Exception as e:
                logger.error(
                    f"Connection {self}: unexpected error in object group {group.alias}: {e}",
                    exc_info=True
                )
                self.connection_losses += 1
                self.disconnect()
                break

        return families

    def status(self) -> Dict:
        return {
            "service_url": self.service_url,
            "host": self.host,
            "state": self.state.value,
            "groups": [group.alias for group in self.groups],
            "connect_failures": self.connect_failures,
            "connection_losses": self.connection_losses,
        }

    def __str__(self) -> str:
        return self.host or self.service_url
