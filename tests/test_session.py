"""Tests for the connection session lifecycle."""
from decimal import Decimal

import pytest

from attrscrape.config import ConnectionConfig
from attrscrape.definitions import GroupRegistry, MetricDefinition, ObjectGroupDefinition
from attrscrape.endpoint import DEFAULT_USERNAME, Credentials, RemoteError, TransportError
from attrscrape.errors import ConfigurationError
from attrscrape.inmemory import InMemoryConnector, InMemoryEndpoint
from attrscrape.objectname import ObjectNamePattern
from attrscrape.series import MetricType
from attrscrape.session import ConnectionSession, ConnectionState

SERVICE_URL = "mem://app-1"


def group(alias, object_name, attribute):
    return ObjectGroupDefinition(
        alias=alias,
        pattern=ObjectNamePattern.parse(object_name),
        metrics=[MetricDefinition(f"{alias}_value", attribute, MetricType.GAUGE)],
    )


@pytest.fixture
def groups(endpoint):
    endpoint.register("app:type=First", {"Value": 1})
    endpoint.register("app:type=Second", {"Value": 2})
    endpoint.register("app:type=Third", {"Value": 3})
    return [
        group("first", "app:type=First", "Value"),
        group("second", "app:type=Second", "Value"),
        group("third", "app:type=Third", "Value"),
    ]


def test_connects_lazily(connector, groups):
    session = ConnectionSession(SERVICE_URL, groups, connector)
    assert connector.connect_count == 0
    assert session.state is ConnectionState.DISCONNECTED

    families = session.poll()
    assert [f.name for f in families] == ["first_value", "second_value", "third_value"]
    assert session.connected

    session.poll()
    assert connector.connect_count == 1


def test_credentials_default_user():
    assert Credentials.from_config(None, None) is None
    assert Credentials.from_config(None, "secret") == Credentials(DEFAULT_USERNAME, "secret")
    assert "secret" not in repr(Credentials("admin", "secret"))


def test_credentials_are_passed_through(endpoint, groups):
    endpoint.credentials = Credentials(DEFAULT_USERNAME, "secret")
    connector = InMemoryConnector({SERVICE_URL: endpoint})

    session = ConnectionSession(SERVICE_URL, groups, connector, password="secret")
    assert session.poll()
    assert connector.last_credentials == Credentials("monitorRole", "secret")

    bad = ConnectionSession(SERVICE_URL, groups, connector, username="other", password="secret")
    assert bad.poll() == []
    assert bad.connect_failures == 1


def test_connect_failure_yields_nothing_and_retries():
    endpoint = InMemoryEndpoint()
    endpoint.available = False
    connector = InMemoryConnector({SERVICE_URL: endpoint})
    session = ConnectionSession(SERVICE_URL, [group("g", "app:type=X", "V")], connector)

    assert session.poll() == []
    assert session.state is ConnectionState.DISCONNECTED
    assert session.poll() == []
    assert connector.connect_count == 2
    assert session.connect_failures == 2


def test_transport_failure_keeps_earlier_groups(endpoint, connector, groups):
    """Groups after a transport failure are skipped until the next poll reconnects."""
    endpoint.fail("app:type=Second", "Value", TransportError("reset by peer"))
    session = ConnectionSession(SERVICE_URL, groups, connector)

    families = session.poll()

    assert [f.name for f in families] == ["first_value"]
    assert not session.connected
    assert session.connection_losses == 1
    assert ("read", "app:type=Third", "Value") not in endpoint.calls

    endpoint.failures.clear()
    families = session.poll()
    assert [f.name for f in families] == ["first_value", "second_value", "third_value"]
    assert connector.connect_count == 2


def test_discovery_error_is_isolated_to_its_group(endpoint, connector, groups):
    session = ConnectionSession(SERVICE_URL, groups, connector)
    session.poll()

    endpoint.discover_failure = RemoteError("rejected")
    assert session.poll() == []
    assert session.connected

    endpoint.discover_failure = None
    assert len(session.poll()) == 3


def test_from_config_binds_registered_groups(connector, groups):
    registry = GroupRegistry(groups)
    config = ConnectionConfig(service_url=SERVICE_URL, collect=["third", "first"], labels={"env": "test"})

    session = ConnectionSession.from_config(config, registry, connector)

    assert [g.alias for g in session.groups] == ["third", "first"]
    families = session.poll()
    assert [f.name for f in families] == ["third_value", "first_value"]
    assert families[0].metrics[0].labels == {"env": "test"}


def test_from_config_rejects_unknown_alias(connector):
    config = ConnectionConfig(service_url=SERVICE_URL, collect=["later"])
    with pytest.raises(ConfigurationError, match="appear before"):
        ConnectionSession.from_config(config, GroupRegistry(), connector)


def test_status(connector, groups):
    session = ConnectionSession(SERVICE_URL, groups, connector)
    session.poll()
    status = session.status()
    assert status["state"] == "connected"
    assert status["groups"] == ["first", "second", "third"]
    session.disconnect()
    assert session.status()["state"] == "disconnected"


def test_unconvertible_value_keeps_the_connection(endpoint, connector):
    """A value that fails numeric conversion only skips its own metric."""
    endpoint.register("app:type=Stats", {"Bad": Decimal("sNaN"), "Good": 5})
    stats = ObjectGroupDefinition(
        alias="stats",
        pattern=ObjectNamePattern.parse("app:type=Stats"),
        metrics=[
            MetricDefinition("bad", "Bad", MetricType.GAUGE),
            MetricDefinition("good", "Good", MetricType.GAUGE),
        ],
    )
    session = ConnectionSession(SERVICE_URL, [stats], connector)

    families = session.poll()

    assert [f.name for f in families] == ["good"]
    assert session.connected
    assert session.connection_losses == 0


def test_host_names_the_connection(connector, groups):
    assert str(ConnectionSession(SERVICE_URL, groups, connector)) == SERVICE_URL

    session = ConnectionSession(SERVICE_URL, groups, connector, host="app-1.example.org")
    assert str(session) == "app-1.example.org"
    assert session.status()["host"] == "app-1.example.org"
