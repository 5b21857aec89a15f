"""Shared fixtures for collector tests."""
import pytest

from attrscrape.inmemory import InMemoryConnector, InMemoryEndpoint

SERVICE_URL = "mem://app-1"


@pytest.fixture
def endpoint():
    return InMemoryEndpoint()


@pytest.fixture
def connector(endpoint):
    return InMemoryConnector({SERVICE_URL: endpoint})


@pytest.fixture
def connection(connector):
    return connector.connect(SERVICE_URL)
