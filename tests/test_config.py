"""Tests for configuration loading and the host configuration tree."""
import pytest
from pydantic import ValidationError

from attrscrape.config import (
    ConfigItem, ConnectionConfig, MetricConfig, ObjectGroupConfig,
    connection_block_from_item, group_block_from_item, load_config
)
from attrscrape.errors import ConfigurationError
from attrscrape.series import MetricType

CONFIG_YAML = """
global:
  interval_s: 5
  log_level: DEBUG
exporters:
  prometheus:
    port: 9500
groups:
  - alias: threads
    object_name: "java.lang:type=Threading"
    metrics:
      - name: jvm_threads
        type: gauge
        attribute: ThreadCount
connections:
  - service_url: "http://localhost:8778/jolokia/"
    collect: [jvm-memory, threads]
"""


def test_load_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG_YAML)

    config = load_config(str(path))

    assert config.global_.interval_s == 5
    assert config.global_.log_level == "DEBUG"
    assert config.exporters.prometheus.port == 9500
    assert config.exporters.otel.enabled is False
    assert config.groups[0]["alias"] == "threads"
    assert config.connections[0]["collect"] == ["jvm-memory", "threads"]


def test_environment_overrides(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG_YAML)
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.setenv("ATTRSCRAPE_INTERVAL", "30")

    config = load_config(str(path))

    assert config.global_.log_level == "WARNING"
    assert config.global_.interval_s == 30


def test_load_config_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "missing.yaml"))

    path = tmp_path / "bad.yaml"
    path.write_text("global:\n  interval_s: 0\n")
    with pytest.raises(ValueError, match="validation failed"):
        load_config(str(path))

    path.write_text("surprise: true\n")
    with pytest.raises(ValueError):
        load_config(str(path))


def test_block_models_reject_unknown_keys():
    with pytest.raises(ValidationError):
        MetricConfig.model_validate({"name": "x", "attribute": "X", "colour": "red"})
    with pytest.raises(ValidationError):
        ConnectionConfig.model_validate({"service_url": "u", "collect": ["g"], "port": 1})


def test_block_models_validate_fields():
    with pytest.raises(ValidationError):
        MetricConfig.model_validate({"name": "x", "attribute": "Usage..used"})
    with pytest.raises(ValidationError):
        MetricConfig.model_validate({"name": "x", "attribute": "X", "labels": {"bad-name": "v"}})
    with pytest.raises(ValidationError):
        ObjectGroupConfig.model_validate({"alias": "g", "object_name": "nodomain", "metrics": [
            {"name": "x", "attribute": "X"}
        ]})
    with pytest.raises(ValidationError):
        ObjectGroupConfig.model_validate({"alias": "g", "object_name": "a:b=c", "metrics": []})
    with pytest.raises(ValidationError):
        ConnectionConfig.model_validate({"service_url": "u", "collect": []})


def test_group_block_from_item():
    item = ConfigItem("Object-Group", ["pools"], [
        ConfigItem("Object-Name", ["app:type=Pool,*"]),
        ConfigItem("Metric-Prefix", ["pool_"]),
        ConfigItem("Label", ["tier", "db"]),
        ConfigItem("Label-From", ["pool", "name"]),
        ConfigItem("Metric", ["used"], [
            ConfigItem("Type", ["counter"]),
            ConfigItem("Attribute", ["Usage.used"]),
            ConfigItem("Label", ["kind", "usage"]),
        ]),
    ])

    block = group_block_from_item(item)
    config = ObjectGroupConfig.model_validate(block)

    assert config.alias == "pools"
    assert config.metric_prefix == "pool_"
    assert config.labels == {"tier": "db"}
    assert config.labels_from == {"pool": "name"}
    assert config.metrics[0].type is MetricType.COUNTER
    assert config.metrics[0].labels == {"kind": "usage"}


def test_group_block_needs_alias():
    with pytest.raises(ConfigurationError, match="alias"):
        group_block_from_item(ConfigItem("object-group", [], []))


def test_item_arguments_are_checked():
    with pytest.raises(ConfigurationError, match="exactly two string arguments"):
        group_block_from_item(ConfigItem("object-group", ["g"], [ConfigItem("label", ["only"])]))
    with pytest.raises(ConfigurationError, match="Unknown option"):
        group_block_from_item(ConfigItem("object-group", ["g"], [ConfigItem("colour", ["red"])]))
    with pytest.raises(ConfigurationError, match="numeric"):
        connection_block_from_item(ConfigItem("connection", [], [ConfigItem("timeout", ["5"])]))


def test_connection_block_from_item():
    item = ConfigItem("connection", [], [
        ConfigItem("service-url", ["http://localhost:8778/jolokia/"]),
        ConfigItem("user", ["admin"]),
        ConfigItem("password", ["secret"]),
        ConfigItem("timeout", [2]),
        ConfigItem("collect", ["a"]),
        ConfigItem("collect", ["b"]),
    ])

    config = ConnectionConfig.model_validate(connection_block_from_item(item))

    assert config.user == "admin"
    assert config.timeout_s == 2.0
    assert config.collect == ["a", "b"]


def test_metric_names_and_prefixes_are_validated():
    with pytest.raises(ValidationError):
        MetricConfig.model_validate({"name": "jvm.heap", "attribute": "X"})
    with pytest.raises(ValidationError):
        ObjectGroupConfig.model_validate({
            "alias": "g", "object_name": "a:b=c", "metric_prefix": "app-",
            "metrics": [{"name": "x", "attribute": "X"}],
        })
    with pytest.raises(ValidationError):
        ConnectionConfig.model_validate({"service_url": "u", "collect": ["g"], "metric_prefix": "9lives_"})

    assert MetricConfig.model_validate({"name": "jvm:heap_used", "attribute": "X"}).name == "jvm:heap_used"


def test_connection_host_option():
    item = ConfigItem("connection", [], [
        ConfigItem("Host", ["app-1.example.org"]),
        ConfigItem("service-url", ["http://localhost:8778/jolokia/"]),
        ConfigItem("collect", ["a"]),
    ])

    config = ConnectionConfig.model_validate(connection_block_from_item(item))

    assert config.host == "app-1.example.org"
