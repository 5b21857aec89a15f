"""Configuration models using Pydantic for validation."""
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from attrscrape.errors import ConfigurationError
from attrscrape.objectname import MalformedObjectNameError, ObjectNamePattern
from attrscrape.resolver import split_path
from attrscrape.series import MetricType

LABEL_NAME_PATTERN = re.compile(r'^[a-zA-Z_][a-zA-Z0-9_]*$')
METRIC_NAME_PATTERN = re.compile(r'^[a-zA-Z_:][a-zA-Z0-9_:]*$')


def validate_label_names(labels: Dict[str, str]) -> Dict[str, str]:
    """
    Validate label names are Prometheus-safe.

    Label names must match [a-zA-Z_][a-zA-Z0-9_]*
    """
    for name in labels.keys():
        if not LABEL_NAME_PATTERN.match(name):
            raise ValueError(f"Invalid label name: {name!r}")
    return labels


def validate_metric_name(name: Optional[str]) -> Optional[str]:
    """Metric names and prefixes must match [a-zA-Z_:][a-zA-Z0-9_:]*"""
    if name is not None and not METRIC_NAME_PATTERN.match(name):
        raise ValueError(f"Invalid metric name: {name!r}")
    return name


class PrometheusExporterConfig(BaseModel):
    """Prometheus pull exporter configuration."""
    enabled: bool = True
    port: int = 9464
    prefix: str = ""
    bind_address: str = "0.0.0.0"


class OTELExporterConfig(BaseModel):
    """OpenTelemetry push exporter configuration."""
    enabled: bool = False
    endpoint: str = "localhost:4317"
    insecure: bool = True
    prefix: str = ""
    export_interval_s: int = 10
    headers: Dict[str, str] = Field(default_factory=dict)
    resource: Dict[str, str] = Field(default_factory=dict)


class ExportersConfig(BaseModel):
    """Configuration for all exporters."""
    prometheus: PrometheusExporterConfig = Field(default_factory=PrometheusExporterConfig)
    otel: OTELExporterConfig = Field(default_factory=OTELExporterConfig)


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    interval_s: float = Field(default=10.0, gt=0)
    log_level: str = "INFO"
    log_format: str = "text"
    control_api_port: int = 8081
    max_workers: int = Field(default=1, ge=1)


class MetricConfig(BaseModel):
    """Configuration for a single metric: one attribute path."""
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    type: MetricType = MetricType.UNKNOWN
    attribute: str
    help: Optional[str] = None
    unit: Optional[str] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    labels_from: Dict[str, str] = Field(default_factory=dict)

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        """Unrecognized domain keywords become 'unknown'."""
        return MetricType.parse(v)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return validate_metric_name(v)

    @field_validator("attribute")
    @classmethod
    def validate_attribute(cls, v):
        split_path(v)
        return v

    @field_validator("labels", "labels_from")
    @classmethod
    def validate_labels(cls, v):
        return validate_label_names(v)


class ObjectGroupConfig(BaseModel):
    """Configuration for an object group: a pattern plus its metrics."""
    model_config = ConfigDict(extra="forbid")

    alias: str = Field(min_length=1)
    object_name: str
    metric_prefix: Optional[str] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    labels_from: Dict[str, str] = Field(default_factory=dict)
    metrics: List[MetricConfig] = Field(min_length=1)

    @field_validator("metric_prefix")
    @classmethod
    def validate_prefix(cls, v):
        return validate_metric_name(v)

    @field_validator("object_name")
    @classmethod
    def validate_object_name(cls, v):
        try:
            ObjectNamePattern.parse(v)
        except MalformedObjectNameError as e:
            raise ValueError(f"Not a valid object name: {e}")
        return v

    @field_validator("labels", "labels_from")
    @classmethod
    def validate_labels(cls, v):
        return validate_label_names(v)


class ConnectionConfig(BaseModel):
    """Configuration for one endpoint connection."""
    model_config = ConfigDict(extra="forbid")

    service_url: str = Field(min_length=1)
    host: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    timeout_s: float = Field(default=5.0, gt=0)
    labels: Dict[str, str] = Field(default_factory=dict)
    labels_from: Dict[str, str] = Field(default_factory=dict)
    metric_prefix: Optional[str] = None
    collect: List[str] = Field(min_length=1)

    @field_validator("metric_prefix")
    @classmethod
    def validate_prefix(cls, v):
        return validate_metric_name(v)

    @field_validator("labels", "labels_from")
    @classmethod
    def validate_labels(cls, v):
        return validate_label_names(v)


class Config(BaseModel):
    """Root configuration model.

    Group and connection blocks are kept raw here and validated one block at
    a time when the collector is built, so that one bad block does not
    reject its siblings.
    """
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    exporters: ExportersConfig = Field(default_factory=ExportersConfig)
    groups: List[Dict[str, Any]] = Field(default_factory=list)
    connections: List[Dict[str, Any]] = Field(default_factory=list)


def load_config(config_path: str) -> Config:
    """Load and validate configuration from YAML file."""
    import yaml

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    if not isinstance(raw_config, dict):
        raise ValueError(f"Configuration file must contain a mapping: {config_path}")

    # Apply environment variable overrides
    if env_log_level := os.getenv('LOG_LEVEL'):
        raw_config.setdefault('global', {})['log_level'] = env_log_level

    if env_interval := os.getenv('ATTRSCRAPE_INTERVAL'):
        raw_config.setdefault('global', {})['interval_s'] = env_interval

    try:
        return Config(**raw_config)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")


# Host configuration tree

ConfigScalar = Union[str, float, int, bool]


@dataclass
class ConfigItem:
    """A node of the host configuration tree."""
    key: str
    values: List[ConfigScalar] = field(default_factory=list)
    children: List["ConfigItem"] = field(default_factory=list)


def config_string(item: ConfigItem) -> str:
    """Return the single string argument of an item."""
    if len(item.values) != 1 or not isinstance(item.values[0], str):
        raise ConfigurationError(
            f"The {item.key} configuration option needs exactly one string argument."
        )
    return item.values[0]


def config_number(item: ConfigItem) -> float:
    """Return the single numeric argument of an item."""
    if (len(item.values) != 1 or isinstance(item.values[0], bool)
            or not isinstance(item.values[0], (int, float))):
        raise ConfigurationError(
            f"The {item.key} configuration option needs exactly one numeric argument."
        )
    return float(item.values[0])


def config_label(item: ConfigItem, labels: Dict[str, str]):
    """Store a two-string-argument item into a label mapping."""
    if len(item.values) != 2 or not all(isinstance(v, str) for v in item.values):
        raise ConfigurationError(
            f"The {item.key} configuration option needs exactly two string arguments."
        )
    labels[item.values[0]] = item.values[1]


def metric_block_from_item(item: ConfigItem) -> Dict[str, Any]:
    """Translate a ``metric "name" { ... }`` node into a MetricConfig mapping."""
    block: Dict[str, Any] = {"name": config_string(item), "labels": {}, "labels_from": {}}
    for child in item.children:
        key = child.key.lower()
        if key in ("type", "attribute", "help", "unit"):
            block[key] = config_string(child)
        elif key == "label":
            config_label(child, block["labels"])
        elif key == "label-from":
            config_label(child, block["labels_from"])
        else:
            raise ConfigurationError(f"Unknown option: {child.key}")
    return block


def group_block_from_item(item: ConfigItem) -> Dict[str, Any]:
    """Translate an ``object-group "alias" { ... }`` node into an ObjectGroupConfig mapping."""
    try:
        alias = config_string(item)
    except ConfigurationError:
        raise ConfigurationError(
            "No alias name was defined. Object group blocks need exactly one string argument."
        )

    block: Dict[str, Any] = {"alias": alias, "labels": {}, "labels_from": {}, "metrics": []}
    for child in item.children:
        key = child.key.lower()
        if key == "object-name":
            block["object_name"] = config_string(child)
        elif key == "metric-prefix":
            block["metric_prefix"] = config_string(child)
        elif key == "label":
            config_label(child, block["labels"])
        elif key == "label-from":
            config_label(child, block["labels_from"])
        elif key == "metric":
            block["metrics"].append(metric_block_from_item(child))
        else:
            raise ConfigurationError(f"Unknown option: {child.key}")
    return block


def connection_block_from_item(item: ConfigItem) -> Dict[str, Any]:
    """Translate a ``connection { ... }`` node into a ConnectionConfig mapping."""
    block: Dict[str, Any] = {"labels": {}, "labels_from": {}, "collect": []}
    for child in item.children:
        key = child.key.lower()
        if key == "service-url":
            block["service_url"] = config_string(child)
        elif key in ("host", "user", "password"):
            block[key] = config_string(child)
        elif key == "timeout":
            block["timeout_s"] = config_number(child)
        elif key == "metric-prefix":
            block["metric_prefix"] = config_string(child)
        elif key == "label":
            config_label(child, block["labels"])
        elif key == "label-from":
            config_label(child, block["labels_from"])
        elif key == "collect":
            block["collect"].append(config_string(child))
        else:
            raise ConfigurationError(f"Unknown option: {child.key}")
    return block
