"""Metric and object group definitions, and the registry of group aliases."""
import logging
from typing import Dict, Iterable, List, Optional

from attrscrape.coercion import coerce
from attrscrape.config import MetricConfig, ObjectGroupConfig
from attrscrape.endpoint import EndpointConnection, RemoteError, TransportError
from attrscrape.errors import (
    CoercionError, ConnectionUnusableError, DiscoveryError, ResolutionError
)
from attrscrape.objectname import ObjectName, ObjectNamePattern
from attrscrape.resolver import resolve
from attrscrape.series import Metric, MetricFamily, MetricIdentity, MetricType

logger = logging.getLogger(__name__)

BUILTIN_MEMORY_ALIAS = "jvm-memory"


def join_prefix(*parts: Optional[str]) -> Optional[str]:
    """Concatenate the prefixes that are set; None when none is."""
    present = [p for p in parts if p]
    return "".join(present) if present else None


def overlay_labels(labels: Dict[str, str], overrides: Dict[str, str]):
    """Copy ``overrides`` into ``labels``; empty values never replace a lower level."""
    for label, value in overrides.items():
        if value:
            labels[label] = value


def apply_labels_from(
    labels: Dict[str, str],
    name: ObjectName,
    labels_from: Dict[str, str],
    context: str
):
    """Copy key properties of ``name`` into ``labels``; missing properties are skipped."""
    for label, property_name in labels_from.items():
        value = name.key_property(property_name)
        if not value:
            logger.warning(
                f"{context}: No such property in object name {name}: {property_name} "
                f"(label {label} omitted)"
            )
            continue
        labels[label] = value


class MetricDefinition:
    """One attribute path bound to a metric identity and a label plan."""

    def __init__(
        self,
        name: str,
        attribute: str,
        metric_type: MetricType = MetricType.UNKNOWN,
        help: Optional[str] = None,
        unit: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
        labels_from: Optional[Dict[str, str]] = None
    ):
        self.name = name
        self.attribute = attribute
        self.type = MetricType.parse(metric_type)
        self.help = help
        self.unit = unit
        self.labels = dict(labels or {})
        self.labels_from = dict(labels_from or {})

    @classmethod
    def from_config(cls, config: MetricConfig) -> "MetricDefinition":
        return cls(
            name=config.name,
            attribute=config.attribute,
            metric_type=config.type,
            help=config.help,
            unit=config.unit,
            labels=config.labels,
            labels_from=config.labels_from,
        )

    def identity(self, prefix: Optional[str] = None) -> MetricIdentity:
        """Metric identity with an optional prefix prepended to the name."""
        return MetricIdentity(
            name=f"{prefix or ''}{self.name}",
            type=self.type,
            help=self.help,
            unit=self.unit,
        )

    def build_labels(self, name: ObjectName, group_labels: Dict[str, str]) -> Dict[str, str]:
        """Overlay this definition's static labels and labels-from onto the group's."""
        labels = dict(group_labels)
        overlay_labels(labels, self.labels)
        apply_labels_from(labels, name, self.labels_from, f"Metric {self.name}")
        return labels

    def apply(
        self,
        conn: EndpointConnection,
        name: ObjectName,
        group_labels: Dict[str, str]
    ) -> Optional[Metric]:
        """Produce one metric instance for ``name``, or None when it has to be skipped.

        TransportError is not handled here; the connection is unusable and the
        owning session decides what to do.
        """
        labels = self.build_labels(name, group_labels)

        try:
            leaf = resolve(conn, name, self.attribute)
        except ResolutionError as e:
            logger.error(f"Metric {self.name}: Querying attribute {self.attribute} of {name} failed: {e}")
            return None

        try:
            metric_type, value = coerce(leaf, self.type)
        except CoercionError as e:
            logger.error(
                f"Metric {self.name}: Cannot convert attribute {self.attribute} of {name} to a number: {e}"
            )
            return None

        return Metric(metric_type, value, labels)

    def __repr__(self) -> str:
        return f"MetricDefinition(name={self.name!r}, attribute={self.attribute!r}, type={self.type.value})"


class ObjectGroupDefinition:
    """An object name pattern plus the metric definitions run against every match."""

    def __init__(
        self,
        alias: str,
        pattern: ObjectNamePattern,
        metrics: List[MetricDefinition],
        metric_prefix: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
        labels_from: Optional[Dict[str, str]] = None
    ):
        self.alias = alias
        self.pattern = pattern
        self.metrics = list(metrics)
        self.metric_prefix = metric_prefix
        self.labels = dict(labels or {})
        self.labels_from = dict(labels_from or {})

    @classmethod
    def from_config(cls, config: ObjectGroupConfig) -> "ObjectGroupDefinition":
        return cls(
            alias=config.alias,
            pattern=ObjectNamePattern.parse(config.object_name),
            metrics=[MetricDefinition.from_config(m) for m in config.metrics],
            metric_prefix=config.metric_prefix,
            labels=config.labels,
            labels_from=config.labels_from,
        )

    def discover(self, conn: EndpointConnection) -> List[ObjectName]:
        try:
            names = conn.discover(self.pattern)
        except TransportError as e:
            raise ConnectionUnusableError(f"Querying names matching {self.pattern} failed: {e}")
        except RemoteError as e:
            raise DiscoveryError(f"Querying names matching {self.pattern} failed: {e}")

        if not names:
            logger.warning(f"Object group {self.alias}: No object matched the pattern {self.pattern}")
        return names

    def group_labels(
        self,
        name: ObjectName,
        connection_labels: Dict[str, str],
        connection_labels_from: Dict[str, str]
    ) -> Dict[str, str]:
        """Labels shared by every metric of one matched object."""
        labels: Dict[str, str] = {}
        overlay_labels(labels, connection_labels)
        apply_labels_from(labels, name, connection_labels_from, f"Object group {self.alias}")
        overlay_labels(labels, self.labels)
        apply_labels_from(labels, name, self.labels_from, f"Object group {self.alias}")
        return labels

    def query(
        self,
        conn: EndpointConnection,
        connection_prefix: Optional[str] = None,
        connection_labels: Optional[Dict[str, str]] = None,
        connection_labels_from: Optional[Dict[str, str]] = None
    ) -> List[MetricFamily]:
        """Run every metric definition against every object matching the pattern.

        Returns the non-empty families, one per metric identity.

        Raises:
            DiscoveryError: the endpoint rejected the pattern query.
            ConnectionUnusableError: the transport failed.
        """
        names = self.discover(conn)
        prefix = join_prefix(connection_prefix, self.metric_prefix)

        families: Dict[MetricIdentity, MetricFamily] = {}
        for definition in self.metrics:
            identity = definition.identity(prefix)
            families.setdefault(identity, MetricFamily(identity))

        for name in names:
            logger.debug(f"Object group {self.alias}: querying {name}")
            labels = self.group_labels(name, connection_labels or {}, connection_labels_from or {})

            for definition in self.metrics:
                try:
                    metric = definition.apply(conn, name, labels)
                except TransportError as e:
                    raise ConnectionUnusableError(
                        f"Reading {definition.attribute} of {name} failed: {e}"
                    )
                if metric is not None:
                    families[definition.identity(prefix)].add_metric(metric)

        return [family for family in families.values() if family.metrics]

    def __repr__(self) -> str:
        return f"ObjectGroupDefinition(alias={self.alias!r}, pattern={str(self.pattern)!r}, metrics={len(self.metrics)})"


class GroupRegistry:
    """Named object group definitions, built once and then frozen."""

    def __init__(self, groups: Iterable[ObjectGroupDefinition] = ()):
        self._groups: Dict[str, ObjectGroupDefinition] = {}
        self._frozen = False
        for group in groups:
            self.register(group)

    def register(self, group: ObjectGroupDefinition):
        if self._frozen:
            raise RuntimeError("Group registry is frozen")
        if group.alias in self._groups:
            logger.info(f"Object group {group.alias} replaces an earlier definition")
        logger.debug(f"Registering object group {group.alias}")
        self._groups[group.alias] = group

    def get(self, alias: str) -> Optional[ObjectGroupDefinition]:
        return self._groups.get(alias)

    def freeze(self):
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def aliases(self) -> List[str]:
        return sorted(self._groups)

    def __contains__(self, alias: str) -> bool:
        return alias in self._groups

    def __len__(self) -> int:
        return len(self._groups)


def builtin_memory_group() -> ObjectGroupDefinition:
    """Heap and non-heap memory usage of a Java virtual machine."""
    metrics = []
    for area, attribute in (("heap", "HeapMemoryUsage"), ("non_heap", "NonHeapMemoryUsage")):
        for field in ("init", "used", "committed", "max"):
            metrics.append(MetricDefinition(
                name=f"jmx_memory_{field}_bytes",
                attribute=f"{attribute}.{field}",
                metric_type=MetricType.GAUGE,
                help=f"Memory {field} as reported by the memory management bean",
                unit="bytes",
                labels={"area": area},
            ))
    return ObjectGroupDefinition(
        alias=BUILTIN_MEMORY_ALIAS,
        pattern=ObjectNamePattern.parse("java.lang:type=Memory"),
        metrics=metrics,
    )
