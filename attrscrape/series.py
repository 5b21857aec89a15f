"""Data structures for metric families and their instances."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union

Number = Union[int, float]


class MetricType(str, Enum):
    """Value domain of a metric family."""
    UNKNOWN = "unknown"
    GAUGE = "gauge"
    COUNTER = "counter"

    @classmethod
    def parse(cls, value: Optional[str]) -> "MetricType":
        """Map a configuration keyword onto a domain; unrecognized keywords become UNKNOWN."""
        if isinstance(value, MetricType):
            return value
        if isinstance(value, str):
            for member in cls:
                if member.value == value.strip().lower():
                    return member
        return cls.UNKNOWN


@dataclass(frozen=True)
class MetricIdentity:
    """Name, help text, unit and domain shared by every instance of a family."""
    name: str
    type: MetricType = MetricType.UNKNOWN
    help: Optional[str] = None
    unit: Optional[str] = None


@dataclass
class Metric:
    """A single metric instance with labels."""
    type: MetricType
    value: Number
    labels: Dict[str, str] = field(default_factory=dict)

    def label_key(self) -> str:
        """Generate a stable key from sorted labels."""
        items = sorted(self.labels.items())
        return ",".join(f"{k}={v}" for k, v in items)


class MetricFamily:
    """A homogeneous list of metric instances sharing one identity."""

    def __init__(self, identity: MetricIdentity):
        self.identity = identity
        self.metrics: List[Metric] = []

    @property
    def name(self) -> str:
        return self.identity.name

    @property
    def type(self) -> MetricType:
        return self.identity.type

    @property
    def help(self) -> Optional[str]:
        return self.identity.help

    @property
    def unit(self) -> Optional[str]:
        return self.identity.unit

    def add_metric(self, metric: Metric):
        """Append an instance; its domain must match the family's."""
        if metric.type is not self.identity.type:
            raise ValueError(
                f"Metric of type {metric.type.value} cannot be added to "
                f"{self.identity.type.value} family {self.identity.name}"
            )
        self.metrics.append(metric)

    def extend(self, other: "MetricFamily"):
        """Append every instance of another family with the same identity."""
        if other.identity != self.identity:
            raise ValueError(f"Cannot merge family {other.name} into {self.name}")
        for metric in other.metrics:
            self.add_metric(metric)

    def clear(self):
        self.metrics.clear()

    def __len__(self) -> int:
        return len(self.metrics)

    def __repr__(self) -> str:
        return (
            f"MetricFamily(name={self.name!r}, type={self.type.value}, "
            f"metrics={len(self.metrics)})"
        )
