"""OpenTelemetry push exporter using OTLP."""
import logging
import threading
from typing import Dict, List, Optional

from opentelemetry.metrics import CallbackOptions, Observation
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource

from attrscrape.config import OTELExporterConfig
from attrscrape.series import MetricFamily, MetricType

logger = logging.getLogger(__name__)


class OTELExporter:
    """Exposes dispatched metric families as observable OpenTelemetry instruments.

    Every family name gets one observable instrument on first dispatch: an
    observable counter for counter families, an observable gauge otherwise.
    The instrument callbacks report the values of the latest dispatch.
    """

    def __init__(self, config: OTELExporterConfig, reader: Optional[MetricReader] = None):
        self.config = config

        # Store instrument objects and their types
        self.instruments: Dict[str, object] = {}
        self.instrument_types: Dict[str, MetricType] = {}

        # Latest observations per instrument name
        self._observations: Dict[str, List[Observation]] = {}
        self._pending: Optional[Dict[str, List[Observation]]] = None
        self._lock = threading.Lock()

        self.meter_provider = None
        self.meter = None
        if config.enabled or reader is not None:
            self._initialize_otel(reader)

    def _initialize_otel(self, reader: Optional[MetricReader]):
        """Initialize OpenTelemetry SDK."""
        resource_attrs = {
            "service.name": "attrscrape",
        }
        resource_attrs.update(self.config.resource)
        resource = Resource.create(resource_attrs)

        if reader is None:
            exporter = OTLPMetricExporter(
                endpoint=self.config.endpoint,
                insecure=self.config.insecure,
                headers=tuple(self.config.headers.items()) if self.config.headers else None
            )
            reader = PeriodicExportingMetricReader(
                exporter,
                export_interval_millis=self.config.export_interval_s * 1000
            )

        self.meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
        self.meter = self.meter_provider.get_meter(__name__)

        logger.info(f"OTEL exporter initialized, pushing to {self.config.endpoint}")

    def _callback(self, name: str):
        def callback(options: CallbackOptions):
            with self._lock:
                return list(self._observations.get(name, []))
        return callback

    def _register(self, name: str, family: MetricFamily):
        """Create the observable instrument for a family name."""
        description = family.help or f"{family.type.value} metric {family.name}"
        unit = family.unit or "1"

        if family.type is MetricType.COUNTER:
            instrument = self.meter.create_observable_counter(
                name=name,
                callbacks=[self._callback(name)],
                description=description,
                unit=unit
            )
        else:
            instrument = self.meter.create_observable_gauge(
                name=name,
                callbacks=[self._callback(name)],
                description=description,
                unit=unit
            )

        self.instruments[name] = instrument
        self.instrument_types[name] = family.type
        logger.info(f"Registered OTEL instrument: {name} ({family.type.value})")

    def dispatch(self, family: MetricFamily) -> int:
        """Record the values of a family; returns 0 on success."""
        if self.meter is None:
            return 0

        name = f"{self.config.prefix}{family.name}"
        try:
            if name not in self.instruments:
                self._register(name, family)
        except Exception as e:
            logger.error(f"Failed to register instrument {name}: {e}")
            return -1

        if self.instrument_types[name] is not family.type:
            logger.error(
                f"Instrument {name} was registered as {self.instrument_types[name].value}, "
                f"cannot record {family.type.value} values"
            )
            return -1

        observations = [
            Observation(instance.value, attributes=dict(instance.labels))
            for instance in family.metrics
        ]
        with self._lock:
            target = self._observations if self._pending is None else self._pending
            target[name] = observations
        return 0

    def begin_poll(self):
        with self._lock:
            self._pending = {}

    def end_poll(self):
        """Report only the families dispatched since begin_poll."""
        with self._lock:
            if self._pending is not None:
                self._observations = self._pending
                self._pending = None

    def shutdown(self):
        """Shutdown OTEL exporter."""
        if self.meter_provider is not None:
            self.meter_provider.shutdown()
            logger.info("OTEL exporter shutdown complete")
