"""Tests for the OpenTelemetry exporter using an in-memory reader."""
from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from attrscrape.config import OTELExporterConfig
from attrscrape.otel_exporter import OTELExporter
from attrscrape.series import Metric, MetricFamily, MetricIdentity, MetricType


def make_family(name, metric_type, values):
    family = MetricFamily(MetricIdentity(name, metric_type))
    for labels, value in values:
        family.add_metric(Metric(metric_type, value, labels))
    return family


def collected(reader):
    result = {}
    for resource_metrics in reader.get_metrics_data().resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                result[metric.name] = sorted(
                    (tuple(sorted(point.attributes.items())), point.value)
                    for point in metric.data.data_points
                )
    return result


def test_disabled_exporter_accepts_dispatches():
    exporter = OTELExporter(OTELExporterConfig(enabled=False))
    assert exporter.meter is None
    assert exporter.dispatch(make_family("x", MetricType.GAUGE, [({}, 1.0)])) == 0


def test_gauge_and_counter_observations():
    reader = InMemoryMetricReader()
    exporter = OTELExporter(OTELExporterConfig(prefix="app_"), reader=reader)

    assert exporter.dispatch(make_family(
        "pool_used", MetricType.GAUGE, [({"pool": "a"}, 1.5), ({"pool": "b"}, 2.5)]
    )) == 0
    assert exporter.dispatch(make_family("requests_total", MetricType.COUNTER, [({}, 7)])) == 0

    metrics = collected(reader)
    assert metrics["app_pool_used"] == [((("pool", "a"),), 1.5), ((("pool", "b"),), 2.5)]
    assert metrics["app_requests_total"] == [((), 7)]
    exporter.shutdown()


def test_callbacks_report_latest_dispatch():
    reader = InMemoryMetricReader()
    exporter = OTELExporter(OTELExporterConfig(), reader=reader)

    exporter.dispatch(make_family("threads", MetricType.GAUGE, [({}, 1.0)]))
    exporter.dispatch(make_family("threads", MetricType.GAUGE, [({}, 4.0)]))

    assert collected(reader)["threads"] == [((), 4.0)]
    exporter.shutdown()


def test_type_change_is_rejected():
    reader = InMemoryMetricReader()
    exporter = OTELExporter(OTELExporterConfig(), reader=reader)

    exporter.dispatch(make_family("threads", MetricType.GAUGE, [({}, 1.0)]))
    assert exporter.dispatch(make_family("threads", MetricType.COUNTER, [({}, 1)])) == -1
    exporter.shutdown()


def test_families_missing_from_a_poll_stop_reporting():
    reader = InMemoryMetricReader()
    exporter = OTELExporter(OTELExporterConfig(), reader=reader)

    exporter.begin_poll()
    exporter.dispatch(make_family("threads", MetricType.GAUGE, [({}, 1.0)]))
    exporter.dispatch(make_family("pool_used", MetricType.GAUGE, [({}, 3.0)]))
    exporter.end_poll()
    assert collected(reader)["pool_used"] == [((), 3.0)]

    exporter.begin_poll()
    exporter.dispatch(make_family("threads", MetricType.GAUGE, [({}, 2.0)]))
    exporter.end_poll()

    metrics = collected(reader)
    assert metrics["threads"] == [((), 2.0)]
    assert metrics.get("pool_used", []) == []
    exporter.shutdown()
