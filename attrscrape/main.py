"""Main entry point for the remote attribute collector."""
import argparse
import logging
import signal
import sys
import threading

from attrscrape.config import load_config
from attrscrape.control_api import ControlAPI
from attrscrape.engine import create_collector
from attrscrape.jolokia import JolokiaConnector
from attrscrape.log import setup_logging
from attrscrape.otel_exporter import OTELExporter
from attrscrape.prom_exporter import PrometheusExporter, SelfMetrics


def run_collector_thread(collector):
    """Run the collector loop in a separate thread."""
    logger = logging.getLogger(__name__)
    try:
        collector.run()
    except Exception as e:
        logger.error(f"Collector thread error: {e}", exc_info=True)
        collector.stop()


def main(argv=None):
    """Main function."""
    parser = argparse.ArgumentParser(
        description="Collect metrics from attributes of remote managed objects"
    )
    parser.add_argument(
        "--config",
        "-c",
        required=True,
        help="Path to configuration YAML file"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Poll once, print the Prometheus exposition and exit"
    )

    args = parser.parse_args(argv)

    # Load configuration
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        return 1

    # Setup logging
    setup_logging(config.global_.log_level, config.global_.log_format)
    logger = logging.getLogger(__name__)

    logger.info(f"Configuration loaded from: {args.config}")
    logger.info(f"Poll interval: {config.global_.interval_s}s")
    logger.info(
        f"Object groups configured: {len(config.groups)}, "
        f"connections configured: {len(config.connections)}"
    )

    prom_exporter = PrometheusExporter(config.exporters.prometheus, start_server=not args.once)
    self_metrics = SelfMetrics(registry=prom_exporter.registry, prefix=config.exporters.prometheus.prefix)

    sinks = {}
    if config.exporters.prometheus.enabled or args.once:
        sinks["prometheus"] = prom_exporter
    if config.exporters.otel.enabled and not args.once:
        sinks["otel"] = OTELExporter(config.exporters.otel)

    collector = create_collector(config, JolokiaConnector(), sinks=sinks, self_metrics=self_metrics)

    if args.once:
        collector.poll()
        collector.shutdown()
        sys.stdout.write(prom_exporter.render())
        return 0

    # Start collector in separate thread
    collector_thread = threading.Thread(
        target=run_collector_thread,
        args=(collector,),
        daemon=True
    )
    collector_thread.start()
    logger.info("Collector started")

    # Setup signal handlers
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        collector.shutdown()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    # Run control API (blocking)
    control_api = ControlAPI(collector)
    logger.info(f"Starting control API on port {config.global_.control_api_port}")
    try:
        control_api.run(
            host="0.0.0.0",
            port=config.global_.control_api_port
        )
    except Exception as e:
        logger.error(f"Control API error: {e}", exc_info=True)
        collector.shutdown()
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
