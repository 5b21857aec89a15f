"""Collector orchestration: building definitions from configuration and polling."""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from attrscrape.config import (
    Config, ConfigItem, ConnectionConfig, ObjectGroupConfig,
    connection_block_from_item, group_block_from_item
)
from attrscrape.definitions import GroupRegistry, ObjectGroupDefinition, builtin_memory_group
from attrscrape.endpoint import Connector
from attrscrape.errors import ConfigurationError
from attrscrape.prom_exporter import SelfMetrics
from attrscrape.series import MetricFamily, MetricIdentity
from attrscrape.session import ConnectionSession

logger = logging.getLogger(__name__)

GROUP_KEYS = ("object-group", "mbean")
CONNECTION_KEYS = ("connection",)


def _describe_error(e: Exception) -> str:
    if isinstance(e, ValidationError):
        return "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'block'}: {err['msg']}" for err in e.errors()
        )
    return str(e)


def build_group(block: Dict[str, Any]) -> ObjectGroupDefinition:
    """Validate one object group block and build its definition."""
    try:
        return ObjectGroupDefinition.from_config(ObjectGroupConfig.model_validate(block))
    except ValidationError as e:
        raise ConfigurationError(_describe_error(e))


def build_session(
    block: Dict[str, Any],
    registry: GroupRegistry,
    connector: Connector
) -> ConnectionSession:
    """Validate one connection block and bind it to registered groups."""
    try:
        config = ConnectionConfig.model_validate(block)
    except ValidationError as e:
        raise ConfigurationError(_describe_error(e))
    return ConnectionSession.from_config(config, registry, connector)


def build_registry(group_blocks: Iterable[Dict[str, Any]], include_builtin: bool = True) -> GroupRegistry:
    """Register every valid group block; invalid blocks are logged and skipped."""
    registry = GroupRegistry()
    if include_builtin:
        registry.register(builtin_memory_group())

    for index, block in enumerate(group_blocks):
        alias = block.get("alias", f"#{index}") if isinstance(block, dict) else f"#{index}"
        try:
            registry.register(build_group(block))
        except ConfigurationError as e:
            logger.error(f"Evaluating object group block {alias} failed: {e}")
    return registry


def build_sessions(
    connection_blocks: Iterable[Dict[str, Any]],
    registry: GroupRegistry,
    connector: Connector
) -> List[ConnectionSession]:
    """Build a session for every valid connection block; invalid blocks are logged and skipped."""
    registry.freeze()
    sessions = []
    for index, block in enumerate(connection_blocks):
        url = block.get("service_url", f"#{index}") if isinstance(block, dict) else f"#{index}"
        try:
            sessions.append(build_session(block, registry, connector))
        except ConfigurationError as e:
            logger.error(f"Evaluating connection block {url} failed: {e}")
    return sessions


def build_from_config_item(
    root: ConfigItem,
    connector: Connector,
    include_builtin: bool = True
) -> Tuple[GroupRegistry, List[ConnectionSession]]:
    """Build groups and sessions from a host configuration tree, in document order.

    Connection blocks can only reference groups defined above them.
    """
    registry = GroupRegistry()
    if include_builtin:
        registry.register(builtin_memory_group())
    sessions: List[ConnectionSession] = []

    logger.debug(f"Configuring from {root.key} with {len(root.children)} children")
    for child in root.children:
        key = child.key.lower()
        if key in GROUP_KEYS:
            try:
                registry.register(build_group(group_block_from_item(child)))
            except ConfigurationError as e:
                logger.error(f"Evaluating '{child.key}' block failed: {e}")
        elif key in CONNECTION_KEYS:
            try:
                sessions.append(build_session(connection_block_from_item(child), registry, connector))
            except ConfigurationError as e:
                logger.error(f"Evaluating '{child.key}' block failed: {e}")
        else:
            logger.error(f"Unknown config option: {child.key}")

    registry.freeze()
    return registry, sessions


class Collector:
    """Owns all connection sessions and runs one poll cycle at a time.

    Dispatch sinks are objects with a ``dispatch(family) -> int`` method; a
    non-zero status is logged and does not stop later dispatches.
    """

    def __init__(
        self,
        sessions: List[ConnectionSession],
        sinks: Optional[Dict[str, Any]] = None,
        interval_s: float = 10.0,
        max_workers: int = 1,
        self_metrics: Optional[SelfMetrics] = None,
        registry: Optional[GroupRegistry] = None
    ):
        self.sessions = list(sessions)
        self.sinks = dict(sinks or {})
        self.interval_s = interval_s
        self.max_workers = max_workers
        self.self_metrics = self_metrics
        self.registry = registry

        self.running = False
        self._stop_event = threading.Event()
        self._poll_lock = threading.Lock()
        self.poll_count = 0
        self.start_time = time.time()
        self.last_poll_duration: Optional[float] = None
        self.last_poll_families = 0
        self.last_poll_metrics = 0
        self._reported_failures: Dict[int, int] = {}

        logger.info(f"Collector initialized with {len(self.sessions)} connections")

    def _poll_session(self, session: ConnectionSession) -> List[MetricFamily]:
        try:
            return session.poll()
        except Exception as e:
            logger.error(f"Connection {session}: Caught unexpected exception: {e}", exc_info=True)
            session.disconnect()
            return []

    def _poll_sessions(self) -> List[List[MetricFamily]]:
        if self.max_workers <= 1 or len(self.sessions) <= 1:
            return [self._poll_session(session) for session in self.sessions]

        # Each session still runs its own groups strictly in order
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            return list(executor.map(self._poll_session, self.sessions))

    @staticmethod
    def merge(results: Iterable[Tuple[str, List[MetricFamily]]]) -> List[MetricFamily]:
        """Merge families with the same identity, keeping first-seen order.

        ``results`` pairs each session's service URL with its families. An
        instance whose label set was already collected for the same family is
        logged and dropped; the first one wins.
        """
        merged: Dict[MetricIdentity, MetricFamily] = {}
        sources: Dict[MetricIdentity, Dict[str, str]] = {}
        for service_url, families in results:
            for family in families:
                if family.identity not in merged:
                    merged[family.identity] = MetricFamily(family.identity)
                    sources[family.identity] = {}
                target = merged[family.identity]
                seen = sources[family.identity]
                for instance in family.metrics:
                    key = instance.label_key()
                    if key in seen:
                        logger.error(
                            f"Family {family.name}: series {{{key}}} from {service_url} was already "
                            f"collected from {seen[key]}, dropping it"
                        )
                        continue
                    seen[key] = service_url
                    target.add_metric(instance)
        return list(merged.values())

    def _notify_sinks(self, hook: str):
        for sink_name, sink in self.sinks.items():
            callback = getattr(sink, hook, None)
            if callback is None:
                continue
            try:
                callback()
            except Exception as e:
                logger.error(f"Calling {hook} on {sink_name} failed: {e}")

    def dispatch(self, family: MetricFamily) -> int:
        """Hand one family to every sink; returns the number of failed sinks."""
        failures = 0
        for sink_name, sink in self.sinks.items():
            try:
                status = sink.dispatch(family)
            except Exception as e:
                logger.error(f"Dispatching {family.name} to {sink_name} failed: {e}")
                status = -1
            if status != 0:
                logger.error(f"Dispatching {family.name} to {sink_name} returned status {status}")
                failures += 1
                if self.self_metrics:
                    self.self_metrics.record_dispatch_error(sink_name)
        return failures

    def poll(self) -> List[MetricFamily]:
        """Run one poll cycle over every session and dispatch the results."""
        with self._poll_lock:
            poll_start = time.time()

            results = zip((s.service_url for s in self.sessions), self._poll_sessions())
            families = [f for f in self.merge(results) if f.metrics]

            # Sinks replace everything they hold with this poll's families
            self._notify_sinks("begin_poll")
            for family in families:
                self.dispatch(family)
            self._notify_sinks("end_poll")

            self.poll_count += 1
            self.last_poll_duration = time.time() - poll_start
            self.last_poll_families = len(families)
            self.last_poll_metrics = sum(len(f) for f in families)

            if self.self_metrics:
                self.self_metrics.record_poll(self.last_poll_duration)
                self.self_metrics.record_dispatch(len(families))
                for index, session in enumerate(self.sessions):
                    failures = session.connect_failures + session.connection_losses
                    self.self_metrics.record_connection_failures(
                        session.service_url, failures - self._reported_failures.get(index, 0)
                    )
                    self._reported_failures[index] = failures
                    self.self_metrics.set_connected(session.service_url, session.connected)

            logger.debug(
                f"Poll {self.poll_count}: dispatched {self.last_poll_families} families "
                f"({self.last_poll_metrics} metrics) in {self.last_poll_duration:.3f}s"
            )
            return families

    def run(self):
        """Poll every interval until stopped."""
        self.running = True
        self._stop_event.clear()
        self.start_time = time.time()

        logger.info(f"Starting collector, polling every {self.interval_s}s")

        while self.running:
            poll_start = time.time()

            try:
                self.poll()
            except Exception as e:
                logger.error(f"Error in poll: {e}", exc_info=True)

            # Sleep for remaining time in poll interval
            poll_duration = time.time() - poll_start
            sleep_time = max(0, self.interval_s - poll_duration)

            if sleep_time > 0:
                self._stop_event.wait(sleep_time)
            else:
                logger.warning(
                    f"Poll took {poll_duration:.3f}s, longer than interval {self.interval_s}s"
                )

    def stop(self):
        """Stop after the poll in progress, if any."""
        logger.info("Stopping collector")
        self.running = False
        self._stop_event.set()

    def shutdown(self):
        """Stop polling, close every connection and shut the sinks down."""
        self.stop()
        for session in self.sessions:
            session.disconnect()
        for sink in self.sinks.values():
            if hasattr(sink, "shutdown"):
                sink.shutdown()

    def status(self) -> Dict[str, Any]:
        return {
            "uptime_seconds": time.time() - self.start_time,
            "poll_count": self.poll_count,
            "interval_s": self.interval_s,
            "last_poll_duration_s": self.last_poll_duration,
            "last_poll_families": self.last_poll_families,
            "last_poll_metrics": self.last_poll_metrics,
            "groups": self.registry.aliases() if self.registry else [],
            "sessions": [session.status() for session in self.sessions],
        }


def create_collector(
    config: Config,
    connector: Connector,
    sinks: Optional[Dict[str, Any]] = None,
    self_metrics: Optional[SelfMetrics] = None
) -> Collector:
    """Build a collector from a validated configuration file."""
    registry = build_registry(config.groups)
    sessions = build_sessions(config.connections, registry, connector)

    if not sessions:
        logger.warning("No valid connection blocks configured, nothing will be collected")

    return Collector(
        sessions,
        sinks=sinks,
        interval_s=config.global_.interval_s,
        max_workers=config.global_.max_workers,
        self_metrics=self_metrics,
        registry=registry,
    )
