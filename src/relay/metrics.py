"""Prometheus-compatible metrics for relay observability.

Tracks connection admission, call session lifecycle, routed messages and
every message the relay decides to drop. Metrics are kept in memory and
exposed via the /metrics endpoint in Prometheus exposition format.
"""

import logging
import threading
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class Counter:
    """Counter metric (monotonically increasing)."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def inc(self, amount: float = 1.0) -> None:
        """Increment counter.

        Args:
            amount: Amount to increment by (default: 1.0)
        """
        self.value += amount


@dataclass
class Gauge:
    """Gauge metric (can go up or down)."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def set(self, value: float) -> None:
        """Set gauge value."""
        self.value = value

    def inc(self, amount: float = 1.0) -> None:
        """Increment gauge."""
        self.value += amount

    def dec(self, amount: float = 1.0) -> None:
        """Decrement gauge."""
        self.value -= amount


MESSAGES_TOTAL = "relay_messages_total"
MESSAGES_DROPPED_TOTAL = "relay_messages_dropped_total"


class MetricsCollector:
    """Metrics collector with Prometheus-compatible output.

    Thread-safety: All public methods are thread-safe via mutex.
    """

    def __init__(self) -> None:
        """Initialize metrics collector."""
        self._lock = threading.RLock()

        # Metrics storage (keyed by metric name, plus label value for labelled series)
        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}

        self._init_connection_metrics()
        self._init_call_metrics()

        logger.debug("MetricsCollector initialized")

    def _init_connection_metrics(self) -> None:
        """Initialize connection admission metrics."""
        self._gauges["relay_connections_active"] = Gauge(
            name="relay_connections_active",
            help="Number of admitted connections currently open",
        )
        self._counters["relay_connections_total"] = Counter(
            name="relay_connections_total",
            help="Total number of admitted connections",
        )
        self._counters["relay_connections_rejected_total"] = Counter(
            name="relay_connections_rejected_total",
            help="Total number of connections refused at admission",
        )

    def _init_call_metrics(self) -> None:
        """Initialize call session metrics."""
        self._gauges["relay_calls_active"] = Gauge(
            name="relay_calls_active",
            help="Number of call sessions in the session table",
        )
        self._counters["relay_calls_total"] = Counter(
            name="relay_calls_total",
            help="Total number of call sessions created",
        )
        self._counters["relay_offers_replaced_total"] = Counter(
            name="relay_offers_replaced_total",
            help="Total number of offers that replaced an existing session",
        )

    def _labelled_counter(self, name: str, help_text: str, label: str, value: str) -> Counter:
        key = f"{name}:{value}"
        counter = self._counters.get(key)
        if counter is None:
            counter = Counter(name=name, help=help_text, labels={label: value})
            self._counters[key] = counter
        return counter

    # === Connection metrics ===

    def record_connection_open(self) -> None:
        """Record an admitted connection."""
        with self._lock:
            self._counters["relay_connections_total"].inc()
            self._gauges["relay_connections_active"].inc()

    def record_connection_closed(self) -> None:
        """Record removal of an admitted connection."""
        with self._lock:
            self._gauges["relay_connections_active"].dec()

    def set_active_connections(self, count: int) -> None:
        """Update the number of open admitted connections."""
        with self._lock:
            self._gauges["relay_connections_active"].set(float(count))

    def record_connection_rejected(self) -> None:
        """Record a connection refused before admission."""
        with self._lock:
            self._counters["relay_connections_rejected_total"].inc()

    # === Call metrics ===

    def record_call_created(self, replaced: bool = False) -> None:
        """Record a call session created by an offer.

        Args:
            replaced: Whether the offer replaced an existing session
        """
        with self._lock:
            self._counters["relay_calls_total"].inc()
            if replaced:
                self._counters["relay_offers_replaced_total"].inc()

    def set_active_calls(self, count: int) -> None:
        """Update the number of sessions in the table."""
        with self._lock:
            self._gauges["relay_calls_active"].set(float(count))

    # === Message metrics ===

    def record_message(self, message_type: str) -> None:
        """Record a successfully parsed inbound message."""
        with self._lock:
            self._labelled_counter(
                MESSAGES_TOTAL, "Total inbound messages by type", "type", message_type
            ).inc()

    def record_drop(self, reason: str) -> None:
        """Record an inbound message the relay dropped."""
        with self._lock:
            self._labelled_counter(
                MESSAGES_DROPPED_TOTAL, "Total inbound messages dropped by reason", "reason", reason
            ).inc()

    def dropped(self, reason: str) -> float:
        """Current drop count for a reason."""
        with self._lock:
            counter = self._counters.get(f"{MESSAGES_DROPPED_TOTAL}:{reason}")
            return counter.value if counter else 0.0

    # === Export ===

    def export_prometheus(self) -> str:
        """Export all metrics in Prometheus exposition format.

        Returns:
            Metrics in Prometheus text format for scraping
        """
        with self._lock:
            lines: list[str] = []
            described: set[str] = set()

            for counter in self._counters.values():
                if counter.name not in described:
                    lines.append(f"# HELP {counter.name} {counter.help}")
                    lines.append(f"# TYPE {counter.name} counter")
                    described.add(counter.name)
                labels_str = self._format_labels(counter.labels)
                lines.append(f"{counter.name}{labels_str} {counter.value}")

            for gauge in self._gauges.values():
                lines.append(f"# HELP {gauge.name} {gauge.help}")
                lines.append(f"# TYPE {gauge.name} gauge")
                labels_str = self._format_labels(gauge.labels)
                lines.append(f"{gauge.name}{labels_str} {gauge.value}")

            return "\n".join(lines) + "\n"

    def _format_labels(self, labels: dict[str, str]) -> str:
        """Format labels for Prometheus output (e.g., '{reason="invalid_json"}')."""
        if not labels:
            return ""

        label_pairs = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(label_pairs) + "}"

    def get_summary(self) -> dict[str, float | dict[str, float]]:
        """Get summary statistics for the metrics summary endpoint."""
        with self._lock:
            messages: dict[str, float] = {}
            drops: dict[str, float] = {}
            for counter in self._counters.values():
                if counter.name == MESSAGES_TOTAL:
                    messages[counter.labels["type"]] = counter.value
                elif counter.name == MESSAGES_DROPPED_TOTAL:
                    drops[counter.labels["reason"]] = counter.value

            return {
                "connections_active": self._gauges["relay_connections_active"].value,
                "connections_total": self._counters["relay_connections_total"].value,
                "connections_rejected": self._counters["relay_connections_rejected_total"].value,
                "calls_active": self._gauges["relay_calls_active"].value,
                "calls_total": self._counters["relay_calls_total"].value,
                "offers_replaced": self._counters["relay_offers_replaced_total"].value,
                "messages": messages,
                "dropped": drops,
            }


# Global metrics collector singleton
_metrics_collector: MetricsCollector | None = None
_collector_lock = threading.Lock()


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector singleton.

    Thread-safety: Safe for concurrent access.
    """
    global _metrics_collector

    if _metrics_collector is None:
        with _collector_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()

    return _metrics_collector
