"""Unit tests for the relay metrics collector."""

import pytest

from src.relay.metrics import MetricsCollector, get_metrics_collector


@pytest.fixture
def collector() -> MetricsCollector:
    """Create fresh collector."""
    return MetricsCollector()


def test_connection_metrics(collector: MetricsCollector) -> None:
    """Test connection gauges and counters."""
    collector.record_connection_open()
    collector.record_connection_open()
    collector.record_connection_closed()
    collector.record_connection_rejected()

    summary = collector.get_summary()

    assert summary["connections_active"] == 1.0
    assert summary["connections_total"] == 2.0
    assert summary["connections_rejected"] == 1.0


def test_set_active_connections(collector: MetricsCollector) -> None:
    """Test the connection gauge can be reset to an absolute value."""
    collector.record_connection_open()
    collector.record_connection_open()

    collector.set_active_connections(0)

    assert collector.get_summary()["connections_active"] == 0.0


def test_call_metrics(collector: MetricsCollector) -> None:
    """Test call counters and active gauge."""
    collector.record_call_created()
    collector.record_call_created(replaced=True)
    collector.set_active_calls(1)

    summary = collector.get_summary()

    assert summary["calls_total"] == 2.0
    assert summary["offers_replaced"] == 1.0
    assert summary["calls_active"] == 1.0


def test_drop_and_message_counters(collector: MetricsCollector) -> None:
    """Test labelled counters are kept per label value."""
    collector.record_drop("invalid_json")
    collector.record_drop("invalid_json")
    collector.record_drop("no_such_session")
    collector.record_message("offer")

    assert collector.dropped("invalid_json") == 2.0
    assert collector.dropped("no_such_session") == 1.0
    assert collector.dropped("never_seen") == 0.0
    assert collector.get_summary()["messages"] == {"offer": 1.0}


def test_prometheus_export(collector: MetricsCollector) -> None:
    """Test exposition text has one HELP/TYPE per metric name."""
    collector.record_drop("invalid_json")
    collector.record_drop("not_agent")
    collector.record_connection_open()

    text = collector.export_prometheus()

    assert 'relay_messages_dropped_total{reason="invalid_json"} 1.0' in text
    assert 'relay_messages_dropped_total{reason="not_agent"} 1.0' in text
    assert text.count("# TYPE relay_messages_dropped_total counter") == 1
    assert "# TYPE relay_connections_active gauge" in text
    assert "relay_connections_total 1.0" in text
    assert text.endswith("\n")


def test_singleton() -> None:
    """Test the global collector is shared."""
    assert get_metrics_collector() is get_metrics_collector()
