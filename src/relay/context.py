"""Relay context.

Owns the connection registry and call session table for one relay process
and wires removal of a connection into session cleanup.
"""

import logging
from typing import Any

from src.relay.calls import CallSessionTable
from src.relay.metrics import MetricsCollector
from src.relay.registry import Connection, ConnectionRegistry
from src.relay.transport.base import PeerChannel

logger = logging.getLogger(__name__)


class RelayContext:
    """Process-wide relay state with an explicit lifecycle.

    Constructed at startup and passed to the router and transport; tests build
    a fresh instance per case.
    """

    def __init__(self, metrics: MetricsCollector | None = None) -> None:
        self.registry = ConnectionRegistry()
        self.sessions = CallSessionTable()
        self.metrics = metrics if metrics is not None else MetricsCollector()
        self.registry.add_removal_listener(self._on_connection_removed)

    def admit(self, channel: PeerChannel | None = None) -> str:
        """Admit a connection that passed the admission check."""
        connection_id = self.registry.admit(channel)
        self.metrics.record_connection_open()
        return connection_id

    def release(self, connection_id: str) -> None:
        """Remove a closed connection and every session reference to it."""
        self.registry.remove(connection_id)

    def _on_connection_removed(self, connection: Connection) -> None:
        self.sessions.clear_connection(connection.connection_id)
        self.metrics.record_connection_closed()
        self.metrics.set_active_calls(len(self.sessions))

    def record_drop(self, reason: str, connection_id: str | None = None, **fields: Any) -> None:
        """Single hook for every message the relay decides not to route.

        Nothing is sent back to the originating connection.
        """
        self.metrics.record_drop(reason)
        logger.info(
            "Message dropped",
            extra={"reason": reason, "connection_id": connection_id, **fields},
        )

    def stats(self) -> dict[str, Any]:
        """Connection and call snapshot for the stats endpoint."""
        return {
            **self.registry.stats(),
            "total_calls": len(self.sessions),
            "calls": self.sessions.snapshot(),
        }

    def close(self) -> None:
        """Tear down all relay state (shutdown)."""
        logger.info(
            "Relay context closing",
            extra={"connections": len(self.registry), "calls": len(self.sessions)},
        )
        self.registry.clear()
        self.sessions.clear()
        self.metrics.set_active_connections(0)
        self.metrics.set_active_calls(0)
