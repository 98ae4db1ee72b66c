"""Connection registry.

Tracks every live transport connection, its role and its current call
association. The registry owns connection lifetime; call sessions only hold
connection ids and resolve them here on each use.
"""

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from src.relay.transport.base import PeerChannel

logger = logging.getLogger(__name__)


class ConnectionRole(Enum):
    """Role a connection has declared."""

    UNASSIGNED = "unassigned"
    CUSTOMER = "customer"
    AGENT = "agent"


class ConnectionState(Enum):
    """Per-connection routing state.

    Derived from role and call association:
    - UNASSIGNED: no role declared yet
    - CUSTOMER: customer, optionally bound to a call
    - AGENT: agent bound to a call
    - AGENT_READY: idle agent waiting for calls
    """

    UNASSIGNED = "unassigned"
    CUSTOMER = "customer"
    AGENT = "agent"
    AGENT_READY = "agent_ready"


RemovalListener = Callable[["Connection"], None]


@dataclass
class Connection:
    """One admitted duplex connection."""

    connection_id: str
    channel: PeerChannel | None = None
    role: ConnectionRole = ConnectionRole.UNASSIGNED
    call_id: str | None = None
    is_open: bool = True
    connected_at: float = field(default_factory=time.time)

    @property
    def state(self) -> ConnectionState:
        """Current routing state."""
        if self.role is ConnectionRole.CUSTOMER:
            return ConnectionState.CUSTOMER
        if self.role is ConnectionRole.AGENT:
            if self.call_id is None:
                return ConnectionState.AGENT_READY
            return ConnectionState.AGENT
        return ConnectionState.UNASSIGNED

    @property
    def is_deliverable(self) -> bool:
        """Whether messages may be sent to this connection."""
        if not self.is_open:
            return False
        return self.channel is None or self.channel.is_connected


class ConnectionRegistry:
    """In-memory table of admitted connections.

    All methods are synchronous and perform no I/O, so a sequence of calls
    made while handling one message cannot interleave with another.
    """

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._removal_listeners: list[RemovalListener] = []

    def add_removal_listener(self, listener: RemovalListener) -> None:
        """Register a callback invoked for every removed connection.

        Listeners run after the connection is marked closed and before it is
        dropped from the table.
        """
        self._removal_listeners.append(listener)

    def admit(self, channel: PeerChannel | None = None) -> str:
        """Admit a newly opened connection.

        Args:
            channel: Delivery handle for the connection

        Returns:
            Fresh connection id
        """
        connection_id = f"conn-{uuid.uuid4().hex[:12]}"
        while connection_id in self._connections:
            connection_id = f"conn-{uuid.uuid4().hex[:12]}"

        self._connections[connection_id] = Connection(
            connection_id=connection_id, channel=channel
        )
        logger.info(
            "Connection admitted",
            extra={"connection_id": connection_id, "connections": len(self._connections)},
        )
        return connection_id

    def get(self, connection_id: str) -> Connection:
        """Get a connection by id.

        Raises:
            KeyError: If the connection is not registered
        """
        return self._connections[connection_id]

    def resolve(self, connection_id: str | None) -> Connection | None:
        """Resolve an id to an open connection, or None if it is retired."""
        if connection_id is None:
            return None
        connection = self._connections.get(connection_id)
        if connection is None or not connection.is_open:
            return None
        return connection

    def set_role(self, connection_id: str, role: ConnectionRole) -> None:
        """Set the role of a connection (last write wins).

        Raises:
            KeyError: If the connection is not registered
        """
        connection = self._connections[connection_id]
        if connection.role is not role:
            logger.debug(
                "Connection role changed",
                extra={
                    "connection_id": connection_id,
                    "from": connection.role.value,
                    "to": role.value,
                },
            )
        connection.role = role

    def associate(self, connection_id: str, call_id: str | None) -> None:
        """Bind a connection to a call id, or unbind it with None.

        Raises:
            KeyError: If the connection is not registered
        """
        self._connections[connection_id].call_id = call_id

    def remove(self, connection_id: str) -> Connection | None:
        """Remove a connection on transport close.

        The connection is marked closed before listeners run so that nothing
        triggered by the cascade can route to it.

        Returns:
            The removed connection, or None if it was not registered
        """
        connection = self._connections.get(connection_id)
        if connection is None:
            return None

        connection.is_open = False
        try:
            for listener in self._removal_listeners:
                listener(connection)
        finally:
            del self._connections[connection_id]

        logger.info(
            "Connection removed",
            extra={
                "connection_id": connection_id,
                "role": connection.role.value,
                "call_id": connection.call_id,
                "connections": len(self._connections),
            },
        )
        return connection

    def agents_snapshot(self) -> frozenset[str]:
        """Ids of open agent connections at this instant."""
        return frozenset(
            connection_id
            for connection_id, connection in self._connections.items()
            if connection.role is ConnectionRole.AGENT and connection.is_deliverable
        )

    def connections(self) -> list[Connection]:
        """All registered connections."""
        return list(self._connections.values())

    def clear(self) -> None:
        """Drop every connection without running listeners (shutdown only)."""
        self._connections.clear()

    def stats(self) -> dict[str, Any]:
        """Summary of registered connections for the stats endpoint."""
        by_state: dict[str, int] = {state.value: 0 for state in ConnectionState}
        for connection in self._connections.values():
            by_state[connection.state.value] += 1

        return {
            "total_connections": len(self._connections),
            "by_state": by_state,
            "connections": [
                {
                    "connection_id": connection.connection_id,
                    "role": connection.role.value,
                    "state": connection.state.value,
                    "call_id": connection.call_id,
                    "connected_at": connection.connected_at,
                }
                for connection in self._connections.values()
            ],
        }

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections
