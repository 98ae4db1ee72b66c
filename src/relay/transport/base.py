"""Base transport abstraction for relay connections.

Defines the interface the router uses to deliver messages to a peer,
independent of the concrete duplex transport.
"""

from abc import ABC, abstractmethod


class PeerChannel(ABC):
    """Delivery handle for one admitted connection.

    The registry stores one channel per connection; the router never touches
    the underlying socket directly.
    """

    @abstractmethod
    async def send_text(self, payload: str) -> None:
        """Send one serialized message to the peer.

        Args:
            payload: JSON-encoded message

        Raises:
            ConnectionError: If the connection is closed or broken
        """
        pass

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the channel with the given close code."""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the channel is still open."""
        pass
