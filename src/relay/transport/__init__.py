"""Transport layer for relay peer connections.

Provides the channel abstraction the relay delivers through. The WebSocket
server lives in ``src.relay.transport.websocket_transport``; it depends on the
relay core, which in turn depends on this package, so it is not re-exported
here.
"""

from src.relay.transport.base import PeerChannel

__all__ = [
    "PeerChannel",
]
