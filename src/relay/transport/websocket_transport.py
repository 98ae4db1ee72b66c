"""WebSocket transport implementation.

Runs the relay's WebSocket server: checks the admission token, registers each
connection with the relay context, feeds inbound frames to the router in
arrival order and reconciles relay state when the connection closes.
"""

import logging
from typing import Any

import websockets
from websockets.asyncio.server import ServerConnection, serve
from websockets.protocol import State

from src.relay.auth import AdmissionRejected, TokenValidator, token_from_path
from src.relay.context import RelayContext
from src.relay.protocol import ConnectionEstablishedMessage
from src.relay.router import MessageRouter
from src.relay.transport.base import PeerChannel

logger = logging.getLogger(__name__)


class WebSocketChannel(PeerChannel):
    """PeerChannel backed by a server-side WebSocket connection."""

    def __init__(self, websocket: ServerConnection) -> None:
        self._websocket = websocket

    @property
    def is_connected(self) -> bool:
        """Check if the WebSocket is open."""
        return self._websocket.state == State.OPEN

    @property
    def remote_address(self) -> Any:
        """Peer address as reported by the socket."""
        return self._websocket.remote_address

    async def send_text(self, payload: str) -> None:
        """Send one text frame.

        Raises:
            ConnectionError: If the connection is closed or broken
        """
        if not self.is_connected:
            raise ConnectionError("WebSocket connection is closed")

        try:
            await self._websocket.send(payload)
        except websockets.exceptions.ConnectionClosed as e:
            raise ConnectionError(f"WebSocket connection closed: {e}") from e

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the WebSocket with the given code."""
        await self._websocket.close(code=code, reason=reason)


class WebSocketRelayTransport:
    """WebSocket server for the signaling relay.

    Each connection is handled by its own task; frames from one connection are
    routed strictly in arrival order.
    """

    def __init__(
        self,
        context: RelayContext,
        router: MessageRouter,
        validator: TokenValidator,
        host: str = "0.0.0.0",  # noqa: S104
        port: int = 8081,
        max_message_bytes: int = 2**20,
        ping_interval_s: float | None = 20.0,
        ping_timeout_s: float | None = 20.0,
    ) -> None:
        """Initialize WebSocket transport.

        Args:
            context: Relay state
            router: Router for inbound frames
            validator: Admission token validator
            host: Bind host address
            port: Bind port (0 picks a free port)
            max_message_bytes: Maximum inbound frame size
            ping_interval_s: Protocol keepalive interval
            ping_timeout_s: Protocol keepalive timeout
        """
        self._context = context
        self._router = router
        self._validator = validator
        self._host = host
        self._port = port
        self._max_message_bytes = max_message_bytes
        self._ping_interval_s = ping_interval_s
        self._ping_timeout_s = ping_timeout_s
        self._server: Any = None  # websockets Server
        self._running = False

    @property
    def is_running(self) -> bool:
        """Check if the server is accepting connections."""
        return self._running

    @property
    def port(self) -> int:
        """Port the server is bound to (resolved after start)."""
        if self._server is not None:
            for sock in self._server.sockets:
                return int(sock.getsockname()[1])
        return self._port

    async def start(self) -> None:
        """Bind the server and start accepting connections.

        Raises:
            RuntimeError: If the transport is already running
            OSError: If port binding fails
        """
        if self._running:
            raise RuntimeError("WebSocket transport is already running")

        logger.info("Starting WebSocket server", extra={"host": self._host, "port": self._port})

        try:
            self._server = await serve(
                self._handle_connection,
                self._host,
                self._port,
                max_size=self._max_message_bytes,
                ping_interval=self._ping_interval_s,
                ping_timeout=self._ping_timeout_s,
            )
        except OSError as e:
            logger.error(
                "Failed to bind WebSocket server",
                extra={"host": self._host, "port": self._port, "error": str(e)},
            )
            raise

        self._running = True
        logger.info("WebSocket server started", extra={"host": self._host, "port": self.port})

    async def stop(self) -> None:
        """Stop accepting connections and close every open one."""
        if not self._running:
            return

        logger.info("Stopping WebSocket server")
        self._running = False

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        logger.info("WebSocket server stopped")

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """Handle one WebSocket connection from admission to close."""
        path = websocket.request.path if websocket.request is not None else ""
        try:
            self._validator.check(token_from_path(path))
        except AdmissionRejected as e:
            self._context.metrics.record_connection_rejected()
            logger.warning(
                "Connection refused",
                extra={"remote": websocket.remote_address, "reason": e.reason},
            )
            await websocket.close(code=e.code, reason=e.reason)
            return

        channel = WebSocketChannel(websocket)
        connection_id = self._context.admit(channel)

        try:
            await channel.send_text(
                ConnectionEstablishedMessage(connection_id=connection_id).to_wire()
            )

            async for raw in websocket:
                try:
                    await self._router.dispatch(connection_id, raw)
                except Exception as e:
                    logger.exception(
                        "Error routing message",
                        extra={"connection_id": connection_id, "error": str(e)},
                    )

        except (websockets.exceptions.ConnectionClosed, ConnectionError):
            pass
        finally:
            self._context.release(connection_id)
            logger.info(
                "WebSocket connection closed",
                extra={
                    "connection_id": connection_id,
                    "code": websocket.close_code,
                    "reason": websocket.close_reason,
                },
            )
