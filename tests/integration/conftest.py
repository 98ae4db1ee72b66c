"""Integration test fixtures and utilities.

Provides shared fixtures for:
- Free port allocation
- Relay transport lifecycle on localhost
- Raw WebSocket peers that have completed admission
"""

import asyncio
import json
import logging
import socket
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import pytest_asyncio
from websockets.asyncio.client import ClientConnection, connect

from src.relay.auth import StaticTokenValidator
from src.relay.context import RelayContext
from src.relay.metrics import MetricsCollector
from src.relay.router import MessageRouter
from src.relay.transport.websocket_transport import WebSocketRelayTransport

logger = logging.getLogger(__name__)

RELAY_TOKEN = "integration-token"
RECEIVE_TIMEOUT_S = 2.0


# ============================================================================
# Utility Functions for Port Allocation
# ============================================================================


def get_free_port() -> int:
    """Get a free TCP port for binding.

    Notes:
        The port is freed immediately after discovery, so there's a small
        race condition window, but this is acceptable for tests.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        s.listen(1)
        port: int = s.getsockname()[1]
    return port


# ============================================================================
# Relay Fixtures
# ============================================================================


@dataclass
class RunningRelay:
    """Handle on a relay transport serving on localhost."""

    context: RelayContext
    transport: WebSocketRelayTransport

    @property
    def port(self) -> int:
        return self.transport.port

    def url(self, token: str | None = RELAY_TOKEN, path: str = "/ws") -> str:
        query = f"?token={token}" if token is not None else ""
        return f"ws://127.0.0.1:{self.port}{path}{query}"


@pytest_asyncio.fixture
async def relay() -> AsyncIterator[RunningRelay]:
    """Start a relay transport on an ephemeral port."""
    context = RelayContext(metrics=MetricsCollector())
    transport = WebSocketRelayTransport(
        context=context,
        router=MessageRouter(context),
        validator=StaticTokenValidator([RELAY_TOKEN]),
        host="127.0.0.1",
        port=0,
    )
    await transport.start()
    logger.info("Relay started for test", extra={"port": transport.port})

    try:
        yield RunningRelay(context=context, transport=transport)
    finally:
        await transport.stop()
        context.close()


@pytest_asyncio.fixture
async def open_peer(
    relay: RunningRelay,
) -> AsyncIterator[Callable[[], Awaitable["Peer"]]]:
    """Factory connecting admitted peers; all are closed at teardown."""
    peers: list[Peer] = []

    async def _open() -> Peer:
        ws = await connect(relay.url())
        welcome = await receive_json(ws)
        assert welcome["type"] == "connection_established"
        peer = Peer(ws=ws, connection_id=welcome["connectionId"])
        peers.append(peer)
        return peer

    try:
        yield _open
    finally:
        for peer in peers:
            await peer.ws.close()


# ============================================================================
# Peer Helpers
# ============================================================================


@dataclass
class Peer:
    """An admitted raw WebSocket connection."""

    ws: ClientConnection
    connection_id: str

    async def send(self, message: dict[str, Any]) -> None:
        await self.ws.send(json.dumps(message))

    async def receive(self) -> dict[str, Any]:
        return await receive_json(self.ws)

    async def expect_silence(self, timeout: float = 0.2) -> None:
        """Assert nothing arrives within ``timeout``."""
        try:
            raw = await asyncio.wait_for(self.ws.recv(), timeout=timeout)
        except TimeoutError:
            return
        raise AssertionError(f"Unexpected message: {raw}")


async def receive_json(ws: ClientConnection) -> dict[str, Any]:
    """Receive and decode one message with a timeout."""
    raw = await asyncio.wait_for(ws.recv(), timeout=RECEIVE_TIMEOUT_S)
    message: dict[str, Any] = json.loads(raw)
    return message


async def wait_for_condition(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until ``predicate`` holds or fail after ``timeout``."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)
