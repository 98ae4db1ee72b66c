"""Signaling client with heartbeat and automatic reconnect.

Endpoint-side counterpart of the relay: connects with an admission token,
keeps the connection alive with periodic pings, and reconnects with
exponential backoff after any close that was not a clean, intentional one.

Outbound messages are never buffered. A send attempted while not connected
is logged and rejected.
"""

import asyncio
import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any
from urllib.parse import quote

import websockets
from websockets.asyncio.client import ClientConnection, connect

from src.relay.config import ClientConfig
from src.relay.protocol import utc_timestamp

logger = logging.getLogger(__name__)

# Close codes (RFC 6455)
CLEAN_CLOSE = 1000
ABNORMAL_CLOSE = 1006

MessageCallback = Callable[[dict[str, Any]], Any]
ConnectCallback = Callable[[], Any]
DisconnectCallback = Callable[[int, str], Any]
ConnectFactory = Callable[[str], Awaitable[ClientConnection]]
SleepFunc = Callable[[float], Awaitable[None]]


class ClientState(Enum):
    """Client connection state machine states.

    State Transitions:
    - DISCONNECTED → CONNECTING (connect)
    - CONNECTING → CONNECTED (transport open)
    - CONNECTING → RECONNECTING | DISCONNECTED (connect failed)
    - CONNECTED → RECONNECTING (non-clean close, attempts remain)
    - CONNECTED → DISCONNECTED (clean close, intentional disconnect, or retries exhausted)
    - RECONNECTING → CONNECTING (backoff delay elapsed)
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


def build_url(token: str, host: str, path: str = "/ws", secure: bool = False) -> str:
    """Build the relay URL for a token.

    Args:
        token: Admission token (URL-encoded into the query string)
        host: Relay host[:port]
        path: Relay WebSocket path
        secure: Use wss:// (pages served over https) instead of ws://
    """
    scheme = "wss" if secure else "ws"
    return f"{scheme}://{host}{path}?token={quote(token, safe='')}"


def reconnect_delay(attempt: int, base_delay_s: float) -> float:
    """Backoff delay before reconnect attempt ``attempt`` (1-based)."""
    return base_delay_s * (2 ** (attempt - 1))


class SignalingClient:
    """Resilient WebSocket client for the signaling relay.

    Callbacks may be plain functions or coroutine functions.
    """

    def __init__(
        self,
        token: str,
        host: str = "localhost:8081",
        path: str = "/ws",
        secure: bool = False,
        on_message: MessageCallback | None = None,
        on_connect: ConnectCallback | None = None,
        on_disconnect: DisconnectCallback | None = None,
        max_reconnect_attempts: int = 5,
        reconnect_base_delay_s: float = 1.0,
        heartbeat_interval_s: float = 30.0,
        connect_factory: ConnectFactory | None = None,
        sleep: SleepFunc | None = None,
    ) -> None:
        """Initialize signaling client.

        Args:
            token: Admission token
            host: Relay host[:port]
            path: Relay WebSocket path
            secure: Use wss:// instead of ws://
            on_message: Called with every parsed application message
            on_connect: Called after each successful open
            on_disconnect: Called with (code, reason) after every close
            max_reconnect_attempts: Reconnect attempts before giving up
            reconnect_base_delay_s: Delay before the first reconnect attempt
            heartbeat_interval_s: Interval between ping messages
            connect_factory: Opens the WebSocket (defaults to websockets.connect)
            sleep: Awaitable used for backoff delays (defaults to asyncio.sleep)
        """
        self.token = token
        self.url = build_url(token, host, path, secure)
        self.on_message = on_message
        self.on_connect = on_connect
        self.on_disconnect = on_disconnect
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_base_delay_s = reconnect_base_delay_s
        self.heartbeat_interval_s = heartbeat_interval_s

        self._connect_factory: ConnectFactory = connect_factory or _default_connect
        self._sleep: SleepFunc = sleep or asyncio.sleep

        self.state = ClientState.DISCONNECTED
        self.reconnect_attempts = 0
        self.connection_id: str | None = None

        self._ws: ClientConnection | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._closing = False

    @classmethod
    def from_config(cls, token: str, config: ClientConfig, **kwargs: Any) -> "SignalingClient":
        """Create a client from the ``client`` section of the relay config."""
        return cls(
            token=token,
            host=config.host,
            path=config.path,
            secure=config.secure,
            max_reconnect_attempts=config.max_reconnect_attempts,
            reconnect_base_delay_s=config.reconnect_base_delay_s,
            heartbeat_interval_s=config.heartbeat_interval_s,
            **kwargs,
        )

    @property
    def is_connected(self) -> bool:
        """Check if the client can send."""
        return self.state is ClientState.CONNECTED and self._ws is not None

    @property
    def reconnect_task(self) -> asyncio.Task[None] | None:
        """Pending (or last) reconnect task."""
        return self._reconnect_task

    async def connect(self) -> None:
        """Open the connection.

        No-op while already connecting or connected. Failures are handled as a
        non-clean close and may schedule a reconnect; they are not raised.
        """
        if self.state in (ClientState.CONNECTING, ClientState.CONNECTED):
            return

        self._closing = False
        self.state = ClientState.CONNECTING
        logger.info("Connecting to signaling relay", extra={"url": self._redacted_url()})

        try:
            ws = await self._connect_factory(self.url)
        except (OSError, TimeoutError, websockets.exceptions.WebSocketException) as e:
            logger.error("Connection failed", extra={"error": str(e)})
            await self._handle_close(ABNORMAL_CLOSE, str(e))
            return

        if self._closing:
            # disconnect() was called while the handshake was in flight
            await ws.close(code=CLEAN_CLOSE, reason="Client disconnecting")
            self.state = ClientState.DISCONNECTED
            return

        self._ws = ws
        self.state = ClientState.CONNECTED
        self.reconnect_attempts = 0
        logger.info("Connected to signaling relay")

        self._start_heartbeat()
        self._reader_task = asyncio.create_task(self._reader_loop(ws))
        await _invoke(self.on_connect)

    async def disconnect(self) -> None:
        """Close intentionally with the clean close code.

        Never triggers a reconnect.
        """
        self._closing = True
        self._stop_heartbeat()

        if self._reconnect_task is not None and not self._reconnect_task.done():
            if self._reconnect_task is not asyncio.current_task():
                self._reconnect_task.cancel()

        ws = self._ws
        if ws is not None:
            try:
                await ws.close(code=CLEAN_CLOSE, reason="Client disconnecting")
            except Exception as e:
                logger.warning("Error during close", extra={"error": str(e)})

        reader = self._reader_task
        if reader is not None and reader is not asyncio.current_task():
            await asyncio.gather(reader, return_exceptions=True)

        self._ws = None
        self.state = ClientState.DISCONNECTED
        logger.info("Signaling client disconnected")

    async def send(self, message: dict[str, Any]) -> bool:
        """Send a message if connected.

        A ``timestamp`` is added when the message has none.

        Returns:
            True if the message was handed to the transport, False otherwise
        """
        message_type = message.get("type")
        if not self.is_connected or self._ws is None:
            logger.warning(
                "Not connected, message not sent",
                extra={"type": message_type, "state": self.state.value},
            )
            return False

        payload = {**message}
        payload.setdefault("timestamp", utc_timestamp())

        try:
            await self._ws.send(json.dumps(payload))
        except (websockets.exceptions.ConnectionClosed, OSError) as e:
            logger.error("Failed to send message", extra={"type": message_type, "error": str(e)})
            return False

        logger.debug("Message sent", extra={"type": message_type})
        return True

    # === Signaling helpers ===

    async def register(self, role: str, call_id: str | None = None) -> bool:
        """Declare role (customer/agent) and optional call association."""
        message: dict[str, Any] = {"type": "register", "role": role}
        if call_id is not None:
            message["callId"] = call_id
        return await self.send(message)

    async def send_offer(
        self,
        offer: Any,
        call_id: str | None = None,
        caller_name: str | None = None,
        caller_phone: str | None = None,
        call_reason: str | None = None,
    ) -> bool:
        """Submit a session offer as the customer of a call."""
        message: dict[str, Any] = {
            "type": "offer",
            "offer": offer,
            "callerName": caller_name,
            "callerPhone": caller_phone,
            "callReason": call_reason,
        }
        if call_id is not None:
            message["callId"] = call_id
        return await self.send(message)

    async def send_answer(self, answer: Any) -> bool:
        """Answer the associated call as an agent."""
        return await self.send({"type": "answer", "answer": answer})

    async def send_ice_candidate(self, candidate: Any) -> bool:
        """Send an ICE candidate to the other side of the associated call."""
        return await self.send({"type": "ice-candidate", "candidate": candidate})

    async def agent_ready(self) -> bool:
        """Join the agent pool."""
        return await self.send({"type": "agent-ready"})

    async def end_call(self) -> bool:
        """End the associated call."""
        return await self.send({"type": "end-call"})

    # === Internals ===

    def _redacted_url(self) -> str:
        return self.url.split("?", 1)[0]

    async def _reader_loop(self, ws: ClientConnection) -> None:
        try:
            async for raw in ws:
                await self._handle_raw(raw)
        except websockets.exceptions.ConnectionClosed:
            pass
        except Exception as e:
            logger.exception("Error in receive loop", extra={"error": str(e)})

        if self._ws is ws:
            self._ws = None
        code = ws.close_code if ws.close_code is not None else ABNORMAL_CLOSE
        await self._handle_close(code, ws.close_reason or "")

    async def _handle_raw(self, raw: str | bytes) -> None:
        try:
            message = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error("Error parsing message", extra={"error": str(e)})
            return

        if not isinstance(message, dict):
            logger.error("Ignoring non-object message", extra={"kind": type(message).__name__})
            return

        logger.debug("Message received", extra={"type": message.get("type")})

        if message.get("type") == "connection_established":
            self.connection_id = message.get("connectionId")
            logger.info("Connection established", extra={"connection_id": self.connection_id})

        await _invoke(self.on_message, message)

    async def _handle_close(self, code: int, reason: str) -> None:
        self._stop_heartbeat()
        self.state = ClientState.DISCONNECTED
        logger.info("Disconnected from relay", extra={"code": code, "reason": reason})

        await _invoke(self.on_disconnect, code, reason)

        if self._closing or code == CLEAN_CLOSE:
            return

        if self.reconnect_attempts >= self.max_reconnect_attempts:
            logger.error(
                "Reconnect attempts exhausted",
                extra={"attempts": self.reconnect_attempts},
            )
            return

        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        self.reconnect_attempts += 1
        delay = reconnect_delay(self.reconnect_attempts, self.reconnect_base_delay_s)
        self.state = ClientState.RECONNECTING
        logger.info(
            "Scheduling reconnect",
            extra={"attempt": self.reconnect_attempts, "delay_s": delay},
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        if self._closing or self.state is not ClientState.RECONNECTING:
            return
        self.state = ClientState.DISCONNECTED
        await self.connect()

    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    def _stop_heartbeat(self) -> None:
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval_s)
            if self.is_connected:
                await self.send({"type": "ping"})


async def _default_connect(url: str) -> ClientConnection:
    return await connect(url)


async def _invoke(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.exception("Callback raised", extra={"error": str(e)})
