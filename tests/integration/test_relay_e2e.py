"""End-to-end tests for the signaling relay over real WebSockets.

Tests cover:
- Token admission and 1008 rejection
- Full customer/agent call flow (offer, answer, ICE, end-call)
- Cleanup when a participant disconnects
- SignalingClient against a live relay
- Server lifecycle via start_server
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import pytest
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from src.client.signaling_client import ClientState, SignalingClient
from src.relay.calls import CallState
from src.relay.config import AuthConfig, HealthConfig, RelayConfig, TransportConfig
from src.relay.server import start_server
from tests.integration.conftest import (
    RELAY_TOKEN,
    Peer,
    RunningRelay,
    get_free_port,
    receive_json,
    wait_for_condition,
)

OpenPeer = Callable[[], Awaitable[Peer]]


@pytest.mark.integration
@pytest.mark.parametrize(
    ("token", "reason"),
    [(None, "Authentication required"), ("wrong", "Invalid token")],
)
async def test_rejected_token_closes_with_policy_violation(
    relay: RunningRelay, token: str | None, reason: str
) -> None:
    """Test a missing or invalid token closes with 1008 before admission."""
    async with connect(relay.url(token=token)) as ws:
        with pytest.raises(ConnectionClosed):
            await receive_json(ws)

        assert ws.close_code == 1008
        assert ws.close_reason == reason

    assert len(relay.context.registry) == 0
    assert relay.context.metrics.get_summary()["connections_rejected"] == 1.0


@pytest.mark.integration
async def test_admission_message(relay: RunningRelay) -> None:
    """Test admitted connections receive their id with a timestamp."""
    async with connect(relay.url(path="/any/path")) as ws:
        welcome = await receive_json(ws)

        assert welcome["type"] == "connection_established"
        assert welcome["connectionId"] in relay.context.registry
        assert welcome["timestamp"].endswith("Z")


@pytest.mark.integration
async def test_full_call_flow(relay: RunningRelay, open_peer: OpenPeer) -> None:
    """Test a call from offer through end-call between two peers."""
    agent = await open_peer()
    customer = await open_peer()
    bystander = await open_peer()

    await agent.send({"type": "register", "role": "agent"})
    await agent.send({"type": "agent-ready"})
    await wait_for_condition(
        lambda: agent.connection_id in relay.context.registry.agents_snapshot()
    )

    await customer.send(
        {
            "type": "offer",
            "callId": "call-e2e",
            "offer": {"type": "offer", "sdp": "v=0"},
            "callerName": "Ada",
            "callerPhone": "555-0100",
            "callReason": "billing",
        }
    )
    incoming = await agent.receive()
    assert incoming["type"] == "incoming-call"
    assert incoming["callId"] == "call-e2e"
    assert incoming["callerName"] == "Ada"

    await agent.send({"type": "register", "role": "agent", "callId": "call-e2e"})
    await agent.send({"type": "answer", "answer": {"type": "answer", "sdp": "v=0"}})
    answer = await customer.receive()
    assert answer["type"] == "answer"
    assert answer["answer"] == {"type": "answer", "sdp": "v=0"}
    assert answer["callId"] == "call-e2e"

    session = relay.context.sessions.get("call-e2e")
    assert session is not None
    assert session.state is CallState.MATCHED

    await customer.send({"type": "ice-candidate", "candidate": {"candidate": "from-customer"}})
    assert (await agent.receive())["candidate"] == {"candidate": "from-customer"}
    await agent.send({"type": "ice-candidate", "candidate": {"candidate": "from-agent"}})
    assert (await customer.receive())["candidate"] == {"candidate": "from-agent"}

    await customer.send({"type": "end-call"})
    assert (await customer.receive())["type"] == "call-ended"
    assert (await agent.receive())["type"] == "call-ended"
    assert relay.context.sessions.get("call-e2e") is None

    await bystander.expect_silence()
    await customer.expect_silence()
    await agent.expect_silence()


@pytest.mark.integration
async def test_malformed_frames_keep_connection_open(
    relay: RunningRelay, open_peer: OpenPeer
) -> None:
    """Test garbage input gets no reply and the connection stays usable."""
    peer = await open_peer()

    await peer.ws.send("not json")
    await peer.ws.send(b"\x00\x01")
    await peer.ws.send('{"type": "unheard-of"}')
    await peer.expect_silence()

    await peer.send({"type": "ping"})
    assert (await peer.receive())["type"] == "pong"


@pytest.mark.integration
async def test_disconnect_cleans_sessions(relay: RunningRelay, open_peer: OpenPeer) -> None:
    """Test closing both participants leaves no session behind."""
    agent = await open_peer()
    customer = await open_peer()
    await agent.send({"type": "register", "role": "agent", "callId": "call-x"})
    await customer.send({"type": "offer", "callId": "call-x", "offer": {}})
    await agent.receive()
    await agent.send({"type": "answer", "answer": {}})
    await customer.receive()

    await agent.ws.close()
    await wait_for_condition(lambda: agent.connection_id not in relay.context.registry)
    session = relay.context.sessions.get("call-x")
    assert session is not None
    assert session.agent_id is None
    assert session.state is CallState.PENDING

    await customer.ws.close()
    await wait_for_condition(lambda: len(relay.context.sessions) == 0)
    assert len(relay.context.registry) == 0


@pytest.mark.integration
async def test_signaling_client_against_relay(relay: RunningRelay) -> None:
    """Test SignalingClient connects, caches its id and exchanges messages."""
    received: list[dict[str, Any]] = []
    client = SignalingClient(
        RELAY_TOKEN,
        host=f"127.0.0.1:{relay.port}",
        on_message=received.append,
    )

    await client.connect()
    try:
        await wait_for_condition(lambda: client.connection_id is not None)
        assert client.connection_id in relay.context.registry

        assert await client.register("customer", call_id="call-c") is True
        assert await client.send({"type": "ping"}) is True
        await wait_for_condition(lambda: any(m["type"] == "pong" for m in received))
        assert relay.context.registry.get(client.connection_id).call_id == "call-c"
    finally:
        await client.disconnect()

    assert client.state is ClientState.DISCONNECTED
    await wait_for_condition(lambda: len(relay.context.registry) == 0)


@pytest.mark.integration
async def test_start_server_lifecycle() -> None:
    """Test start_server serves until the stop event is set."""
    port = get_free_port()
    config = RelayConfig(
        transport=TransportConfig(host="127.0.0.1", port=port),
        auth=AuthConfig(mode="any"),
        health=HealthConfig(enabled=False),
        graceful_shutdown_timeout_s=2,
    )
    stop_event = asyncio.Event()
    server_task = asyncio.create_task(start_server(config, stop_event=stop_event))

    welcome: dict[str, Any] | None = None
    for _ in range(50):
        try:
            async with connect(f"ws://127.0.0.1:{port}/?token=dev") as ws:
                welcome = await receive_json(ws)
            break
        except OSError:
            await asyncio.sleep(0.05)

    stop_event.set()
    await asyncio.wait_for(server_task, timeout=5.0)

    assert welcome is not None
    assert welcome["type"] == "connection_established"
