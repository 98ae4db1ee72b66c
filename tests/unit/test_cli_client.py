"""Unit tests for the CLI signaling client."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.client.cli_client import PLACEHOLDER_ANSWER, PLACEHOLDER_OFFER, CLIClient
from src.client.signaling_client import SignalingClient


@pytest.fixture
def signaling() -> MagicMock:
    """Create mocked SignalingClient."""
    client = MagicMock(spec=SignalingClient)
    for name in (
        "connect",
        "disconnect",
        "register",
        "send_offer",
        "send_answer",
        "agent_ready",
        "end_call",
    ):
        setattr(client, name, AsyncMock(return_value=True))
    return client


def test_callbacks_attached(signaling: MagicMock) -> None:
    """Test the CLI wires itself into the client callbacks."""
    cli = CLIClient(signaling, role="customer")

    assert signaling.on_message == cli.handle_message
    assert signaling.on_connect == cli.handle_connect
    assert signaling.on_disconnect == cli.handle_disconnect


async def test_connect_registers_idle_agent(signaling: MagicMock) -> None:
    """Test an agent without a call joins the pool on connect."""
    cli = CLIClient(signaling, role="agent")

    await cli.handle_connect()

    signaling.register.assert_awaited_once_with("agent", None)
    signaling.agent_ready.assert_awaited_once()


async def test_connect_registers_customer_with_call(signaling: MagicMock) -> None:
    """Test a customer registers with its call id and does not join the pool."""
    cli = CLIClient(signaling, role="customer", call_id="c1")

    await cli.handle_connect()

    signaling.register.assert_awaited_once_with("customer", "c1")
    signaling.agent_ready.assert_not_awaited()


async def test_offer_command_sends_metadata(signaling: MagicMock) -> None:
    """Test 'offer' submits the placeholder offer with caller details."""
    cli = CLIClient(
        signaling,
        role="customer",
        call_id="c1",
        caller_name="Ada",
        caller_phone="555",
        call_reason="billing",
    )

    await cli.run_command("offer")

    signaling.send_offer.assert_awaited_once_with(
        PLACEHOLDER_OFFER,
        call_id="c1",
        caller_name="Ada",
        caller_phone="555",
        call_reason="billing",
    )


async def test_answer_binds_to_incoming_call(
    signaling: MagicMock, capsys: pytest.CaptureFixture[str]
) -> None:
    """Test an agent answers the call it was last offered."""
    cli = CLIClient(signaling, role="agent")
    cli.handle_message(
        {"type": "incoming-call", "callId": "c7", "callerName": "Ada", "callReason": "billing"}
    )

    await cli.run_command("answer")

    assert "Incoming call c7" in capsys.readouterr().out
    signaling.register.assert_awaited_once_with("agent", "c7")
    signaling.send_answer.assert_awaited_once_with(PLACEHOLDER_ANSWER)


@pytest.mark.parametrize(
    ("command", "method"),
    [("ready", "agent_ready"), ("end", "end_call")],
)
async def test_simple_commands(signaling: MagicMock, command: str, method: str) -> None:
    """Test commands map onto client helpers."""
    cli = CLIClient(signaling, role="agent")

    await cli.run_command(command)

    getattr(signaling, method).assert_awaited_once()


async def test_quit_stops_loop(signaling: MagicMock) -> None:
    """Test 'quit' ends the input loop."""
    cli = CLIClient(signaling, role="customer")

    await cli.run_command("quit")

    assert cli.running is False


async def test_unknown_command(signaling: MagicMock, capsys: pytest.CaptureFixture[str]) -> None:
    """Test unknown commands print help hints and send nothing."""
    cli = CLIClient(signaling, role="customer")

    await cli.run_command("dance")

    assert "Unknown command: dance" in capsys.readouterr().out
    signaling.end_call.assert_not_awaited()


def test_message_printing(signaling: MagicMock, capsys: pytest.CaptureFixture[str]) -> None:
    """Test relay messages are printed."""
    cli = CLIClient(signaling, role="customer")

    cli.handle_message({"type": "connection_established", "connectionId": "conn-1"})
    cli.handle_message({"type": "call-ended", "callId": "c1"})
    cli.handle_message({"type": "answer", "callId": "c1"})

    out = capsys.readouterr().out
    assert "conn-1" in out
    assert "Call ended: c1" in out
    assert '"type": "answer"' in out
