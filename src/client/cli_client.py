"""WebSocket CLI client for exercising the signaling relay.

Connects as a customer or an agent, prints every message the relay delivers,
and lets the operator drive a call from stdin.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from src.client.signaling_client import SignalingClient
from src.relay.config import RelayConfig

logger = logging.getLogger(__name__)

# Stand-in session description; the relay never inspects offer contents
PLACEHOLDER_OFFER = {"type": "offer", "sdp": "v=0\r\n"}
PLACEHOLDER_ANSWER = {"type": "answer", "sdp": "v=0\r\n"}

HELP_TEXT = """
Commands:
  offer   - Submit a placeholder offer (customer)
  answer  - Answer the associated call with a placeholder answer (agent)
  ready   - Join the agent pool
  end     - End the associated call
  quit    - Disconnect and exit
  help    - Show this help
"""


class CLIClient:
    """Interactive relay client."""

    def __init__(
        self,
        client: SignalingClient,
        role: str,
        call_id: str | None = None,
        caller_name: str | None = None,
        caller_phone: str | None = None,
        call_reason: str | None = None,
    ) -> None:
        """Initialize CLI client.

        Args:
            client: Signaling client (callbacks are attached here)
            role: "customer" or "agent"
            call_id: Optional call id to register with
            caller_name: Caller name sent with offers
            caller_phone: Caller phone sent with offers
            call_reason: Call reason sent with offers
        """
        self.client = client
        self.role = role
        self.call_id = call_id
        self.caller_name = caller_name
        self.caller_phone = caller_phone
        self.call_reason = call_reason
        self.running = True

        client.on_message = self.handle_message
        client.on_connect = self.handle_connect
        client.on_disconnect = self.handle_disconnect

    async def handle_connect(self) -> None:
        """Register after every (re)connect."""
        await self.client.register(self.role, self.call_id)
        if self.role == "agent" and self.call_id is None:
            await self.client.agent_ready()

    def handle_disconnect(self, code: int, reason: str) -> None:
        print(f"\n✗ Disconnected ({code}) {reason}")

    def handle_message(self, message: dict[str, Any]) -> None:
        """Print a message received from the relay."""
        msg_type = message.get("type")

        if msg_type == "connection_established":
            print(f"\n✓ Connected as {message.get('connectionId')}")
        elif msg_type == "incoming-call":
            # Remember the call so a following "answer" targets it
            self.call_id = message.get("callId")
            print(
                f"\n☎ Incoming call {self.call_id} from "
                f"{message.get('callerName')} ({message.get('callerPhone')}): "
                f"{message.get('callReason')}"
            )
        elif msg_type == "call-ended":
            print(f"\n✓ Call ended: {message.get('callId')}")
        elif msg_type == "pong":
            logger.debug("Heartbeat acknowledged")
        else:
            print(f"\n← {json.dumps(message)}")

    async def run_command(self, command: str) -> None:
        """Execute one stdin command."""
        if command == "quit":
            self.running = False
            print("\nGoodbye!")
        elif command == "help":
            print(HELP_TEXT)
        elif command == "offer":
            await self.client.send_offer(
                PLACEHOLDER_OFFER,
                call_id=self.call_id,
                caller_name=self.caller_name,
                caller_phone=self.caller_phone,
                call_reason=self.call_reason,
            )
        elif command == "answer":
            # Answers route by association; bind to the offered call first
            if self.call_id is not None:
                await self.client.register("agent", self.call_id)
            await self.client.send_answer(PLACEHOLDER_ANSWER)
        elif command == "ready":
            await self.client.agent_ready()
        elif command == "end":
            await self.client.end_call()
        else:
            print(f"Unknown command: {command}")
            print("Type help for available commands")

    async def input_loop(self) -> None:
        """Handle user input from stdin."""
        print("\n" + "=" * 60)
        print(f"Signaling CLI Client ({self.role})")
        print("=" * 60)
        print(HELP_TEXT)

        loop = asyncio.get_running_loop()

        while self.running:
            try:
                text = await loop.run_in_executor(None, input, "> ")
            except EOFError:
                self.running = False
                break

            command = text.strip().lower()
            if command:
                await self.run_command(command)

    async def run(self) -> None:
        """Run the CLI client until quit, EOF or a termination signal."""
        loop = asyncio.get_running_loop()

        def signal_handler() -> None:
            self.running = False

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)

        try:
            await self.client.connect()
            await self.input_loop()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
            await self.client.disconnect()


def main() -> None:
    """Main entry point for CLI client."""
    parser = argparse.ArgumentParser(description="CLI client for the call signaling relay")
    parser.add_argument("--token", type=str, required=True, help="Admission token")
    parser.add_argument(
        "--role",
        choices=["customer", "agent"],
        default="customer",
        help="Role to register as (default: customer)",
    )
    parser.add_argument("--call-id", type=str, default=None, help="Call id to register with")
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Relay host[:port] (default: client.host from config)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to relay config YAML file",
    )
    parser.add_argument("--caller-name", type=str, default="CLI Caller")
    parser.add_argument("--caller-phone", type=str, default=None)
    parser.add_argument("--call-reason", type=str, default=None)
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    client_config = RelayConfig.from_yaml_with_defaults(args.config).client
    if args.host:
        client_config = client_config.model_copy(update={"host": args.host})

    cli = CLIClient(
        client=SignalingClient.from_config(args.token, client_config),
        role=args.role,
        call_id=args.call_id,
        caller_name=args.caller_name,
        caller_phone=args.caller_phone,
        call_reason=args.call_reason,
    )

    try:
        asyncio.run(cli.run())
    except KeyboardInterrupt:
        print("\nExiting...")
        sys.exit(0)


if __name__ == "__main__":
    main()
