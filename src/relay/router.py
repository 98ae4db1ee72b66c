"""Message router.

Interprets each inbound signaling message, applies its effect to the
connection registry and call session table, and delivers the resulting
messages to the right peers.

Routing is split in two phases:
1. ``route`` parses the frame, mutates relay state and decides deliveries.
   It is synchronous, so no other message can interleave with it.
2. ``deliver`` sends the decided messages. Send failures are logged per peer
   and never reach the sender or other peers.

The relay never answers a sender with an error. Anything it cannot route is
passed to ``RelayContext.record_drop`` and otherwise ignored.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass

from src.relay.calls import CallerMetadata
from src.relay.context import RelayContext
from src.relay.protocol import (
    AgentReadyMessage,
    AnswerMessage,
    AnswerRelayMessage,
    CallEndedMessage,
    ClientMessage,
    EndCallMessage,
    IceCandidateMessage,
    IceCandidateRelayMessage,
    IncomingCallMessage,
    MalformedMessage,
    OfferMessage,
    PingMessage,
    PongMessage,
    RegisterMessage,
    ServerMessage,
    UnknownMessageType,
    parse_client_message,
)
from src.relay.registry import Connection, ConnectionRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Delivery:
    """One message to send to one connection."""

    connection_id: str
    message: ServerMessage


class MessageRouter:
    """Routes signaling messages between customers and agents."""

    def __init__(self, context: RelayContext) -> None:
        """Initialize router.

        Args:
            context: Relay state shared by every connection
        """
        self.context = context
        self.registry = context.registry
        self.sessions = context.sessions

    async def dispatch(self, connection_id: str, raw: str | bytes) -> int:
        """Route one inbound frame and deliver the result.

        Returns:
            Number of messages delivered
        """
        deliveries = self.route(connection_id, raw)
        if not deliveries:
            return 0
        return await self.deliver(deliveries)

    def route(self, connection_id: str, raw: str | bytes) -> list[Delivery]:
        """Parse one inbound frame and apply it to relay state.

        Args:
            connection_id: Connection the frame arrived on
            raw: Frame payload

        Returns:
            Messages to deliver, possibly empty
        """
        sender = self.registry.resolve(connection_id)
        if sender is None:
            self.context.record_drop("unknown_connection", connection_id)
            return []

        try:
            message = parse_client_message(raw)
        except MalformedMessage as e:
            logger.warning(
                "Malformed message",
                extra={"connection_id": connection_id, "error": str(e)},
            )
            self.context.record_drop(e.reason, connection_id)
            return []
        except UnknownMessageType as e:
            self.context.record_drop(
                "unknown_type", connection_id, message_type=e.message_type
            )
            return []

        self.context.metrics.record_message(message.type)
        logger.debug(
            "Message received",
            extra={"connection_id": connection_id, "type": message.type},
        )
        return self._handle(sender, message)

    def _handle(self, sender: Connection, message: ClientMessage) -> list[Delivery]:
        if isinstance(message, RegisterMessage):
            return self._handle_register(sender, message)
        if isinstance(message, OfferMessage):
            return self._handle_offer(sender, message)
        if isinstance(message, AnswerMessage):
            return self._handle_answer(sender, message)
        if isinstance(message, IceCandidateMessage):
            return self._handle_ice_candidate(sender, message)
        if isinstance(message, AgentReadyMessage):
            return self._handle_agent_ready(sender)
        if isinstance(message, EndCallMessage):
            return self._handle_end_call(sender)
        if isinstance(message, PingMessage):
            return [Delivery(sender.connection_id, PongMessage())]
        return []

    def _handle_register(self, sender: Connection, message: RegisterMessage) -> list[Delivery]:
        role = ConnectionRole(message.role)
        self.registry.set_role(sender.connection_id, role)
        self.registry.associate(sender.connection_id, message.call_id)
        logger.info(
            "Connection registered",
            extra={
                "connection_id": sender.connection_id,
                "role": role.value,
                "call_id": message.call_id,
            },
        )
        return []

    def _handle_offer(self, sender: Connection, message: OfferMessage) -> list[Delivery]:
        call_id = message.call_id or f"call-{uuid.uuid4().hex[:12]}"
        metadata = CallerMetadata(
            name=message.caller_name,
            phone=message.caller_phone,
            reason=message.call_reason,
        )

        self.registry.set_role(sender.connection_id, ConnectionRole.CUSTOMER)
        self.registry.associate(sender.connection_id, call_id)
        replaced = self.sessions.create_or_replace(
            call_id, message.offer, metadata, sender.connection_id
        )

        self.context.metrics.record_call_created(replaced=replaced is not None)
        self.context.metrics.set_active_calls(len(self.sessions))

        # Existing behaviour: the replaced session's agent is not told.
        if replaced is not None and replaced.agent_id is not None:
            logger.warning(
                "Offer replaced a matched call; previous agent orphaned",
                extra={"call_id": call_id, "orphaned_agent_id": replaced.agent_id},
            )

        notification = IncomingCallMessage(
            call_id=call_id,
            caller_name=metadata.name,
            caller_phone=metadata.phone,
            call_reason=metadata.reason,
        )
        agents = self.registry.agents_snapshot()
        logger.info(
            "Incoming call broadcast",
            extra={"call_id": call_id, "agents": len(agents)},
        )
        return [Delivery(agent_id, notification) for agent_id in sorted(agents)]

    def _handle_answer(self, sender: Connection, message: AnswerMessage) -> list[Delivery]:
        if sender.role is not ConnectionRole.AGENT:
            self.context.record_drop("not_agent", sender.connection_id, message_type="answer")
            return []

        call_id = sender.call_id
        if call_id is None:
            self.context.record_drop(
                "no_call_association", sender.connection_id, message_type="answer"
            )
            return []

        if not self.sessions.attach_agent(call_id, sender.connection_id):
            self.context.record_drop(
                "no_such_session", sender.connection_id, message_type="answer", call_id=call_id
            )
            return []

        session = self.sessions.get(call_id)
        customer = self.registry.resolve(session.customer_id) if session else None
        if customer is None:
            self.context.record_drop(
                "peer_unavailable", sender.connection_id, message_type="answer", call_id=call_id
            )
            return []

        return [
            Delivery(
                customer.connection_id,
                AnswerRelayMessage(answer=message.answer, call_id=call_id),
            )
        ]

    def _handle_ice_candidate(
        self, sender: Connection, message: IceCandidateMessage
    ) -> list[Delivery]:
        call_id = sender.call_id
        if call_id is None:
            self.context.record_drop(
                "no_call_association", sender.connection_id, message_type="ice-candidate"
            )
            return []

        session = self.sessions.get(call_id)
        if session is None:
            self.context.record_drop(
                "no_such_session",
                sender.connection_id,
                message_type="ice-candidate",
                call_id=call_id,
            )
            return []

        if sender.role is ConnectionRole.CUSTOMER:
            target_id = session.agent_id
        else:
            target_id = session.customer_id

        target = self.registry.resolve(target_id)
        if target is None:
            self.context.record_drop(
                "peer_unavailable",
                sender.connection_id,
                message_type="ice-candidate",
                call_id=call_id,
            )
            return []

        return [
            Delivery(
                target.connection_id,
                IceCandidateRelayMessage(candidate=message.candidate, call_id=call_id),
            )
        ]

    def _handle_agent_ready(self, sender: Connection) -> list[Delivery]:
        self.registry.set_role(sender.connection_id, ConnectionRole.AGENT)
        logger.info(
            "Agent ready",
            extra={"connection_id": sender.connection_id, "call_id": sender.call_id},
        )
        return []

    def _handle_end_call(self, sender: Connection) -> list[Delivery]:
        call_id = sender.call_id
        if call_id is None:
            self.context.record_drop(
                "no_call_association", sender.connection_id, message_type="end-call"
            )
            return []

        session = self.sessions.delete(call_id)
        if session is None:
            self.context.record_drop(
                "no_such_session", sender.connection_id, message_type="end-call", call_id=call_id
            )
            return []

        self.context.metrics.set_active_calls(len(self.sessions))

        participants: list[str] = []
        for participant_id in (session.customer_id, session.agent_id):
            participant = self.registry.resolve(participant_id)
            if participant is None or participant.connection_id in participants:
                continue
            participants.append(participant.connection_id)
            if participant.call_id == call_id:
                self.registry.associate(participant.connection_id, None)

        logger.info(
            "Call ended",
            extra={
                "call_id": call_id,
                "ended_by": sender.connection_id,
                "notified": len(participants),
            },
        )
        notification = CallEndedMessage(call_id=call_id)
        return [Delivery(participant_id, notification) for participant_id in participants]

    async def deliver(self, deliveries: list[Delivery]) -> int:
        """Send decided messages to their connections.

        Returns:
            Number of messages sent successfully
        """
        sends = []
        targets = []
        encoded: dict[int, str] = {}
        for delivery in deliveries:
            connection = self.registry.resolve(delivery.connection_id)
            if connection is None or connection.channel is None or not connection.is_deliverable:
                logger.debug(
                    "Delivery target gone",
                    extra={"connection_id": delivery.connection_id, "type": delivery.message.type},
                )
                continue
            # Broadcasts share one message object; serialize it once.
            payload = encoded.get(id(delivery.message))
            if payload is None:
                payload = encoded[id(delivery.message)] = delivery.message.to_wire()
            sends.append(connection.channel.send_text(payload))
            targets.append(delivery)

        if not sends:
            return 0

        results = await asyncio.gather(*sends, return_exceptions=True)
        delivered = 0
        for delivery, result in zip(targets, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning(
                    "Failed to deliver message",
                    extra={
                        "connection_id": delivery.connection_id,
                        "type": delivery.message.type,
                        "error": str(result),
                    },
                )
            else:
                delivered += 1
        return delivered
