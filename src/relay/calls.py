"""Call session table.

Maps a call id to its customer and agent connection ids, the pending offer
and the caller metadata supplied with it.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class CallState(Enum):
    """Call state machine states.

    State Transitions:
    - PENDING → MATCHED (agent attached)
    - MATCHED → MATCHED (agent overwritten by a later answer)
    - MATCHED → PENDING (agent left, customer still present)
    - * → ENDED (end-call, or both participants gone)
    """

    PENDING = "pending"
    MATCHED = "matched"
    ENDED = "ended"


VALID_TRANSITIONS: dict[CallState, set[CallState]] = {
    CallState.PENDING: {CallState.MATCHED, CallState.ENDED},
    CallState.MATCHED: {CallState.MATCHED, CallState.PENDING, CallState.ENDED},
    CallState.ENDED: set(),  # Terminal state
}


class InvalidCallTransition(RuntimeError):
    """Raised when a call is moved along a transition the state machine forbids."""


@dataclass(frozen=True)
class CallerMetadata:
    """Caller details attached to an offer. Opaque to the relay."""

    name: Any = None
    phone: Any = None
    reason: Any = None


@dataclass
class CallSession:
    """One pending or in-progress call."""

    call_id: str
    customer_id: str | None
    offer: Any = None
    metadata: CallerMetadata = field(default_factory=CallerMetadata)
    agent_id: str | None = None
    state: CallState = CallState.PENDING
    created_at: float = field(default_factory=time.time)

    def transition(self, new_state: CallState) -> None:
        """Move to a new state.

        Raises:
            InvalidCallTransition: If the transition is not allowed
        """
        if new_state not in VALID_TRANSITIONS[self.state]:
            raise InvalidCallTransition(
                f"Invalid call transition {self.state.value} → {new_state.value} "
                f"for call {self.call_id}"
            )
        self.state = new_state

    @property
    def is_orphaned(self) -> bool:
        """True once neither participant is referenced."""
        return self.customer_id is None and self.agent_id is None


class CallSessionTable:
    """In-memory table of call sessions keyed by call id.

    Sessions hold connection ids only. Every method is synchronous, which keeps
    the check-then-act sequences below atomic on a single event loop.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, CallSession] = {}

    def create_or_replace(
        self,
        call_id: str,
        offer: Any,
        metadata: CallerMetadata,
        customer_id: str,
    ) -> CallSession | None:
        """Create a session, silently replacing any existing one for the id.

        A replaced session's agent is dropped without notification.

        Returns:
            The replaced session, or None if the id was free
        """
        replaced = self._sessions.pop(call_id, None)
        if replaced is not None:
            replaced.state = CallState.ENDED

        self._sessions[call_id] = CallSession(
            call_id=call_id,
            customer_id=customer_id,
            offer=offer,
            metadata=metadata,
        )
        logger.info(
            "Call session created",
            extra={
                "call_id": call_id,
                "customer_id": customer_id,
                "replaced": replaced is not None,
            },
        )
        return replaced

    def attach_agent(self, call_id: str, agent_id: str) -> bool:
        """Attach an agent to a call, overwriting any previous agent.

        Returns:
            False if the call id is unknown, True otherwise
        """
        session = self._sessions.get(call_id)
        if session is None:
            return False

        previous = session.agent_id
        session.agent_id = agent_id
        session.transition(CallState.MATCHED)

        if previous is not None and previous != agent_id:
            logger.warning(
                "Agent overwritten on call",
                extra={"call_id": call_id, "previous_agent_id": previous, "agent_id": agent_id},
            )
        return True

    def get(self, call_id: str | None) -> CallSession | None:
        """Look up a session by call id."""
        if call_id is None:
            return None
        return self._sessions.get(call_id)

    def clear_participant(self, call_id: str, connection_id: str) -> None:
        """Drop a connection's reference from one call.

        Deletes the session once neither participant remains.
        """
        session = self._sessions.get(call_id)
        if session is None:
            return

        if session.customer_id == connection_id:
            session.customer_id = None
        if session.agent_id == connection_id:
            session.agent_id = None
            if session.customer_id is not None and session.state is CallState.MATCHED:
                session.transition(CallState.PENDING)

        if session.is_orphaned:
            self.delete(call_id)

    def clear_connection(self, connection_id: str) -> None:
        """Drop a connection's reference from every call that holds it."""
        affected = [
            session.call_id
            for session in self._sessions.values()
            if connection_id in (session.customer_id, session.agent_id)
        ]
        for call_id in affected:
            self.clear_participant(call_id, connection_id)

    def delete(self, call_id: str) -> CallSession | None:
        """Remove a session.

        Returns:
            The removed session, or None if the id was unknown
        """
        session = self._sessions.pop(call_id, None)
        if session is None:
            return None

        session.transition(CallState.ENDED)
        logger.info(
            "Call session removed",
            extra={"call_id": call_id, "duration_s": time.time() - session.created_at},
        )
        return session

    def clear(self) -> None:
        """Drop every session (shutdown only)."""
        self._sessions.clear()

    def snapshot(self) -> list[dict[str, Any]]:
        """Summary of sessions for the stats endpoint."""
        return [
            {
                "call_id": session.call_id,
                "state": session.state.value,
                "customer_id": session.customer_id,
                "agent_id": session.agent_id,
                "caller_name": session.metadata.name,
                "created_at": session.created_at,
            }
            for session in self._sessions.values()
        ]

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._sessions
