"""
Call control state machine.

Each handler takes a provider event (plus whatever the orchestrator
looked up) and returns the next state with the commands to issue.
Nothing here touches the network or the database.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.services.routing.resolver import RoutingTarget
from app.services.telnyx.client_state import sip_uri


class CallState(str, Enum):
    """Lifecycle of a call leg as seen by the orchestrator."""

    INITIATED = "initiated"
    ANSWERED = "answered"
    TRANSFERRING = "transferring"
    BRIDGED = "bridged"
    FALLBACK = "fallback"  # apology playing, hangup follows
    ENDED = "ended"

    def __str__(self) -> str:
        return self.value


class CommandType(str, Enum):
    ANSWER = "answer"
    TRANSFER = "transfer"
    SPEAK = "speak"
    HANGUP = "hangup"


class CallEvent(BaseModel):
    """One webhook delivery, flattened."""

    event_type: Optional[str] = None
    call_control_id: Optional[str] = None
    call_session_id: Optional[str] = None
    call_leg_id: Optional[str] = None
    direction: Optional[str] = None
    to: Optional[str] = None
    from_: Optional[str] = None
    client_state: Optional[str] = None
    hangup_cause: Optional[str] = None

    @classmethod
    def from_webhook(cls, body: Optional[Dict[str, Any]]) -> "CallEvent":
        """
        Accept both the envelope ``{data: {event_type, payload}}`` and
        the flat legacy form with the fields at the top level.
        """
        body = body if isinstance(body, dict) else {}
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        payload = data.get("payload") if isinstance(data.get("payload"), dict) else body

        direction = payload.get("direction") or body.get("direction")
        return cls(
            event_type=data.get("event_type") or body.get("event_type"),
            call_control_id=payload.get("call_control_id") or body.get("call_control_id"),
            call_session_id=payload.get("call_session_id"),
            call_leg_id=payload.get("call_leg_id"),
            direction=direction.lower() if isinstance(direction, str) else None,
            to=payload.get("to") or payload.get("to_number") or body.get("to"),
            from_=payload.get("from"),
            client_state=payload.get("client_state") or body.get("client_state"),
            hangup_cause=payload.get("hangup_cause"),
        )


class Command(BaseModel):
    """A call control action to issue against one leg."""

    type: CommandType
    call_control_id: str
    params: Dict[str, Any] = Field(default_factory=dict)


class Transition(BaseModel):
    """Next state, the commands to reach it, and any agent pairing to record."""

    state: Optional[CallState] = None
    commands: List[Command] = Field(default_factory=list)
    pair_agent_id: Optional[str] = None


def on_initiated(event: CallEvent) -> Transition:
    """Incoming legs are answered; outgoing ones belong to the dialer."""
    if event.direction == "incoming" and event.call_control_id:
        return Transition(
            state=CallState.INITIATED,
            commands=[Command(type=CommandType.ANSWER, call_control_id=event.call_control_id)],
        )
    return Transition(state=CallState.INITIATED)


def on_answered_inbound(
    event: CallEvent,
    target: Optional[RoutingTarget],
    apology_message: str,
    sip_domain: str = "sip.telnyx.com",
) -> Transition:
    """Bridge an answered inbound call to its routing target, or apologise."""
    if not event.call_control_id:
        return Transition(state=CallState.ANSWERED)

    destination = sip_uri(target.sip_username, sip_domain) if target else None
    if not destination:
        return apology(event.call_control_id, apology_message)

    return Transition(
        state=CallState.TRANSFERRING,
        commands=[
            Command(
                type=CommandType.TRANSFER,
                call_control_id=event.call_control_id,
                params={"to": destination},
            )
        ],
        pair_agent_id=target.agent_id,
    )


def on_answered_outbound(event: CallEvent, agent_id: Optional[str]) -> Transition:
    """Agent leg of a dialer call answered; the dialer performs the bridge."""
    return Transition(state=CallState.BRIDGED if agent_id else CallState.ANSWERED, pair_agent_id=agent_id)


def on_transfer_failed(event: CallEvent, apology_message: str) -> Transition:
    if not event.call_control_id:
        return Transition(state=CallState.FALLBACK)
    return apology(event.call_control_id, apology_message)


def on_speak_ended(event: CallEvent) -> Transition:
    """The apology has played: end the call."""
    if not event.call_control_id:
        return Transition(state=CallState.ENDED)
    return Transition(
        state=CallState.ENDED,
        commands=[Command(type=CommandType.HANGUP, call_control_id=event.call_control_id)],
    )


def on_hangup(event: CallEvent) -> Transition:
    return Transition(state=CallState.ENDED)


def apology(call_control_id: str, message: str) -> Transition:
    return Transition(
        state=CallState.FALLBACK,
        commands=[
            Command(
                type=CommandType.SPEAK,
                call_control_id=call_control_id,
                params={"text": message},
            )
        ],
    )
