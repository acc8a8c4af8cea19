"""
Telnyx call control webhook orchestrator.

Telnyx delivers every call event as a POST with this shape::

    {
        "data": {
            "event_type": "<event-type>",
            "payload": {
                "call_control_id": ...,
                "call_session_id": ...,
                "direction": "incoming" | "outgoing",
                "to": ...,
                "client_state": <base64 JSON> | null,
                ...
            }
        }
    }

We act on four event types:

* ``call.initiated``    – remember the session, answer incoming legs
* ``call.answered``     – bridge inbound calls to an agent, or record the
                          agent pairing of a dialer call
* ``call.speak.ended``  – the apology has played, hang up
* ``call.hangup``       – forget the session and its agent pairing

Delivery is at-least-once. Every mutation is an upsert or delete keyed
by a natural id, and command failures on dead legs are logged, never
raised. The webhook is always acknowledged.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConfigurationError, TelnyxAPIError
from app.db.models import Agent
from app.services.active_calls.registry import ActiveCallRegistry
from app.services.active_calls.session_links import CallSessionStore
from app.services.call_control.state_machine import (
    CallEvent,
    CallState,
    Command,
    CommandType,
    Transition,
    on_answered_inbound,
    on_answered_outbound,
    on_hangup,
    on_initiated,
    on_speak_ended,
    on_transfer_failed,
)
from app.services.call_control.transfer import transfer_with_retry
from app.services.routing.resolver import RoutingResolver, RoutingTarget
from app.services.telnyx.client import TelnyxClient
from app.services.telnyx.client_state import decode_client_state, sip_username_from_uri

logger = logging.getLogger(__name__)


class CallControlOrchestrator:
    """Consumes Telnyx call events and issues the resulting commands."""

    def __init__(
        self,
        db: AsyncSession,
        client: TelnyxClient,
        resolver: RoutingResolver,
        apology_message: str,
        sip_domain: str = "sip.telnyx.com",
    ):
        self.client = client
        self.resolver = resolver
        self.apology_message = apology_message
        self.sip_domain = sip_domain
        self.sessions = CallSessionStore(db)
        self.active_calls = ActiveCallRegistry(db)
        self._handlers: Dict[str, Callable[[CallEvent], Awaitable[None]]] = {
            "call.initiated": self._handle_initiated,
            "call.answered": self._handle_answered,
            "call.speak.ended": self._handle_speak_ended,
            "call.hangup": self._handle_hangup,
        }

    async def handle_webhook(self, body: Optional[Dict[str, Any]]) -> None:
        """Process one webhook delivery. Never raises."""
        event = CallEvent.from_webhook(body)
        logger.info(
            f"[WEBHOOK] {event.event_type} - call_control_id: {event.call_control_id}, "
            f"session: {event.call_session_id}, direction: {event.direction}"
        )

        if not self.client.is_configured:
            logger.error("[WEBHOOK] TELNYX_API_KEY not configured; cannot control calls")
            return

        handler = self._handlers.get(event.event_type or "")
        if handler is None:
            logger.debug(f"[WEBHOOK] Ignoring event {event.event_type}")
            return

        try:
            await handler(event)
        except Exception as e:
            # The provider only retries on transport failure; always ack.
            logger.error(
                f"[WEBHOOK] Error handling {event.event_type} - call_control_id: "
                f"{event.call_control_id}, Error: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    async def _handle_initiated(self, event: CallEvent) -> None:
        transition = on_initiated(event)
        if event.call_session_id and event.call_control_id:
            owner = await self.sessions.remember(
                event.call_session_id,
                event.call_control_id,
                state=str(transition.state),
                direction=event.direction,
            )
            if owner != event.call_control_id:
                logger.debug(
                    f"[WEBHOOK] Leg {event.call_control_id} joined session {event.call_session_id} "
                    f"opened by {owner}"
                )
                return
        await self._apply(event, transition)

    async def _handle_answered(self, event: CallEvent) -> None:
        org_id = await self.resolver.resolve_org_from_did(event.to)
        if org_id:
            agent = await self.resolver.pick_available_agent()
            target = None
            if agent:
                logger.info(
                    f"[WEBHOOK] Routing {event.call_control_id} to agent {agent.id} ({agent.sip_username})"
                )
                target = RoutingTarget(sip_username=agent.sip_username, source="agent", agent_id=agent.id)
            else:
                logger.info(f"[WEBHOOK] No agent available for org {org_id}")
            transition = on_answered_inbound(event, target, self.apology_message, self.sip_domain)
            await self._apply(event, transition)
            return

        # Only the leg that opened the session is paired. Later legs in the
        # same session are transfer targets (agent or destination).
        link = await self.sessions.lookup(event.call_session_id) if event.call_session_id else None
        if link and link.call_control_id != event.call_control_id:
            logger.debug(
                f"[WEBHOOK] Leg {event.call_control_id} joined session {event.call_session_id} "
                f"opened by {link.call_control_id}; not pairing"
            )
            return

        agent = await self._agent_from_client_state(event)
        if agent is None:
            logger.warning(
                f"[WEBHOOK] Answered call {event.call_control_id} to {event.to} "
                f"matches no org and names no agent"
            )
        await self._apply(event, on_answered_outbound(event, agent.id if agent else None))

    async def _handle_speak_ended(self, event: CallEvent) -> None:
        await self._apply(event, on_speak_ended(event))

    async def _handle_hangup(self, event: CallEvent) -> None:
        await self._apply(event, on_hangup(event))
        legs = {event.call_control_id}
        if event.call_session_id:
            link = await self.sessions.lookup(event.call_session_id)
            if link:
                legs.add(link.call_control_id)
            await self.sessions.forget(event.call_session_id)
        for leg in legs - {None}:
            await self.active_calls.clear_for_customer_leg(leg)
        logger.info(
            f"[WEBHOOK] Call ended - session: {event.call_session_id}, "
            f"cause: {event.hangup_cause or 'unknown'}"
        )

    # ------------------------------------------------------------------
    # Command execution
    # ------------------------------------------------------------------

    async def _apply(self, event: CallEvent, transition: Transition) -> None:
        state = transition.state
        for command in transition.commands:
            if command.type is CommandType.TRANSFER:
                transferred = await transfer_with_retry(
                    self.client, command.call_control_id, command.params["to"]
                )
                if not transferred:
                    await self._apply(event, on_transfer_failed(event, self.apology_message))
                    return
                state = CallState.BRIDGED
            else:
                await self._issue(command)

        if transition.pair_agent_id and event.call_control_id:
            await self.active_calls.upsert(transition.pair_agent_id, event.call_control_id)

        if state and state is not CallState.ENDED and event.call_session_id:
            await self.sessions.set_state(event.call_session_id, str(state))

    async def _issue(self, command: Command) -> bool:
        try:
            if command.type is CommandType.ANSWER:
                await self.client.answer(command.call_control_id)
            elif command.type is CommandType.SPEAK:
                await self.client.speak(command.call_control_id, command.params["text"])
            elif command.type is CommandType.HANGUP:
                await self.client.hangup(command.call_control_id)
            elif command.type is CommandType.TRANSFER:
                await self.client.transfer(command.call_control_id, command.params["to"])
        except (TelnyxAPIError, ConfigurationError) as e:
            # Typically the leg is already gone.
            logger.warning(f"[WEBHOOK] {command.type.value} on {command.call_control_id} failed: {e}")
            return False
        return True

    async def _agent_from_client_state(self, event: CallEvent) -> Optional[Agent]:
        state = decode_client_state(event.client_state) or {}
        sip_username = state.get("to") or sip_username_from_uri(event.to)
        return await self.resolver.get_agent_by_sip_username(sip_username)
