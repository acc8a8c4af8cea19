"""
Agent-first outbound dialing.

The call is placed to the agent's own SIP endpoint, carrying the real
destination in ``client_state``. Once the agent leg is up the
destination is bridged in by ``connect_destination``, so inbound and
outbound calls share the same answer/transfer bookkeeping.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

from app.core.config import Settings
from app.core.exceptions import ConfigurationError, DialerValidationError, TelnyxAPIError
from app.db.models import Agent
from app.services.call_control.transfer import answer_then_transfer, speak_apology
from app.services.telnyx.client import TelnyxClient
from app.services.telnyx.client_state import decode_client_state, encode_client_state, sip_uri
from app.utils.phone import normalize_e164

logger = logging.getLogger(__name__)


@dataclass
class FromNumberStatus:
    """Whether a caller id may originate calls from our app / SIP connection."""

    number: str
    purchased_found: bool = False
    assigned_to_app: bool = False
    assigned_to_sip: bool = False
    verified_caller_id: bool = False

    @property
    def assigned_to_origin(self) -> bool:
        return self.assigned_to_app or self.assigned_to_sip


class OutboundDialer:
    """Places agent-first outbound calls."""

    def __init__(self, client: TelnyxClient, config: Settings):
        self.client = client
        self.config = config

    async def place_call(
        self, agent: Optional[Agent], to: Optional[str], from_: Optional[str] = None
    ) -> dict[str, Any]:
        """
        Dial the agent's SIP endpoint on behalf of ``to``.

        Raises ``ConfigurationError`` or ``DialerValidationError`` for the
        first failed precondition, and ``TelnyxAPIError`` if Telnyx refuses
        the call.
        """
        app_id, sip_connection_id = self._require_configuration()

        if agent is None or not agent.sip_username:
            raise DialerValidationError("Agent missing SIP username")
        agent_uri = sip_uri(agent.sip_username, self.config.sip_domain)
        if not agent_uri:
            raise DialerValidationError("Agent SIP username is not dialable")

        await self.preflight_voice_app(app_id)

        to_e164 = normalize_e164(to)
        if not to_e164:
            raise DialerValidationError("Invalid destination")

        from_e164 = normalize_e164(from_) or normalize_e164(self.config.from_number)
        if not from_e164:
            raise DialerValidationError("Missing valid FROM_NUMBER")

        # Computed for diagnostics only; unassigned numbers are not rejected.
        from_status = await self.check_from_number(from_e164)
        if not from_status.assigned_to_app and not from_status.verified_caller_id:
            logger.warning(
                f"[OUTBOUND] From {from_e164} is neither assigned to the Voice API app "
                f"nor a verified caller id"
            )

        sip_ready = await self.preflight_sip_connection(sip_connection_id)

        payload = {
            "to": agent_uri,
            "from": from_e164,
            "connection_id": app_id,
            "client_state": encode_client_state({"dest": to_e164, "from": from_e164}),
        }

        logger.info(
            f"[OUTBOUND] Dialing - agent: {agent.id}, app_id: {app_id}, sip_id: {sip_connection_id}, "
            f"from: {from_e164}, dest: {to_e164}, assigned_to_app: {from_status.assigned_to_app}, "
            f"assigned_to_sip: {from_status.assigned_to_sip}, sip_ready: {sip_ready}"
        )
        result = await self.client.create_call(payload)
        logger.info(f"[OUTBOUND] Call placed for agent {agent.id} to {to_e164}")
        return result

    async def connect_destination(self, call_control_id: str, client_state: Optional[str]) -> bool:
        """
        Bridge an answered agent leg to the destination it was dialed for.

        A failed transfer falls back to the spoken apology.
        """
        state = decode_client_state(client_state) or {}
        destination = normalize_e164(state.get("dest"))
        if not destination:
            logger.warning(f"[OUTBOUND] No destination in client_state for {call_control_id}")
            return False

        connected = await answer_then_transfer(
            self.client, call_control_id, destination, normalize_e164(state.get("from"))
        )
        if not connected:
            logger.error(f"[OUTBOUND] Could not bridge {call_control_id} to {destination}")
            await speak_apology(self.client, call_control_id, self.config.apology_message)
        return connected

    # ------------------------------------------------------------------
    # Preflight diagnostics (logged, never blocking)
    # ------------------------------------------------------------------

    async def preflight_voice_app(self, app_id: str) -> bool:
        """App needs an outbound voice profile and a webhook URL."""
        try:
            result = await self.client.get_call_control_application(app_id)
        except TelnyxAPIError as e:
            logger.warning(f"[OUTBOUND] Failed to preflight call control app {app_id}: {e}")
            return False

        data = result.get("data") or {}
        ovp = (data.get("outbound") or {}).get("outbound_voice_profile_id")
        webhook = data.get("webhook_event_url") or data.get("webhook_url")
        if self.config.telnyx_debug:
            logger.debug(f"[OUTBOUND] Preflight app {app_id} - ovp: {ovp}, webhook: {webhook}")
        if not ovp or not webhook:
            logger.warning(
                f"[OUTBOUND] App {app_id} misconfigured - outbound_voice_profile_id: {ovp}, "
                f"webhook: {webhook}"
            )
            return False
        return True

    async def preflight_sip_connection(self, connection_id: str) -> bool:
        try:
            result = await self.client.get_connection(connection_id)
        except TelnyxAPIError as e:
            logger.warning(f"[OUTBOUND] Failed to preflight SIP connection {connection_id}: {e}")
            return False

        data = result.get("data") or {}
        ovp = data.get("outbound_voice_profile_id") or (data.get("outbound") or {}).get(
            "outbound_voice_profile_id"
        )
        if not ovp:
            logger.warning(
                f"[OUTBOUND] SIP connection {connection_id} has no outbound_voice_profile_id"
            )
            return False
        return True

    async def check_from_number(self, e164: str) -> FromNumberStatus:
        status = FromNumberStatus(number=e164)
        try:
            record, verified = await asyncio.gather(
                self.client.find_phone_number(e164),
                self.client.is_verified_caller_id(e164),
            )
        except TelnyxAPIError as e:
            logger.warning(f"[OUTBOUND] From-number check failed for {e164}: {e}")
            return status

        if record:
            connection_id = record.get("connection_id")
            status.purchased_found = True
            status.assigned_to_app = bool(
                self.config.call_control_app_id and connection_id == self.config.call_control_app_id
            )
            status.assigned_to_sip = bool(
                self.config.sip_credential_connection_id
                and connection_id == self.config.sip_credential_connection_id
            )
        status.verified_caller_id = verified
        return status

    def _require_configuration(self) -> tuple[str, str]:
        if not self.config.telnyx_api_key:
            raise ConfigurationError("Missing TELNYX_API_KEY")
        if not self.config.call_control_app_id:
            raise ConfigurationError("Missing CALL_CONTROL_APP_ID")
        if not self.config.sip_credential_connection_id:
            raise ConfigurationError("Missing SIP connection id")
        return self.config.call_control_app_id, self.config.sip_credential_connection_id
