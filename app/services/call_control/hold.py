"""Hold / resume a bridged call by playing music to both legs."""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConfigurationError
from app.services.active_calls.registry import ActiveCallRegistry
from app.services.active_calls.session_links import CallSessionStore
from app.services.telnyx.client import TelnyxClient

logger = logging.getLogger(__name__)


@dataclass
class HoldResult:
    call_control_id: str
    hold_state: str
    playback_state: str
    agent_id: Optional[str] = None


class HoldController:
    """Looks up the live leg for a session and toggles hold playback on it."""

    def __init__(self, db: AsyncSession, client: TelnyxClient, hold_music_url: Optional[str]):
        self.client = client
        self.hold_music_url = hold_music_url
        self.sessions = CallSessionStore(db)
        self.active_calls = ActiveCallRegistry(db)

    async def set_hold(self, call_session_id: str, hold: bool) -> Optional[HoldResult]:
        """
        Returns ``None`` if the session is not in flight or has no agent
        pairing. Raises ``TelnyxAPIError`` if the provider rejects the
        playback command.
        """
        link = await self.sessions.lookup(call_session_id)
        if not link:
            logger.info(f"[HOLD] No in-flight call for session {call_session_id}")
            return None

        if not await self.active_calls.get_for_customer_leg(link.call_control_id):
            logger.info(f"[HOLD] Session {call_session_id} leg {link.call_control_id} has no active call")
            return None

        if hold:
            if not self.hold_music_url:
                raise ConfigurationError("Missing HOLD_MUSIC_URL")
            await self.client.playback_start(link.call_control_id, self.hold_music_url)
        else:
            await self.client.playback_stop(link.call_control_id)

        record = await self.active_calls.set_hold(link.call_control_id, hold)
        if record is None:
            # Hung up while the playback command was in flight
            return None
        logger.info(
            f"[HOLD] Session {call_session_id} {record.hold_state} "
            f"(leg {link.call_control_id}, agent {record.agent_id})"
        )
        return HoldResult(
            call_control_id=link.call_control_id,
            hold_state=record.hold_state,
            playback_state=record.playback_state,
            agent_id=record.agent_id,
        )
