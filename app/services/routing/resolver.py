"""Routing resolver: which SIP endpoint should receive a call."""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Agent, InboundNumber, OrgVoiceSettings
from app.utils.phone import normalize_e164

logger = logging.getLogger(__name__)


@dataclass
class RoutingTarget:
    """SIP destination chosen for a call."""

    sip_username: str
    source: str  # agent, org_fallback, global_fallback
    agent_id: Optional[str] = None


class RoutingResolver:
    """
    Resolve a SIP target for a call.

    Every lookup degrades to ``None`` on a miss or a database error;
    routing never raises.
    """

    def __init__(self, db: AsyncSession, fallback_sip_username: Optional[str] = None):
        self.db = db
        self.fallback_sip_username = fallback_sip_username

    async def pick_available_agent(self) -> Optional[Agent]:
        """Any agent currently marked available."""
        try:
            result = await self.db.execute(
                select(Agent)
                .where(Agent.status == "available")
                .where(Agent.sip_username.is_not(None))
                .order_by(Agent.created_at)
                .limit(1)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"[ROUTING] Failed to fetch available agent: {e}")
            return None

    async def get_agent_by_sip_username(self, sip_username: Optional[str]) -> Optional[Agent]:
        if not sip_username:
            return None
        try:
            result = await self.db.execute(
                select(Agent).where(Agent.sip_username == sip_username).limit(1)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"[ROUTING] Failed to fetch agent {sip_username}: {e}")
            return None

    async def resolve_org_from_did(self, dialed_number: Optional[str]) -> Optional[str]:
        """Organization owning an enabled inbound number (exact E.164 match)."""
        e164 = normalize_e164(dialed_number)
        if not e164:
            return None
        try:
            result = await self.db.execute(
                select(InboundNumber.org_id)
                .where(InboundNumber.e164 == e164)
                .where(InboundNumber.enabled.is_(True))
                .limit(1)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"[ROUTING] Failed to resolve org for inbound number {e164}: {e}")
            return None

    async def pick_org_fallback(self, org_id: Optional[str]) -> Optional[str]:
        if not org_id:
            return None
        try:
            result = await self.db.execute(
                select(OrgVoiceSettings).where(OrgVoiceSettings.org_id == org_id)
            )
            voice_settings = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"[ROUTING] Failed to fetch org voice settings for {org_id}: {e}")
            return None

        if not voice_settings:
            return None
        if voice_settings.fallback_mode == "dispatcher_sip" and voice_settings.fallback_sip_username:
            return voice_settings.fallback_sip_username
        return None

    async def resolve_target(
        self, dialed_number: Optional[str] = None, org_id: Optional[str] = None
    ) -> Optional[RoutingTarget]:
        """
        First success wins: available agent, the dialed org's fallback,
        then the process-wide fallback.
        """
        agent = await self.pick_available_agent()
        if agent:
            logger.info(f"[ROUTING] Routing to available agent {agent.id} ({agent.sip_username})")
            return RoutingTarget(sip_username=agent.sip_username, source="agent", agent_id=agent.id)

        if org_id is None:
            org_id = await self.resolve_org_from_did(dialed_number)
        org_fallback = await self.pick_org_fallback(org_id)
        if org_fallback:
            logger.info(f"[ROUTING] No agent available, using org {org_id} fallback {org_fallback}")
            return RoutingTarget(sip_username=org_fallback, source="org_fallback")

        if self.fallback_sip_username:
            logger.info(f"[ROUTING] Using global fallback {self.fallback_sip_username}")
            return RoutingTarget(sip_username=self.fallback_sip_username, source="global_fallback")

        logger.info(f"[ROUTING] No target for {dialed_number or 'outbound call'}")
        return None
