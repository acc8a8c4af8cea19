"""FastAPI dependencies."""
from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.db.database import get_db
from app.db.models import Agent
from app.services.routing.resolver import RoutingResolver
from app.services.telnyx.client import TelnyxClient


def get_settings():
    """Get application settings."""
    return settings


def get_telnyx_client() -> TelnyxClient:
    """Get Telnyx API client."""
    return TelnyxClient.from_settings(settings)


def get_routing_resolver(db: AsyncSession = Depends(get_db)) -> RoutingResolver:
    """Get routing resolver bound to the request's session."""
    return RoutingResolver(db, fallback_sip_username=settings.fallback_agent_sip_username)


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


async def get_current_agent(
    request: Request, db: AsyncSession = Depends(get_db)
) -> Agent:
    """Resolve the calling agent from its bearer token."""
    token = _bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    result = await db.execute(select(Agent).where(Agent.api_token == token))
    agent = result.scalar_one_or_none()
    if agent is None:
        raise HTTPException(status_code=401, detail="Unknown agent token")
    return agent
