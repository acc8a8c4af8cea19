"""Database models."""
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class Agent(Base):
    """Routable agent. Owned by the surrounding CRM; read-only here."""

    __tablename__ = "agents"

    id = Column(String, primary_key=True, default=_uuid)
    sip_username = Column(String, unique=True, index=True, nullable=True)
    status = Column(String, default="offline", nullable=False)  # available, busy, offline
    api_token = Column(String, unique=True, index=True, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class InboundNumber(Base):
    """DID provisioned to an organization."""

    __tablename__ = "inbound_numbers"

    id = Column(Integer, primary_key=True, index=True)
    e164 = Column(String, index=True, nullable=False)
    org_id = Column(String, index=True, nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)


class OrgVoiceSettings(Base):
    """Per-organization routing fallback."""

    __tablename__ = "org_voice_settings"

    org_id = Column(String, primary_key=True)
    fallback_mode = Column(String, default="none", nullable=False)  # none, dispatcher_sip
    fallback_sip_username = Column(String, nullable=True)


class AgentActiveCall(Base):
    """Pairing of an agent with the customer leg currently bridged to them."""

    __tablename__ = "agent_active_calls"

    id = Column(String, primary_key=True, default=_uuid)
    agent_id = Column(String, unique=True, index=True, nullable=False)
    customer_leg_id = Column(String, index=True, nullable=False)
    agent_leg_id = Column(String, nullable=True)
    hold_state = Column(String, default="active", nullable=False)  # active, held
    playback_state = Column(String, default="idle", nullable=False)  # idle, playing
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class CallSessionLink(Base):
    """In-flight call: provider session id to its command-addressable leg."""

    __tablename__ = "call_session_links"

    call_session_id = Column(String, primary_key=True)
    call_control_id = Column(String, nullable=False)
    direction = Column(String, nullable=True)  # incoming, outgoing
    state = Column(String, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Call(Base):
    """Call record, linked to its provider recording once reconciled."""

    __tablename__ = "calls"

    id = Column(Integer, primary_key=True, index=True)
    call_sid = Column(String, unique=True, index=True, nullable=False)
    status = Column(String, default="in_progress", nullable=False)  # in_progress, completed, failed
    direction = Column(String, nullable=True)
    from_number = Column(String, nullable=True)
    to_number = Column(String, nullable=True)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    duration = Column(Integer, default=0, nullable=False)  # seconds

    call_session_id = Column(String, index=True, nullable=True)
    call_leg_id = Column(String, index=True, nullable=True)

    # Only the recording id is durable; download URLs expire.
    telnyx_recording_id = Column(String, nullable=True)
    recording_state = Column(String, default="unset", nullable=False)  # unset, saved
    recording_duration_ms = Column(Integer, nullable=True)
    recording_started_at = Column(DateTime, nullable=True)
    recording_ended_at = Column(DateTime, nullable=True)
