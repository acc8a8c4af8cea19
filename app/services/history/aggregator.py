"""
Call history between two numbers, rebuilt from Telnyx recordings and
call events.

Recordings are pulled for both directions and bucketed by call session.
Each session's event stream is then fetched by session id (number-filtered
event queries only look back 24 hours) and folded into a timeline.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.core.exceptions import TelnyxAPIError
from app.services.telnyx.client import TelnyxClient
from app.utils.phone import contains_number
from app.utils.timestamps import parse_timestamp, to_iso

logger = logging.getLogger(__name__)

PAGE_SIZE = 250
DEFAULT_LOOKBACK = timedelta(hours=24)
START_EVENTS = {"call.initiated", "call.init.received"}


class SessionRecording(BaseModel):
    recording_id: str
    channels: Optional[str] = None
    format: List[str] = Field(default_factory=list)
    duration_ms: Optional[int] = None
    recording_started_at: Optional[str] = None
    recording_ended_at: Optional[str] = None
    # Time-limited; returned for immediate playback, never stored.
    download_urls: Dict[str, str] = Field(default_factory=dict)
    call_leg_id: Optional[str] = None
    call_control_id: Optional[str] = None


class CallHistorySession(BaseModel):
    call_session_id: str
    from_number: str = ""
    to_number: str = ""
    direction: str = "unknown"  # A_to_B, B_to_A, unknown
    started_at: Optional[str] = None
    answered_at: Optional[str] = None
    ended_at: Optional[str] = None
    hangup_cause: Optional[str] = None
    legs: List[str] = Field(default_factory=list)
    recordings: List[SessionRecording] = Field(default_factory=list)


class CallHistory(BaseModel):
    phone_a: str
    phone_b: str
    start: str
    end: str
    total_sessions: int
    total_recordings: int
    calls: List[CallHistorySession]


def infer_direction(from_number: str, to_number: str, phone_a: str, phone_b: str) -> str:
    """
    Digit containment rather than equality, so country-code variations
    still match. Anything ambiguous stays ``unknown``.
    """
    a_to_b = contains_number(from_number, phone_a) and contains_number(to_number, phone_b)
    b_to_a = contains_number(from_number, phone_b) and contains_number(to_number, phone_a)
    if a_to_b and not b_to_a:
        return "A_to_B"
    if b_to_a and not a_to_b:
        return "B_to_A"
    return "unknown"


def summarize_events(events: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Fold a session's events into start/answer/end, hangup cause and legs."""
    ordered = sorted(events, key=lambda e: _sort_key(e.get("event_timestamp")))

    started_at: Optional[str] = None
    answered_at: Optional[str] = None
    ended_at: Optional[str] = None
    hangup_cause: Optional[str] = None
    legs: List[str] = []

    for event in ordered:
        leg_id = event.get("call_leg_id")
        if leg_id and leg_id not in legs:
            legs.append(leg_id)

        name = event.get("name")
        timestamp = event.get("event_timestamp")
        if name in START_EVENTS:
            if started_at is None or _sort_key(timestamp) < _sort_key(started_at):
                started_at = timestamp
        elif name == "call.answered":
            answered_at = timestamp
        elif name == "call.hangup":
            ended_at = timestamp
            hangup_cause = (
                event.get("hangup_cause")
                or (event.get("metadata") or {}).get("hangup_cause")
                or "normal_clearing"
            )

    return {
        "started_at": started_at,
        "answered_at": answered_at,
        "ended_at": ended_at,
        "hangup_cause": hangup_cause,
        "legs": legs,
    }


class CallHistoryAggregator:
    """Builds per-session call timelines between two numbers."""

    def __init__(self, client: TelnyxClient):
        self.client = client

    async def fetch_history(
        self,
        phone_a: str,
        phone_b: str,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        connection_id: Optional[str] = None,
    ) -> CallHistory:
        end = date_to or datetime.utcnow()
        start = date_from or end - DEFAULT_LOOKBACK
        logger.info(f"[HISTORY] Calls between {phone_a} and {phone_b}, {to_iso(start)} to {to_iso(end)}")

        params = {
            "filter[created_at][gte]": to_iso(start),
            "filter[created_at][lte]": to_iso(end),
            "page[size]": str(PAGE_SIZE),
        }
        if connection_id:
            params["filter[connection_id]"] = connection_id

        a_to_b, b_to_a = await asyncio.gather(
            self.client.paginate(
                "/recordings", {**params, "filter[from]": phone_a, "filter[to]": phone_b}
            ),
            self.client.paginate(
                "/recordings", {**params, "filter[from]": phone_b, "filter[to]": phone_a}
            ),
        )
        recordings = a_to_b + b_to_a
        logger.info(f"[HISTORY] Found {len(recordings)} recordings")

        buckets: Dict[str, List[Dict[str, Any]]] = {}
        for recording in recordings:
            session_id = recording.get("call_session_id")
            if session_id:
                buckets.setdefault(session_id, []).append(recording)

        sessions = await asyncio.gather(
            *(
                self._build_session(session_id, bucket, phone_a, phone_b)
                for session_id, bucket in buckets.items()
            )
        )
        sessions = sorted(sessions, key=lambda s: _sort_key(s.started_at), reverse=True)

        logger.info(f"[HISTORY] Returning {len(sessions)} call sessions")
        return CallHistory(
            phone_a=phone_a,
            phone_b=phone_b,
            start=to_iso(start),
            end=to_iso(end),
            total_sessions=len(sessions),
            total_recordings=len(recordings),
            calls=sessions,
        )

    async def _build_session(
        self,
        session_id: str,
        bucket: List[Dict[str, Any]],
        phone_a: str,
        phone_b: str,
    ) -> CallHistorySession:
        recordings = sorted(
            (_session_recording(r) for r in bucket),
            key=lambda r: _sort_key(r.recording_started_at),
        )
        sample = bucket[0]
        from_number = sample.get("from") or ""
        to_number = sample.get("to") or ""

        events = await self._session_events(session_id)
        summary = summarize_events(events)

        if not summary["started_at"]:
            # No usable events: fall back to the recordings' own clock.
            summary["started_at"] = recordings[0].recording_started_at
            summary["ended_at"] = summary["ended_at"] or recordings[-1].recording_ended_at
        if not summary["legs"]:
            summary["legs"] = _distinct(r.call_leg_id for r in recordings)

        return CallHistorySession(
            call_session_id=session_id,
            from_number=from_number,
            to_number=to_number,
            direction=infer_direction(from_number, to_number, phone_a, phone_b),
            recordings=recordings,
            **summary,
        )

    async def _session_events(self, session_id: str) -> List[Dict[str, Any]]:
        try:
            return await self.client.paginate(
                "/call_events",
                {"filter[application_session_id]": session_id, "page[size]": str(PAGE_SIZE)},
            )
        except TelnyxAPIError as e:
            logger.error(f"[HISTORY] Failed to fetch events for session {session_id}: {e}")
            return []


def _session_recording(recording: Dict[str, Any]) -> SessionRecording:
    download_urls = recording.get("download_urls") or {}
    return SessionRecording(
        recording_id=recording.get("id") or "",
        channels=recording.get("channels"),
        format=list(download_urls.keys()),
        duration_ms=recording.get("duration_millis"),
        recording_started_at=recording.get("recording_started_at"),
        recording_ended_at=recording.get("recording_ended_at"),
        download_urls=download_urls,
        call_leg_id=recording.get("call_leg_id"),
        call_control_id=recording.get("call_control_id"),
    )


def _sort_key(timestamp: Optional[str]) -> datetime:
    return parse_timestamp(timestamp) or datetime.min


def _distinct(values) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen
