"""Unit tests for the call history aggregator."""
import httpx
import pytest
from datetime import datetime

from app.services.history.aggregator import CallHistoryAggregator, infer_direction, summarize_events

PHONE_A = "+14045550100"
PHONE_B = "+16785550123"


def _recording(recording_id, session, from_, to, started, ended, leg=None):
    return {
        "id": recording_id,
        "call_session_id": session,
        "call_leg_id": leg,
        "from": from_,
        "to": to,
        "duration_millis": 30000,
        "channels": "single",
        "recording_started_at": started,
        "recording_ended_at": ended,
        "download_urls": {"mp3": f"https://signed.example.com/{recording_id}.mp3"},
    }


class TestDirection:
    """Test direction inference."""

    def test_a_to_b(self):
        assert infer_direction(PHONE_A, PHONE_B, PHONE_A, PHONE_B) == "A_to_B"

    def test_b_to_a_ignores_formatting(self):
        assert infer_direction("1 (678) 555-0123", "+1 404-555-0100", PHONE_A, PHONE_B) == "B_to_A"

    def test_unrelated_numbers(self):
        assert infer_direction("+17705550111", PHONE_B, PHONE_A, PHONE_B) == "unknown"


class TestSummarizeEvents:
    """Test event folding."""

    def test_full_timeline(self):
        summary = summarize_events([
            {"name": "call.hangup", "event_timestamp": "2024-03-01T12:05:00Z", "call_leg_id": "leg-1",
             "metadata": {"hangup_cause": "user_busy"}},
            {"name": "call.answered", "event_timestamp": "2024-03-01T12:00:10Z", "call_leg_id": "leg-1"},
            {"name": "call.initiated", "event_timestamp": "2024-03-01T12:00:00Z", "call_leg_id": "leg-1"},
            {"name": "call.init.received", "event_timestamp": "2024-03-01T12:00:02Z", "call_leg_id": "leg-2"},
        ])

        assert summary["started_at"] == "2024-03-01T12:00:00Z"
        assert summary["answered_at"] == "2024-03-01T12:00:10Z"
        assert summary["ended_at"] == "2024-03-01T12:05:00Z"
        assert summary["hangup_cause"] == "user_busy"
        assert summary["legs"] == ["leg-1", "leg-2"]

    def test_hangup_cause_defaults(self):
        summary = summarize_events([{"name": "call.hangup", "event_timestamp": "2024-03-01T12:05:00Z"}])

        assert summary["hangup_cause"] == "normal_clearing"

    def test_no_events(self):
        summary = summarize_events([])

        assert summary["started_at"] is None
        assert summary["legs"] == []


class TestFetchHistory:
    """Test session reconstruction from recordings and events."""

    @pytest.mark.asyncio
    async def test_sessions_sorted_newest_first(self, telnyx_client, fake_telnyx):
        def _recordings(request: httpx.Request) -> httpx.Response:
            if request.url.params["filter[from]"] == PHONE_A:
                data = [_recording("r-old", "s-old", PHONE_A, PHONE_B,
                                   "2024-03-01T09:00:00Z", "2024-03-01T09:02:00Z", leg="leg-old")]
            else:
                data = [_recording("r-new", "s-new", PHONE_B, PHONE_A,
                                   "2024-03-01T15:00:00Z", "2024-03-01T15:04:00Z", leg="leg-new")]
            return httpx.Response(200, json={"data": data, "meta": {"total_pages": 1}})

        def _events(request: httpx.Request) -> httpx.Response:
            if request.url.params["filter[application_session_id]"] == "s-new":
                data = [
                    {"name": "call.initiated", "event_timestamp": "2024-03-01T14:59:50Z", "call_leg_id": "leg-new"},
                    {"name": "call.answered", "event_timestamp": "2024-03-01T15:00:00Z", "call_leg_id": "leg-new"},
                    {"name": "call.hangup", "event_timestamp": "2024-03-01T15:04:00Z", "call_leg_id": "leg-new",
                     "hangup_cause": "normal_clearing"},
                ]
                return httpx.Response(200, json={"data": data})
            return httpx.Response(500, json={"errors": [{"detail": "Internal error"}]})

        fake_telnyx.add("GET", "/recordings", _recordings)
        fake_telnyx.add("GET", "/call_events", _events)

        history = await CallHistoryAggregator(telnyx_client).fetch_history(
            PHONE_A,
            PHONE_B,
            date_from=datetime(2024, 3, 1, 0, 0),
            date_to=datetime(2024, 3, 2, 0, 0),
            connection_id="conn-1",
        )

        assert history.start == "2024-03-01T00:00:00.000Z"
        assert history.end == "2024-03-02T00:00:00.000Z"
        assert history.total_sessions == 2
        assert history.total_recordings == 2
        assert [s.call_session_id for s in history.calls] == ["s-new", "s-old"]

        newest, oldest = history.calls
        assert newest.direction == "B_to_A"
        assert newest.started_at == "2024-03-01T14:59:50Z"
        assert newest.answered_at == "2024-03-01T15:00:00Z"
        assert newest.hangup_cause == "normal_clearing"
        assert newest.recordings[0].format == ["mp3"]

        # Event lookup failed: timeline falls back to the recording itself
        assert oldest.direction == "A_to_B"
        assert oldest.started_at == "2024-03-01T09:00:00Z"
        assert oldest.ended_at == "2024-03-01T09:02:00Z"
        assert oldest.legs == ["leg-old"]

        recording_requests = fake_telnyx.sent("GET", "/recordings")
        assert len(recording_requests) == 2
        assert all(r.url.params["filter[connection_id]"] == "conn-1" for r in recording_requests)
        assert all(r.url.params["page[size]"] == "250" for r in recording_requests)

    @pytest.mark.asyncio
    async def test_no_recordings(self, telnyx_client, fake_telnyx):
        history = await CallHistoryAggregator(telnyx_client).fetch_history(PHONE_A, PHONE_B)

        assert history.total_sessions == 0
        assert history.calls == []
        assert fake_telnyx.sent("GET", "/call_events") == []
