"""Unit tests for active-call pairing, session links and hold."""
import pytest
from unittest.mock import Mock

from app.core.exceptions import ConfigurationError
from app.db.database import upsert
from app.db.models import AgentActiveCall
from app.services.active_calls.registry import ActiveCallRegistry
from app.services.active_calls.session_links import CallSessionStore
from app.services.call_control.hold import HoldController


class TestActiveCallRegistry:
    """Test one-row-per-agent pairing."""

    @pytest.mark.asyncio
    async def test_upsert_creates_active_pairing(self, test_db):
        record = await ActiveCallRegistry(test_db).upsert("agent-a", "cc-1")

        assert record.customer_leg_id == "cc-1"
        assert record.hold_state == "active"
        assert record.playback_state == "idle"

    @pytest.mark.asyncio
    async def test_upsert_replaces_and_resets_hold(self, test_db):
        registry = ActiveCallRegistry(test_db)
        await registry.upsert("agent-a", "cc-1")
        await registry.set_hold("cc-1", True)

        record = await registry.upsert("agent-a", "cc-2", agent_leg_id="cc-agent")

        assert record.customer_leg_id == "cc-2"
        assert record.agent_leg_id == "cc-agent"
        assert record.hold_state == "active"
        assert await registry.get_for_customer_leg("cc-1") is None

    @pytest.mark.asyncio
    async def test_clear_is_idempotent(self, test_db):
        registry = ActiveCallRegistry(test_db)
        await registry.upsert("agent-a", "cc-1")

        assert await registry.clear_for_customer_leg("cc-1") == 1
        assert await registry.clear_for_customer_leg("cc-1") == 0
        assert await registry.clear_for_agent("agent-a") is False


class TestCallSessionStore:
    """Test the durable session → leg map."""

    @pytest.mark.asyncio
    async def test_remember_lookup_forget(self, test_db):
        store = CallSessionStore(test_db)
        await store.remember("s-1", "cc-1", state="initiated", direction="incoming")
        await store.remember("s-1", "cc-1b", state="answered", direction="incoming")

        link = await store.lookup("s-1")
        assert link.call_control_id == "cc-1b"
        assert link.state == "answered"

        assert await store.set_state("s-1", "bridged") is True
        assert (await store.lookup("s-1")).state == "bridged"

        assert await store.forget("s-1") is True
        assert await store.forget("s-1") is False
        assert await store.lookup("s-1") is None
        assert await store.set_state("s-1", "ended") is False

    @pytest.mark.asyncio
    async def test_outgoing_leg_keeps_original_link(self, test_db):
        store = CallSessionStore(test_db)
        assert await store.remember("s-1", "cc-cust", state="initiated", direction="incoming") == "cc-cust"
        await store.set_state("s-1", "bridged")

        owner = await store.remember("s-1", "cc-agent", state="initiated", direction="outgoing")

        assert owner == "cc-cust"
        link = await store.lookup("s-1")
        assert link.call_control_id == "cc-cust"
        assert link.state == "bridged"


class TestHoldController:
    """Test hold / resume playback."""

    @pytest.fixture
    async def bridged_call(self, test_db):
        await CallSessionStore(test_db).remember("s-1", "cc-1", state="bridged", direction="incoming")
        await ActiveCallRegistry(test_db).upsert("agent-a", "cc-1")

    @pytest.mark.asyncio
    async def test_hold_plays_music_to_both_legs(self, test_db, telnyx_client, fake_telnyx, bridged_call):
        controller = HoldController(test_db, telnyx_client, "https://cdn.example.com/hold.mp3")

        result = await controller.set_hold("s-1", True)

        assert fake_telnyx.actions() == [
            ("cc-1", "playback_start", {
                "audio_url": "https://cdn.example.com/hold.mp3",
                "loop": "infinity",
                "target_legs": "both",
            })
        ]
        assert result.hold_state == "held"
        assert result.playback_state == "playing"
        assert result.agent_id == "agent-a"
        record = await ActiveCallRegistry(test_db).get_for_agent("agent-a", refresh=True)
        assert record.hold_state == "held"

    @pytest.mark.asyncio
    async def test_resume_stops_playback(self, test_db, telnyx_client, fake_telnyx, bridged_call):
        controller = HoldController(test_db, telnyx_client, "https://cdn.example.com/hold.mp3")
        await controller.set_hold("s-1", True)

        result = await controller.set_hold("s-1", False)

        assert fake_telnyx.actions()[-1] == ("cc-1", "playback_stop", {})
        assert result.hold_state == "active"
        assert result.playback_state == "idle"

    @pytest.mark.asyncio
    async def test_unknown_session(self, test_db, telnyx_client, fake_telnyx):
        controller = HoldController(test_db, telnyx_client, "https://cdn.example.com/hold.mp3")

        assert await controller.set_hold("missing", True) is None
        assert fake_telnyx.requests == []

    @pytest.mark.asyncio
    async def test_hold_without_music_url(self, test_db, telnyx_client, bridged_call):
        controller = HoldController(test_db, telnyx_client, None)

        with pytest.raises(ConfigurationError):
            await controller.set_hold("s-1", True)

    @pytest.mark.asyncio
    async def test_session_without_pairing(self, test_db, telnyx_client, fake_telnyx):
        await CallSessionStore(test_db).remember("s-2", "cc-2", state="answered", direction="incoming")
        controller = HoldController(test_db, telnyx_client, "https://cdn.example.com/hold.mp3")

        assert await controller.set_hold("s-2", True) is None
        assert fake_telnyx.requests == []


class TestUpsert:
    """Test the dialect-aware upsert helper."""

    @pytest.mark.asyncio
    async def test_unsupported_dialect(self):
        db = Mock()
        db.get_bind.return_value.dialect.name = "mysql"

        with pytest.raises(ValueError, match="mysql"):
            await upsert(db, AgentActiveCall, {"agent_id": "agent-a"}, ["agent_id"], [])
