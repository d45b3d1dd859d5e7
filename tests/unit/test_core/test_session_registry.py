"""
Unit tests for the SessionRegistry: sessions, voice grants and node ranking.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from discord_node_relay.core.session_registry import SessionRegistry
from discord_node_relay.infrastructure.exceptions import InvalidHostError, NodeRelayError
from discord_node_relay.websockets.client.node_link import NodeLink

from tests.helpers import (
    BOT_USER_ID,
    CHANNEL_ID,
    GUILD_ID,
    node_config,
    stats_frame,
    voice_server_update,
    voice_state_update,
)


class TestJoinAndLeave:
    """Session lifecycle."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_join_sends_intent_and_creates_session(self, registry, bridge):
        """Test join asks the gateway to connect and binds the session."""
        session = await registry.join(GUILD_ID, CHANNEL_ID, "node-b", self_deaf=True)

        assert bridge.packets == [
            {
                "op": 4,
                "d": {
                    "guild_id": GUILD_ID,
                    "channel_id": CHANNEL_ID,
                    "self_mute": False,
                    "self_deaf": True,
                },
            }
        ]
        assert session.node is registry.nodes["node-b"]
        assert registry.get_session(GUILD_ID) is session

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_join_is_idempotent(self, registry, bridge, session):
        """Test joining again returns the existing session untouched."""
        again = await registry.join(GUILD_ID, "another-channel", "node-b")

        assert again is session
        assert again.node is registry.nodes["node-a"]
        assert len(bridge.packets) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_join_unknown_host(self, registry, bridge):
        """Test an unknown host fails before any gateway intent is sent."""
        with pytest.raises(InvalidHostError):
            await registry.join(GUILD_ID, CHANNEL_ID, "node-z")

        assert bridge.packets == []
        assert registry.get_session(GUILD_ID) is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_join_without_host_uses_ideal_node(self, registry, fake_connect, settle):
        """Test the least loaded node is chosen when no host is given."""
        fake_connect.for_host("node-a").feed(stats_frame(0.9, 1))
        fake_connect.for_host("node-b").feed(stats_frame(0.1, 1))
        await settle()

        session = await registry.join(GUILD_ID, CHANNEL_ID)

        assert session.node is registry.nodes["node-b"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_join_without_available_node(self, bridge, fake_connect):
        """Test joining with no connected node raises InvalidHostError."""
        registry = SessionRegistry(bridge)

        with pytest.raises(InvalidHostError):
            await registry.join(GUILD_ID, CHANNEL_ID)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_leave_without_session(self, registry, bridge):
        """Test leave still sends the leave intent and reports False."""
        assert await registry.leave(GUILD_ID) is False

        assert bridge.packets[-1]["d"]["channel_id"] is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_leave_destroys_and_removes_session(
        self, registry, bridge, session, fake_connect
    ):
        """Test leave destroys the player and forgets the session."""
        session.on("end", lambda *_: None)

        assert await registry.leave(GUILD_ID) is True

        assert bridge.packets[-1]["d"] == {
            "guild_id": GUILD_ID,
            "channel_id": None,
            "self_mute": False,
            "self_deaf": False,
        }
        assert fake_connect.for_host("node-a").ops()[-1] == "destroy"
        assert registry.get_session(GUILD_ID) is None
        assert session.listener_count("end") == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_leave_with_node_down(self, registry, session):
        """Test the session is removed even if the destroy cannot be delivered."""
        await registry.nodes["node-a"].destroy()

        assert await registry.leave(GUILD_ID) is True
        assert registry.get_session(GUILD_ID) is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_leave_during_migration(self, registry, session, fake_connect, settle):
        """Test leave waits for a migration and destroys on the node it ended on."""
        target = fake_connect.for_host("node-b")
        gate = asyncio.Event()
        target.send_gate = gate
        await session.play("track-1")

        migration = asyncio.create_task(
            registry.switch_node(session, registry.nodes["node-b"])
        )
        await settle()
        assert session.migrating

        leave = asyncio.create_task(registry.leave(GUILD_ID))
        await settle()
        assert not leave.done()
        assert registry.get_session(GUILD_ID) is session

        gate.set()

        assert await leave is True
        assert await migration is session
        assert target.ops()[1:] == ["volume", "equalizer", "play", "destroy"]
        assert fake_connect.for_host("node-a").ops()[-1] == "destroy"
        assert registry.get_session(GUILD_ID) is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_join_for_guild_without_shard(self, registry, bridge):
        """Test the session is created even if no shard owns the guild."""
        bridge.unknown_guilds.add(GUILD_ID)

        session = await registry.join(GUILD_ID, CHANNEL_ID, "node-a")

        assert session is not None
        assert bridge.packets == []


class TestVoiceGrantCorrelation:
    """Joining VOICE_SERVER_UPDATE and VOICE_STATE_UPDATE."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("server_first", [True, False])
    async def test_grants_open_voice_session_in_any_order(
        self, registry, session, fake_connect, server_first
    ):
        """Test the voice session opens once both grants arrived."""
        if server_first:
            assert await registry.on_voice_server_grant(voice_server_update()) is False
            assert await registry.on_voice_state_grant(voice_state_update()) is True
        else:
            assert await registry.on_voice_state_grant(voice_state_update()) is False
            assert await registry.on_voice_server_grant(voice_server_update()) is True

        assert fake_connect.for_host("node-a").sent_messages[-1] == {
            "op": "voiceUpdate",
            "guildId": GUILD_ID,
            "sessionId": "voice-session",
            "event": voice_server_update(),
        }
        assert GUILD_ID not in registry.voice_servers
        assert GUILD_ID not in registry.voice_states
        assert session.voice_grant.session_id == "voice-session"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_retransmitted_grant_does_not_reopen(self, registry, session, fake_connect):
        """Test a consumed pair is not reused by a repeated packet."""
        await registry.on_voice_server_grant(voice_server_update())
        await registry.on_voice_state_grant(voice_state_update())

        assert await registry.on_voice_server_grant(voice_server_update()) is False
        assert fake_connect.for_host("node-a").ops().count("voiceUpdate") == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_grants_without_session_are_buffered(self, registry):
        """Test grants wait for a session to exist."""
        await registry.on_voice_server_grant(voice_server_update())

        assert await registry.on_voice_state_grant(voice_state_update()) is False
        assert GUILD_ID in registry.voice_servers
        assert GUILD_ID in registry.voice_states

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_other_users_are_ignored(self, registry, session):
        """Test voice states of other members are not buffered."""
        assert await registry.on_voice_state_grant(voice_state_update(user_id="555")) is False
        assert GUILD_ID not in registry.voice_states

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_state_without_channel_discards_grants(self, registry, session, fake_connect):
        """Test leaving voice drops whatever was buffered for the guild."""
        await registry.on_voice_server_grant(voice_server_update())

        assert await registry.on_voice_state_grant(voice_state_update(channel_id=None)) is False
        assert GUILD_ID not in registry.voice_servers
        assert "voiceUpdate" not in fake_connect.for_host("node-a").ops()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_handle_gateway_packet_routes_dispatches(self, registry, session, fake_connect):
        """Test raw gateway dispatches reach the grant handlers."""
        assert await registry.handle_gateway_packet(
            {"op": 0, "t": "VOICE_SERVER_UPDATE", "d": voice_server_update()}
        ) is False
        assert await registry.handle_gateway_packet(
            {"op": 0, "t": "VOICE_STATE_UPDATE", "d": voice_state_update()}
        ) is True
        assert await registry.handle_gateway_packet({"op": 0, "t": "MESSAGE_CREATE", "d": {}}) is False
        assert await registry.handle_gateway_packet({"op": 11, "d": None}) is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_open_is_raised(self, registry, session):
        """Test a failed voice session open propagates to the caller."""
        await registry.nodes["node-a"].destroy()
        await registry.on_voice_server_grant(voice_server_update())

        with pytest.raises(NodeRelayError):
            await registry.on_voice_state_grant(voice_state_update())


class TestNodeSelection:
    """Node ranking and node management."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_ideal_nodes_orders_by_load(self, registry, fake_connect, settle):
        """Test nodes are ranked by system load per core."""
        fake_connect.for_host("node-a").feed(stats_frame(0.8, 4))
        fake_connect.for_host("node-b").feed(stats_frame(0.3, 2))
        await settle()

        assert registry.ideal_nodes == [registry.nodes["node-b"], registry.nodes["node-a"]]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_ideal_nodes_excludes_disconnected(self, registry, fake_connect, settle):
        """Test disconnected nodes are never ideal."""
        fake_connect.for_host("node-b").feed(stats_frame(0.1, 8))
        await settle()
        await registry.nodes["node-b"].destroy()

        assert registry.ideal_nodes == [registry.nodes["node-a"]]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_node_without_stats_ranks_first(self, registry, fake_connect, settle):
        """Test a node that has not reported yet counts as idle."""
        fake_connect.for_host("node-a").feed(stats_frame(0.2, 2))
        await settle()

        assert registry.ideal_nodes[0] is registry.nodes["node-b"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_ties_keep_registration_order(self, registry):
        """Test equal loads keep the order nodes were added in."""
        assert [node.host for node in registry.ideal_nodes] == ["node-a", "node-b"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_switch_node_requires_registered_node(self, registry, session):
        """Test a node from outside the registry is rejected."""
        stranger = AsyncMock(spec=NodeLink)
        stranger.host = "node-x"

        with pytest.raises(InvalidHostError):
            await registry.switch_node(session, stranger)
        assert session.node is registry.nodes["node-a"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_remove_node(self, registry, fake_connect):
        """Test removing a node closes its link for good."""
        connection = fake_connect.for_host("node-b")

        assert await registry.remove_node("node-b") is True
        assert await registry.remove_node("node-b") is False

        assert "node-b" not in registry.nodes
        assert connection.close_reason == "destroy"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_node_uses_registry_identity(self, bridge, fake_connect):
        """Test node handshakes use the registry's user id and shard count."""
        registry = SessionRegistry(bridge, user_id="999", shard_count=4)
        node = registry.create_node(node_config("node-c"))
        await node.wait_until_ready(timeout=1)

        headers = fake_connect.calls[-1]["additional_headers"]
        assert headers["User-Id"] == "999"
        assert headers["Num-Shards"] == "4"
        assert registry.user_id != BOT_USER_ID

        await registry.close()
