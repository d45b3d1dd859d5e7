"""
Session Registry for audio nodes and guild playback sessions.

This module owns every node link and playback session, joins the
gateway's voice-server and voice-state grants into a node voice session,
ranks nodes by load, and moves sessions between nodes.
"""

from typing import Any, Dict, Iterable, List, Optional

from discord_node_relay.config.settings import NodeConfig
from discord_node_relay.gateway.bridge import GatewayBridge
from discord_node_relay.infrastructure import setup_logging
from discord_node_relay.infrastructure.exceptions import (
    InvalidHostError,
    NotConnectedError,
    TransportError,
)
from discord_node_relay.websockets.client.node_link import NodeLink

from .events import EventEmitter
from .models import VoiceServerGrant, VoiceSessionGrant, VoiceStateGrant
from .playback_session import PlaybackSession
from .types import GATEWAY_VOICE_SERVER_UPDATE, GATEWAY_VOICE_STATE_UPDATE

logger = setup_logging(component_name="session_registry")


class SessionRegistry(EventEmitter):
    """
    Registry of node links and per-guild playback sessions.

    Observability events: "ready"(node), "raw"(node, message),
    "error"(node, error), "disconnect"(node, code, reason),
    "reconnecting"(node).
    """

    def __init__(
        self,
        bridge: GatewayBridge,
        nodes: Iterable[NodeConfig] = (),
        user_id: Optional[str] = None,
        shard_count: Optional[int] = None,
    ) -> None:
        """
        Initialize the registry and start connecting to the given nodes.

        Args:
            bridge: Gateway capability used for voice state intents
            nodes: Node settings to register immediately
            user_id: Bot user id (defaults to the bridge's)
            shard_count: Number of gateway shards (defaults to the bridge's)
        """
        super().__init__()
        self.bridge = bridge
        self._user_id = str(user_id) if user_id is not None else None
        self._shard_count = shard_count

        self.nodes: Dict[str, NodeLink] = {}
        self.sessions: Dict[str, PlaybackSession] = {}
        self.voice_servers: Dict[str, VoiceServerGrant] = {}
        self.voice_states: Dict[str, VoiceStateGrant] = {}

        for config in nodes:
            self.create_node(config)

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id or self.bridge.user_id

    @property
    def shard_count(self) -> int:
        return self._shard_count or self.bridge.shard_count

    def create_node(self, config: NodeConfig) -> NodeLink:
        """Register a node and start connecting to it."""
        if config.host in self.nodes:
            logger.warning(f"Replacing node registered under {config.host}")

        node = NodeLink(self, config)
        self.nodes[config.host] = node
        logger.info(f"Registered node {config.host}:{config.port}")
        return node

    async def remove_node(self, host: str) -> bool:
        """
        Destroy and unregister a node.

        Sessions bound to it are not migrated; use switch_node first.
        """
        node = self.nodes.pop(host, None)
        if node is None:
            return False

        await node.destroy()
        bound = [s.guild_id for s in self.sessions.values() if s.node is node]
        if bound:
            logger.warning(f"Removed node {host} still bound to guilds {bound}")
        else:
            logger.info(f"Removed node {host}")
        return True

    @property
    def ideal_nodes(self) -> List[NodeLink]:
        """Connected nodes, least loaded first; ties keep registration order."""
        return sorted(
            (node for node in self.nodes.values() if node.connected),
            key=lambda node: node.stats.load,
        )

    def get_session(self, guild_id: str) -> Optional[PlaybackSession]:
        return self.sessions.get(str(guild_id))

    async def join(
        self,
        guild_id: str,
        channel_id: str,
        host: Optional[str] = None,
        self_mute: bool = False,
        self_deaf: bool = False,
    ) -> PlaybackSession:
        """
        Join a voice channel and create the guild's playback session.

        Returns the existing session unchanged if the guild already has one.

        Args:
            guild_id: Guild to join in
            channel_id: Voice channel to join
            host: Node to bind the session to (defaults to the least loaded)
            self_mute: Join muted
            self_deaf: Join deafened

        Raises:
            InvalidHostError: If no node is registered under host, or no
                node is available when host is omitted
        """
        guild_id = str(guild_id)
        session = self.sessions.get(guild_id)
        if session is not None:
            return session

        node = self._resolve_node(host)

        await self.bridge.update_voice_state(guild_id, channel_id, self_mute, self_deaf)

        session = PlaybackSession(node, guild_id, channel_id)
        self.sessions[guild_id] = session
        logger.info(f"[guild {guild_id}] Session created on {node.name}")
        return session

    def _resolve_node(self, host: Optional[str]) -> NodeLink:
        if host is None:
            ideal = self.ideal_nodes
            if not ideal:
                raise InvalidHostError("No available node to bind the session to")
            return ideal[0]

        node = self.nodes.get(host)
        if node is None:
            raise InvalidHostError(f"No available node with {host}")
        return node

    async def leave(self, guild_id: str) -> bool:
        """
        Leave the guild's voice channel and drop its session.

        A migration in progress is allowed to finish first, so the player is
        destroyed on the node the session ends up bound to.

        Returns:
            False if the guild had no session
        """
        guild_id = str(guild_id)
        await self.bridge.update_voice_state(guild_id, None)

        session = self.sessions.get(guild_id)
        if session is None:
            return False

        if session.migrating:
            logger.info(f"[guild {guild_id}] Waiting for migration before leaving")
            await session.wait_for_migration()

        session.remove_all_listeners()
        try:
            await session.destroy()
        except (NotConnectedError, TransportError) as e:
            logger.warning(f"[guild {guild_id}] Destroy not delivered: {e}")
        finally:
            self.sessions.pop(guild_id, None)

        logger.info(f"[guild {guild_id}] Session removed")
        return True

    async def switch_node(self, session: PlaybackSession, node: NodeLink) -> PlaybackSession:
        """
        Move a session to another node without losing its position.

        Raises:
            InvalidHostError: If the target node is not registered here
            MigrationError: If the move fails part way
        """
        if self.nodes.get(node.host) is not node:
            raise InvalidHostError(f"Node {node.host} is not registered")
        return await session.migrate(node)

    async def handle_gateway_packet(self, packet: Dict[str, Any]) -> bool:
        """Route a raw gateway dispatch to the matching grant handler."""
        event = packet.get("t")
        data = packet.get("d")
        if not isinstance(data, dict):
            return False

        if event == GATEWAY_VOICE_SERVER_UPDATE:
            return await self.on_voice_server_grant(data)
        if event == GATEWAY_VOICE_STATE_UPDATE:
            return await self.on_voice_state_grant(data)
        return False

    async def on_voice_server_grant(self, data: Dict[str, Any]) -> bool:
        """Buffer a VOICE_SERVER_UPDATE and try to open the voice session."""
        grant = VoiceServerGrant.from_payload(data)
        self.voice_servers[grant.guild_id] = grant
        return await self.attempt_connection(grant.guild_id)

    async def on_voice_state_grant(self, data: Dict[str, Any]) -> bool:
        """
        Buffer the bot's VOICE_STATE_UPDATE and try to open the voice session.

        A grant without a channel means the bot left: both buffered grants
        for the guild are discarded.
        """
        grant = VoiceStateGrant.from_payload(data)
        if grant.user_id != str(self.user_id):
            return False

        if grant.channel_id is None:
            self.voice_servers.pop(grant.guild_id, None)
            self.voice_states.pop(grant.guild_id, None)
            logger.debug(f"[guild {grant.guild_id}] Left voice, discarded buffered grants")
            return False

        self.voice_states[grant.guild_id] = grant
        return await self.attempt_connection(grant.guild_id)

    async def attempt_connection(self, guild_id: str) -> bool:
        """
        Open the voice session once both grants and a session exist.

        The grants are consumed before the command is sent, so a
        retransmitted gateway packet cannot open the session twice. A failed
        open is raised to the caller and not retried.

        Returns:
            Whether the voice session was opened
        """
        server = self.voice_servers.get(guild_id)
        state = self.voice_states.get(guild_id)
        if server is None or state is None:
            return False

        session = self.sessions.get(guild_id)
        if session is None:
            return False

        del self.voice_servers[guild_id]
        del self.voice_states[guild_id]

        logger.info(f"[guild {guild_id}] Opening voice session on {session.node.name}")
        return await session.open_voice_session(
            VoiceSessionGrant(session_id=state.session_id, event=server)
        )

    async def close(self) -> None:
        """Destroy every node link."""
        for host in list(self.nodes):
            await self.remove_node(host)
