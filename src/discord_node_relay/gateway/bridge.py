"""
Gateway boundary for the Discord Node Relay.

The registry never touches the Discord client directly. It is handed a
GatewayBridge that can tell which shard owns a guild and send a packet on
that shard; DiscordGatewayBridge implements it on top of discord.py and
feeds raw voice dispatches back into the registry.
"""

import json
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

import discord
from discord.ext import commands

from discord_node_relay.core.types import GATEWAY_OP_VOICE_STATE_UPDATE
from discord_node_relay.infrastructure import setup_logging

if TYPE_CHECKING:
    from discord_node_relay.core.session_registry import SessionRegistry

logger = setup_logging(component_name="gateway_bridge")


def create_voice_state_packet(
    guild_id: str,
    channel_id: Optional[str],
    self_mute: bool = False,
    self_deaf: bool = False,
) -> Dict[str, Any]:
    """
    Create an op 4 "update voice state" packet.

    A channel_id of None asks Discord to leave the guild's voice channel.
    """
    return {
        "op": GATEWAY_OP_VOICE_STATE_UPDATE,
        "d": {
            "guild_id": str(guild_id),
            "channel_id": str(channel_id) if channel_id is not None else None,
            "self_mute": self_mute,
            "self_deaf": self_deaf,
        },
    }


class GatewayBridge:
    """
    Capability to reach the Discord gateway.

    Subclasses provide shard lookup and raw packet sending.
    """

    def __init__(self, user_id: Optional[str] = None, shard_count: int = 1) -> None:
        self._user_id = str(user_id) if user_id is not None else None
        self._shard_count = shard_count

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def shard_count(self) -> int:
        return self._shard_count

    def shard_for_guild(self, guild_id: str) -> Optional[int]:
        """Return the shard owning a guild, or None if the guild is unknown."""
        raise NotImplementedError

    async def send_packet(self, shard_id: int, payload: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def update_voice_state(
        self,
        guild_id: str,
        channel_id: Optional[str],
        self_mute: bool = False,
        self_deaf: bool = False,
    ) -> bool:
        """
        Send a join (channel_id set) or leave (channel_id None) intent.

        Returns:
            False if no shard owns the guild
        """
        shard_id = self.shard_for_guild(guild_id)
        if shard_id is None:
            logger.warning(f"[guild {guild_id}] No shard owns this guild, voice update not sent")
            return False

        packet = create_voice_state_packet(guild_id, channel_id, self_mute, self_deaf)
        await self.send_packet(shard_id, packet)
        logger.debug(f"[guild {guild_id}] Sent voice state update on shard {shard_id}: {packet}")
        return True


class DiscordGatewayBridge(GatewayBridge):
    """
    GatewayBridge backed by a discord.py client.

    Raw voice dispatches reach the registry through on_socket_raw_receive,
    so the client must be created with enable_debug_events=True.
    """

    def __init__(self, client: discord.Client) -> None:
        super().__init__()
        self.client = client

    @property
    def user_id(self) -> Optional[str]:
        if self.client.user is None:
            return self._user_id
        return str(self.client.user.id)

    @property
    def shard_count(self) -> int:
        return self.client.shard_count or 1

    def shard_for_guild(self, guild_id: str) -> Optional[int]:
        guild = self.client.get_guild(int(guild_id))
        if guild is None:
            return None
        return guild.shard_id

    async def send_packet(self, shard_id: int, payload: Dict[str, Any]) -> None:
        """
        Send a raw packet on a shard's gateway socket.

        Voice state updates go out as raw op 4 packets instead of through
        discord.py's voice client, which would open its own voice connection.
        This relies on the private Client._get_websocket and may need updating
        when discord.py changes it.
        """
        websocket = self.client._get_websocket(shard_id=shard_id)
        await websocket.send_as_json(payload)

    def attach(self, bot: commands.Bot, registry: "SessionRegistry") -> None:
        """Forward the bot's raw gateway dispatches to the registry."""

        async def on_socket_raw_receive(message: Union[str, bytes]) -> None:
            await self.handle_raw_message(registry, message)

        bot.add_listener(on_socket_raw_receive)
        logger.info("Gateway bridge attached to bot")

    async def handle_raw_message(
        self, registry: "SessionRegistry", message: Union[str, bytes]
    ) -> None:
        if isinstance(message, bytes):
            message = message.decode("utf-8")
        try:
            packet = json.loads(message)
        except json.JSONDecodeError:
            logger.debug("Ignoring non-JSON gateway frame")
            return

        await registry.handle_gateway_packet(packet)
