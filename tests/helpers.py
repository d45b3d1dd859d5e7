"""
Test doubles for the node transport and the Discord gateway.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

from websockets.exceptions import ConnectionClosedError
from websockets.protocol import State

from discord_node_relay.config.settings import NodeConfig
from discord_node_relay.gateway.bridge import GatewayBridge

BOT_USER_ID = "111222333"
GUILD_ID = "123456789"
CHANNEL_ID = "987654321"
RECONNECT_INTERVAL = 0.05

_CLOSED = object()


class FakeConnection:
    """In-memory stand-in for a websockets ClientConnection."""

    def __init__(self, uri: str) -> None:
        self.uri = uri
        self.state = State.OPEN
        self.sent: List[str] = []
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None
        self.fail_sends = False
        self.send_gate: Optional[asyncio.Event] = None
        self._incoming: asyncio.Queue = asyncio.Queue()

    @property
    def sent_messages(self) -> List[Dict[str, Any]]:
        return [json.loads(message) for message in self.sent]

    def ops(self) -> List[str]:
        return [message["op"] for message in self.sent_messages]

    async def send(self, message: str) -> None:
        if self.state is not State.OPEN or self.fail_sends:
            raise ConnectionClosedError(None, None)
        if self.send_gate is not None:
            await self.send_gate.wait()
        self.sent.append(message)

    def feed(self, message: Any) -> None:
        """Queue an inbound frame; dicts are JSON encoded."""
        if isinstance(message, dict):
            message = json.dumps(message)
        self._incoming.put_nowait(message)

    def drop(self, code: int = 1006, reason: str = "") -> None:
        """Simulate the remote side closing the socket."""
        self._finish(code, reason)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self._finish(code, reason)

    def _finish(self, code: int, reason: str) -> None:
        if self.state is State.CLOSED:
            return
        self.state = State.CLOSED
        self.close_code = code
        self.close_reason = reason
        self._incoming.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class ConnectionFactory:
    """Replacement for websockets' connect() that hands out FakeConnections."""

    def __init__(self) -> None:
        self.connections: List[FakeConnection] = []
        self.calls: List[Dict[str, Any]] = []
        self.failures = 0

    async def __call__(self, uri: str, **kwargs: Any) -> FakeConnection:
        self.calls.append({"uri": uri, **kwargs})
        if self.failures:
            self.failures -= 1
            raise OSError("Connection refused")
        connection = FakeConnection(uri)
        self.connections.append(connection)
        return connection

    @property
    def latest(self) -> FakeConnection:
        return self.connections[-1]

    def for_host(self, host: str) -> FakeConnection:
        """Most recent connection opened to a host."""
        for connection in reversed(self.connections):
            if f"//{host}:" in connection.uri:
                return connection
        raise LookupError(host)

    def connections_to(self, host: str) -> List[FakeConnection]:
        return [c for c in self.connections if f"//{host}:" in c.uri]


class FakeGatewayBridge(GatewayBridge):
    """Gateway bridge that records the packets it would send."""

    def __init__(self) -> None:
        super().__init__(user_id=BOT_USER_ID, shard_count=1)
        self.packets: List[Dict[str, Any]] = []
        self.unknown_guilds: set = set()

    def shard_for_guild(self, guild_id: str) -> Optional[int]:
        if guild_id in self.unknown_guilds:
            return None
        return 0

    async def send_packet(self, shard_id: int, payload: Dict[str, Any]) -> None:
        self.packets.append(payload)


def node_config(host: str, **overrides: Any) -> NodeConfig:
    overrides.setdefault("reconnect_interval", RECONNECT_INTERVAL)
    return NodeConfig(host=host, **overrides)


def stats_frame(system_load: float, cores: int, players: int = 0) -> Dict[str, Any]:
    return {
        "op": "stats",
        "players": players,
        "playingPlayers": players,
        "uptime": 1000,
        "memory": {"free": 1, "used": 2, "allocated": 3, "reservable": 4},
        "cpu": {"cores": cores, "systemLoad": system_load, "lavalinkLoad": 0.01},
    }


def voice_server_update(guild_id: str = GUILD_ID) -> Dict[str, Any]:
    return {"token": "voice-token", "guild_id": guild_id, "endpoint": "us-east1.discord.media"}


def voice_state_update(
    guild_id: str = GUILD_ID,
    channel_id: Optional[str] = CHANNEL_ID,
    user_id: str = BOT_USER_ID,
) -> Dict[str, Any]:
    return {
        "guild_id": guild_id,
        "channel_id": channel_id,
        "user_id": user_id,
        "session_id": "voice-session",
        "self_deaf": False,
        "self_mute": False,
    }
