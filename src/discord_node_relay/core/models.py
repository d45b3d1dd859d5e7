"""
Data structures exchanged with audio nodes and the Discord gateway.

Stats snapshots, voice grants and the locally mirrored playback state are
plain dataclasses built from, and serialized back to, protocol payloads.
"""

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from discord_node_relay.infrastructure.exceptions import ProtocolError

from .types import DEFAULT_VOLUME


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ProtocolError(f"Stats section {key} must be an object, got {type(value).__name__}")
    return value


def _optional_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


@dataclass
class MemoryStats:
    free: int = 0
    used: int = 0
    allocated: int = 0
    reservable: int = 0


@dataclass
class CpuStats:
    cores: int = 0
    system_load: float = 0.0
    lavalink_load: float = 0.0


@dataclass
class FrameStats:
    sent: Optional[int] = None
    nulled: Optional[int] = None
    deficit: Optional[int] = None


@dataclass
class NodeStats:
    """Last stats snapshot reported by a node."""

    players: int = 0
    playing_players: int = 0
    uptime: int = 0
    memory: MemoryStats = field(default_factory=MemoryStats)
    cpu: CpuStats = field(default_factory=CpuStats)
    frame_stats: Optional[FrameStats] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "NodeStats":
        """
        Build a snapshot from an inbound stats message (the op field is ignored).

        Raises:
            ProtocolError: If a section is not an object or a value is not numeric
        """
        memory = _section(data, "memory")
        cpu = _section(data, "cpu")
        frames = _section(data, "frameStats")

        try:
            return cls(
                players=int(data.get("players", 0)),
                playing_players=int(data.get("playingPlayers", 0)),
                uptime=int(data.get("uptime", 0)),
                memory=MemoryStats(
                    free=int(memory.get("free", 0)),
                    used=int(memory.get("used", 0)),
                    allocated=int(memory.get("allocated", 0)),
                    reservable=int(memory.get("reservable", 0)),
                ),
                cpu=CpuStats(
                    cores=int(cpu.get("cores", 0)),
                    system_load=float(cpu.get("systemLoad", 0.0)),
                    lavalink_load=float(cpu.get("lavalinkLoad", 0.0)),
                ),
                frame_stats=FrameStats(
                    sent=_optional_int(frames.get("sent")),
                    nulled=_optional_int(frames.get("nulled")),
                    deficit=_optional_int(frames.get("deficit")),
                )
                if frames
                else None,
            )
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"Malformed stats payload: {e}") from e

    @property
    def load(self) -> float:
        """Normalized CPU load in percent; 0 until the node reports cores."""
        if not self.cpu.cores:
            return 0.0
        return self.cpu.system_load / self.cpu.cores * 100

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class VoiceServerGrant:
    """VOICE_SERVER_UPDATE payload for one guild."""

    token: str
    guild_id: str
    endpoint: Optional[str]

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "VoiceServerGrant":
        return cls(
            token=data["token"],
            guild_id=str(data["guild_id"]),
            endpoint=data.get("endpoint"),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "guild_id": self.guild_id,
            "endpoint": self.endpoint,
        }


@dataclass(frozen=True)
class VoiceStateGrant:
    """VOICE_STATE_UPDATE payload for the bot user in one guild."""

    guild_id: str
    user_id: str
    session_id: str
    channel_id: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "VoiceStateGrant":
        channel_id = data.get("channel_id")
        return cls(
            guild_id=str(data["guild_id"]),
            user_id=str(data["user_id"]),
            session_id=data["session_id"],
            channel_id=str(channel_id) if channel_id is not None else None,
        )


@dataclass(frozen=True)
class VoiceSessionGrant:
    """Joined server/state grant sent to a node as a voiceUpdate."""

    session_id: str
    event: VoiceServerGrant

    def to_payload(self) -> Dict[str, Any]:
        return {"sessionId": self.session_id, "event": self.event.to_payload()}


@dataclass(frozen=True)
class EqualizerBand:
    band: int
    gain: float

    def to_payload(self) -> Dict[str, Any]:
        return {"band": self.band, "gain": self.gain}


@dataclass
class PlaybackState:
    """
    Local mirror of a node's player state.

    The node is authoritative for time and position; received_at is the
    monotonic clock reading taken when the last state sync arrived.
    """

    volume: int = DEFAULT_VOLUME
    equalizer: List[EqualizerBand] = field(default_factory=list)
    time: Optional[int] = None
    position: Optional[int] = None
    received_at: Optional[float] = None

    def sync(self, state: Dict[str, Any]) -> None:
        """Merge a node-reported {time, position}; volume and equalizer are kept."""
        self.time = state.get("time")
        self.position = state.get("position")
        self.received_at = time.monotonic()
