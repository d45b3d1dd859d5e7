"""
Discord Node Relay - playback coordination across remote audio nodes.

This package connects a Discord bot to a fleet of audio nodes over
WebSocket and manages one playback session per guild.

Key Features:
- Authenticated node links with flat-interval reconnect and session resuming
- Voice server / voice state correlation before a node voice session opens
- Load-aware node selection
- Live migration of a playback session between nodes

Architecture:
- Core: Session registry, playback sessions, data model
- WebSockets: Node link client and message processing
- Gateway: Discord gateway boundary
- REST: Track loading over the node HTTP API
- Config: Configuration management
- Infrastructure: Logging and exceptions
"""

__version__ = "1.0.0"
__author__ = "Discord Node Relay Team"

# Core components
from .core.session_registry import SessionRegistry
from .core.playback_session import PlaybackSession
from .core.events import EventEmitter
from .core.models import (
    EqualizerBand,
    NodeStats,
    PlaybackState,
    VoiceServerGrant,
    VoiceSessionGrant,
    VoiceStateGrant,
)

# Networking components
from .websockets.client import NodeLink
from .gateway import DiscordGatewayBridge, GatewayBridge
from .rest import TrackLoader

# Configuration
from .config import NodeConfig, RelayConfig, RelayConfigManager

# Infrastructure
from .infrastructure.logging import setup_logging, get_logger
from .infrastructure.exceptions import (
    NodeRelayError,
    ConfigurationError,
    NodeError,
    NotConnectedError,
    InvalidHostError,
    TransportError,
    ProtocolError,
    SessionError,
    MigrationInProgressError,
    MigrationError,
)

__all__ = [
    # Version info
    "__version__",
    "__author__",
    # Core components
    "SessionRegistry",
    "PlaybackSession",
    "EventEmitter",
    "EqualizerBand",
    "NodeStats",
    "PlaybackState",
    "VoiceServerGrant",
    "VoiceSessionGrant",
    "VoiceStateGrant",
    # Networking components
    "NodeLink",
    "GatewayBridge",
    "DiscordGatewayBridge",
    "TrackLoader",
    # Configuration
    "NodeConfig",
    "RelayConfig",
    "RelayConfigManager",
    # Infrastructure
    "setup_logging",
    "get_logger",
    "NodeRelayError",
    "ConfigurationError",
    "NodeError",
    "NotConnectedError",
    "InvalidHostError",
    "TransportError",
    "ProtocolError",
    "SessionError",
    "MigrationInProgressError",
    "MigrationError",
]
