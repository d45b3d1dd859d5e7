"""
Common types and constants for the Discord Node Relay system.

This module centralizes the node control protocol vocabulary, gateway
packet names and defaults to avoid hardcoding throughout the codebase.
"""

from typing import Final

# Node control protocol: outbound ops
OP_PLAY: Final[str] = "play"
OP_STOP: Final[str] = "stop"
OP_PAUSE: Final[str] = "pause"
OP_VOLUME: Final[str] = "volume"
OP_SEEK: Final[str] = "seek"
OP_EQUALIZER: Final[str] = "equalizer"
OP_DESTROY: Final[str] = "destroy"
OP_VOICE_UPDATE: Final[str] = "voiceUpdate"
OP_CONFIGURE_RESUMING: Final[str] = "configureResuming"

# Node control protocol: inbound ops
OP_STATS: Final[str] = "stats"
OP_PLAYER_UPDATE: Final[str] = "playerUpdate"
OP_EVENT: Final[str] = "event"

# Player event types
EVENT_TRACK_END: Final[str] = "TrackEndEvent"
EVENT_TRACK_EXCEPTION: Final[str] = "TrackExceptionEvent"
EVENT_TRACK_STUCK: Final[str] = "TrackStuckEvent"
EVENT_WEBSOCKET_CLOSED: Final[str] = "WebSocketClosedEvent"

TRACK_END_REASON_REPLACED: Final[str] = "REPLACED"

# Handshake headers
HEADER_AUTHORIZATION: Final[str] = "Authorization"
HEADER_NUM_SHARDS: Final[str] = "Num-Shards"
HEADER_USER_ID: Final[str] = "User-Id"
HEADER_RESUME_KEY: Final[str] = "Resume-Key"
HEADER_CLIENT_NAME: Final[str] = "Client-Name"
CLIENT_NAME: Final[str] = "discord-node-relay"

# Graceful teardown sequence; any other close is reconnected
CLOSE_CODE_NORMAL: Final[int] = 1000
CLOSE_REASON_DESTROY: Final[str] = "destroy"

# Discord gateway
GATEWAY_OP_VOICE_STATE_UPDATE: Final[int] = 4
GATEWAY_VOICE_SERVER_UPDATE: Final[str] = "VOICE_SERVER_UPDATE"
GATEWAY_VOICE_STATE_UPDATE: Final[str] = "VOICE_STATE_UPDATE"

# Registry / session observability events
EVT_READY: Final[str] = "ready"
EVT_RAW: Final[str] = "raw"
EVT_ERROR: Final[str] = "error"
EVT_DISCONNECT: Final[str] = "disconnect"
EVT_RECONNECTING: Final[str] = "reconnecting"
EVT_END: Final[str] = "end"
EVT_WARN: Final[str] = "warn"
EVT_UPDATE: Final[str] = "update"

# Environment Variable Names (from .env file)
ENV_BOT_USER_ID: Final[str] = "BOT_USER_ID"
ENV_SHARD_COUNT: Final[str] = "SHARD_COUNT"
ENV_LOG_LEVEL: Final[str] = "LOG_LEVEL"
ENV_AUDIO_NODES: Final[str] = "AUDIO_NODES"
ENV_NODE_RECONNECT_INTERVAL: Final[str] = "NODE_RECONNECT_INTERVAL"
ENV_NODE_RESUME_TIMEOUT: Final[str] = "NODE_RESUME_TIMEOUT"

# Default Values
DEFAULT_NODE_PORT: Final[int] = 2333
DEFAULT_NODE_PASSWORD: Final[str] = "youshallnotpass"
DEFAULT_RECONNECT_INTERVAL: Final[float] = 5.0
DEFAULT_RESUME_TIMEOUT: Final[int] = 120
DEFAULT_VOLUME: Final[int] = 100
MIGRATION_POSITION_OFFSET_MS: Final[int] = 2000
