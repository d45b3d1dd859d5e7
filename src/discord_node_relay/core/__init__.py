"""
Core components for the Discord Node Relay system.

This package contains the session registry, playback sessions and the
data model shared with node links.
"""

from .events import EventEmitter
from .models import (
    EqualizerBand,
    NodeStats,
    PlaybackState,
    VoiceServerGrant,
    VoiceSessionGrant,
    VoiceStateGrant,
)
from .playback_session import PlaybackSession
from .session_registry import SessionRegistry

__all__ = [
    "EventEmitter",
    "EqualizerBand",
    "NodeStats",
    "PlaybackState",
    "VoiceServerGrant",
    "VoiceSessionGrant",
    "VoiceStateGrant",
    "PlaybackSession",
    "SessionRegistry",
]
