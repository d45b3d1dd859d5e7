"""
Node protocol message handling.

This module normalizes inbound WebSocket frames to text, parses them as
JSON node messages, and builds outbound command envelopes.
"""

import json
from typing import Any, Dict, Iterable, Union

from discord_node_relay.infrastructure.exceptions import ProtocolError

Frame = Union[str, bytes, bytearray, memoryview, Iterable[bytes]]


def decode_frame(frame: Frame) -> str:
    """
    Normalize a frame to text regardless of how it was delivered.

    Args:
        frame: Text frame, binary frame, or a sequence of binary fragments

    Returns:
        Decoded UTF-8 text

    Raises:
        ProtocolError: If the frame cannot be decoded
    """
    if isinstance(frame, str):
        return frame

    try:
        if isinstance(frame, (bytes, bytearray, memoryview)):
            return bytes(frame).decode("utf-8")
        return b"".join(bytes(fragment) for fragment in frame).decode("utf-8")
    except (TypeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"Undecodable frame: {e}") from e


def parse_node_message(frame: Frame) -> Dict[str, Any]:
    """
    Parse an inbound frame into a node message.

    Raises:
        ProtocolError: If the frame is not a JSON object
    """
    text = decode_frame(frame)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON from node: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError(f"Expected a JSON object, got {type(data).__name__}")

    return data


def create_command_message(op: str, guild_id: str, **fields: Any) -> Dict[str, Any]:
    """
    Create a command envelope for a guild's player.

    Args:
        op: Command op
        guild_id: Target guild
        **fields: Op-specific fields

    Returns:
        Command dict ready for serialization
    """
    message = dict(fields)
    message["op"] = op
    message["guildId"] = str(guild_id)
    return message
