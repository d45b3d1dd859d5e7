"""
Message processing for node WebSocket clients.
"""

from .node_message import create_command_message, decode_frame, parse_node_message

__all__ = ["create_command_message", "decode_frame", "parse_node_message"]
