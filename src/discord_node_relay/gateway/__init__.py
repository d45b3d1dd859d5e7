"""
Discord gateway boundary for the Discord Node Relay.
"""

from .bridge import DiscordGatewayBridge, GatewayBridge, create_voice_state_packet

__all__ = ["DiscordGatewayBridge", "GatewayBridge", "create_voice_state_packet"]
