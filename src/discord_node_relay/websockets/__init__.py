"""
WebSocket components for the Discord Node Relay.

This package holds the client side of the node control protocol.
"""
