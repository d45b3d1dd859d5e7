"""
WebSocket client components for the Discord Node Relay.

This module provides the authenticated, self-reconnecting link to one
remote audio node.
"""

from .node_link import NodeLink

__all__ = ["NodeLink"]
