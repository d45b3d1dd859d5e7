"""
Configuration management for the Discord Node Relay.

This package provides:
- Immutable per-node connection settings
- Relay-wide configuration loaded from the environment
"""

from .settings import NodeConfig, RelayConfig, RelayConfigManager

__all__ = [
    "NodeConfig",
    "RelayConfig",
    "RelayConfigManager",
]
