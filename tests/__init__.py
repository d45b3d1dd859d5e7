"""
Test suite for the Discord Node Relay.

This package contains tests organized by component:
- Unit tests for node links, sessions and the registry
- Shared transport and gateway doubles (helpers)
"""
