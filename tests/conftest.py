"""
Pytest configuration and shared fixtures for the Discord Node Relay test suite.

The WebSocket transport is replaced by an in-memory connection so node
links, sessions and the registry can be driven frame by frame.
"""

import asyncio
from unittest.mock import patch

import pytest
import pytest_asyncio

from discord_node_relay.core.session_registry import SessionRegistry

from tests.helpers import (
    CHANNEL_ID,
    GUILD_ID,
    ConnectionFactory,
    FakeGatewayBridge,
    node_config,
)


@pytest.fixture
def settle():
    """Let queued frames and callbacks run."""

    async def _settle(rounds: int = 10) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)

    return _settle


@pytest.fixture
def fake_connect():
    """Patch the node link transport with an in-memory connection factory."""
    factory = ConnectionFactory()
    with patch("discord_node_relay.websockets.client.node_link.connect", new=factory):
        yield factory


@pytest.fixture
def bridge():
    """Gateway bridge recording outbound voice state packets."""
    return FakeGatewayBridge()


@pytest_asyncio.fixture
async def registry(bridge, fake_connect):
    """Registry with two connected nodes, node-a and node-b."""
    registry = SessionRegistry(bridge, [node_config("node-a"), node_config("node-b")])
    for node in registry.nodes.values():
        await node.wait_until_ready(timeout=1)
    yield registry
    await registry.close()


@pytest_asyncio.fixture
async def session(registry):
    """Playback session for GUILD_ID bound to node-a."""
    return await registry.join(GUILD_ID, CHANNEL_ID, "node-a")


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
