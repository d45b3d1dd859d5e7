"""
HTTP track resolution against an audio node.
"""

from typing import Any, Dict, List, Optional

import aiohttp

from discord_node_relay.config.settings import NodeConfig
from discord_node_relay.core.types import HEADER_AUTHORIZATION
from discord_node_relay.infrastructure import setup_logging
from discord_node_relay.infrastructure.exceptions import TransportError

logger = setup_logging(component_name="track_loader")


class TrackLoader:
    """Client for a node's /loadtracks endpoint."""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        """
        Initialize the loader.

        Args:
            session: Shared aiohttp session; a short-lived one is opened per
                request when omitted
        """
        self.session = session

    async def load_tracks(self, node: NodeConfig, identifier: str) -> List[Dict[str, Any]]:
        """
        Resolve a search query or URL into track descriptors.

        Args:
            node: Node whose HTTP API is queried
            identifier: Query, e.g. "ytsearch: artist - title" or a URL

        Returns:
            Track descriptors ({"track": ..., "info": {...}})

        Raises:
            TransportError: If the request fails or the node answers non-200
        """
        if self.session is not None:
            return await self._request(self.session, node, identifier)

        async with aiohttp.ClientSession() as session:
            return await self._request(session, node, identifier)

    async def _request(
        self, session: aiohttp.ClientSession, node: NodeConfig, identifier: str
    ) -> List[Dict[str, Any]]:
        url = f"{node.rest_address}/loadtracks"
        headers = {HEADER_AUTHORIZATION: node.password}

        try:
            async with session.get(
                url, params={"identifier": identifier}, headers=headers
            ) as response:
                if response.status != 200:
                    raise TransportError(
                        f"Failed to load tracks from {node.host}: {response.status} - {await response.text()}"
                    )
                data = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise TransportError(f"Error loading tracks from {node.host}: {e}") from e

        tracks = data.get("tracks", []) if isinstance(data, dict) else data
        logger.info(f"Loaded {len(tracks)} track(s) for {identifier!r} from {node.host}")
        return tracks
