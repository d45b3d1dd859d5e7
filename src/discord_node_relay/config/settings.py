"""
Configuration management for the Discord Node Relay.

This module provides the immutable node settings used by node links and
a small environment-driven manager that builds the relay configuration.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from discord_node_relay.core.types import (
    DEFAULT_NODE_PASSWORD,
    DEFAULT_NODE_PORT,
    DEFAULT_RECONNECT_INTERVAL,
    DEFAULT_RESUME_TIMEOUT,
    ENV_AUDIO_NODES,
    ENV_BOT_USER_ID,
    ENV_LOG_LEVEL,
    ENV_NODE_RECONNECT_INTERVAL,
    ENV_NODE_RESUME_TIMEOUT,
    ENV_SHARD_COUNT,
)
from discord_node_relay.infrastructure.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeConfig:
    """Connection settings for one audio node."""

    host: str
    port: int = DEFAULT_NODE_PORT
    password: str = DEFAULT_NODE_PASSWORD
    reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL  # seconds
    resume_key: Optional[str] = None
    resume_timeout: int = DEFAULT_RESUME_TIMEOUT  # seconds
    secure: bool = False

    def __post_init__(self):
        """Validate the settings."""
        if not self.host:
            raise ConfigurationError("Node host cannot be empty")
        if not 0 < int(self.port) < 65536:
            raise ConfigurationError(f"Invalid port for node {self.host}: {self.port}")
        if self.reconnect_interval <= 0:
            raise ConfigurationError(
                f"reconnect_interval must be positive for node {self.host}"
            )

    @property
    def address(self) -> str:
        """WebSocket endpoint."""
        scheme = "wss" if self.secure else "ws"
        return f"{scheme}://{self.host}:{self.port}"

    @property
    def rest_address(self) -> str:
        """HTTP endpoint for track loading."""
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self.host}:{self.port}"


@dataclass
class RelayConfig:
    """Configuration for the relay as a whole."""

    user_id: str
    shard_count: int = 1
    nodes: List[NodeConfig] = field(default_factory=list)
    log_level: str = "INFO"


class RelayConfigManager:
    """Environment-backed configuration manager."""

    def __init__(self, env_file_path: str = ".env"):
        """
        Initialize configuration manager.

        Args:
            env_file_path: Path to environment file
        """
        self.env_file_path = env_file_path
        self._load_environment()

    def _load_environment(self):
        """Load environment variables from file."""
        if os.path.exists(self.env_file_path):
            load_dotenv(dotenv_path=self.env_file_path)
            logger.info(f"Loaded environment from {self.env_file_path}")
        else:
            logger.debug(f"Environment file {self.env_file_path} not found")

    def _get_required_env(self, key: str) -> str:
        """
        Get required environment variable.

        Raises:
            ConfigurationError: If environment variable is not set
        """
        value = os.getenv(key)
        if not value:
            raise ConfigurationError(f"Required environment variable {key} is not set")
        return value

    def _get_optional_env(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return os.getenv(key, default)

    def _get_number_env(self, key: str, default, cast):
        raw = self._get_optional_env(key)
        if raw is None or raw == "":
            return default
        try:
            return cast(raw)
        except ValueError as e:
            raise ConfigurationError(f"{key} must be a number, got {raw!r}") from e

    def _parse_nodes(
        self, raw: str, reconnect_interval: float, resume_timeout: int
    ) -> List[NodeConfig]:
        """
        Parse AUDIO_NODES.

        Expects comma-separated entries of the form host[:port[:password]],
        for example: AUDIO_NODES=node-a:2333:secret,node-b

        Returns:
            List of node configurations
        """
        nodes = []
        for entry in raw.split(","):
            entry = entry.strip()
            if not entry:
                continue

            host, _, rest = entry.partition(":")
            port_text, _, password = rest.partition(":")
            try:
                port = int(port_text) if port_text else DEFAULT_NODE_PORT
            except ValueError as e:
                raise ConfigurationError(f"Invalid port in node entry {entry!r}") from e

            nodes.append(
                NodeConfig(
                    host=host,
                    port=port,
                    password=password or DEFAULT_NODE_PASSWORD,
                    reconnect_interval=reconnect_interval,
                    resume_timeout=resume_timeout,
                )
            )
        return nodes

    def get_config(self) -> RelayConfig:
        """
        Get the relay configuration.

        Raises:
            ConfigurationError: If required configuration is missing or invalid
        """
        user_id = self._get_required_env(ENV_BOT_USER_ID)
        reconnect_interval = self._get_number_env(
            ENV_NODE_RECONNECT_INTERVAL, DEFAULT_RECONNECT_INTERVAL, float
        )
        resume_timeout = self._get_number_env(
            ENV_NODE_RESUME_TIMEOUT, DEFAULT_RESUME_TIMEOUT, int
        )
        nodes = self._parse_nodes(
            self._get_required_env(ENV_AUDIO_NODES), reconnect_interval, resume_timeout
        )
        if not nodes:
            raise ConfigurationError(f"{ENV_AUDIO_NODES} does not name any node")

        config = RelayConfig(
            user_id=user_id,
            shard_count=self._get_number_env(ENV_SHARD_COUNT, 1, int),
            nodes=nodes,
            log_level=self._get_optional_env(ENV_LOG_LEVEL, "INFO"),
        )
        logger.info(f"Configuration loaded with {len(nodes)} audio node(s)")
        return config
