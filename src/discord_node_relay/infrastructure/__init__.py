"""
Infrastructure components for the Discord Node Relay system.

This package contains infrastructure concerns including:
- Logging configuration and utilities with production controls
- Custom exception definitions
"""

from .logging import setup_logging, get_logger
from .logging_manager import (
    LoggingManager,
    LogLevel,
    Environment,
    is_production,
    get_environment,
)
from .exceptions import (
    NodeRelayError,
    ConfigurationError,
    NodeError,
    NotConnectedError,
    InvalidHostError,
    TransportError,
    ProtocolError,
    SessionError,
    MigrationInProgressError,
    MigrationError,
)

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    "LoggingManager",
    "LogLevel",
    "Environment",
    "is_production",
    "get_environment",
    # Exceptions
    "NodeRelayError",
    "ConfigurationError",
    "NodeError",
    "NotConnectedError",
    "InvalidHostError",
    "TransportError",
    "ProtocolError",
    "SessionError",
    "MigrationInProgressError",
    "MigrationError",
]
