"""
Custom exceptions for the Discord Node Relay system.

This module defines all custom exceptions used throughout the system,
providing clear error categorization and handling.
"""


class NodeRelayError(Exception):
    """Base exception for all Node Relay related errors."""

    pass


class ConfigurationError(NodeRelayError):
    """Raised when there are configuration-related errors."""

    pass


class NodeError(NodeRelayError):
    """Raised when there are audio node related errors."""

    pass


class NotConnectedError(NodeError):
    """Raised when a command is attempted while the node link is disconnected."""

    pass


class InvalidHostError(NodeError):
    """Raised when an operation references a node that is not registered."""

    pass


class TransportError(NodeError):
    """Raised when the WebSocket transport fails to deliver a message."""

    pass


class ProtocolError(NodeRelayError):
    """Raised when an inbound node message is malformed or unexpected."""

    pass


class SessionError(NodeRelayError):
    """Raised when there are playback session related errors."""

    pass


class MigrationInProgressError(SessionError):
    """Raised when a command targets a session that is being migrated."""

    pass


class MigrationError(SessionError):
    """Raised when moving a session to another node fails part way."""

    pass
