"""
HTTP collaborators for the Discord Node Relay.
"""

from .track_loader import TrackLoader

__all__ = ["TrackLoader"]
