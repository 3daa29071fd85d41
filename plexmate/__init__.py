"""Plex availability tracking and new-media notifications."""

__version__ = "1.0.0"
