"""Conferencing bridge: Google Meet links via calendar credentials, Jitsi as fallback."""

from cvreview.conferencing.bridge import ConferencingBridge, MeetingLink, conferencing_bridge

__all__ = ["ConferencingBridge", "MeetingLink", "conferencing_bridge"]
