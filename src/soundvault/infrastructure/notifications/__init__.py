"""Notification sinks."""

from soundvault.infrastructure.notifications.event_broadcaster import EventBroadcaster

__all__ = ["EventBroadcaster"]
