"""Application layer: configuration-driven wiring and the command-line interface."""

from event_notifications.app.system import NotificationSystem

__all__ = ["NotificationSystem"]
