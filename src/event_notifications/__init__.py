"""Event notifications - dispatch application events to notification channels.

Events are emitted by type, routed to every channel the event type is
configured for and delivered by the registered channel providers, either
inline or through a durable file-backed queue.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("event-notifications")
except PackageNotFoundError:
    __version__ = "unknown"

__all__ = ["__version__"]
