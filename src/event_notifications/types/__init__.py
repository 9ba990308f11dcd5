"""Type definitions and protocols for event-notifications.

This package provides:
- Data models (dataclasses and enumerations)
- Protocol definitions (structural subtyping interfaces)
- Type aliases (PEP 695 syntax)
"""

from event_notifications.types.aliases import (
    ChannelId,
    NotificationOperation,
    Payload,
    ProviderConfig,
    RetryOperation,
)
from event_notifications.types.models import (
    DeliveryStatus,
    EmitOptions,
    Event,
    EventEmissionResult,
    EventPriority,
    HealthStatus,
    NotificationContext,
    NotificationResult,
    ProcessingMode,
    utc_now,
)
from event_notifications.types.protocols import ChannelProvider

__all__ = [
    # Type aliases
    "ChannelId",
    "NotificationOperation",
    "Payload",
    "ProviderConfig",
    "RetryOperation",
    # Data models
    "DeliveryStatus",
    "EmitOptions",
    "Event",
    "EventEmissionResult",
    "EventPriority",
    "HealthStatus",
    "NotificationContext",
    "NotificationResult",
    "ProcessingMode",
    "utc_now",
    # Protocols
    "ChannelProvider",
]
