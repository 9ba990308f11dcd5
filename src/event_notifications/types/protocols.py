"""Protocol definitions for component interfaces.

This module defines structural subtyping protocols that establish
contracts for pluggable components without requiring inheritance.
"""

from typing import Protocol, runtime_checkable

from event_notifications.types.aliases import ChannelId, Payload, ProviderConfig
from event_notifications.types.models import NotificationContext, NotificationResult


@runtime_checkable
class ChannelProvider(Protocol):
    """Protocol for channel delivery providers.

    A provider delivers payloads to exactly one channel (``email``,
    ``webhook``, ``chat``...) and reports whether it is currently able to.
    Several providers may serve the same channel; the router picks the first
    healthy one in registration order.
    """

    @property
    def channel(self) -> ChannelId:
        """Channel identifier this provider delivers to."""
        ...

    @property
    def name(self) -> str:
        """Provider name, unique within its channel."""
        ...

    async def send(self, payload: Payload, context: NotificationContext) -> NotificationResult:
        """Deliver payload to the channel.

        Args:
            payload: Event payload, opaque to the core
            context: Event identifiers, attempt number and metadata

        Returns:
            Result of the delivery attempt. A status other than ``sent``
            is treated as a failed attempt and retried.
        """
        ...

    async def health_check(self) -> bool:
        """Return True when the provider can currently deliver."""
        ...

    def validate_config(self, config: ProviderConfig) -> bool | list[str]:
        """Validate provider configuration.

        Returns:
            True when valid, otherwise False or a list of error messages
        """
        ...
