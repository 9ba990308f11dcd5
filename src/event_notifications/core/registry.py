"""Channel provider registry.

Providers are registered explicitly at startup and stored per channel in
registration order; the router prefers earlier registrations. The registry
also tracks delivery health for each provider so that operators can see
which adapters are failing.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from event_notifications.types import ChannelProvider, HealthStatus
from event_notifications.types.models import utc_now

__all__ = ["ChannelProviderRegistry"]

_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_.-]*$")


@dataclass(slots=True)
class _RegistryEntry:
    """Internal registry entry storing provider and health data."""

    provider: ChannelProvider
    health: HealthStatus | None = None


class ChannelProviderRegistry:
    """Registry of channel providers with health tracking.

    Args:
        unhealthy_threshold: Number of consecutive failures tolerated
            before the provider is considered unhealthy. Must be >= 1.
    """

    def __init__(self, *, unhealthy_threshold: int = 3) -> None:
        if unhealthy_threshold < 1:
            msg = "unhealthy_threshold must be >= 1"
            raise ValueError(msg)
        self._unhealthy_threshold: int = unhealthy_threshold
        self._channels: dict[str, dict[str, _RegistryEntry]] = {}

    def register(
        self,
        provider: ChannelProvider,
        *,
        initial_health: HealthStatus | None = None,
    ) -> None:
        """Register a provider under its channel and name."""
        channel = self._normalize_channel(provider.channel)
        name = self._normalize_name(provider.name)
        entries = self._channels.setdefault(channel, {})
        if name in entries:
            msg = f"Provider {name!r} already registered for channel {channel!r}"
            raise ValueError(msg)
        entries[name] = _RegistryEntry(provider=provider, health=initial_health)

    def unregister(self, channel: str, name: str) -> bool:
        """Remove a provider; return whether it was registered."""
        channel = self._normalize_channel(channel)
        entries = self._channels.get(channel)
        if entries is None:
            return False
        removed = entries.pop(self._normalize_name(name), None)
        if not entries:
            del self._channels[channel]
        return removed is not None

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._channels.values())

    def get(self, channel: str, name: str) -> ChannelProvider | None:
        entry = self._channels.get(channel, {}).get(name)
        return entry.provider if entry else None

    def providers_for(self, channel: str) -> tuple[ChannelProvider, ...]:
        """Return the providers of ``channel`` in registration order."""
        return tuple(entry.provider for entry in self._channels.get(channel, {}).values())

    def get_channels(self) -> tuple[str, ...]:
        """Return channels with at least one provider, sorted alphabetically."""
        return tuple(sorted(self._channels))

    def get_all(self) -> tuple[ChannelProvider, ...]:
        return tuple(provider for channel in self.get_channels() for provider in self.providers_for(channel))

    def get_health(self, channel: str, name: str) -> HealthStatus | None:
        """Return the most recent tracked health of a provider."""
        entry = self._channels.get(channel, {}).get(name)
        return entry.health if entry else None

    def update_health(self, channel: str, name: str, status: HealthStatus) -> HealthStatus:
        entry = self._require_entry(channel, name)
        entry.health = status
        return status

    def record_success(self, channel: str, name: str) -> HealthStatus:
        """Record a successful delivery and reset failure counters."""
        status = HealthStatus(
            is_healthy=True,
            last_check=utc_now(),
            consecutive_failures=0,
            error_message=None,
        )
        return self.update_health(channel, name, status)

    def record_failure(
        self,
        channel: str,
        name: str,
        *,
        error_message: str | None = None,
    ) -> HealthStatus:
        """Record a failed delivery and update the health status accordingly."""
        entry = self._require_entry(channel, name)
        consecutive = entry.health.consecutive_failures + 1 if entry.health else 1
        status = HealthStatus(
            is_healthy=consecutive < self._unhealthy_threshold,
            last_check=utc_now(),
            consecutive_failures=consecutive,
            error_message=error_message,
        )
        entry.health = status
        return status

    def get_unhealthy(self) -> tuple[ChannelProvider, ...]:
        """Return providers whose tracked health is explicitly unhealthy."""
        return tuple(
            entry.provider
            for channel in self.get_channels()
            for entry in self._channels[channel].values()
            if entry.health is not None and not entry.health.is_healthy
        )

    def _require_entry(self, channel: str, name: str) -> _RegistryEntry:
        entry = self._channels.get(channel, {}).get(name)
        if entry is None:
            msg = f"Provider {name!r} is not registered for channel {channel!r}"
            raise KeyError(msg)
        return entry

    @staticmethod
    def _normalize_channel(channel: str) -> str:
        if not channel or channel != channel.strip():
            msg = f"Invalid channel identifier: {channel!r}"
            raise ValueError(msg)
        return channel

    @staticmethod
    def _normalize_name(name: str) -> str:
        if not _NAME_PATTERN.match(name):
            msg = (
                "Provider names must start with a letter and contain only "
                "lowercase letters, numbers, dots, dashes or underscores"
            )
            raise ValueError(msg)
        return name
