"""Tests for ChannelProviderRegistry."""

from __future__ import annotations

import pytest

from event_notifications.core.registry import ChannelProviderRegistry
from tests.fixtures.providers import StubProvider


class TestRegistration:
    def test_register_and_lookup(self, registry: ChannelProviderRegistry) -> None:
        provider = StubProvider("email", "smtp")
        registry.register(provider)

        assert registry.get("email", "smtp") is provider
        assert registry.providers_for("email") == (provider,)
        assert len(registry) == 1

    def test_registration_order_preserved(self, registry: ChannelProviderRegistry) -> None:
        providers = [StubProvider("email", name) for name in ("zeta", "alpha", "mid")]
        for provider in providers:
            registry.register(provider)

        assert registry.providers_for("email") == tuple(providers)

    def test_duplicate_name_rejected(self, registry: ChannelProviderRegistry) -> None:
        registry.register(StubProvider("email", "smtp"))
        with pytest.raises(ValueError, match="already registered"):
            registry.register(StubProvider("email", "smtp"))

    def test_same_name_allowed_on_other_channel(self, registry: ChannelProviderRegistry) -> None:
        registry.register(StubProvider("email", "primary"))
        registry.register(StubProvider("sms", "primary"))
        assert registry.get_channels() == ("email", "sms")

    @pytest.mark.parametrize("name", ["Smtp", "1smtp", "smtp provider", ""])
    def test_invalid_provider_name_rejected(self, registry: ChannelProviderRegistry, name: str) -> None:
        with pytest.raises(ValueError, match="Provider names"):
            registry.register(StubProvider("email", name))

    @pytest.mark.parametrize("channel", ["", " email", "email "])
    def test_invalid_channel_rejected(self, registry: ChannelProviderRegistry, channel: str) -> None:
        with pytest.raises(ValueError, match="Invalid channel identifier"):
            registry.register(StubProvider(channel, "smtp"))

    def test_unregister_removes_empty_channel(self, registry: ChannelProviderRegistry) -> None:
        registry.register(StubProvider("email", "smtp"))

        assert registry.unregister("email", "smtp") is True
        assert registry.get_channels() == ()
        assert registry.unregister("email", "smtp") is False
        assert registry.unregister("sms", "smtp") is False

    def test_get_all_grouped_by_sorted_channel(self, registry: ChannelProviderRegistry) -> None:
        sms = StubProvider("sms", "twilio")
        email = StubProvider("email", "smtp")
        registry.register(sms)
        registry.register(email)

        assert registry.get_all() == (email, sms)


class TestHealthTracking:
    def test_untracked_provider_has_no_health(self, registry: ChannelProviderRegistry) -> None:
        registry.register(StubProvider("email", "smtp"))
        assert registry.get_health("email", "smtp") is None
        assert registry.get_health("email", "missing") is None

    def test_failures_accumulate_until_threshold(self) -> None:
        registry = ChannelProviderRegistry(unhealthy_threshold=2)
        provider = StubProvider("email", "smtp")
        registry.register(provider)

        first = registry.record_failure("email", "smtp", error_message="bounced")
        assert first.is_healthy is True
        assert first.consecutive_failures == 1

        second = registry.record_failure("email", "smtp")
        assert second.is_healthy is False
        assert registry.get_unhealthy() == (provider,)

    def test_success_resets_failures(self, registry: ChannelProviderRegistry) -> None:
        registry.register(StubProvider("email", "smtp"))
        for _ in range(5):
            _ = registry.record_failure("email", "smtp")

        status = registry.record_success("email", "smtp")

        assert status.is_healthy is True
        assert status.consecutive_failures == 0
        assert registry.get_unhealthy() == ()

    def test_recording_for_unknown_provider_raises(self, registry: ChannelProviderRegistry) -> None:
        with pytest.raises(KeyError):
            _ = registry.record_success("email", "smtp")

    def test_threshold_must_be_positive(self) -> None:
        with pytest.raises(ValueError, match="unhealthy_threshold"):
            _ = ChannelProviderRegistry(unhealthy_threshold=0)
