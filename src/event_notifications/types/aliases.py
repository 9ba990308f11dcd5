"""Type aliases using PEP 695 syntax."""

from collections.abc import Awaitable, Callable, Mapping

from event_notifications.types.models import NotificationResult

# Channel identifier such as "email" or "webhook"
type ChannelId = str

# Event payloads are opaque to the core; providers interpret them
type Payload = object

# Provider configuration as read from YAML before provider-side validation
type ProviderConfig = Mapping[str, object]

# Zero-argument coroutine factory retried by the retry executor
type RetryOperation[T] = Callable[[], Awaitable[T]]

# Delivery attempt: receives the 1-based attempt number
type NotificationOperation = Callable[[int], Awaitable[NotificationResult]]
