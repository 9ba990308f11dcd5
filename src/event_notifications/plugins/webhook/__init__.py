"""Webhook channel provider plugin."""

from event_notifications.plugins.webhook.client import HTTPClient, WebhookHTTPClient, WebhookResponse
from event_notifications.plugins.webhook.provider import WebhookProvider, create_provider

__all__ = ["HTTPClient", "WebhookHTTPClient", "WebhookProvider", "WebhookResponse", "create_provider"]
