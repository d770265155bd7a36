"""
Notification transport adapters and their registry.
"""
from typing import Any, Dict, Mapping, Optional

import httpx

from mediaportal.notifications.adapters.base import (
    AdapterConfig,
    DeliveryError,
    HttpAdapter,
    NotificationAdapter,
    SubscriptionGoneError,
)
from mediaportal.notifications.adapters.chat import DiscordAdapter, SlackAdapter, TelegramAdapter, WebhookAdapter
from mediaportal.notifications.adapters.email import EmailAdapter
from mediaportal.notifications.adapters.push import GotifyAdapter, NtfyAdapter, PushbulletAdapter, PushoverAdapter
from mediaportal.notifications.adapters.webpush import WebPushAdapter


def build_adapters(transport: Optional[httpx.AsyncBaseTransport] = None) -> Dict[str, NotificationAdapter]:
    """
    Build one adapter per endpoint type.

    Args:
        transport: httpx transport shared by the HTTP adapters (tests pass a MockTransport)
    """
    adapters = [
        DiscordAdapter(transport),
        SlackAdapter(transport),
        WebhookAdapter(transport),
        TelegramAdapter(transport),
        PushoverAdapter(transport),
        PushbulletAdapter(transport),
        NtfyAdapter(transport),
        GotifyAdapter(transport),
        EmailAdapter(),
        WebPushAdapter(),
    ]
    return {adapter.endpoint_type: adapter for adapter in adapters}


_default_adapters: Optional[Dict[str, NotificationAdapter]] = None


def get_adapter(endpoint_type: Any, adapters: Optional[Mapping[str, NotificationAdapter]] = None) -> NotificationAdapter:
    """
    Look up the adapter for an endpoint type.

    Raises:
        ValueError: If the type has no adapter
    """
    global _default_adapters
    if adapters is None:
        if _default_adapters is None:
            _default_adapters = build_adapters()
        adapters = _default_adapters
    key = getattr(endpoint_type, "value", endpoint_type)
    try:
        return adapters[key]
    except KeyError:
        raise ValueError(f"Unsupported notification endpoint type: {key}") from None


def validate_config(endpoint_type: Any, config: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Validate and normalize an endpoint config for storage (raises InvalidEndpointConfigError)."""
    return get_adapter(endpoint_type).normalize_config(config)


__all__ = [
    "AdapterConfig",
    "DeliveryError",
    "HttpAdapter",
    "NotificationAdapter",
    "SubscriptionGoneError",
    "DiscordAdapter",
    "SlackAdapter",
    "WebhookAdapter",
    "TelegramAdapter",
    "PushoverAdapter",
    "PushbulletAdapter",
    "NtfyAdapter",
    "GotifyAdapter",
    "EmailAdapter",
    "WebPushAdapter",
    "build_adapters",
    "get_adapter",
    "validate_config",
]
