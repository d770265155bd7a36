"""
Web Push adapter (VAPID-signed, via pywebpush).

A push service answering 404 or 410 means the browser subscription is gone;
that surfaces as SubscriptionGoneError so the caller can deactivate it.
"""
import asyncio
import json
from typing import Any, Callable, Dict, Optional

from pydantic import Field
from pywebpush import WebPushException, webpush

from mediaportal.lib.settings import settings
from mediaportal.notifications.adapters.base import (
    AdapterConfig,
    DeliveryError,
    NotificationAdapter,
    SubscriptionGoneError,
    clamp_text,
)
from mediaportal.notifications.types import NotificationPayload


GONE_STATUS_CODES = (404, 410)


class WebPushConfig(AdapterConfig):
    """Keys default to the VAPID settings when omitted."""
    vapid_public_key: Optional[str] = None
    vapid_private_key: Optional[str] = None
    vapid_subject: Optional[str] = None
    ttl: int = Field(default=86400, ge=0)


class WebPushAdapter(NotificationAdapter):
    """
    Args:
        push_func: pywebpush-compatible callable (tests pass a fake)
    """

    endpoint_type = "webpush"
    label = "Web Push"
    config_model = WebPushConfig

    def __init__(self, push_func: Callable[..., Any] = webpush):
        self._push = push_func

    @staticmethod
    def build_data(payload: NotificationPayload) -> str:
        return json.dumps({
            "title": payload.title,
            "body": clamp_text(payload.message, 1000),
            "url": payload.url,
            "icon": payload.image_url,
            "data": payload.data,
        }, default=str)

    async def _deliver(self, config: WebPushConfig, payload: NotificationPayload, target: Optional[Dict[str, Any]]) -> None:
        if not target or not target.get("endpoint"):
            raise DeliveryError("Web Push subscription is required")

        private_key = config.vapid_private_key or settings.vapid_private_key
        if not private_key:
            raise DeliveryError("VAPID private key is not configured")
        subject = config.vapid_subject or settings.vapid_subject

        try:
            await asyncio.to_thread(
                self._push,
                subscription_info=target,
                data=self.build_data(payload),
                vapid_private_key=private_key,
                vapid_claims={"sub": subject},
                ttl=config.ttl,
            )
        except WebPushException as e:
            response = getattr(e, "response", None)
            status = getattr(response, "status_code", None)
            if status in GONE_STATUS_CODES:
                raise SubscriptionGoneError(
                    f"Web Push subscription expired (HTTP {status})",
                    status_code=status,
                ) from e
            body = (getattr(response, "text", "") or "")[:500]
            suffix = f"HTTP {status}: {body}" if status else str(e)
            raise DeliveryError(f"Web Push error: {suffix}", status_code=status, body=body or None) from e
