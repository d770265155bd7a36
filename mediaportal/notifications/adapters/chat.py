"""
Chat-webhook adapters: Discord, Slack, generic webhook and Telegram.
"""
import json
import re
from datetime import datetime, timezone
from html import escape
from typing import Any, Dict, Optional

from pydantic import AnyHttpUrl, Field

from mediaportal.notifications.adapters.base import (
    AdapterConfig,
    DeliveryError,
    HttpAdapter,
    clamp_text,
)
from mediaportal.notifications.types import NotificationPayload


DEFAULT_DISPLAY_NAME = "mediaportal"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# ===== Discord =====

class DiscordConfig(AdapterConfig):
    webhook_url: AnyHttpUrl
    bot_username: Optional[str] = None
    bot_avatar_url: Optional[str] = None
    enable_mentions: bool = False
    discord_user_id: Optional[str] = None
    role_id: Optional[str] = None


class DiscordAdapter(HttpAdapter):
    endpoint_type = "discord"
    label = "Discord"
    config_model = DiscordConfig

    def build_body(self, config: DiscordConfig, payload: NotificationPayload) -> Dict[str, Any]:
        embed: Dict[str, Any] = {
            "title": clamp_text(payload.title, 256),
            "description": clamp_text(payload.message, 4096),
            "timestamp": _now_iso(),
        }
        if payload.url:
            embed["url"] = payload.url
        if payload.color is not None:
            embed["color"] = payload.color
        if payload.fields:
            embed["fields"] = [
                {
                    "name": clamp_text(str(f.get("name", "")), 256),
                    "value": clamp_text(str(f.get("value", "")), 1024),
                    "inline": bool(f.get("inline", False)),
                }
                for f in payload.fields[:25]
            ]
        if payload.image_url:
            embed["thumbnail"] = {"url": payload.image_url}
        if payload.footer:
            embed["footer"] = {"text": payload.footer}

        body: Dict[str, Any] = {
            "username": config.bot_username or DEFAULT_DISPLAY_NAME,
            "embeds": [embed],
            "allowed_mentions": {"parse": [], "users": [], "roles": []},
        }
        if config.bot_avatar_url:
            body["avatar_url"] = config.bot_avatar_url

        if config.enable_mentions:
            mentions = []
            if config.discord_user_id:
                mentions.append(f"<@{config.discord_user_id}>")
                body["allowed_mentions"]["users"] = [config.discord_user_id]
            if config.role_id:
                mentions.append(f"<@&{config.role_id}>")
                body["allowed_mentions"]["roles"] = [config.role_id]
            if mentions:
                body["content"] = " ".join(mentions)
        return body

    async def _deliver(self, config: DiscordConfig, payload: NotificationPayload, target) -> None:
        await self._request("POST", str(config.webhook_url), json=self.build_body(config, payload))


# ===== Slack =====

class SlackConfig(AdapterConfig):
    webhook_url: AnyHttpUrl
    bot_username: Optional[str] = None
    bot_emoji: Optional[str] = None


class SlackAdapter(HttpAdapter):
    endpoint_type = "slack"
    label = "Slack"
    config_model = SlackConfig

    def build_body(self, config: SlackConfig, payload: NotificationPayload) -> Dict[str, Any]:
        blocks = [
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": clamp_text(f"*{payload.title}*\n{payload.message}", 3000)},
            }
        ]
        if payload.fields:
            blocks.append({
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": clamp_text(f"*{f.get('name', '')}*\n{f.get('value', '')}", 2000)}
                    for f in payload.fields[:10]
                ],
            })
        if payload.url:
            blocks.append({
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": f"<{payload.url}|Open in {DEFAULT_DISPLAY_NAME}>"}],
            })

        body: Dict[str, Any] = {"text": payload.title, "blocks": blocks}
        if config.bot_username:
            body["username"] = config.bot_username
        if config.bot_emoji:
            body["icon_emoji"] = config.bot_emoji
        return body

    async def _deliver(self, config: SlackConfig, payload: NotificationPayload, target) -> None:
        await self._request("POST", str(config.webhook_url), json=self.build_body(config, payload))


# ===== Generic webhook =====

_PLACEHOLDER = re.compile(r"\{\{\s*([a-zA-Z0-9_]+)\s*\}\}")


class WebhookConfig(AdapterConfig):
    webhook_url: AnyHttpUrl
    auth_header: Optional[str] = None
    json_payload: Optional[str] = Field(
        default=None,
        description="JSON template; {{key}} placeholders are filled from the notification",
    )


class WebhookAdapter(HttpAdapter):
    endpoint_type = "webhook"
    label = "Webhook"
    config_model = WebhookConfig

    @staticmethod
    def template_values(payload: NotificationPayload) -> Dict[str, Any]:
        values: Dict[str, Any] = {
            "subject": payload.title,
            "title": payload.title,
            "message": payload.message,
            "url": payload.url or "",
            "image": payload.image_url or "",
            "image_url": payload.image_url or "",
            "timestamp": _now_iso(),
        }
        for key, value in payload.data.items():
            if isinstance(value, (str, int, float, bool)) or value is None:
                values.setdefault(key, "" if value is None else value)
        return values

    def build_body(self, config: WebhookConfig, payload: NotificationPayload) -> Any:
        if not config.json_payload:
            return {
                "type": f"{DEFAULT_DISPLAY_NAME}.{payload.data.get('event', 'notification')}",
                "title": payload.title,
                "message": payload.message,
                "url": payload.url,
                "image_url": payload.image_url,
                "fields": payload.fields,
                "data": payload.data,
                "sent_at": _now_iso(),
            }

        values = self.template_values(payload)

        def substitute(match: "re.Match[str]") -> str:
            value = values.get(match.group(1), "")
            # Strip the surrounding quotes json.dumps adds; the template supplies them
            return json.dumps(str(value))[1:-1]

        rendered = _PLACEHOLDER.sub(substitute, config.json_payload)
        try:
            return json.loads(rendered)
        except json.JSONDecodeError as e:
            raise DeliveryError(f"Webhook payload template is not valid JSON: {e}") from e

    async def _deliver(self, config: WebhookConfig, payload: NotificationPayload, target) -> None:
        headers = {}
        if config.auth_header:
            headers["Authorization"] = config.auth_header
        await self._request("POST", str(config.webhook_url), json=self.build_body(config, payload), headers=headers)


# ===== Telegram =====

class TelegramConfig(AdapterConfig):
    bot_token: str = Field(min_length=1)
    chat_id: str = Field(min_length=1)
    message_thread_id: Optional[str] = None
    send_silently: bool = False
    api_base_url: str = "https://api.telegram.org"


class TelegramAdapter(HttpAdapter):
    endpoint_type = "telegram"
    label = "Telegram"
    config_model = TelegramConfig

    def build_body(self, config: TelegramConfig, payload: NotificationPayload) -> Dict[str, Any]:
        lines = [f"<b>{escape(payload.title)}</b>"]
        if payload.message:
            lines.append(escape(payload.message))
        for f in payload.fields:
            lines.append(f"<b>{escape(str(f.get('name', '')))}:</b> {escape(str(f.get('value', '')))}")
        if payload.url:
            lines.append(f'<a href="{escape(payload.url, quote=True)}">Open</a>')

        body: Dict[str, Any] = {
            "chat_id": config.chat_id,
            "text": clamp_text("\n".join(lines), 4096),
            "parse_mode": "HTML",
            "disable_notification": config.send_silently,
        }
        if config.message_thread_id:
            body["message_thread_id"] = config.message_thread_id
        return body

    async def _deliver(self, config: TelegramConfig, payload: NotificationPayload, target) -> None:
        url = f"{config.api_base_url.rstrip('/')}/bot{config.bot_token}/sendMessage"
        response = await self._request("POST", url, json=self.build_body(config, payload))
        try:
            result = response.json()
        except ValueError:
            return
        if isinstance(result, dict) and result.get("ok") is False:
            raise DeliveryError(f"Telegram API error: {result.get('description', 'request rejected')}")
