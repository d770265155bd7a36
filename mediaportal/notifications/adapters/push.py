"""
Token-push adapters: Pushover, Pushbullet, ntfy and Gotify.
"""
from typing import Any, Dict, Literal, Optional

import httpx
from pydantic import AnyHttpUrl, Field, model_validator

from mediaportal.notifications.adapters.base import AdapterConfig, HttpAdapter, clamp_text
from mediaportal.notifications.types import NotificationPayload


def _body_text(payload: NotificationPayload) -> str:
    lines = [payload.message] if payload.message else []
    for f in payload.fields:
        lines.append(f"{f.get('name', '')}: {f.get('value', '')}")
    return "\n".join(lines) or payload.title


# ===== Pushover =====

class PushoverConfig(AdapterConfig):
    api_token: str = Field(min_length=1)
    user_key: str = Field(min_length=1)
    priority: int = Field(default=0, ge=-2, le=2)
    sound: Optional[str] = None
    api_url: str = "https://api.pushover.net/1/messages.json"


class PushoverAdapter(HttpAdapter):
    endpoint_type = "pushover"
    label = "Pushover"
    config_model = PushoverConfig

    def build_form(self, config: PushoverConfig, payload: NotificationPayload) -> Dict[str, str]:
        form = {
            "token": config.api_token,
            "user": config.user_key,
            "title": clamp_text(payload.title, 250),
            "message": clamp_text(_body_text(payload), 1024),
            "priority": str(config.priority),
        }
        if config.priority == 2:
            # Emergency priority requires retry/expire
            form["retry"] = "60"
            form["expire"] = "3600"
        if config.sound:
            form["sound"] = config.sound
        if payload.url:
            form["url"] = payload.url
            form["url_title"] = "Open"
        return form

    async def _deliver(self, config: PushoverConfig, payload: NotificationPayload, target) -> None:
        await self._request("POST", config.api_url, data=self.build_form(config, payload))


# ===== Pushbullet =====

class PushbulletConfig(AdapterConfig):
    access_token: str = Field(min_length=1)
    channel_tag: Optional[str] = None
    api_url: str = "https://api.pushbullet.com/v2/pushes"


class PushbulletAdapter(HttpAdapter):
    endpoint_type = "pushbullet"
    label = "Pushbullet"
    config_model = PushbulletConfig

    def build_body(self, config: PushbulletConfig, payload: NotificationPayload) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "type": "link" if payload.url else "note",
            "title": payload.title,
            "body": _body_text(payload),
        }
        if payload.url:
            body["url"] = payload.url
        if config.channel_tag:
            body["channel_tag"] = config.channel_tag
        return body

    async def _deliver(self, config: PushbulletConfig, payload: NotificationPayload, target) -> None:
        await self._request(
            "POST",
            config.api_url,
            json=self.build_body(config, payload),
            headers={"Access-Token": config.access_token},
        )


# ===== ntfy =====

class NtfyConfig(AdapterConfig):
    url: AnyHttpUrl = Field(default="https://ntfy.sh", validate_default=True)
    topic: str = Field(min_length=1)
    priority: int = Field(default=3, ge=1, le=5)
    auth_method: Literal["none", "basic", "bearer"] = "none"
    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None

    @model_validator(mode="after")
    def check_credentials(self) -> "NtfyConfig":
        if self.auth_method == "basic" and not (self.username and self.password):
            raise ValueError("basic auth requires username and password")
        if self.auth_method == "bearer" and not self.token:
            raise ValueError("bearer auth requires token")
        return self


class NtfyAdapter(HttpAdapter):
    """Publishes as JSON to the server root so titles are not limited to header-safe text."""
    endpoint_type = "ntfy"
    label = "ntfy"
    config_model = NtfyConfig

    def build_body(self, config: NtfyConfig, payload: NotificationPayload) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "topic": config.topic,
            "title": payload.title,
            "message": _body_text(payload),
            "priority": config.priority,
        }
        if payload.url:
            body["click"] = payload.url
        if payload.image_url:
            body["attach"] = payload.image_url
        return body

    async def _deliver(self, config: NtfyConfig, payload: NotificationPayload, target) -> None:
        auth: Optional[httpx.Auth] = None
        headers = {}
        if config.auth_method == "basic":
            auth = httpx.BasicAuth(config.username, config.password)
        elif config.auth_method == "bearer":
            headers["Authorization"] = f"Bearer {config.token}"
        await self._request(
            "POST",
            str(config.url).rstrip("/"),
            json=self.build_body(config, payload),
            headers=headers,
            auth=auth,
        )


# ===== Gotify =====

class GotifyConfig(AdapterConfig):
    url: AnyHttpUrl
    token: str = Field(min_length=1)
    priority: int = Field(default=5, ge=0, le=10)


class GotifyAdapter(HttpAdapter):
    endpoint_type = "gotify"
    label = "Gotify"
    config_model = GotifyConfig

    def build_body(self, config: GotifyConfig, payload: NotificationPayload) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "title": payload.title,
            "message": _body_text(payload),
            "priority": config.priority,
        }
        if payload.url:
            body["extras"] = {"client::notification": {"click": {"url": payload.url}}}
        return body

    async def _deliver(self, config: GotifyConfig, payload: NotificationPayload, target) -> None:
        await self._request(
            "POST",
            f"{str(config.url).rstrip('/')}/message",
            json=self.build_body(config, payload),
            headers={"X-Gotify-Key": config.token},
        )
