"""
Adapter base classes.

Every adapter turns a validated endpoint config plus a NotificationPayload
into one external delivery. `send` never raises: failures come back as a
DeliveryResult so one broken endpoint cannot affect another.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional, Type, Union

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from mediaportal.lib.errors import InvalidEndpointConfigError
from mediaportal.lib.logging import get_logger
from mediaportal.lib.metrics import get_metrics_collector
from mediaportal.lib.settings import settings
from mediaportal.notifications.types import DeliveryResult, NotificationPayload


logger = get_logger(__name__)

MAX_ERROR_BODY = 500


class DeliveryError(Exception):
    """A delivery was attempted and rejected (or could not be attempted)."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class SubscriptionGoneError(DeliveryError):
    """The push service reported the subscription as expired (HTTP 404/410)."""


class AdapterConfig(BaseModel):
    """
    Base for endpoint config schemas.

    Accepts both snake_case and the camelCase keys used by stored configs
    and the admin UI (`webhookUrl` and `webhook_url` are equivalent).
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )


def clamp_text(value: Optional[str], limit: int = 2000) -> str:
    """Trim text to `limit` characters, marking the cut with an ellipsis."""
    if not value:
        return ""
    if len(value) <= limit:
        return value
    return value[: limit - 3] + "..."


class NotificationAdapter(ABC):
    """
    Abstract base class for notification transports.

    Subclasses declare `endpoint_type` and `config_model` and implement
    `_deliver`, raising DeliveryError on any rejection.
    """

    endpoint_type: str = ""
    label: str = ""
    config_model: Type[AdapterConfig] = AdapterConfig

    def parse_config(self, raw: Union[Mapping[str, Any], AdapterConfig, None]) -> AdapterConfig:
        """
        Validate a raw config mapping against this adapter's schema.

        Raises:
            InvalidEndpointConfigError: If required keys are missing or malformed
        """
        if isinstance(raw, self.config_model):
            return raw
        try:
            return self.config_model.model_validate(dict(raw or {}))
        except ValidationError as e:
            raise InvalidEndpointConfigError(
                self.endpoint_type,
                e.errors(include_url=False, include_context=False, include_input=False),
            ) from e

    def normalize_config(self, raw: Union[Mapping[str, Any], AdapterConfig, None]) -> Dict[str, Any]:
        """Validated config in the snake_case shape it is stored with."""
        return self.parse_config(raw).model_dump(mode="json", exclude_none=True)

    async def send(
        self,
        config: Union[Mapping[str, Any], AdapterConfig, None],
        payload: NotificationPayload,
        target: Optional[Dict[str, Any]] = None,
    ) -> DeliveryResult:
        """
        Deliver one notification.

        Args:
            config: Endpoint config (raw mapping or parsed model)
            payload: Message content
            target: Per-recipient data some transports need (push subscription)

        Returns:
            DeliveryResult; `gone` is set when the recipient no longer exists
        """
        metrics = get_metrics_collector()
        try:
            parsed = self.parse_config(config)
            await self._deliver(parsed, payload, target)
        except SubscriptionGoneError as e:
            metrics.increment_deliveries(channel=self.endpoint_type, status="gone")
            logger.info(f"{self.label} subscription gone: {e}")
            return DeliveryResult(ok=False, error=str(e), gone=True)
        except DeliveryError as e:
            metrics.increment_deliveries(channel=self.endpoint_type, status="failed")
            logger.warning(f"{self.label} delivery failed: {e}", extra={"status_code": e.status_code})
            return DeliveryResult(ok=False, error=str(e))
        except InvalidEndpointConfigError as e:
            metrics.increment_deliveries(channel=self.endpoint_type, status="failed")
            logger.warning(f"{self.label} delivery skipped: {e.message}")
            return DeliveryResult(ok=False, error=e.message)
        except Exception as e:
            metrics.increment_deliveries(channel=self.endpoint_type, status="failed")
            logger.error(f"{self.label} delivery raised: {e}", exc_info=True)
            return DeliveryResult(ok=False, error=f"{self.label} error: {e}")

        metrics.increment_deliveries(channel=self.endpoint_type, status="success")
        return DeliveryResult(ok=True)

    @abstractmethod
    async def _deliver(
        self,
        config: AdapterConfig,
        payload: NotificationPayload,
        target: Optional[Dict[str, Any]],
    ) -> None:
        """Perform the delivery or raise DeliveryError."""
        pass


class HttpAdapter(NotificationAdapter):
    """
    Adapter whose transport is one HTTP request.

    Args:
        transport: Optional httpx transport (tests pass httpx.MockTransport)
        timeout: Request timeout in seconds
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: Optional[float] = None):
        self._transport = transport
        self._timeout = timeout if timeout is not None else settings.notification_send_timeout_seconds

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Issue the request; any non-2xx status raises DeliveryError carrying the body.
        """
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise DeliveryError(f"{self.label} request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise DeliveryError(f"{self.label} request failed: {e}") from e

        if response.is_success:
            return response
        body = response.text[:MAX_ERROR_BODY]
        raise DeliveryError(
            f"{self.label} API error: HTTP {response.status_code}: {body}",
            status_code=response.status_code,
            body=body,
        )
