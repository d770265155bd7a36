"""
Notification dispatcher: matches events to endpoints and fans deliveries out.

Usage:
    from mediaportal.notifications.dispatcher import get_dispatcher
    from mediaportal.notifications.types import NotificationPayload, DispatchScope

    summary = await get_dispatcher().dispatch(
        "issue_reported",
        NotificationPayload(title="Issue Reported: Alien", message="Audio out of sync"),
        scope=DispatchScope(user_ids=[42]),
    )
"""
import asyncio
import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Set

from mediaportal.lib.db import SessionFactory, SessionLocal, session_scope
from mediaportal.lib.errors import InvalidEndpointConfigError
from mediaportal.lib.logging import get_logger
from mediaportal.lib.metrics import get_metrics_collector
from mediaportal.lib.settings import settings
from mediaportal.models.notifications import NotificationEndpoint, NotificationEndpointType
from mediaportal.notifications.adapters import NotificationAdapter, get_adapter
from mediaportal.notifications.endpoints import NotificationEndpointService
from mediaportal.notifications.types import (
    DeliveryAttempt,
    DeliveryResult,
    DispatchScope,
    DispatchSummary,
    NotificationPayload,
    NotificationType,
    mask_matches,
    resolve_event,
)


logger = get_logger(__name__)

TEST_NOTIFICATION_COLOR = 5814783


def build_test_payload() -> NotificationPayload:
    """Fixed payload used by administrative test sends."""
    return NotificationPayload(
        title="Test Notification",
        message=(
            f"This is a test notification from {settings.app_name}. "
            "If you received this, your endpoint is working correctly!"
        ),
        color=TEST_NOTIFICATION_COLOR,
        data={"event": "test_notification"},
    )


@dataclass
class _PlannedDelivery:
    """Snapshot of one send, taken while the session is open."""
    endpoint_id: int
    endpoint_type: str
    config: Dict[str, Any]
    target: Optional[Dict[str, Any]] = None
    subscription_id: Optional[int] = None
    error: Optional[str] = None


class NotificationDispatcher:
    """
    Fans events out to every matching endpoint.

    Each send runs concurrently under its own timeout and exception
    boundary; one endpoint failing never prevents or delays another.

    Args:
        session_factory: Session factory for endpoint lookups
        adapters: Adapter per endpoint type (defaults to the shared registry)
        send_timeout: Seconds allowed for one adapter send
        enabled: Override for `settings.notifications_enabled`
    """

    def __init__(
        self,
        session_factory: SessionFactory = SessionLocal,
        adapters: Optional[Mapping[str, NotificationAdapter]] = None,
        send_timeout: Optional[float] = None,
        enabled: Optional[bool] = None,
    ):
        self._session_factory = session_factory
        self._adapters = adapters
        self._send_timeout = send_timeout if send_timeout is not None else settings.notification_send_timeout_seconds
        self._enabled = enabled
        self._background: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return settings.notifications_enabled if self._enabled is None else self._enabled

    def _adapter_for(self, endpoint_type: str) -> NotificationAdapter:
        return get_adapter(endpoint_type, self._adapters)

    # ===== Planning =====

    def _plan_endpoint(
        self,
        service: NotificationEndpointService,
        endpoint: NotificationEndpoint,
        user_ids: Optional[List[int]],
    ) -> List[_PlannedDelivery]:
        endpoint_type = endpoint.type.value
        try:
            config = self._adapter_for(endpoint_type).normalize_config(endpoint.config)
        except (InvalidEndpointConfigError, ValueError) as e:
            message = e.message if isinstance(e, InvalidEndpointConfigError) else str(e)
            return [_PlannedDelivery(endpoint.id, endpoint_type, dict(endpoint.config or {}), error=message)]

        if endpoint.type != NotificationEndpointType.WEBPUSH:
            return [_PlannedDelivery(endpoint.id, endpoint_type, config)]

        # Web Push fans out per browser subscription of the targeted users
        assigned = service.list_endpoint_user_ids(endpoint.id)
        if user_ids is None:
            targets = assigned
        elif endpoint.is_global:
            targets = list(user_ids)
        else:
            targets = [user_id for user_id in user_ids if user_id in set(assigned)]
        return [
            _PlannedDelivery(
                endpoint.id,
                endpoint_type,
                config,
                target=subscription.subscription_info(),
                subscription_id=subscription.id,
            )
            for subscription in service.list_active_subscriptions(targets)
        ]

    def _plan(self, event: NotificationType, scope: Optional[DispatchScope]) -> List[_PlannedDelivery]:
        user_ids = list(scope.user_ids) if scope is not None else None
        include_global = scope.include_global if scope is not None else True

        with session_scope(self._session_factory) as db:
            service = NotificationEndpointService(db)
            endpoints = service.list_dispatch_candidates(user_ids or [], include_global)
            planned: List[_PlannedDelivery] = []
            for endpoint in endpoints:
                if not endpoint.enabled or not mask_matches(endpoint.event_mask, event):
                    continue
                planned.extend(self._plan_endpoint(service, endpoint, user_ids))
            return planned

    # ===== Delivery =====

    async def _attempt(self, delivery: _PlannedDelivery, payload: NotificationPayload, event_key: str) -> DeliveryAttempt:
        if delivery.error is not None:
            result = DeliveryResult(ok=False, error=delivery.error)
        else:
            result = await self._send_bounded(delivery.endpoint_type, delivery.config, payload, delivery.target)

        attempt = DeliveryAttempt(
            endpoint_id=delivery.endpoint_id,
            endpoint_type=delivery.endpoint_type,
            ok=result.ok,
            error=result.error,
            subscription_id=delivery.subscription_id,
            gone=result.gone,
        )
        if not attempt.ok:
            logger.warning(
                f"Notification delivery failed for endpoint {delivery.endpoint_id}: {attempt.error}",
                extra={
                    "endpoint_id": delivery.endpoint_id,
                    "endpoint_type": delivery.endpoint_type,
                    "event": event_key,
                },
            )
        return attempt

    async def _send_bounded(
        self,
        endpoint_type: str,
        config: Dict[str, Any],
        payload: NotificationPayload,
        target: Optional[Dict[str, Any]],
    ) -> DeliveryResult:
        """Adapter send under the dispatcher's timeout and exception boundary."""
        try:
            adapter = self._adapter_for(endpoint_type)
            return await asyncio.wait_for(adapter.send(config, payload, target), timeout=self._send_timeout)
        except asyncio.TimeoutError:
            get_metrics_collector().increment_deliveries(channel=endpoint_type, status="failed")
            return DeliveryResult(ok=False, error=f"Delivery timed out after {self._send_timeout:g}s")
        except Exception as e:
            get_metrics_collector().increment_deliveries(channel=endpoint_type, status="failed")
            logger.error(f"Adapter {endpoint_type} raised during send: {e}", exc_info=True)
            return DeliveryResult(ok=False, error=str(e) or e.__class__.__name__)

    def _deactivate_gone(self, subscription_ids: List[int]) -> None:
        if not subscription_ids:
            return
        with session_scope(self._session_factory) as db:
            service = NotificationEndpointService(db)
            for subscription_id in subscription_ids:
                service.deactivate_subscription(subscription_id)

    # ===== Public API =====

    async def dispatch(
        self,
        event: Any,
        payload: NotificationPayload,
        scope: Optional[DispatchScope] = None,
    ) -> DispatchSummary:
        """
        Deliver an event to every enabled endpoint whose mask includes it.

        Args:
            event: Event key ("issue_reported") or NotificationType
            payload: Message content
            scope: Restrict to endpoints assigned to these users (plus globals
                unless include_global is False); None means global endpoints

        Returns:
            DispatchSummary with per-endpoint attempts; partial failure never raises

        Raises:
            ValueError: If the event is unknown
        """
        event_type = resolve_event(event)
        event_key = event if isinstance(event, str) else event_type.name.lower()
        summary = DispatchSummary(event=event_key)

        if not self.enabled:
            logger.debug(f"Notifications disabled; dropping {event_key}")
            return summary

        try:
            planned = await asyncio.to_thread(self._plan, event_type, scope)
        except Exception as e:
            logger.error(f"Failed to resolve endpoints for {event_key}: {e}", exc_info=True)
            return summary

        if not planned:
            return summary

        data = dict(payload.data)
        data.setdefault("event", event_key)
        payload = dataclasses.replace(payload, data=data)

        attempts = await asyncio.gather(*(self._attempt(d, payload, event_key) for d in planned))
        for attempt in attempts:
            summary.record(attempt)

        gone = [a.subscription_id for a in attempts if a.gone and a.subscription_id is not None]
        if gone:
            try:
                await asyncio.to_thread(self._deactivate_gone, gone)
            except Exception as e:
                logger.error(f"Failed to deactivate expired push subscriptions: {e}", exc_info=True)

        logger.info(
            f"Dispatched {event_key}: {summary.succeeded}/{summary.attempted} delivered",
            extra={"event": event_key, "attempted": summary.attempted, "failed": summary.failed},
        )
        return summary

    def dispatch_nowait(
        self,
        event: Any,
        payload: NotificationPayload,
        scope: Optional[DispatchScope] = None,
    ) -> "asyncio.Task[DispatchSummary]":
        """
        Schedule `dispatch` on the running loop and return immediately.

        The event key is validated before scheduling so unknown events still
        fail at the call site.
        """
        resolve_event(event)
        task = asyncio.get_running_loop().create_task(self.dispatch(event, payload, scope))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for fire-and-forget dispatches still in flight."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def send_test(self, endpoint_id: int, payload: Optional[NotificationPayload] = None) -> DeliveryResult:
        """
        Send a test notification to one endpoint, ignoring `enabled` and the event mask.

        Returns:
            DeliveryResult carrying the adapter's own error text on failure

        Raises:
            EndpointNotFoundError: If the endpoint does not exist
        """
        payload = payload or build_test_payload()

        def load() -> List[_PlannedDelivery]:
            with session_scope(self._session_factory) as db:
                service = NotificationEndpointService(db)
                endpoint = service.get_endpoint(endpoint_id)
                endpoint_type = endpoint.type.value
                if endpoint.type != NotificationEndpointType.WEBPUSH:
                    return [_PlannedDelivery(endpoint.id, endpoint_type, dict(endpoint.config or {}))]
                subscriptions = service.list_active_subscriptions(service.list_endpoint_user_ids(endpoint.id))
                if not subscriptions:
                    return [_PlannedDelivery(
                        endpoint.id,
                        endpoint_type,
                        dict(endpoint.config or {}),
                        error="No active push subscriptions for this endpoint",
                    )]
                return [
                    _PlannedDelivery(
                        endpoint.id,
                        endpoint_type,
                        dict(endpoint.config or {}),
                        target=s.subscription_info(),
                        subscription_id=s.id,
                    )
                    for s in subscriptions
                ]

        planned = await asyncio.to_thread(load)
        logger.info(f"Sending test notification to endpoint {endpoint_id}", extra={"endpoint_id": endpoint_id})

        if planned[0].error is not None:
            return DeliveryResult(ok=False, error=planned[0].error)

        results = await asyncio.gather(
            *(self._send_bounded(d.endpoint_type, d.config, payload, d.target) for d in planned)
        )
        gone = [d.subscription_id for d, r in zip(planned, results) if r.gone and d.subscription_id is not None]
        if gone:
            await asyncio.to_thread(self._deactivate_gone, gone)

        if len(results) == 1:
            return results[0]
        if any(r.ok for r in results):
            return DeliveryResult(ok=True)
        return DeliveryResult(ok=False, error="; ".join(r.error or "unknown error" for r in results))


# Global singleton instance
_dispatcher: Optional[NotificationDispatcher] = None


def get_dispatcher() -> NotificationDispatcher:
    """Get the process-wide dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher
