"""
Notification endpoint administration: CRUD, user assignment and push subscriptions.

Endpoint config is validated against the adapter schema when it is saved, so
the dispatcher only ever sees configs that were valid at write time.
"""
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from mediaportal.lib.errors import EndpointNotFoundError
from mediaportal.lib.logging import get_logger
from mediaportal.models.notifications import (
    NotificationEndpoint,
    NotificationEndpointType,
    PushSubscription,
    UserNotificationEndpoint,
)
from mediaportal.notifications.adapters import validate_config
from mediaportal.notifications.types import DEFAULT_EVENT_MASK


logger = get_logger(__name__)


def _check_mask(event_mask: int) -> int:
    if event_mask < 0 or event_mask & ~DEFAULT_EVENT_MASK:
        raise ValueError(f"event_mask {event_mask} contains unknown bits")
    return event_mask


class NotificationEndpointService:
    """
    Service for managing notification endpoints.

    Args:
        db: SQLAlchemy session; every mutating call commits
    """

    def __init__(self, db: Session):
        self.db = db

    # ===== Endpoints =====

    def list_endpoints(self, endpoint_type: Optional[NotificationEndpointType] = None) -> List[NotificationEndpoint]:
        stmt = select(NotificationEndpoint).order_by(NotificationEndpoint.id)
        if endpoint_type is not None:
            stmt = stmt.where(NotificationEndpoint.type == NotificationEndpointType(endpoint_type))
        return list(self.db.scalars(stmt))

    def get_endpoint(self, endpoint_id: int) -> NotificationEndpoint:
        endpoint = self.db.get(NotificationEndpoint, endpoint_id)
        if endpoint is None:
            raise EndpointNotFoundError(endpoint_id)
        return endpoint

    def create_endpoint(
        self,
        name: str,
        endpoint_type: NotificationEndpointType,
        config: Optional[Mapping[str, Any]],
        enabled: bool = True,
        event_mask: int = DEFAULT_EVENT_MASK,
        is_global: bool = True,
    ) -> NotificationEndpoint:
        """
        Create an endpoint after validating its config.

        Raises:
            InvalidEndpointConfigError: If config does not fit the type's schema
            ValueError: If event_mask has unknown bits
        """
        endpoint_type = NotificationEndpointType(endpoint_type)
        endpoint = NotificationEndpoint(
            name=name,
            type=endpoint_type,
            config=validate_config(endpoint_type, config),
            enabled=enabled,
            event_mask=_check_mask(event_mask),
            is_global=is_global,
        )
        self.db.add(endpoint)
        self.db.commit()
        self.db.refresh(endpoint)
        logger.info(
            f"Created {endpoint_type.value} notification endpoint",
            extra={"endpoint_id": endpoint.id},
        )
        return endpoint

    def update_endpoint(
        self,
        endpoint_id: int,
        name: Optional[str] = None,
        config: Optional[Mapping[str, Any]] = None,
        enabled: Optional[bool] = None,
        event_mask: Optional[int] = None,
        is_global: Optional[bool] = None,
    ) -> NotificationEndpoint:
        """Apply the given changes; `None` leaves a field untouched."""
        endpoint = self.get_endpoint(endpoint_id)
        if config is not None:
            endpoint.config = validate_config(endpoint.type, config)
        if name is not None:
            endpoint.name = name
        if enabled is not None:
            endpoint.enabled = enabled
        if event_mask is not None:
            endpoint.event_mask = _check_mask(event_mask)
        if is_global is not None:
            endpoint.is_global = is_global
        self.db.commit()
        self.db.refresh(endpoint)
        logger.info("Updated notification endpoint", extra={"endpoint_id": endpoint_id})
        return endpoint

    def delete_endpoint(self, endpoint_id: int) -> None:
        endpoint = self.get_endpoint(endpoint_id)
        self.db.execute(delete(UserNotificationEndpoint).where(UserNotificationEndpoint.endpoint_id == endpoint_id))
        self.db.delete(endpoint)
        self.db.commit()
        logger.info("Deleted notification endpoint", extra={"endpoint_id": endpoint_id})

    # ===== Assignments =====

    def assign_user(self, user_id: int, endpoint_id: int) -> None:
        """Route events scoped to `user_id` to this endpoint (idempotent)."""
        self.get_endpoint(endpoint_id)
        if self.db.get(UserNotificationEndpoint, (user_id, endpoint_id)) is None:
            self.db.add(UserNotificationEndpoint(user_id=user_id, endpoint_id=endpoint_id))
            self.db.commit()

    def unassign_user(self, user_id: int, endpoint_id: int) -> bool:
        """Returns True if an assignment was removed."""
        result = self.db.execute(
            delete(UserNotificationEndpoint).where(
                UserNotificationEndpoint.user_id == user_id,
                UserNotificationEndpoint.endpoint_id == endpoint_id,
            )
        )
        self.db.commit()
        return result.rowcount > 0

    def list_user_endpoint_ids(self, user_id: int) -> List[int]:
        stmt = (
            select(UserNotificationEndpoint.endpoint_id)
            .where(UserNotificationEndpoint.user_id == user_id)
            .order_by(UserNotificationEndpoint.endpoint_id)
        )
        return list(self.db.scalars(stmt))

    def list_endpoint_user_ids(self, endpoint_id: int) -> List[int]:
        stmt = (
            select(UserNotificationEndpoint.user_id)
            .where(UserNotificationEndpoint.endpoint_id == endpoint_id)
            .order_by(UserNotificationEndpoint.user_id)
        )
        return list(self.db.scalars(stmt))

    def list_dispatch_candidates(self, user_ids: Sequence[int], include_global: bool) -> List[NotificationEndpoint]:
        """
        Endpoints reachable for a dispatch, deduplicated by id, before enabled/mask filtering.

        Args:
            user_ids: Users the event concerns
            include_global: Whether to add global endpoints
        """
        found: Dict[int, NotificationEndpoint] = {}
        if include_global:
            for endpoint in self.db.scalars(select(NotificationEndpoint).where(NotificationEndpoint.is_global.is_(True))):
                found[endpoint.id] = endpoint
        if user_ids:
            stmt = (
                select(NotificationEndpoint)
                .join(UserNotificationEndpoint, UserNotificationEndpoint.endpoint_id == NotificationEndpoint.id)
                .where(UserNotificationEndpoint.user_id.in_(list(user_ids)))
            )
            for endpoint in self.db.scalars(stmt):
                found.setdefault(endpoint.id, endpoint)
        return [found[key] for key in sorted(found)]

    # ===== Push subscriptions =====

    def upsert_push_subscription(
        self,
        user_id: int,
        endpoint: str,
        p256dh: str,
        auth: str,
        user_agent: Optional[str] = None,
    ) -> PushSubscription:
        """Register a browser subscription, reactivating it if it already exists."""
        subscription = self.db.scalars(
            select(PushSubscription).where(PushSubscription.endpoint == endpoint)
        ).first()
        if subscription is None:
            subscription = PushSubscription(endpoint=endpoint, user_id=user_id, p256dh=p256dh, auth=auth)
            self.db.add(subscription)
        subscription.user_id = user_id
        subscription.p256dh = p256dh
        subscription.auth = auth
        subscription.user_agent = user_agent
        subscription.active = True
        self.db.commit()
        self.db.refresh(subscription)
        return subscription

    def list_active_subscriptions(self, user_ids: Iterable[int]) -> List[PushSubscription]:
        ids = list(user_ids)
        if not ids:
            return []
        stmt = (
            select(PushSubscription)
            .where(PushSubscription.user_id.in_(ids), PushSubscription.active.is_(True))
            .order_by(PushSubscription.id)
        )
        return list(self.db.scalars(stmt))

    def deactivate_subscription(self, subscription_id: int) -> None:
        subscription = self.db.get(PushSubscription, subscription_id)
        if subscription is not None and subscription.active:
            subscription.active = False
            self.db.commit()
            logger.info("Deactivated expired push subscription", extra={"subscription_id": subscription_id})

    def delete_inactive_subscriptions(self) -> int:
        """Returns the number of rows removed."""
        result = self.db.execute(delete(PushSubscription).where(PushSubscription.active.is_(False)))
        self.db.commit()
        return result.rowcount or 0
