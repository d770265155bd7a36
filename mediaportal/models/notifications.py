"""
Notification models - delivery endpoints, user assignments and browser push subscriptions.
"""
from datetime import datetime
from typing import Any, Dict, Optional
import enum

from sqlalchemy import String, Integer, Boolean, Text, ForeignKey, JSON, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from mediaportal.lib.db import Base, UTCDateTime, utc_now
from mediaportal.notifications.types import DEFAULT_EVENT_MASK


class NotificationEndpointType(str, enum.Enum):
    """Transport used by an endpoint; selects the adapter and config schema."""
    DISCORD = "discord"
    SLACK = "slack"
    WEBHOOK = "webhook"
    TELEGRAM = "telegram"
    PUSHOVER = "pushover"
    PUSHBULLET = "pushbullet"
    NTFY = "ntfy"
    GOTIFY = "gotify"
    EMAIL = "email"
    WEBPUSH = "webpush"


class NotificationEndpoint(Base):
    """
    NotificationEndpoint entity - a configured destination for events.

    Global endpoints receive every event whose bit is in `event_mask`;
    non-global ones only receive events scoped to their assigned users.
    """
    __tablename__ = "notification_endpoints"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[NotificationEndpointType] = mapped_column(
        SQLEnum(NotificationEndpointType, name="notification_endpoint_type"),
        nullable=False,
        index=True,
    )
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_global: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    event_mask: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_EVENT_MASK,
        comment="NotificationType bits; bit 0 means all events",
    )
    config: Mapped[Dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Type-specific settings validated against the adapter schema",
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    def __repr__(self) -> str:
        return f"<NotificationEndpoint(id={self.id}, type={self.type}, enabled={self.enabled})>"


class UserNotificationEndpoint(Base):
    """
    Assignment of an endpoint to a user.
    """
    __tablename__ = "user_notification_endpoints"

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    endpoint_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("notification_endpoints.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)

    def __repr__(self) -> str:
        return f"<UserNotificationEndpoint(user_id={self.user_id}, endpoint_id={self.endpoint_id})>"


class PushSubscription(Base):
    """
    PushSubscription entity - a browser's Web Push subscription.

    Deactivated (not deleted) when the push service reports it gone; the
    cleanup job removes inactive rows.
    """
    __tablename__ = "push_subscriptions"
    __table_args__ = (
        UniqueConstraint("endpoint", name="uq_push_subscriptions_endpoint"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    p256dh: Mapped[str] = mapped_column(String(255), nullable=False)
    auth: Mapped[str] = mapped_column(String(255), nullable=False)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    def subscription_info(self) -> Dict[str, Any]:
        """Shape expected by pywebpush."""
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh, "auth": self.auth}}

    def __repr__(self) -> str:
        return f"<PushSubscription(id={self.id}, user_id={self.user_id}, active={self.active})>"
