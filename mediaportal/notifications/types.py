"""
Notification event bits, payload and result types shared by adapters and the dispatcher.

Bit positions are persisted in `notification_endpoints.event_mask` and must
never be renumbered.
"""
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence


class NotificationType(enum.IntFlag):
    """Event categories an endpoint can subscribe to."""
    ALL = 1 << 0
    REQUEST_PENDING = 1 << 1
    REQUEST_APPROVED = 1 << 2
    REQUEST_AVAILABLE = 1 << 3
    REQUEST_FAILED = 1 << 4
    TEST_NOTIFICATION = 1 << 5
    REQUEST_DECLINED = 1 << 6
    REQUEST_AUTO_APPROVED = 1 << 7
    ISSUE_REPORTED = 1 << 8
    ISSUE_COMMENT = 1 << 9
    ISSUE_RESOLVED = 1 << 10
    ISSUE_REOPENED = 1 << 11
    REQUEST_SUBMITTED = 1 << 12
    REQUEST_DOWNLOADING = 1 << 13
    REQUEST_PARTIALLY_AVAILABLE = 1 << 14
    SYSTEM_ALERT = 1 << 15
    JOB_FAILED = 1 << 16


DEFAULT_EVENT_MASK = 0
for _member in NotificationType:
    DEFAULT_EVENT_MASK |= int(_member)
del _member


# Producer-facing event keys. Several keys share a category bit.
EVENT_TYPE_MAP: Dict[str, NotificationType] = {
    "request_pending": NotificationType.REQUEST_PENDING,
    "request_already_exists": NotificationType.REQUEST_PENDING,
    "request_approved": NotificationType.REQUEST_APPROVED,
    "request_auto_approved": NotificationType.REQUEST_AUTO_APPROVED,
    "request_submitted": NotificationType.REQUEST_SUBMITTED,
    "request_declined": NotificationType.REQUEST_DECLINED,
    "request_denied": NotificationType.REQUEST_DECLINED,
    "request_failed": NotificationType.REQUEST_FAILED,
    "request_removed": NotificationType.REQUEST_FAILED,
    "request_downloading": NotificationType.REQUEST_DOWNLOADING,
    "request_partially_available": NotificationType.REQUEST_PARTIALLY_AVAILABLE,
    "request_available": NotificationType.REQUEST_AVAILABLE,
    "issue_reported": NotificationType.ISSUE_REPORTED,
    "issue_comment": NotificationType.ISSUE_COMMENT,
    "issue_resolved": NotificationType.ISSUE_RESOLVED,
    "issue_reopened": NotificationType.ISSUE_REOPENED,
    "system_alert": NotificationType.SYSTEM_ALERT,
    "system_alert_high_latency": NotificationType.SYSTEM_ALERT,
    "system_alert_service_unreachable": NotificationType.SYSTEM_ALERT,
    "system_alert_indexers_unavailable": NotificationType.SYSTEM_ALERT,
    "job_failed": NotificationType.JOB_FAILED,
    "test_notification": NotificationType.TEST_NOTIFICATION,
}


def resolve_event(event: Any) -> NotificationType:
    """
    Resolve an event key or bit to its NotificationType.

    Args:
        event: NotificationType, its int value, or an event key like "issue_reported"

    Returns:
        The single category bit for the event

    Raises:
        ValueError: If the event is unknown
    """
    if isinstance(event, int):
        value = int(event)
        if value <= 0 or value & (value - 1):
            raise ValueError(f"Notification event must be a single bit: {event!r}")
        if value & ~DEFAULT_EVENT_MASK:
            raise ValueError(f"Unknown notification event: {event!r}")
        return NotificationType(value)
    key = str(event).strip().lower()
    if key in EVENT_TYPE_MAP:
        return EVENT_TYPE_MAP[key]
    try:
        return NotificationType[key.upper()]
    except KeyError:
        raise ValueError(f"Unknown notification event: {event}") from None


def mask_matches(event_mask: int, event: NotificationType) -> bool:
    """True when the mask opts into everything or contains the event's bit."""
    if event_mask & NotificationType.ALL:
        return True
    return (event_mask & int(event)) == int(event)


def mask_to_names(event_mask: int) -> List[str]:
    """Lower-case names of the bits set in a mask, for API responses."""
    return [member.name.lower() for member in NotificationType if event_mask & int(member)]


def names_to_mask(names: Sequence[str]) -> int:
    """Inverse of mask_to_names; unknown names raise ValueError."""
    mask = 0
    for name in names:
        mask |= int(resolve_event(name))
    return mask


@dataclass
class NotificationPayload:
    """Channel-neutral message content; each adapter renders what it supports."""
    title: str
    message: str
    url: Optional[str] = None
    image_url: Optional[str] = None
    fields: List[Dict[str, Any]] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)
    color: Optional[int] = None
    footer: Optional[str] = None
    recipient_email: Optional[str] = None


@dataclass
class DispatchScope:
    """Target users for a dispatch; globals are added unless include_global is False."""
    user_ids: Sequence[int] = ()
    include_global: bool = True


@dataclass
class DeliveryResult:
    ok: bool
    error: Optional[str] = None
    gone: bool = False


@dataclass
class DeliveryAttempt:
    endpoint_id: int
    endpoint_type: str
    ok: bool
    error: Optional[str] = None
    subscription_id: Optional[int] = None
    gone: bool = False


@dataclass
class DispatchSummary:
    event: str
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    attempts: List[DeliveryAttempt] = field(default_factory=list)

    def record(self, attempt: DeliveryAttempt) -> None:
        self.attempts.append(attempt)
        self.attempted += 1
        if attempt.ok:
            self.succeeded += 1
        else:
            self.failed += 1
