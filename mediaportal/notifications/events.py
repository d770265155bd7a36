"""
Domain event helpers: build payloads for issue, request, system and job
events and hand them to the dispatcher.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from mediaportal.lib.settings import settings
from mediaportal.notifications.dispatcher import NotificationDispatcher, get_dispatcher
from mediaportal.notifications.types import DispatchScope, DispatchSummary, NotificationPayload


class EmbedColor:
    """Embed accent colors by outcome."""
    ORANGE = 15105570
    PURPLE = 10181046
    GREEN = 3066993
    RED = 15158332
    GREY = 9807270


def _absolute_url(path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    if path.startswith(("http://", "https://")):
        return path
    return f"{settings.app_base_url.rstrip('/')}/{path.lstrip('/')}"


# ===== Issues =====

ISSUE_EVENTS = {
    "issue_reported": ("Issue Reported", "Open", EmbedColor.RED),
    "issue_comment": ("Issue Comment", "Open", EmbedColor.ORANGE),
    "issue_resolved": ("Issue Resolved", "Resolved", EmbedColor.GREEN),
    "issue_reopened": ("Issue Reopened", "Open", EmbedColor.ORANGE),
}


@dataclass
class IssueContext:
    issue_id: str
    media_type: str
    tmdb_id: int
    title: str
    category: str
    description: str
    username: str
    user_id: Optional[int] = None
    user_email: Optional[str] = None
    image_url: Optional[str] = None
    url: Optional[str] = None


def build_issue_payload(event: str, ctx: IssueContext) -> NotificationPayload:
    label, status, color = ISSUE_EVENTS[event]
    return NotificationPayload(
        title=f"{label}: {ctx.title}",
        message=ctx.description,
        url=_absolute_url(ctx.url),
        image_url=ctx.image_url,
        color=color,
        fields=[
            {"name": "Reported By", "value": ctx.username, "inline": True},
            {"name": "Issue Type", "value": ctx.category, "inline": True},
            {"name": "Issue Status", "value": status, "inline": True},
        ],
        data={
            "event": event,
            "issue_id": ctx.issue_id,
            "media_type": ctx.media_type,
            "tmdb_id": ctx.tmdb_id,
            "reported_by": {"username": ctx.username, "user_id": ctx.user_id},
        },
        recipient_email=ctx.user_email,
    )


async def notify_issue_event(
    event: str,
    ctx: IssueContext,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> DispatchSummary:
    """
    Dispatch an issue event.

    New reports also go to global endpoints; follow-ups only reach the
    reporter's assigned endpoints.
    """
    if event not in ISSUE_EVENTS:
        raise ValueError(f"Unknown issue event: {event}")
    scope = DispatchScope(
        user_ids=[ctx.user_id] if ctx.user_id is not None else [],
        include_global=event == "issue_reported",
    )
    return await (dispatcher or get_dispatcher()).dispatch(event, build_issue_payload(event, ctx), scope)


# ===== Requests =====

REQUEST_EVENTS = {
    "request_pending": ("Pending approval", EmbedColor.ORANGE),
    "request_submitted": ("Approved / submitted", EmbedColor.PURPLE),
    "request_approved": ("Approved", EmbedColor.PURPLE),
    "request_auto_approved": ("Automatically approved", EmbedColor.PURPLE),
    "request_denied": ("Denied", EmbedColor.RED),
    "request_failed": ("Failed", EmbedColor.RED),
    "request_already_exists": ("Already exists", EmbedColor.GREY),
    "request_partially_available": ("Partially available", EmbedColor.PURPLE),
    "request_downloading": ("Downloading", EmbedColor.ORANGE),
    "request_available": ("Available", EmbedColor.GREEN),
    "request_removed": ("Removed", EmbedColor.GREY),
}


@dataclass
class RequestContext:
    request_id: str
    request_type: str
    tmdb_id: int
    title: str
    username: str
    user_id: Optional[int] = None
    user_email: Optional[str] = None
    image_url: Optional[str] = None
    year: Optional[int] = None
    overview: Optional[str] = None


def build_request_payload(event: str, ctx: RequestContext) -> NotificationPayload:
    status, color = REQUEST_EVENTS[event]
    title = f"{ctx.title} ({ctx.year})" if ctx.year else ctx.title
    path = f"/movie/{ctx.tmdb_id}" if ctx.request_type == "movie" else f"/tv/{ctx.tmdb_id}"
    return NotificationPayload(
        title=f"{status}: {title}",
        message=ctx.overview or "",
        url=_absolute_url(path),
        image_url=ctx.image_url,
        color=color,
        fields=[
            {"name": "Requested By", "value": ctx.username, "inline": True},
            {"name": "Request Status", "value": status, "inline": True},
        ],
        data={
            "event": event,
            "request_id": ctx.request_id,
            "request_type": ctx.request_type,
            "tmdb_id": ctx.tmdb_id,
        },
        recipient_email=ctx.user_email,
    )


async def notify_request_event(
    event: str,
    ctx: RequestContext,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> DispatchSummary:
    """Dispatch a request lifecycle event to the requester's and global endpoints."""
    if event not in REQUEST_EVENTS:
        raise ValueError(f"Unknown request event: {event}")
    scope = DispatchScope(user_ids=[ctx.user_id] if ctx.user_id is not None else [], include_global=True)
    return await (dispatcher or get_dispatcher()).dispatch(event, build_request_payload(event, ctx), scope)


# ===== System alerts =====

SYSTEM_ALERTS = {
    "system_alert_high_latency": ("High Latency", EmbedColor.ORANGE),
    "system_alert_service_unreachable": ("Service Unreachable", EmbedColor.RED),
    "system_alert_indexers_unavailable": ("Indexers Unavailable", EmbedColor.RED),
}


@dataclass
class SystemAlertContext:
    title: str
    service_name: Optional[str] = None
    service_type: Optional[str] = None
    latency_ms: Optional[int] = None
    threshold_ms: Optional[int] = None
    details: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


def build_system_alert_payload(event: str, ctx: SystemAlertContext) -> NotificationPayload:
    label, color = SYSTEM_ALERTS[event]
    fields: List[Dict[str, Any]] = [
        {"name": "Alert", "value": label, "inline": True},
        {"name": "Service", "value": ctx.service_name or "System", "inline": True},
    ]
    if ctx.latency_ms is not None:
        fields.append({"name": "Latency", "value": f"{ctx.latency_ms} ms", "inline": True})
    if ctx.threshold_ms is not None:
        fields.append({"name": "Threshold", "value": f"{ctx.threshold_ms} ms", "inline": True})
    return NotificationPayload(
        title=ctx.title,
        message=ctx.details or "",
        color=color,
        fields=fields,
        footer=f"{settings.app_name} system alerts",
        data={
            "event": event,
            "service_name": ctx.service_name,
            "service_type": ctx.service_type,
            "metadata": ctx.metadata,
        },
    )


async def notify_system_alert(
    event: str,
    ctx: SystemAlertContext,
    user_ids: Optional[List[int]] = None,
    include_global: bool = True,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> DispatchSummary:
    """Dispatch a system alert; with no user_ids only global endpoints are considered."""
    if event not in SYSTEM_ALERTS:
        raise ValueError(f"Unknown system alert: {event}")
    scope = DispatchScope(user_ids=user_ids, include_global=include_global) if user_ids else None
    return await (dispatcher or get_dispatcher()).dispatch(event, build_system_alert_payload(event, ctx), scope)


# ===== Jobs =====

def build_job_failed_payload(job_name: str, error: str, duration_ms: int) -> NotificationPayload:
    return NotificationPayload(
        title=f"Job failed: {job_name}",
        message=error,
        url=_absolute_url("/admin/jobs"),
        color=EmbedColor.RED,
        fields=[
            {"name": "Job", "value": job_name, "inline": True},
            {"name": "Duration", "value": f"{duration_ms} ms", "inline": True},
        ],
        data={"event": "job_failed", "job": job_name},
    )
