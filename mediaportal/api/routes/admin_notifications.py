"""
Admin Notifications API - Notification endpoint management.

Routes:
- GET /admin/notifications/endpoints - List endpoints
- POST /admin/notifications/endpoints - Create an endpoint (config validated)
- GET /admin/notifications/endpoints/{endpoint_id} - Endpoint details
- PATCH /admin/notifications/endpoints/{endpoint_id} - Update an endpoint
- DELETE /admin/notifications/endpoints/{endpoint_id} - Delete an endpoint
- POST /admin/notifications/endpoints/{endpoint_id}/test - Send a test notification
- PUT /admin/notifications/endpoints/{endpoint_id}/users/{user_id} - Assign a user
- DELETE /admin/notifications/endpoints/{endpoint_id}/users/{user_id} - Unassign a user
- POST /admin/notifications/push-subscriptions - Register a browser push subscription
- GET /admin/notifications/events - Event names and their mask bits
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from mediaportal.api.dependencies import enforce_rate_limit, get_db, get_dispatcher
from mediaportal.api.middleware.error_handler import BadRequestException, NotFoundException
from mediaportal.lib.logging import get_logger
from mediaportal.lib.rate_limit import RateLimitOptions
from mediaportal.models.notifications import NotificationEndpoint, NotificationEndpointType
from mediaportal.notifications.dispatcher import NotificationDispatcher
from mediaportal.notifications.endpoints import NotificationEndpointService
from mediaportal.notifications.types import DEFAULT_EVENT_MASK, NotificationType, mask_to_names, names_to_mask


logger = get_logger(__name__)
router = APIRouter(prefix="/admin/notifications", tags=["admin_notifications"])

# Test sends hit third-party services; keep them to a handful per minute per client
TEST_SEND_LIMIT = RateLimitOptions(window_ms=60_000, max=5)


# Request Models
class EndpointCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    type: NotificationEndpointType
    config: Dict[str, Any] = Field(default_factory=dict, description="Type-specific settings")
    enabled: bool = True
    is_global: bool = True
    event_mask: Optional[int] = Field(None, ge=0, description="NotificationType bits; bit 0 = all")
    events: Optional[List[str]] = Field(None, description="Event names, alternative to event_mask")


class EndpointUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    config: Optional[Dict[str, Any]] = None
    enabled: Optional[bool] = None
    is_global: Optional[bool] = None
    event_mask: Optional[int] = Field(None, ge=0)
    events: Optional[List[str]] = None


class PushSubscriptionRequest(BaseModel):
    user_id: int
    endpoint: str = Field(..., min_length=1)
    p256dh: str = Field(..., min_length=1)
    auth: str = Field(..., min_length=1)
    user_agent: Optional[str] = None


# Response Models
class EndpointResponse(BaseModel):
    id: int
    name: str
    type: str
    enabled: bool
    is_global: bool
    event_mask: int
    events: List[str] = Field(..., description="Names of the bits set in event_mask")
    config: Dict[str, Any]
    user_ids: List[int] = Field(default_factory=list, description="Assigned users")
    created_at: datetime
    updated_at: datetime


class EndpointsListResponse(BaseModel):
    total: int
    endpoints: List[EndpointResponse]


class TestSendResponse(BaseModel):
    ok: bool
    error: Optional[str] = None


class PushSubscriptionResponse(BaseModel):
    id: int
    user_id: int
    active: bool


class EventInfo(BaseModel):
    name: str
    bit: int
    value: int


def _endpoint_response(endpoint: NotificationEndpoint, user_ids: List[int]) -> EndpointResponse:
    return EndpointResponse(
        id=endpoint.id,
        name=endpoint.name,
        type=endpoint.type.value,
        enabled=endpoint.enabled,
        is_global=endpoint.is_global,
        event_mask=endpoint.event_mask,
        events=mask_to_names(endpoint.event_mask),
        config=dict(endpoint.config or {}),
        user_ids=user_ids,
        created_at=endpoint.created_at,
        updated_at=endpoint.updated_at,
    )


def _resolve_mask(event_mask: Optional[int], events: Optional[List[str]]) -> Optional[int]:
    if events is not None:
        try:
            return names_to_mask(events)
        except ValueError as e:
            raise BadRequestException(str(e), details={"events": events})
    return event_mask


# Routes
@router.get("/events", response_model=List[EventInfo])
def list_events() -> List[EventInfo]:
    """Event categories with their stable bit positions."""
    return [
        EventInfo(name=member.name.lower(), bit=int(member).bit_length() - 1, value=int(member))
        for member in NotificationType
    ]


@router.get("/endpoints", response_model=EndpointsListResponse)
def list_endpoints(
    type: Optional[NotificationEndpointType] = None,
    db: Session = Depends(get_db),
) -> EndpointsListResponse:
    service = NotificationEndpointService(db)
    endpoints = [
        _endpoint_response(endpoint, service.list_endpoint_user_ids(endpoint.id))
        for endpoint in service.list_endpoints(type)
    ]
    return EndpointsListResponse(total=len(endpoints), endpoints=endpoints)


@router.post("/endpoints", response_model=EndpointResponse, status_code=status.HTTP_201_CREATED)
def create_endpoint(body: EndpointCreateRequest, db: Session = Depends(get_db)) -> EndpointResponse:
    """
    Create a notification endpoint.

    The config is validated against the type's schema before anything is
    stored; an invalid config answers 422 with the field errors.
    """
    logger.info(f"POST /admin/notifications/endpoints (type={body.type.value})")
    mask = _resolve_mask(body.event_mask, body.events)
    service = NotificationEndpointService(db)
    try:
        endpoint = service.create_endpoint(
            name=body.name,
            endpoint_type=body.type,
            config=body.config,
            enabled=body.enabled,
            event_mask=DEFAULT_EVENT_MASK if mask is None else mask,
            is_global=body.is_global,
        )
    except ValueError as e:
        raise BadRequestException(str(e))
    return _endpoint_response(endpoint, [])


@router.get("/endpoints/{endpoint_id}", response_model=EndpointResponse)
def get_endpoint(endpoint_id: int, db: Session = Depends(get_db)) -> EndpointResponse:
    service = NotificationEndpointService(db)
    endpoint = service.get_endpoint(endpoint_id)
    return _endpoint_response(endpoint, service.list_endpoint_user_ids(endpoint_id))


@router.patch("/endpoints/{endpoint_id}", response_model=EndpointResponse)
def update_endpoint(
    endpoint_id: int,
    body: EndpointUpdateRequest,
    db: Session = Depends(get_db),
) -> EndpointResponse:
    logger.info(f"PATCH /admin/notifications/endpoints/{endpoint_id}")
    mask = _resolve_mask(body.event_mask, body.events)
    service = NotificationEndpointService(db)
    try:
        endpoint = service.update_endpoint(
            endpoint_id,
            name=body.name,
            config=body.config,
            enabled=body.enabled,
            event_mask=mask,
            is_global=body.is_global,
        )
    except ValueError as e:
        raise BadRequestException(str(e))
    return _endpoint_response(endpoint, service.list_endpoint_user_ids(endpoint_id))


@router.delete("/endpoints/{endpoint_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_endpoint(endpoint_id: int, db: Session = Depends(get_db)) -> None:
    logger.info(f"DELETE /admin/notifications/endpoints/{endpoint_id}")
    NotificationEndpointService(db).delete_endpoint(endpoint_id)


@router.post("/endpoints/{endpoint_id}/test", response_model=TestSendResponse)
async def send_test_notification(
    endpoint_id: int,
    request: Request,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> TestSendResponse:
    """
    Send a test notification to one endpoint.

    Disabled endpoints and event masks are ignored. The transport's own error
    text is returned so misconfiguration can be diagnosed; limited per client.
    """
    enforce_rate_limit(request, "notification-test", TEST_SEND_LIMIT)
    result = await dispatcher.send_test(endpoint_id)
    if not result.ok:
        logger.warning(f"Test notification to endpoint {endpoint_id} failed: {result.error}")
    return TestSendResponse(ok=result.ok, error=result.error)


@router.put("/endpoints/{endpoint_id}/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def assign_user(endpoint_id: int, user_id: int, db: Session = Depends(get_db)) -> None:
    NotificationEndpointService(db).assign_user(user_id, endpoint_id)


@router.delete("/endpoints/{endpoint_id}/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def unassign_user(endpoint_id: int, user_id: int, db: Session = Depends(get_db)) -> None:
    if not NotificationEndpointService(db).unassign_user(user_id, endpoint_id):
        raise NotFoundException("Assignment", f"{endpoint_id}/{user_id}")


@router.post("/push-subscriptions", response_model=PushSubscriptionResponse, status_code=status.HTTP_201_CREATED)
def register_push_subscription(
    body: PushSubscriptionRequest,
    db: Session = Depends(get_db),
) -> PushSubscriptionResponse:
    subscription = NotificationEndpointService(db).upsert_push_subscription(
        user_id=body.user_id,
        endpoint=body.endpoint,
        p256dh=body.p256dh,
        auth=body.auth,
        user_agent=body.user_agent,
    )
    return PushSubscriptionResponse(id=subscription.id, user_id=subscription.user_id, active=subscription.active)
