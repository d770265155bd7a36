"""
SQLAlchemy models package.
Import all models here to ensure they're registered with Base.metadata.
"""
from mediaportal.models.jobs import Job, JobRun, JobRunStatus, JobTrigger
from mediaportal.models.notifications import (
    NotificationEndpoint,
    NotificationEndpointType,
    PushSubscription,
    UserNotificationEndpoint,
)

__all__ = [
    "Job",
    "JobRun",
    "JobRunStatus",
    "JobTrigger",
    "NotificationEndpoint",
    "NotificationEndpointType",
    "PushSubscription",
    "UserNotificationEndpoint",
]
