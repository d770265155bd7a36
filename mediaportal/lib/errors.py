"""
Domain exceptions raised by the orchestration core.

Only configuration problems and lookups of missing records raise. Contention
(a job already running), delivery failures and rate-limit rejections are
returned as result values instead.
"""
from typing import Any, Dict, Optional


class CoreError(Exception):
    """Base class for core domain errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class InvalidScheduleError(CoreError):
    """A schedule expression or interval cannot be evaluated."""

    def __init__(self, schedule: str, reason: str):
        super().__init__(
            f"Invalid schedule '{schedule}': {reason}",
            details={"schedule": schedule, "reason": reason},
        )
        self.schedule = schedule
        self.reason = reason


class InvalidEndpointConfigError(CoreError):
    """Endpoint config does not match the schema required by its type."""

    def __init__(self, endpoint_type: str, errors: Any):
        super().__init__(
            f"Invalid configuration for {endpoint_type} endpoint",
            details={"type": endpoint_type, "errors": errors},
        )
        self.endpoint_type = endpoint_type
        self.errors = errors


class JobNotFoundError(CoreError):
    """No job row (or no registered handler) for the given identifier."""

    def __init__(self, identifier: Any, reason: str = "not found"):
        super().__init__(
            f"Job {identifier} {reason}",
            details={"job": str(identifier)},
        )
        self.identifier = identifier


class EndpointNotFoundError(CoreError):
    """No notification endpoint with the given id."""

    def __init__(self, endpoint_id: int):
        super().__init__(
            f"Notification endpoint {endpoint_id} not found",
            details={"endpoint_id": endpoint_id},
        )
        self.endpoint_id = endpoint_id
