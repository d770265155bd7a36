"""
API dependencies for FastAPI dependency injection.

Provides database sessions, the shared scheduler/dispatcher services and
per-client rate limiting.
"""
from typing import Optional

from fastapi import Request

from mediaportal.api.middleware.error_handler import TooManyRequestsException
from mediaportal.jobs.scheduler import get_job_scheduler as _get_job_scheduler
from mediaportal.jobs.service import JobScheduler
from mediaportal.lib.db import get_db as get_db_session
from mediaportal.lib.logging import get_logger
from mediaportal.lib.rate_limit import RateLimitOptions, get_rate_limiter
from mediaportal.notifications.dispatcher import NotificationDispatcher
from mediaportal.notifications.dispatcher import get_dispatcher as _get_dispatcher


logger = get_logger(__name__)


# Re-export get_db for convenience
get_db = get_db_session


def get_job_scheduler() -> JobScheduler:
    """Dependency returning the process-wide job scheduler."""
    return _get_job_scheduler()


def get_dispatcher() -> NotificationDispatcher:
    """Dependency returning the process-wide notification dispatcher."""
    return _get_dispatcher()


def client_ip(request: Request) -> str:
    """
    Best-effort client address.

    Prefers the first hop of X-Forwarded-For, then X-Real-IP, then the socket peer.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("X-Real-IP")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def enforce_rate_limit(request: Request, prefix: str, opts: RateLimitOptions, key: Optional[str] = None) -> None:
    """
    Count one request against the caller's window.

    Args:
        request: Incoming request (used for the client address)
        prefix: Namespace for the limited operation, e.g. "notification-test"
        opts: Window length and allowance
        key: Explicit key suffix instead of the client address

    Raises:
        TooManyRequestsException: If the window is exhausted (429 with Retry-After)
    """
    full_key = f"{prefix}:{key or client_ip(request)}"
    result = get_rate_limiter().check_rate_limit(full_key, opts)
    if not result.ok:
        logger.warning(
            f"Rate limit exceeded for {prefix}",
            extra={"key": full_key, "retry_after_sec": result.retry_after_sec},
        )
        raise TooManyRequestsException(result.retry_after_sec)
