"""
Job definitions: the registry of named work functions and the built-in
maintenance jobs.

Usage:
    from mediaportal.jobs.definitions import registry

    @registry.job("watchlist-sync", schedule="0 * * * *", timeout_seconds=600)
    async def watchlist_sync(ctx):
        ...
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Iterator, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from mediaportal.jobs.schedules import compute_next_run
from mediaportal.lib.db import SessionFactory, session_scope, utc_now
from mediaportal.lib.logging import get_logger
from mediaportal.lib.rate_limit import get_rate_limiter
from mediaportal.lib.settings import settings
from mediaportal.models.jobs import Job, JobRun
from mediaportal.notifications.endpoints import NotificationEndpointService


logger = get_logger(__name__)


@dataclass
class JobContext:
    """What a work function gets to see about its run."""
    job_name: str
    started_at: datetime
    session_factory: SessionFactory


JobHandler = Callable[[JobContext], Awaitable[None]]


@dataclass(frozen=True)
class JobDefinition:
    """
    A named unit of recurring work.

    Args:
        name: Unique job name (also the exclusivity key)
        handler: Async work function
        schedule: Cron expression, or "" for interval scheduling
        interval_seconds: Cadence for interval schedules
        run_on_start: Run on the first tick instead of waiting a full period
        timeout_seconds: Upper bound for one run (defaults to settings.job_timeout_seconds)
        description: Human-readable summary for the admin UI
        enabled: Initial enabled flag when the row is first seeded
    """
    name: str
    handler: JobHandler
    schedule: str = ""
    interval_seconds: int = 3600
    run_on_start: bool = False
    timeout_seconds: Optional[float] = None
    description: Optional[str] = None
    enabled: bool = True

    @property
    def effective_timeout(self) -> float:
        return self.timeout_seconds or settings.job_timeout_seconds


class JobRegistry:
    """Maps job names to definitions. Schedules are validated on registration."""

    def __init__(self):
        self._definitions: Dict[str, JobDefinition] = {}

    def register(self, definition: JobDefinition) -> JobDefinition:
        """
        Raises:
            ValueError: If the name is already registered
            InvalidScheduleError: If the default schedule is malformed
        """
        if definition.name in self._definitions:
            raise ValueError(f"Job '{definition.name}' is already registered")
        compute_next_run(definition.schedule, definition.interval_seconds)
        self._definitions[definition.name] = definition
        return definition

    def job(
        self,
        name: str,
        schedule: str = "",
        interval_seconds: int = 3600,
        run_on_start: bool = False,
        timeout_seconds: Optional[float] = None,
        description: Optional[str] = None,
        enabled: bool = True,
    ) -> Callable[[JobHandler], JobHandler]:
        """Decorator form of `register`."""
        def decorator(handler: JobHandler) -> JobHandler:
            self.register(JobDefinition(
                name=name,
                handler=handler,
                schedule=schedule,
                interval_seconds=interval_seconds,
                run_on_start=run_on_start,
                timeout_seconds=timeout_seconds,
                description=description or (handler.__doc__ or "").strip() or None,
                enabled=enabled,
            ))
            return handler
        return decorator

    def get(self, name: str) -> Optional[JobDefinition]:
        return self._definitions.get(name)

    def names(self) -> List[str]:
        return sorted(self._definitions)

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def __iter__(self) -> Iterator[JobDefinition]:
        return iter(list(self._definitions.values()))

    def __len__(self) -> int:
        return len(self._definitions)


def bootstrap_jobs(db: Session, registry: "JobRegistry", now: Optional[datetime] = None) -> List[str]:
    """
    Seed a `jobs` row for every registered definition that has none.

    Existing rows keep their stored schedule and enabled flag.

    Returns:
        Names of the rows created
    """
    now = now or utc_now()
    existing = set(db.scalars(select(Job.name)))
    created = []
    for definition in registry:
        if definition.name in existing:
            continue
        next_run_at = None
        if definition.enabled and not definition.run_on_start:
            next_run_at = compute_next_run(definition.schedule, definition.interval_seconds, now)
        db.add(Job(
            name=definition.name,
            schedule=definition.schedule,
            interval_seconds=definition.interval_seconds,
            enabled=definition.enabled,
            run_on_start=definition.run_on_start,
            description=definition.description,
            next_run_at=next_run_at,
        ))
        created.append(definition.name)
    db.commit()
    if created:
        logger.info(f"Seeded {len(created)} job(s)", extra={"jobs": created})
    return created


# ===== Built-in maintenance jobs =====

registry = JobRegistry()


@registry.job("rate-limit-sweep", interval_seconds=300, timeout_seconds=30)
async def rate_limit_sweep(ctx: JobContext) -> None:
    """Drop expired rate-limit and lockout windows."""
    removed = get_rate_limiter().sweep()
    logger.info(f"Rate limit sweep removed {removed} entries", extra={"job": ctx.job_name})


@registry.job("job-history-prune", schedule="30 3 * * *", timeout_seconds=300)
async def job_history_prune(ctx: JobContext) -> None:
    """Delete job runs older than the retention window."""
    cutoff = ctx.started_at - timedelta(days=settings.job_history_retention_days)

    def prune() -> int:
        with session_scope(ctx.session_factory) as db:
            result = db.execute(delete(JobRun).where(JobRun.started_at < cutoff))
            return result.rowcount or 0

    removed = await asyncio.to_thread(prune)
    logger.info(f"Pruned {removed} job run(s) older than {cutoff.isoformat()}", extra={"job": ctx.job_name})


@registry.job("push-subscription-cleanup", schedule="0 4 * * *", timeout_seconds=300)
async def push_subscription_cleanup(ctx: JobContext) -> None:
    """Remove push subscriptions deactivated after the push service reported them gone."""
    def cleanup() -> int:
        with session_scope(ctx.session_factory) as db:
            return NotificationEndpointService(db).delete_inactive_subscriptions()

    removed = await asyncio.to_thread(cleanup)
    logger.info(f"Removed {removed} inactive push subscription(s)", extra={"job": ctx.job_name})


def get_job_registry() -> JobRegistry:
    """Registry holding the built-in jobs plus anything registered at import time."""
    return registry
