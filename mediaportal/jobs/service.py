"""
Job scheduler service: tick evaluation, exclusive execution, run history and
runtime metrics.

Per job name there is at most one execution in flight. The tick loop and
manual triggers share the same keyed lock, so whichever claims a name first
runs and the other sees "already running".
"""
import asyncio
import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set, Union

from sqlalchemy import delete, func, select

from mediaportal.jobs.definitions import JobContext, JobDefinition, JobRegistry, get_job_registry
from mediaportal.jobs.schedules import compute_next_run, is_cron_schedule
from mediaportal.lib.db import SessionFactory, SessionLocal, session_scope, utc_now
from mediaportal.lib.errors import InvalidScheduleError, JobNotFoundError
from mediaportal.lib.keyed_lock import KeyedLock
from mediaportal.lib.logging import get_logger
from mediaportal.lib.metrics import get_metrics_collector
from mediaportal.models.jobs import Job, JobRun, JobRunStatus, JobTrigger
from mediaportal.notifications.dispatcher import NotificationDispatcher
from mediaportal.notifications.events import build_job_failed_payload


logger = get_logger(__name__)

# Stored cron next runs further than this from the schedule are corrected
SCHEDULE_DRIFT_TOLERANCE = timedelta(seconds=60)


class RunTriggerStatus(str, enum.Enum):
    COMPLETED = "completed"
    ALREADY_RUNNING = "already_running"


@dataclass
class JobRunRecord:
    """Detached view of one finished execution."""
    id: Optional[int]
    job_name: str
    status: JobRunStatus
    trigger: JobTrigger
    started_at: datetime
    finished_at: datetime
    duration_ms: int
    error: Optional[str] = None
    next_run_at: Optional[datetime] = None


@dataclass
class RunTriggerResult:
    status: RunTriggerStatus
    run: Optional[JobRunRecord] = None


@dataclass
class TickSummary:
    enabled: int = 0
    fired: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    initialized: List[str] = field(default_factory=list)
    corrected: List[str] = field(default_factory=list)


@dataclass
class RuntimeMetric:
    name: str
    total_runs: int
    success_runs: int
    failed_runs: int
    success_rate: float
    failure_rate: float
    avg_duration_ms: float
    last_duration_ms: Optional[int]
    last_started_at: Optional[datetime]
    last_finished_at: Optional[datetime]
    last_result: str
    last_error: Optional[str]


@dataclass
class JobHistoryPage:
    items: List[JobRun]
    total: int


@dataclass
class _RuntimeState:
    name: str
    total_runs: int = 0
    success_runs: int = 0
    failed_runs: int = 0
    duration_total_ms: int = 0
    last_duration_ms: Optional[int] = None
    last_started_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    last_result: str = "none"
    last_error: Optional[str] = None


@dataclass(frozen=True)
class _DueJob:
    """Row snapshot taken during a tick."""
    id: int
    name: str
    schedule: str
    interval_seconds: int
    run_on_start: bool
    next_run_at: Optional[datetime]


class JobScheduler:
    """
    Orchestrates registered jobs against their persisted rows.

    Args:
        registry: Job definitions (work functions)
        session_factory: Session factory for job rows and history
        dispatcher: Receives a job_failed event when a run fails
        clock: Source of aware UTC "now" (injectable for tests)
    """

    def __init__(
        self,
        registry: Optional[JobRegistry] = None,
        session_factory: SessionFactory = SessionLocal,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.registry = registry if registry is not None else get_job_registry()
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._clock = clock
        self._running = KeyedLock()
        self._metric_locks = KeyedLock()
        self._runtime: Dict[str, _RuntimeState] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._tick_count = 0

    # ===== Job rows =====

    def list_jobs(self) -> List[Job]:
        with session_scope(self._session_factory) as db:
            return list(db.scalars(select(Job).order_by(Job.name)))

    def get_job(self, name_or_id: Union[str, int]) -> Job:
        """
        Raises:
            JobNotFoundError: If no row matches
        """
        with session_scope(self._session_factory) as db:
            job = self._load(db, name_or_id)
            if job is None:
                raise JobNotFoundError(name_or_id)
            return job

    @staticmethod
    def _load(db, name_or_id: Union[str, int]) -> Optional[Job]:
        if isinstance(name_or_id, int):
            return db.get(Job, name_or_id)
        return db.scalars(select(Job).where(Job.name == name_or_id)).first()

    def update_job_schedule(self, job_id: int, schedule: str, interval_seconds: Optional[int] = None) -> Job:
        """
        Validate and store a new schedule together with the next run it implies.

        Raises:
            InvalidScheduleError: If the schedule cannot be evaluated (nothing is stored)
            JobNotFoundError: If the job does not exist
        """
        schedule = (schedule or "").strip()
        with session_scope(self._session_factory) as db:
            job = db.get(Job, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            interval = interval_seconds if interval_seconds is not None else job.interval_seconds
            next_run_at = compute_next_run(schedule, interval, self._clock())

            job.schedule = schedule
            job.interval_seconds = interval
            job.next_run_at = next_run_at if job.enabled else None
            db.flush()
            logger.info(
                f"Updated schedule for {job.name}",
                extra={"job": job.name, "schedule": schedule, "interval_seconds": interval},
            )
            return job

    def update_job_enabled(self, job_id: int, enabled: bool) -> Job:
        """
        Enable (next run computed from now) or disable (next run cleared) a job.

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidScheduleError: If enabling a job whose stored schedule is invalid
        """
        with session_scope(self._session_factory) as db:
            job = db.get(Job, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if enabled:
                job.next_run_at = compute_next_run(job.schedule, job.interval_seconds, self._clock())
            else:
                job.next_run_at = None
            job.enabled = enabled
            db.flush()
            logger.info(f"{'Enabled' if enabled else 'Disabled'} job {job.name}", extra={"job": job.name})
            return job

    # ===== Execution =====

    def _definition_for(self, name: str) -> JobDefinition:
        definition = self.registry.get(name)
        if definition is None:
            raise JobNotFoundError(name, reason="has no registered handler")
        return definition

    async def run_job_now(self, name: str) -> RunTriggerResult:
        """
        Run a job immediately and wait for it to finish.

        Returns:
            ALREADY_RUNNING without side effects if the name is in flight,
            otherwise COMPLETED with the run record (which may be a failure)

        Raises:
            JobNotFoundError: If the job row or its handler is missing
        """
        definition = self._definition_for(name)

        # Claim before any await so concurrent triggers cannot both pass
        if not self._running.try_acquire(name):
            logger.info(f"Job {name} is already running; manual trigger rejected", extra={"job": name})
            return RunTriggerResult(status=RunTriggerStatus.ALREADY_RUNNING)

        try:
            job = await asyncio.to_thread(self.get_job, name)
        except BaseException:
            self._running.release(name)
            raise

        record = await self._run_claimed(job.id, definition, JobTrigger.MANUAL)
        return RunTriggerResult(status=RunTriggerStatus.COMPLETED, run=record)

    async def _run_claimed(self, job_id: int, definition: JobDefinition, trigger: JobTrigger) -> JobRunRecord:
        """Execute a job whose lock the caller already holds; releases it."""
        try:
            record = await self._execute(job_id, definition, trigger)
        finally:
            self._running.release(definition.name)

        if record.status == JobRunStatus.FAILED:
            await self._notify_failure(record)
        return record

    async def _execute(self, job_id: int, definition: JobDefinition, trigger: JobTrigger) -> JobRunRecord:
        name = definition.name
        started_at = self._clock()
        self._mark_start(name, started_at)
        logger.info(f"Executing job {name}", extra={"job": name, "trigger": trigger.value})

        status = JobRunStatus.SUCCESS
        error: Optional[str] = None
        context = JobContext(job_name=name, started_at=started_at, session_factory=self._session_factory)
        try:
            await asyncio.wait_for(definition.handler(context), timeout=definition.effective_timeout)
        except asyncio.TimeoutError:
            status = JobRunStatus.FAILED
            error = f"Timed out after {definition.effective_timeout:g}s"
        except Exception as e:
            status = JobRunStatus.FAILED
            error = str(e) or e.__class__.__name__
            logger.error(f"Job {name} raised: {error}", exc_info=True, extra={"job": name})

        finished_at = self._clock()
        duration_ms = max(0, int((finished_at - started_at).total_seconds() * 1000))
        record = JobRunRecord(
            id=None,
            job_name=name,
            status=status,
            trigger=trigger,
            started_at=started_at,
            finished_at=finished_at,
            duration_ms=duration_ms,
            error=error,
        )

        try:
            await asyncio.to_thread(self._record_completion, job_id, record)
        except Exception as e:
            logger.error(f"Failed to persist run of {name}: {e}", exc_info=True, extra={"job": name})

        self._mark_result(name, record)
        get_metrics_collector().increment_job_runs(job=name, status=status.value)

        if status == JobRunStatus.SUCCESS:
            logger.info(
                f"Job {name} completed in {duration_ms}ms; next run {record.next_run_at}",
                extra={"job": name, "duration_ms": duration_ms},
            )
        else:
            logger.error(
                f"Job {name} failed after {duration_ms}ms: {error}",
                extra={"job": name, "duration_ms": duration_ms},
            )
        return record

    def _next_run_after(self, job: Job, finished_at: datetime) -> datetime:
        try:
            return compute_next_run(job.schedule, job.interval_seconds, finished_at)
        except InvalidScheduleError as e:
            # Keep the job moving rather than leaving it due forever
            logger.error(f"Stored schedule for {job.name} is invalid: {e.reason}", extra={"job": job.name})
            return finished_at + timedelta(seconds=job.interval_seconds if job.interval_seconds > 0 else 3600)

    def _record_completion(self, job_id: int, record: JobRunRecord) -> None:
        with session_scope(self._session_factory) as db:
            job = db.get(Job, job_id)
            if job is None:
                return
            job.last_run_at = record.finished_at
            if record.status == JobRunStatus.SUCCESS:
                job.last_error = None
                job.failure_count = 0
            else:
                job.last_error = record.error
                job.failure_count = (job.failure_count or 0) + 1
            # Re-read enabled: the job may have been disabled mid-run
            job.next_run_at = self._next_run_after(job, record.finished_at) if job.enabled else None
            record.next_run_at = job.next_run_at

            run = JobRun(
                job_id=job.id,
                job_name=record.job_name,
                trigger=record.trigger,
                status=record.status,
                started_at=record.started_at,
                finished_at=record.finished_at,
                duration_ms=record.duration_ms,
                error=record.error,
            )
            db.add(run)
            db.flush()
            record.id = run.id

    async def _notify_failure(self, record: JobRunRecord) -> None:
        if self._dispatcher is None:
            return
        try:
            await self._dispatcher.dispatch(
                "job_failed",
                build_job_failed_payload(record.job_name, record.error or "Unknown error", record.duration_ms),
            )
        except Exception as e:
            logger.error(f"Failed to dispatch job_failed for {record.job_name}: {e}", exc_info=True)

    # ===== Tick =====

    def _load_enabled(self) -> List[_DueJob]:
        with session_scope(self._session_factory) as db:
            rows = db.scalars(select(Job).where(Job.enabled.is_(True)).order_by(Job.name))
            return [
                _DueJob(
                    id=job.id,
                    name=job.name,
                    schedule=job.schedule,
                    interval_seconds=job.interval_seconds,
                    run_on_start=job.run_on_start,
                    next_run_at=job.next_run_at,
                )
                for job in rows
            ]

    def _store_next_run(self, job_id: int, next_run_at: datetime) -> None:
        with session_scope(self._session_factory) as db:
            job = db.get(Job, job_id)
            if job is not None and job.enabled:
                job.next_run_at = next_run_at

    async def tick(self, now: Optional[datetime] = None) -> TickSummary:
        """
        Evaluate every enabled job once and start the due ones.

        Started runs continue in the background; use `wait_idle` to await them.
        A due job that is still running is skipped and stays due.
        """
        self._tick_count += 1
        now = now or self._clock()
        summary = TickSummary()
        jobs = await asyncio.to_thread(self._load_enabled)
        summary.enabled = len(jobs)

        for job in jobs:
            next_run_at = job.next_run_at

            if next_run_at is not None and now < next_run_at and is_cron_schedule(job.schedule):
                try:
                    expected = compute_next_run(job.schedule, job.interval_seconds, now)
                except InvalidScheduleError as e:
                    logger.error(f"Cannot evaluate schedule of {job.name}: {e.reason}", extra={"job": job.name})
                    expected = None
                if expected is not None and abs(expected - next_run_at) > SCHEDULE_DRIFT_TOLERANCE:
                    await asyncio.to_thread(self._store_next_run, job.id, expected)
                    next_run_at = expected
                    summary.corrected.append(job.name)

            if next_run_at is None:
                if not job.run_on_start:
                    try:
                        initial = compute_next_run(job.schedule, job.interval_seconds, now)
                    except InvalidScheduleError as e:
                        logger.error(f"Cannot initialize {job.name}: {e.reason}", extra={"job": job.name})
                        continue
                    await asyncio.to_thread(self._store_next_run, job.id, initial)
                    summary.initialized.append(job.name)
                    continue
                trigger = JobTrigger.STARTUP
            elif now >= next_run_at:
                trigger = JobTrigger.SCHEDULE
            else:
                continue

            definition = self.registry.get(job.name)
            if definition is None:
                logger.warning(f"No handler registered for job {job.name}", extra={"job": job.name})
                continue

            if not self._running.try_acquire(job.name):
                summary.skipped.append(job.name)
                continue

            summary.fired.append(job.name)
            task = asyncio.get_running_loop().create_task(self._run_claimed(job.id, definition, trigger))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        running = sorted(self.get_running_job_names())
        logger.info(
            f"Scheduler tick #{self._tick_count}: {summary.enabled} enabled, "
            f"{len(summary.fired)} fired, {len(summary.skipped)} skipped (in progress)",
            extra={"running": running},
        )
        return summary

    async def wait_idle(self) -> None:
        """Wait for runs started by `tick` to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ===== Introspection =====

    def get_running_job_names(self) -> Set[str]:
        return self._running.held_keys()

    def _mark_start(self, name: str, started_at: datetime) -> None:
        with self._metric_locks.hold(name):
            state = self._runtime.setdefault(name, _RuntimeState(name=name))
            state.total_runs += 1
            state.last_started_at = started_at
            state.last_error = None

    def _mark_result(self, name: str, record: JobRunRecord) -> None:
        with self._metric_locks.hold(name):
            state = self._runtime.setdefault(name, _RuntimeState(name=name))
            state.last_finished_at = record.finished_at
            state.last_duration_ms = record.duration_ms
            state.duration_total_ms += record.duration_ms
            if record.status == JobRunStatus.SUCCESS:
                state.success_runs += 1
                state.last_result = "success"
                state.last_error = None
            else:
                state.failed_runs += 1
                state.last_result = "failure"
                state.last_error = record.error

    def get_job_runtime_metrics(self) -> List[RuntimeMetric]:
        """Snapshot of in-memory run statistics per job name since process start."""
        metrics = []
        for name in sorted(list(self._runtime)):
            with self._metric_locks.hold(name):
                s = self._runtime[name]
                total = s.total_runs
                metrics.append(RuntimeMetric(
                    name=name,
                    total_runs=total,
                    success_runs=s.success_runs,
                    failed_runs=s.failed_runs,
                    success_rate=s.success_runs / total if total else 0.0,
                    failure_rate=s.failed_runs / total if total else 0.0,
                    avg_duration_ms=s.duration_total_ms / total if total else 0.0,
                    last_duration_ms=s.last_duration_ms,
                    last_started_at=s.last_started_at,
                    last_finished_at=s.last_finished_at,
                    last_result=s.last_result,
                    last_error=s.last_error,
                ))
        return metrics

    # ===== History =====

    def list_job_history(self, limit: int = 50, offset: int = 0, job_name: Optional[str] = None) -> JobHistoryPage:
        """Newest runs first."""
        with session_scope(self._session_factory) as db:
            stmt = select(JobRun)
            count_stmt = select(func.count()).select_from(JobRun)
            if job_name:
                stmt = stmt.where(JobRun.job_name == job_name)
                count_stmt = count_stmt.where(JobRun.job_name == job_name)
            stmt = stmt.order_by(JobRun.started_at.desc(), JobRun.id.desc()).limit(limit).offset(offset)
            return JobHistoryPage(items=list(db.scalars(stmt)), total=db.scalar(count_stmt) or 0)

    def clear_job_history(self, job_name: Optional[str] = None) -> int:
        """Delete run history, optionally for one job. Returns rows removed."""
        with session_scope(self._session_factory) as db:
            stmt = delete(JobRun)
            if job_name:
                stmt = stmt.where(JobRun.job_name == job_name)
            removed = db.execute(stmt).rowcount or 0
        logger.info(f"Cleared {removed} job run(s)", extra={"job": job_name or "*"})
        return removed
