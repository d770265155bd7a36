"""
Admin Jobs API - Background job management endpoints.

Routes:
- GET /admin/jobs - List jobs with schedule and running state
- GET /admin/jobs/metrics - In-memory runtime statistics per job
- GET /admin/jobs/history - Paged run history (newest first)
- DELETE /admin/jobs/history - Clear run history
- PATCH /admin/jobs/{job_id}/schedule - Change a job's schedule
- PATCH /admin/jobs/{job_id}/enabled - Enable or disable a job
- POST /admin/jobs/{name}/run - Run a job now and wait for the result
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from mediaportal.api.dependencies import get_job_scheduler
from mediaportal.api.middleware.error_handler import ConflictException
from mediaportal.jobs.service import JobRunRecord, JobScheduler, RunTriggerStatus
from mediaportal.lib.logging import get_logger
from mediaportal.models.jobs import Job


logger = get_logger(__name__)
router = APIRouter(prefix="/admin/jobs", tags=["admin_jobs"])


# Request Models
class ScheduleUpdateRequest(BaseModel):
    """New schedule for a job."""
    schedule: str = Field("", description="5/6-field cron, macro (@daily) or empty/'interval' for interval mode")
    interval_seconds: Optional[int] = Field(None, gt=0, description="Interval used in interval mode")


class EnabledUpdateRequest(BaseModel):
    enabled: bool


# Response Models
class JobResponse(BaseModel):
    """Persisted job state."""
    id: int
    name: str
    schedule: str
    interval_seconds: int
    enabled: bool
    run_on_start: bool
    description: Optional[str] = None
    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None
    failure_count: int = 0
    running: bool = Field(False, description="Whether an execution is in flight")


class JobsListResponse(BaseModel):
    total: int
    jobs: List[JobResponse]


class JobRunResponse(BaseModel):
    """One finished execution."""
    id: Optional[int] = None
    job_name: str
    trigger: str
    status: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    error: Optional[str] = None


class RunNowResponse(BaseModel):
    status: str = Field(..., description="completed")
    run: JobRunResponse
    next_run_at: Optional[datetime] = None


class RuntimeMetricResponse(BaseModel):
    name: str
    total_runs: int
    success_runs: int
    failed_runs: int
    success_rate: float
    failure_rate: float
    avg_duration_ms: float
    last_duration_ms: Optional[int] = None
    last_started_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    last_result: str
    last_error: Optional[str] = None
    running: bool = False


class RuntimeMetricsResponse(BaseModel):
    running: List[str]
    jobs: List[RuntimeMetricResponse]


class JobHistoryResponse(BaseModel):
    total: int
    limit: int
    offset: int
    items: List[JobRunResponse]


class ClearHistoryResponse(BaseModel):
    removed: int


def _job_response(job: Job, running: bool) -> JobResponse:
    return JobResponse(
        id=job.id,
        name=job.name,
        schedule=job.schedule,
        interval_seconds=job.interval_seconds,
        enabled=job.enabled,
        run_on_start=job.run_on_start,
        description=job.description,
        next_run_at=job.next_run_at,
        last_run_at=job.last_run_at,
        last_error=job.last_error,
        failure_count=job.failure_count or 0,
        running=running,
    )


def _run_response(run) -> JobRunResponse:
    """Accepts either a JobRun row or a JobRunRecord."""
    return JobRunResponse(
        id=run.id,
        job_name=run.job_name,
        trigger=run.trigger.value,
        status=run.status.value,
        started_at=run.started_at,
        finished_at=run.finished_at,
        duration_ms=run.duration_ms,
        error=run.error,
    )


# Routes
@router.get("", response_model=JobsListResponse)
def list_jobs(scheduler: JobScheduler = Depends(get_job_scheduler)) -> JobsListResponse:
    """List every persisted job, flagging the ones currently executing."""
    running = scheduler.get_running_job_names()
    jobs = [_job_response(job, job.name in running) for job in scheduler.list_jobs()]
    return JobsListResponse(total=len(jobs), jobs=jobs)


@router.get("/metrics", response_model=RuntimeMetricsResponse)
def get_job_metrics(scheduler: JobScheduler = Depends(get_job_scheduler)) -> RuntimeMetricsResponse:
    """
    Runtime statistics since process start.

    Counters are kept in memory and reset when the process restarts.
    """
    running = scheduler.get_running_job_names()
    metrics = [
        RuntimeMetricResponse(
            name=m.name,
            total_runs=m.total_runs,
            success_runs=m.success_runs,
            failed_runs=m.failed_runs,
            success_rate=m.success_rate,
            failure_rate=m.failure_rate,
            avg_duration_ms=m.avg_duration_ms,
            last_duration_ms=m.last_duration_ms,
            last_started_at=m.last_started_at,
            last_finished_at=m.last_finished_at,
            last_result=m.last_result,
            last_error=m.last_error,
            running=m.name in running,
        )
        for m in scheduler.get_job_runtime_metrics()
    ]
    return RuntimeMetricsResponse(running=sorted(running), jobs=metrics)


@router.get("/history", response_model=JobHistoryResponse)
def list_job_history(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    job_name: Optional[str] = Query(None, description="Only runs of this job"),
    scheduler: JobScheduler = Depends(get_job_scheduler),
) -> JobHistoryResponse:
    page = scheduler.list_job_history(limit=limit, offset=offset, job_name=job_name)
    return JobHistoryResponse(
        total=page.total,
        limit=limit,
        offset=offset,
        items=[_run_response(run) for run in page.items],
    )


@router.delete("/history", response_model=ClearHistoryResponse)
def clear_job_history(
    job_name: Optional[str] = Query(None, description="Only clear runs of this job"),
    scheduler: JobScheduler = Depends(get_job_scheduler),
) -> ClearHistoryResponse:
    removed = scheduler.clear_job_history(job_name)
    return ClearHistoryResponse(removed=removed)


@router.patch("/{job_id}/schedule", response_model=JobResponse)
def update_job_schedule(
    job_id: int,
    body: ScheduleUpdateRequest,
    scheduler: JobScheduler = Depends(get_job_scheduler),
) -> JobResponse:
    """
    Replace a job's schedule.

    Args:
        job_id: Job primary key
        body: New schedule and optional interval

    Returns:
        Updated job; 400 if the schedule is invalid (nothing is stored)
    """
    logger.info(f"PATCH /admin/jobs/{job_id}/schedule (schedule={body.schedule!r})")
    job = scheduler.update_job_schedule(job_id, body.schedule, body.interval_seconds)
    return _job_response(job, job.name in scheduler.get_running_job_names())


@router.patch("/{job_id}/enabled", response_model=JobResponse)
def update_job_enabled(
    job_id: int,
    body: EnabledUpdateRequest,
    scheduler: JobScheduler = Depends(get_job_scheduler),
) -> JobResponse:
    logger.info(f"PATCH /admin/jobs/{job_id}/enabled (enabled={body.enabled})")
    job = scheduler.update_job_enabled(job_id, body.enabled)
    return _job_response(job, job.name in scheduler.get_running_job_names())


@router.post("/{name}/run", response_model=RunNowResponse)
async def run_job_now(name: str, scheduler: JobScheduler = Depends(get_job_scheduler)) -> RunNowResponse:
    """
    Execute a job immediately and wait for it to finish.

    A failed run still answers 200 with status "failed" in the run record;
    409 means another execution of the same job is in flight.
    """
    logger.info(f"POST /admin/jobs/{name}/run")
    result = await scheduler.run_job_now(name)
    if result.status == RunTriggerStatus.ALREADY_RUNNING:
        raise ConflictException(f"Job {name} is already running", details={"job": name})

    record: JobRunRecord = result.run
    return RunNowResponse(
        status=result.status.value,
        run=_run_response(record),
        next_run_at=record.next_run_at,
    )
