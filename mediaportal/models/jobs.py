"""
Job models - scheduler bookkeeping for recurring background tasks.
"""
from datetime import datetime
from typing import List, Optional
import enum

from sqlalchemy import String, Integer, Boolean, Text, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mediaportal.lib.db import Base, UTCDateTime, utc_now


class JobRunStatus(str, enum.Enum):
    """Outcome of one job execution."""
    SUCCESS = "success"
    FAILED = "failed"


class JobTrigger(str, enum.Enum):
    """What started a job execution."""
    SCHEDULE = "schedule"
    MANUAL = "manual"
    STARTUP = "startup"


class Job(Base):
    """
    Job entity - one row per registered job name.

    `schedule` is a 5/6-field cron expression or the interval marker, in which
    case `interval_seconds` drives the cadence. `next_run_at` is NULL while
    the job is disabled or not yet initialised.
    """
    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    schedule: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="",
        comment="Cron expression, or empty for interval scheduling",
    )
    interval_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=3600)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    run_on_start: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    next_run_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    failure_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Consecutive failures; reset by a successful run",
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    runs: Mapped[List["JobRun"]] = relationship(
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Job(id={self.id}, name={self.name}, enabled={self.enabled})>"


class JobRun(Base):
    """
    JobRun entity - append-only history of executions.
    """
    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    job_name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    trigger: Mapped[JobTrigger] = mapped_column(
        SQLEnum(JobTrigger, name="job_trigger"),
        nullable=False,
        default=JobTrigger.SCHEDULE,
    )
    status: Mapped[JobRunStatus] = mapped_column(
        SQLEnum(JobRunStatus, name="job_run_status"),
        nullable=False,
        index=True,
    )
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    finished_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    job: Mapped["Job"] = relationship(back_populates="runs")

    def __repr__(self) -> str:
        return f"<JobRun(id={self.id}, job={self.job_name}, status={self.status})>"
