"""
Diskwright job runner.

Provisioning and clone jobs run synchronously, one at a time. A running job
may be cancelled from a signal handler; cancellation is cooperative and is
only observed where the job calls :meth:`JobContext.check_cancelled`, which
for clones is between copy attempts.
"""

from __future__ import annotations

import threading
import traceback
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from diskwright.core.logging import get_logger

T = TypeVar("T")
logger = get_logger(__name__)


class JobStatus(Enum):
    PENDING = "pending"
    REJECTED = "rejected"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class JobProgress:
    """Step counter reported by a running job.

    Provisioning counts completed steps, clones count copy attempts and
    batches count finished pairs.
    """

    current: int = 0
    total: int = 100
    message: str = ""
    stage: str = ""

    @property
    def percentage(self) -> float:
        if self.total == 0:
            return 0.0
        return min(100.0, (self.current / self.total) * 100)


@dataclass
class JobResult(Generic[T]):
    """Outcome of :meth:`JobRunner.run_sync`."""

    success: bool
    data: T | None = None
    error: str | None = None
    exception: BaseException | None = None
    error_traceback: str | None = None
    validation_errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    start_time: datetime | None = None
    end_time: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return None

    @property
    def rejected(self) -> bool:
        """True when the job never ran because its parameters were invalid."""
        return bool(self.validation_errors)

    @property
    def cancelled(self) -> bool:
        return isinstance(self.exception, JobCancelledException)

    @property
    def error_type(self) -> str | None:
        if self.exception is not None:
            return type(self.exception).__name__
        return "ValidationError" if self.rejected else None


class JobCancelledException(Exception):
    """Raised inside a job once cancellation was requested."""


class JobContext:
    """Cancellation flag, progress and warnings shared with a running job."""

    def __init__(self) -> None:
        self._cancelled = threading.Event()
        self._progress = JobProgress()
        self._progress_callbacks: list[Callable[[JobProgress], None]] = []
        self._lock = threading.Lock()
        self._warnings: list[str] = []

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Request cancellation. Safe to call from a signal handler."""
        self._cancelled.set()

    def check_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise JobCancelledException("Job was cancelled")

    def update_progress(
        self,
        current: int | None = None,
        total: int | None = None,
        message: str | None = None,
        stage: str | None = None,
    ) -> None:
        with self._lock:
            if current is not None:
                self._progress.current = current
            if total is not None:
                self._progress.total = total
            if message is not None:
                self._progress.message = message
            if stage is not None:
                self._progress.stage = stage
            snapshot = self._snapshot()

        # callback errors are logged, never raised into the job
        for callback in self._progress_callbacks:
            try:
                callback(snapshot)
            except Exception as e:
                logger.warning("Progress callback error", error=str(e))

    def add_progress_callback(self, callback: Callable[[JobProgress], None]) -> None:
        self._progress_callbacks.append(callback)

    def get_progress(self) -> JobProgress:
        with self._lock:
            return self._snapshot()

    def _snapshot(self) -> JobProgress:
        return JobProgress(
            current=self._progress.current,
            total=self._progress.total,
            message=self._progress.message,
            stage=self._progress.stage,
        )

    def add_warning(self, warning: str) -> None:
        self._warnings.append(warning)

    def get_warnings(self) -> list[str]:
        return self._warnings.copy()


class Job(ABC, Generic[T]):
    """Base class for Diskwright jobs."""

    def __init__(self, name: str, description: str) -> None:
        self.id = str(uuid.uuid4())
        self.name = name
        self.description = description
        self.status = JobStatus.PENDING
        self.context = JobContext()
        self.result: JobResult[T] | None = None
        self.started_at: datetime | None = None
        self.completed_at: datetime | None = None

    @abstractmethod
    def execute(self, context: JobContext) -> T:
        """Do the work. Raising marks the job failed."""

    @abstractmethod
    def get_plan(self) -> str:
        """Human-readable description of what ``execute`` will change."""

    def validate(self) -> list[str]:
        """
        Check parameters before anything is touched.

        Returns a list of problems; a non-empty list rejects the job.
        """
        return []


class JobRunner:
    """Runs jobs synchronously and remembers the ones it ran."""

    def __init__(self) -> None:
        self._jobs: dict[str, Job[Any]] = {}
        self.current: Job[Any] | None = None

    def run_sync(self, job: Job[T]) -> JobResult[T]:
        self._jobs[job.id] = job
        logger.info("Job submitted", job_id=job.id, job_name=job.name)

        errors = job.validate()
        if errors:
            now = datetime.now()
            job.status = JobStatus.REJECTED
            job.result = JobResult(
                success=False,
                error="Validation failed: " + "; ".join(errors),
                validation_errors=errors,
                start_time=now,
                end_time=now,
            )
            job.completed_at = now
            logger.warning("Job rejected", job_id=job.id, job_name=job.name, errors=errors)
            return job.result

        self.current = job
        try:
            job.result = self._execute(job)
        finally:
            self.current = None
            job.completed_at = datetime.now()
        return job.result

    def _execute(self, job: Job[T]) -> JobResult[T]:
        job.status = JobStatus.RUNNING
        job.started_at = datetime.now()
        logger.info("Job started", job_id=job.id, job_name=job.name)

        try:
            data = job.execute(job.context)
        except JobCancelledException as e:
            job.status = JobStatus.CANCELLED
            logger.info("Job cancelled", job_id=job.id, job_name=job.name)
            return JobResult(
                success=False,
                error="Job was cancelled",
                exception=e,
                warnings=job.context.get_warnings(),
                start_time=job.started_at,
                end_time=datetime.now(),
            )
        except Exception as e:
            job.status = JobStatus.FAILED
            logger.error(
                "Job failed",
                job_id=job.id,
                job_name=job.name,
                error_type=type(e).__name__,
                error=str(e),
            )
            return JobResult(
                success=False,
                error=str(e),
                exception=e,
                error_traceback=traceback.format_exc(),
                warnings=job.context.get_warnings(),
                start_time=job.started_at,
                end_time=datetime.now(),
            )

        job.status = JobStatus.COMPLETED
        result: JobResult[T] = JobResult(
            success=True,
            data=data,
            warnings=job.context.get_warnings(),
            start_time=job.started_at,
            end_time=datetime.now(),
        )
        logger.info(
            "Job completed",
            job_id=job.id,
            job_name=job.name,
            duration_seconds=result.duration_seconds,
        )
        return result

    def cancel(self, job_id: str | None = None) -> bool:
        """Request cancellation of the running job, or of ``job_id`` if it is running."""
        job = self.current if job_id is None else self._jobs.get(job_id)
        if job is None or job.status is not JobStatus.RUNNING:
            return False
        job.context.cancel()
        logger.info("Job cancellation requested", job_id=job.id)
        return True
