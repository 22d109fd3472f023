"""
Diskwright session management.

A session owns the configuration, the toolchain and the job runner for one
CLI invocation, and keeps a report of every job it ran.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from diskwright.core.config import Configuration, load_config
from diskwright.core.job import Job, JobResult, JobRunner
from diskwright.core.logging import bind_session, get_logger, setup_logging, unbind_session
from diskwright.platform import Toolchain, build_toolchain

logger = get_logger(__name__)


@dataclass
class SessionReport:
    """Record of the jobs run in a session."""

    session_id: str
    started_at: datetime
    ended_at: datetime | None = None
    dry_run: bool = False
    operations: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    dry_run_actions: list[str] = field(default_factory=list)
    config_snapshot: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_seconds": (
                (self.ended_at - self.started_at).total_seconds()
                if self.ended_at
                else None
            ),
            "dry_run": self.dry_run,
            "operations": self.operations,
            "errors": self.errors,
            "warnings": self.warnings,
            "dry_run_actions": self.dry_run_actions,
            "config_snapshot": self.config_snapshot,
            "summary": {
                "total_operations": len(self.operations),
                "successful_operations": sum(
                    1 for op in self.operations if op.get("success", False)
                ),
                "failed_operations": sum(
                    1 for op in self.operations if not op.get("success", True)
                ),
                "total_errors": len(self.errors),
                "total_warnings": len(self.warnings),
            },
        }

    def save(self, path: Path) -> None:
        """Save report to file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2, default=str)


class Session:
    """
    Runs Diskwright jobs against one configuration and toolchain.

    The toolchain is built lazily so read-only commands such as ``plan``
    never construct a device binder.
    """

    def __init__(
        self,
        config: Configuration | None = None,
        session_id: str | None = None,
        toolchain: Toolchain | None = None,
    ) -> None:
        self.id = session_id or str(uuid.uuid4())
        self.config = config or load_config()
        self.started_at = datetime.now()

        setup_logging(self.config.logging, verbose=self.config.verbose)
        bind_session(self.id, self.config.dry_run)

        self.job_runner = JobRunner()
        self._toolchain = toolchain
        self._report = SessionReport(
            session_id=self.id,
            started_at=self.started_at,
            dry_run=self.config.dry_run,
            config_snapshot=self.config.model_dump(mode="json"),
        )

        logger.info("Session started")

    @property
    def toolchain(self) -> Toolchain:
        """Get the toolchain for this session's configuration."""
        if self._toolchain is None:
            self._toolchain = build_toolchain(self.config)
        return self._toolchain

    def run_job(self, job: Job[Any]) -> JobResult[Any]:
        """Run a job synchronously and track it in the session report."""
        set_session = getattr(job, "set_session", None)
        if set_session is not None:
            set_session(self)

        logger.info(
            "Executing job",
            job_id=job.id,
            job_name=job.name,
            plan=job.get_plan(),
        )
        result = self.job_runner.run_sync(job)
        self._track_operation(job, result)
        return result

    def _track_operation(self, job: Job[Any], result: JobResult[Any]) -> None:
        operation_record: dict[str, Any] = {
            "timestamp": datetime.now().isoformat(),
            "job_id": job.id,
            "job_name": job.name,
            "job_description": job.description,
            "status": job.status.value,
            "success": result.success,
            "duration_seconds": result.duration_seconds,
        }

        if result.error:
            operation_record["error"] = result.error
            self._report.errors.append(
                {
                    "timestamp": datetime.now().isoformat(),
                    "job_id": job.id,
                    "error_type": result.error_type,
                    "error": result.error,
                }
            )

        if result.warnings:
            operation_record["warnings"] = result.warnings
            self._report.warnings.extend(result.warnings)

        self._report.operations.append(operation_record)

        if result.success:
            logger.info("Operation completed", job_id=job.id, job_name=job.name)
        else:
            logger.error(
                "Operation failed",
                job_id=job.id,
                job_name=job.name,
                error=result.error,
            )

    def get_report(self) -> SessionReport:
        """Get the current session report."""
        if self._toolchain is not None and self._toolchain.dry_run is not None:
            self._report.dry_run_actions = list(self._toolchain.dry_run.actions)
        return self._report

    def close(self, report_path: Path | None = None) -> Path | None:
        """Close the session, saving the report when a path is given."""
        report = self.get_report()
        report.ended_at = datetime.now()

        if report_path is not None:
            report.save(report_path)

        logger.info(
            "Session closed",
            duration_seconds=(report.ended_at - self.started_at).total_seconds(),
            report_path=str(report_path) if report_path else None,
        )
        unbind_session()
        return report_path

    def __enter__(self) -> Session:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
