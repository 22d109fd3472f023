"""
Diskwright Core - Shared service layer.

Configuration, logging, error types, size parsing, manifests, jobs and
session management used by every Diskwright operation.
"""

from diskwright.core.config import Configuration
from diskwright.core.errors import DiskwrightError, ValidationError
from diskwright.core.job import Job, JobResult, JobRunner, JobStatus
from diskwright.core.logging import get_logger, setup_logging
from diskwright.core.session import Session

__all__ = [
    "Configuration",
    "DiskwrightError",
    "Job",
    "JobResult",
    "JobRunner",
    "JobStatus",
    "Session",
    "ValidationError",
    "get_logger",
    "setup_logging",
]
