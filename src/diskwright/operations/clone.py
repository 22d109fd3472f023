"""
Diskwright partition cloning.

Ties the clone engine together for one source/target pair: detect the
source filesystem, choose the copy methods, run the executor and verify the
copy. Verification is advisory and never turns a successful copy into a
failure.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from diskwright.clone import CloneExecutor, CloneStrategySelector, CloneVerifier
from diskwright.core.config import Configuration
from diskwright.core.errors import DiskwrightError, PreflightFailedError, ToolError
from diskwright.core.job import Job, JobContext
from diskwright.core.logging import get_logger
from diskwright.core.models import CloneJob, CloneResult, FileSystem, VerificationReport
from diskwright.core.safety import PreflightReport, create_clone_preflight_checker
from diskwright.core.sizes import format_size
from diskwright.platform import Toolchain

if TYPE_CHECKING:
    from diskwright.core.session import Session

logger = get_logger(__name__)


@dataclass
class BatchCloneEntry:
    source: str
    target: str
    result: CloneResult | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.result is not None and self.result.succeeded

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "succeeded": self.succeeded,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
        }


@dataclass
class BatchCloneSummary:
    """Per-pair outcomes of a batch clone."""

    entries: list[BatchCloneEntry] = field(default_factory=list)
    cancelled: bool = False

    @property
    def succeeded(self) -> int:
        return sum(1 for e in self.entries if e.succeeded)

    @property
    def failed(self) -> int:
        return len(self.entries) - self.succeeded

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "entries": [e.to_dict() for e in self.entries],
        }


class PartitionCloner:
    """Clones partitions or whole images between block devices and files."""

    def __init__(
        self,
        toolchain: Toolchain,
        config: Configuration | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.toolchain = toolchain
        self.config = config or Configuration()
        self.selector = CloneStrategySelector(toolchain.copy_tool.is_available)
        self.executor = CloneExecutor(
            toolchain.copy_tool, toolchain.rescue_tool, self.config.clone, sleep=sleep
        )
        self.verifier = CloneVerifier(
            toolchain.size_probe,
            toolchain.fs_probe,
            toolchain.fs_checker,
            size_tolerance=self.config.clone.size_tolerance_bytes,
        )

    def detect_filesystem(self, source: str) -> FileSystem:
        filesystem = self.toolchain.fs_probe.detect(source)
        logger.info("Source filesystem detected", source=source, filesystem=filesystem.value)
        return filesystem

    def _probe_size(self, path: str) -> int:
        try:
            return self.toolchain.size_probe.size_bytes(path)
        except ToolError as e:
            logger.warning("Could not determine size", path=path, error=str(e))
            return 0

    def preflight(self, source: str, target: str) -> PreflightReport:
        """Run the standard clone checks for one pair."""
        context: dict[str, Any] = {
            "source_path": source,
            "target_path": target,
            "source_size": self._probe_size(source),
            "target_size": self._probe_size(target),
        }
        return create_clone_preflight_checker().run_checks(context)

    def check_preflight(self, source: str, target: str, context: JobContext | None = None) -> None:
        """Raise :class:`PreflightFailedError` when a check with error severity failed.

        In dry-run mode failures are reported as warnings instead, since the
        target usually does not exist yet.
        """
        report = self.preflight(source, target)
        if not report.has_errors and not report.has_warnings:
            return
        if report.has_errors and not self.config.dry_run:
            raise PreflightFailedError(
                [f"{c.name}: {c.message}" for c in report.failures if c.severity == "error"]
            )
        for check in report.failures:
            if context:
                context.add_warning(f"{check.name}: {check.message}")
            logger.warning("Preflight check failed", check=check.name, message=check.message)

    def clone(
        self,
        source: str,
        target: str,
        filesystem: FileSystem | None = None,
        block_size: int | None = None,
        max_attempts: int | None = None,
        verify: bool | None = None,
        context: JobContext | None = None,
    ) -> CloneResult:
        """Copy ``source`` onto ``target``.

        Copy failures are reported in the result, not raised.
        """
        if filesystem is None:
            filesystem = self.detect_filesystem(source)
        if verify is None:
            verify = self.config.clone.verify_after_clone

        job = CloneJob(
            source_path=source,
            target_path=target,
            filesystem=filesystem,
            block_size=block_size or self.config.clone.block_size_bytes,
            max_attempts=max_attempts or self.config.clone.max_attempts,
        )
        methods = self.selector.select(filesystem)
        result = self.executor.execute(job, methods, context)

        if result.succeeded and verify:
            if context:
                context.update_progress(stage="verify", message=f"Verifying {target}")
            result.verification = self.verify(source, target, filesystem)
            for warning in result.warnings:
                logger.warning("Verification warning", target=target, warning=warning)
                if context:
                    context.add_warning(warning)

        logger.info(
            "Clone finished",
            source=source,
            target=target,
            succeeded=result.succeeded,
            method=result.method_used.value if result.method_used else None,
            attempts=result.attempt_count,
        )
        return result

    def verify(
        self, source: str, target: str, filesystem: FileSystem | None = None
    ) -> VerificationReport:
        return self.verifier.verify(source, target, filesystem)

    def clone_batch(
        self,
        pairs: Sequence[tuple[str, str]],
        context: JobContext | None = None,
        **options: Any,
    ) -> BatchCloneSummary:
        """Clone each pair in order; one failing pair does not stop the rest."""
        summary = BatchCloneSummary()
        for position, (source, target) in enumerate(pairs, start=1):
            if context and context.is_cancelled:
                summary.cancelled = True
                logger.warning("Batch clone cancelled", completed=position - 1, total=len(pairs))
                break

            if context:
                context.update_progress(
                    current=position - 1,
                    total=len(pairs),
                    stage="batch",
                    message=f"Cloning {source} to {target}",
                )

            entry = BatchCloneEntry(source=source, target=target)
            try:
                self.check_preflight(source, target, context)
                entry.result = self.clone(source, target, context=context, **options)
            except DiskwrightError as e:
                entry.error = str(e)
                logger.error("Batch entry failed", source=source, target=target, error=str(e))
            else:
                if not entry.result.succeeded:
                    entry.error = "; ".join(entry.result.diagnostics[-1:]) or "clone failed"
            summary.entries.append(entry)

            if entry.result is not None and entry.result.cancelled:
                summary.cancelled = True
                break

        logger.info(
            "Batch clone finished",
            succeeded=summary.succeeded,
            failed=summary.failed,
            cancelled=summary.cancelled,
        )
        return summary


class ClonePartitionJob(Job[CloneResult]):
    """Job to clone a partition."""

    def __init__(
        self,
        source_path: str,
        target_path: str,
        filesystem: FileSystem | None = None,
        block_size: int | None = None,
        max_attempts: int | None = None,
        verify: bool = True,
    ) -> None:
        super().__init__(
            name="clone_partition",
            description=f"Clone {source_path} to {target_path}",
        )
        self.source_path = source_path
        self.target_path = target_path
        self.filesystem = filesystem
        self.block_size = block_size
        self.max_attempts = max_attempts
        self.verify = verify
        self._session: Session | None = None

    def set_session(self, session: Session) -> None:
        self._session = session

    def _cloner(self) -> PartitionCloner:
        if self._session is None:
            raise RuntimeError("Session not set")
        return PartitionCloner(self._session.toolchain, self._session.config)

    def execute(self, context: JobContext) -> CloneResult:
        cloner = self._cloner()
        cloner.check_preflight(self.source_path, self.target_path, context)

        context.update_progress(
            stage="clone",
            message=f"Cloning {self.source_path} to {self.target_path}...",
        )
        result = cloner.clone(
            self.source_path,
            self.target_path,
            filesystem=self.filesystem,
            block_size=self.block_size,
            max_attempts=self.max_attempts,
            verify=self.verify,
            context=context,
        )
        if result.cancelled:
            context.check_cancelled()
        return result

    def get_plan(self) -> str:
        block_size = format_size(self.block_size) if self.block_size else "default"
        return f"""Clone Partition
===============
Source: {self.source_path}
Target: {self.target_path}
Filesystem: {self.filesystem.value if self.filesystem else "(detect)"}
Block size: {block_size}
Verify: {"Yes" if self.verify else "No"}

Steps:
1. Detect source filesystem
2. Try filesystem-aware copy tools, then a raw block copy
3. Retry with smaller block sizes, then a rescue copy
{"4. Verify clone size and filesystem identity" if self.verify else ""}

⚠️ WARNING: This will DESTROY all data on {self.target_path}!"""

    def validate(self) -> list[str]:
        errors = []
        if not self.source_path:
            errors.append("Source path is required")
        if not self.target_path:
            errors.append("Target path is required")
        return errors


class BatchCloneJob(Job[BatchCloneSummary]):
    """Job to clone several source/target pairs in sequence."""

    def __init__(self, pairs: Sequence[tuple[str, str]], verify: bool = True) -> None:
        super().__init__(
            name="batch_clone",
            description=f"Clone {len(pairs)} partition pair(s)",
        )
        self.pairs = list(pairs)
        self.verify = verify
        self._session: Session | None = None

    def set_session(self, session: Session) -> None:
        self._session = session

    def execute(self, context: JobContext) -> BatchCloneSummary:
        if self._session is None:
            raise RuntimeError("Session not set")

        cloner = PartitionCloner(self._session.toolchain, self._session.config)
        summary = cloner.clone_batch(self.pairs, context=context, verify=self.verify)
        for entry in summary.entries:
            if entry.error:
                context.add_warning(f"{entry.source} -> {entry.target}: {entry.error}")
        return summary

    def get_plan(self) -> str:
        pairs = "\n".join(
            f"  {i}. {src} -> {dst}" for i, (src, dst) in enumerate(self.pairs, start=1)
        )
        return f"""Batch Clone
===========
Pairs:
{pairs}
Verify: {"Yes" if self.verify else "No"}

Each pair is cloned in turn; a failed pair does not stop the batch.

⚠️ WARNING: This will DESTROY all data on every target!"""

    def validate(self) -> list[str]:
        errors = []
        if not self.pairs:
            errors.append("At least one source/target pair is required")
        targets = [dst for _, dst in self.pairs]
        if len(set(targets)) != len(targets):
            errors.append("Each target may appear only once")
        return errors
