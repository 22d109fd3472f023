"""
Diskwright clone executor.

Runs a copy through a small state machine:

    IDLE -> ATTEMPTING(n) -> SUCCEEDED
                          -> DEGRADING -> ATTEMPTING(n + 1)
                          -> RESCUE_ATTEMPTING -> SUCCEEDED | FAILED

Each attempt walks the method chain in priority order at one block size.
When every method fails the block size steps down the configured schedule
and the next attempt starts after a fixed delay. Once attempts are used up
a sector-tolerant rescue copy is tried if one is available. Cancellation is
only observed between attempts, never while a tool is running.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from pathlib import Path

from diskwright.core.config import CloneConfig
from diskwright.core.job import JobContext
from diskwright.core.logging import get_logger
from diskwright.core.models import CloneJob, CloneMethod, CloneResult, CloneState
from diskwright.platform.base import CommandResult, CopyTool, RescueTool

logger = get_logger(__name__)


class CloneExecutor:
    """Executes clone jobs with retry, degradation and rescue."""

    def __init__(
        self,
        copy_tool: CopyTool,
        rescue_tool: RescueTool | None = None,
        config: CloneConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.copy_tool = copy_tool
        self.rescue_tool = rescue_tool
        self.config = config or CloneConfig()
        self._sleep = sleep
        self.state = CloneState.IDLE

    def block_sizes(self, initial: int) -> list[int]:
        """Block size for each attempt, starting at ``initial``."""
        return [initial] + [size for size in self.config.block_size_schedule if size < initial]

    def execute(
        self,
        job: CloneJob,
        methods: Sequence[CloneMethod] = (CloneMethod.RAW,),
        context: JobContext | None = None,
    ) -> CloneResult:
        methods = tuple(methods) or (CloneMethod.RAW,)
        sizes = self.block_sizes(job.block_size)
        diagnostics: list[str] = []

        self.state = CloneState.IDLE
        self.copy_tool.prepare(job.source_path, job.target_path)

        attempt = 1
        while True:
            job.attempt = attempt
            block_size = sizes[min(attempt - 1, len(sizes) - 1)]
            self._transition(CloneState.ATTEMPTING, job, block_size=block_size)
            if context:
                context.update_progress(
                    current=attempt,
                    total=job.max_attempts,
                    stage="copy",
                    message=f"Attempt {attempt}/{job.max_attempts}",
                )

            for method in methods:
                logger.info(
                    "Running copy method",
                    attempt=attempt,
                    method=method.value,
                    block_size=block_size,
                    source=job.source_path,
                    target=job.target_path,
                )
                result = self.copy_tool.copy(method, job.source_path, job.target_path, block_size)
                if result.success:
                    self._transition(
                        CloneState.SUCCEEDED, job, method=method, block_size=block_size
                    )
                    return CloneResult(
                        succeeded=True,
                        method_used=method,
                        attempt_count=attempt,
                        diagnostics=diagnostics,
                    )
                diagnostics.append(self._diagnostic(attempt, method, block_size, result))
                logger.warning(
                    "Copy method failed",
                    attempt=attempt,
                    method=method.value,
                    block_size=block_size,
                    returncode=result.returncode,
                )

            if attempt >= job.max_attempts:
                break

            next_size = sizes[min(attempt, len(sizes) - 1)]
            self._transition(CloneState.DEGRADING, job, block_size=next_size)
            self._sleep(self.config.retry_delay_seconds)
            if context and context.is_cancelled:
                return self._cancelled(job, attempt, diagnostics)
            attempt += 1

        if context and context.is_cancelled:
            return self._cancelled(job, attempt, diagnostics)

        return self._rescue(job, attempt, diagnostics)

    def _rescue(self, job: CloneJob, attempt: int, diagnostics: list[str]) -> CloneResult:
        if (
            not self.config.rescue_enabled
            or self.rescue_tool is None
            or not self.rescue_tool.is_available()
        ):
            logger.info("No rescue copier available", attempt=attempt)
            self._transition(CloneState.FAILED, job)
            return CloneResult(succeeded=False, attempt_count=attempt, diagnostics=diagnostics)

        log_path = self.rescue_log_path(job)
        self._transition(CloneState.RESCUE_ATTEMPTING, job, method=CloneMethod.RESCUE)
        result = self.rescue_tool.copy(
            job.source_path, job.target_path, log_path, self.config.rescue_retries
        )
        if result.success:
            self._transition(CloneState.SUCCEEDED, job, method=CloneMethod.RESCUE)
            return CloneResult(
                succeeded=True,
                method_used=CloneMethod.RESCUE,
                attempt_count=attempt,
                diagnostics=diagnostics,
            )

        diagnostics.append(self._diagnostic(attempt, CloneMethod.RESCUE, None, result))
        self._transition(CloneState.FAILED, job)
        return CloneResult(succeeded=False, attempt_count=attempt, diagnostics=diagnostics)

    def rescue_log_path(self, job: CloneJob) -> Path:
        source = Path(job.source_path).name or "source"
        target = Path(job.target_path).name or "target"
        return self.config.work_directory / f"rescue-{source}-{target}.map"

    def _cancelled(self, job: CloneJob, attempt: int, diagnostics: list[str]) -> CloneResult:
        logger.warning("Clone cancelled", attempt=attempt, source=job.source_path)
        self._transition(CloneState.FAILED, job)
        return CloneResult(
            succeeded=False,
            attempt_count=attempt,
            diagnostics=diagnostics + ["cancelled"],
            cancelled=True,
        )

    def _transition(
        self,
        state: CloneState,
        job: CloneJob,
        method: CloneMethod | None = None,
        block_size: int | None = None,
    ) -> None:
        previous = self.state
        self.state = state
        log = logger.warning if state is CloneState.FAILED else logger.info
        log(
            "Clone state changed",
            previous=previous.name,
            state=state.name,
            attempt=job.attempt,
            max_attempts=job.max_attempts,
            method=method.value if method else None,
            block_size=block_size,
            source=job.source_path,
            target=job.target_path,
        )

    @staticmethod
    def _diagnostic(
        attempt: int, method: CloneMethod, block_size: int | None, result: CommandResult
    ) -> str:
        text = f"attempt {attempt}: {method.value}"
        if block_size is not None:
            text += f" (bs={block_size})"
        text += f" exited with {result.returncode}"
        tail = result.stderr_tail(1)
        if tail:
            text += f": {tail}"
        return text
