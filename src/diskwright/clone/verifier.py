"""
Diskwright clone verification.

Compares source and target sizes and filesystem UUIDs, and runs a read-only
consistency check on the target. The result is advisory: a failed
verification is reported but the copy is never rolled back.
"""

from __future__ import annotations

from diskwright.core.errors import ToolError
from diskwright.core.logging import get_logger
from diskwright.core.models import CheckStatus, FileSystem, VerificationReport
from diskwright.core.sizes import MIB
from diskwright.platform.base import FilesystemChecker, FilesystemProbe, SizeProbe

logger = get_logger(__name__)


class CloneVerifier:
    """Post-copy size and filesystem checks."""

    def __init__(
        self,
        size_probe: SizeProbe,
        fs_probe: FilesystemProbe | None = None,
        fs_checker: FilesystemChecker | None = None,
        size_tolerance: int = MIB,
    ) -> None:
        self.size_probe = size_probe
        self.fs_probe = fs_probe
        self.fs_checker = fs_checker
        self.size_tolerance = size_tolerance

    def verify(
        self, source: str, target: str, filesystem: FileSystem | None = None
    ) -> VerificationReport:
        report = VerificationReport(passed=True)
        self._check_size(source, target, report)
        self._check_uuid(source, target, report)
        self._check_filesystem(target, filesystem, report)

        logger.info(
            "Clone verification finished",
            source=source,
            target=target,
            passed=report.passed,
            size_check=report.size_check.value,
            filesystem_check=report.filesystem_check.value,
            uuid_check=report.uuid_check.value,
        )
        return report

    def _check_size(self, source: str, target: str, report: VerificationReport) -> None:
        try:
            report.source_bytes = self.size_probe.size_bytes(source)
            report.target_bytes = self.size_probe.size_bytes(target)
        except ToolError as e:
            report.size_check = CheckStatus.UNKNOWN
            report.messages.append(f"Could not determine sizes: {e}")
            return

        difference = report.size_difference or 0
        if difference == 0:
            report.size_check = CheckStatus.PASSED
            report.messages.append("Size matches exactly")
        elif difference <= self.size_tolerance:
            report.size_check = CheckStatus.PASSED
            report.messages.append(f"Size matches within tolerance ({difference} bytes)")
        else:
            report.size_check = CheckStatus.MISMATCH
            report.passed = False
            report.messages.append(
                f"Size mismatch: source={report.source_bytes}, target={report.target_bytes}"
            )

    def _check_uuid(self, source: str, target: str, report: VerificationReport) -> None:
        if self.fs_probe is None:
            return
        report.source_uuid = self.fs_probe.uuid(source)
        if report.source_uuid is None:
            return
        report.target_uuid = self.fs_probe.uuid(target)

        if report.target_uuid is None:
            report.uuid_check = CheckStatus.UNKNOWN
            report.messages.append("Could not read the target filesystem UUID")
        elif report.target_uuid == report.source_uuid:
            report.uuid_check = CheckStatus.PASSED
            report.messages.append(f"Filesystem UUID preserved ({report.source_uuid})")
        else:
            report.uuid_check = CheckStatus.MISMATCH
            report.passed = False
            report.messages.append(
                f"Filesystem UUID changed: source={report.source_uuid}, "
                f"target={report.target_uuid}"
            )

    def _check_filesystem(
        self, target: str, filesystem: FileSystem | None, report: VerificationReport
    ) -> None:
        if filesystem is None or filesystem is FileSystem.NONE:
            filesystem = self.fs_probe.detect(target) if self.fs_probe else FileSystem.NONE
        report.filesystem = filesystem

        outcome = self.fs_checker.check(target, filesystem) if self.fs_checker else None
        if outcome is None:
            report.filesystem_check = CheckStatus.SKIPPED
            report.messages.append(f"No consistency check for {filesystem.value}")
            return

        if outcome.success:
            report.filesystem_check = CheckStatus.PASSED
            report.messages.append(f"{filesystem.value} filesystem verified")
        else:
            report.filesystem_check = CheckStatus.FAILED
            report.passed = False
            message = f"{filesystem.value} filesystem needs repair"
            tail = outcome.stderr_tail(1)
            if tail:
                message += f": {tail}"
            report.messages.append(message)
