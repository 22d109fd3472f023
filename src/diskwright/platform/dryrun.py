"""
Dry-run collaborators.

Stand-ins that log and record what would be done instead of touching any
device. Read-only probes are delegated to the real implementations when the
path exists.
"""

from __future__ import annotations

from pathlib import Path

from diskwright.core.logging import get_logger
from diskwright.core.models import (
    CloneMethod,
    DiskGeometry,
    DiskImageSpec,
    FileSystem,
    ImageFormat,
    PartitionPlacement,
    TableKind,
)
from diskwright.platform.base import (
    CommandResult,
    CopyTool,
    DeviceBinder,
    FilesystemChecker,
    FilesystemFormatter,
    FilesystemProbe,
    ImageCreator,
    PartitionTableApplier,
    RescueTool,
    SizeProbe,
)

logger = get_logger(__name__)

DRY_RUN_DEVICE = "/dev/dry-run0"


class DryRunRecorder:
    """Collects the actions a dry run would have performed."""

    def __init__(self) -> None:
        self.actions: list[str] = []

    def record(self, action: str, **context: object) -> None:
        self.actions.append(action)
        logger.info("Dry run", action=action, **context)


class DryRunImageCreator(ImageCreator):
    def __init__(self, recorder: DryRunRecorder) -> None:
        self.recorder = recorder

    def create(self, spec: DiskImageSpec) -> None:
        self.recorder.record(
            f"Would create {spec.image_format.value} image {spec.path} "
            f"({spec.size_bytes} bytes, preallocation={spec.preallocation.value})"
        )


class DryRunDeviceBinder(DeviceBinder):
    def __init__(self, recorder: DryRunRecorder) -> None:
        self.recorder = recorder

    def attach(self, image_path: Path, image_format: ImageFormat) -> str:
        kind = "nbd" if image_format is ImageFormat.QCOW2 else "loop"
        self.recorder.record(f"Would attach {image_path} to a {kind} device")
        return DRY_RUN_DEVICE

    def detach(self, device_path: str) -> None:
        self.recorder.record(f"Would detach {device_path}")

    def wait_for_device(self, device_path: str, timeout: float) -> None:
        return None

    def settle(self, device_path: str) -> None:
        self.recorder.record(f"Would re-read partition table on {device_path}")


class DryRunTableApplier(PartitionTableApplier):
    def __init__(self, recorder: DryRunRecorder) -> None:
        self.recorder = recorder

    def create_table(self, device_path: str, table_kind: TableKind) -> None:
        self.recorder.record(f"Would create {table_kind.value} partition table on {device_path}")

    def create_partition(
        self, device_path: str, placement: PartitionPlacement, geometry: DiskGeometry
    ) -> None:
        self.recorder.record(
            f"Would create {placement.role.value} partition {placement.index} "
            f"at {placement.start_byte}-{placement.end_byte} on {device_path}"
        )


class DryRunFormatter(FilesystemFormatter):
    def __init__(self, recorder: DryRunRecorder) -> None:
        self.recorder = recorder

    def format(self, partition_path: str, filesystem: FileSystem) -> None:
        self.recorder.record(f"Would format {partition_path} as {filesystem.value}")


class DryRunCopyTool(CopyTool):
    """Reports every method as successful; availability comes from ``probe``."""

    def __init__(self, recorder: DryRunRecorder, probe: CopyTool | None = None) -> None:
        self.recorder = recorder
        self.probe = probe

    def is_available(self, method: CloneMethod) -> bool:
        return self.probe.is_available(method) if self.probe else True

    def copy(
        self, method: CloneMethod, source: str, target: str, block_size: int
    ) -> CommandResult:
        self.recorder.record(
            f"Would copy {source} to {target} with {method.value} (block size {block_size})"
        )
        return CommandResult(returncode=0, stdout="", stderr="", command=["dry-run", method.value])


class DryRunRescueTool(RescueTool):
    def __init__(self, recorder: DryRunRecorder) -> None:
        self.recorder = recorder

    def is_available(self) -> bool:
        return True

    def copy(self, source: str, target: str, log_path: Path, retries: int) -> CommandResult:
        self.recorder.record(f"Would rescue-copy {source} to {target} (mapfile {log_path})")
        return CommandResult(returncode=0, stdout="", stderr="", command=["dry-run", "rescue"])


class DryRunSizeProbe(SizeProbe):
    """Real sizes for existing paths, 0 otherwise."""

    def __init__(self, probe: SizeProbe) -> None:
        self.probe = probe

    def size_bytes(self, path: str) -> int:
        if not Path(path).exists():
            return 0
        return self.probe.size_bytes(path)


class DryRunFilesystemProbe(FilesystemProbe):
    def __init__(self, probe: FilesystemProbe) -> None:
        self.probe = probe

    def detect(self, path: str) -> FileSystem:
        if not Path(path).exists():
            return FileSystem.NONE
        return self.probe.detect(path)

    def uuid(self, path: str) -> str | None:
        if not Path(path).exists():
            return None
        return self.probe.uuid(path)


class DryRunFilesystemChecker(FilesystemChecker):
    """Never runs a checker; nothing was written."""

    def check(self, path: str, filesystem: FileSystem) -> CommandResult | None:
        return None
