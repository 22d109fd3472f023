"""
Diskwright platform interfaces.

Defines the collaborators the core calls into. Every device-touching step
goes through one of these so the planner and clone engine can be exercised
without real block devices.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from diskwright.core.models import (
        CloneMethod,
        DiskGeometry,
        DiskImageSpec,
        FileSystem,
        ImageFormat,
        PartitionPlacement,
        TableKind,
        TableSnapshot,
    )


class CommandResult:
    """Result of a command execution."""

    def __init__(
        self,
        returncode: int,
        stdout: str,
        stderr: str,
        command: str | list[str],
        duration_seconds: float = 0.0,
    ) -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.command = command
        self.duration_seconds = duration_seconds

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def command_line(self) -> str:
        return self.command if isinstance(self.command, str) else " ".join(self.command)

    def stderr_tail(self, lines: int = 3) -> str:
        """Last few stderr lines, for diagnostics."""
        return "\n".join(self.stderr.strip().splitlines()[-lines:])

    def __repr__(self) -> str:
        return f"CommandResult(rc={self.returncode}, cmd='{self.command_line[:50]}...')"


class ImageCreator(ABC):
    """Creates disk image files."""

    @abstractmethod
    def create(self, spec: DiskImageSpec) -> None:
        """Create the image file described by ``spec``."""


class DeviceBinder(ABC):
    """Exposes a disk image as a block device."""

    @abstractmethod
    def attach(self, image_path: Path, image_format: ImageFormat) -> str:
        """Bind the image to a free device slot and return its path."""

    @abstractmethod
    def detach(self, device_path: str) -> None:
        """Release the device. Detaching an unbound device is not an error."""

    @abstractmethod
    def wait_for_device(self, device_path: str, timeout: float) -> None:
        """Block until ``device_path`` exists or raise ``DeviceTimeoutError``."""

    @abstractmethod
    def settle(self, device_path: str) -> None:
        """Make the kernel re-read the partition table and wait for udev."""

    @staticmethod
    def partition_path(device_path: str, number: int) -> str:
        """Device node of partition ``number`` on ``device_path``."""
        name = Path(device_path).name
        if name[-1:].isdigit() or name.startswith(("loop", "nbd", "nvme", "mmcblk")):
            return f"{device_path}p{number}"
        return f"{device_path}{number}"


class PartitionTableApplier(ABC):
    """Writes partition tables and entries."""

    @abstractmethod
    def create_table(self, device_path: str, table_kind: TableKind) -> None:
        """Write an empty partition table."""

    @abstractmethod
    def create_partition(
        self, device_path: str, placement: PartitionPlacement, geometry: DiskGeometry
    ) -> None:
        """Create a single partition at the planned range."""


class FilesystemFormatter(ABC):
    """Creates file systems on partitions."""

    @abstractmethod
    def format(self, partition_path: str, filesystem: FileSystem) -> None:
        """Format ``partition_path``."""


class CopyTool(ABC):
    """Block or filesystem-aware copy tools."""

    def prepare(self, source: str, target: str) -> None:
        """Flush pending writes before a copy. No-op by default."""

    @abstractmethod
    def is_available(self, method: CloneMethod) -> bool:
        """Whether the tool backing ``method`` is installed."""

    @abstractmethod
    def copy(
        self, method: CloneMethod, source: str, target: str, block_size: int
    ) -> CommandResult:
        """Copy ``source`` onto ``target``. Success is the tool's exit status."""


class RescueTool(ABC):
    """Sector-tolerant copier for damaged sources."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the rescue copier is installed."""

    @abstractmethod
    def copy(self, source: str, target: str, log_path: Path, retries: int) -> CommandResult:
        """Copy, retrying bad regions ``retries`` times and recording them in ``log_path``."""


class SizeProbe(ABC):
    """Reports the size of devices and files."""

    @abstractmethod
    def size_bytes(self, path: str) -> int:
        """Size in bytes. Raises ``ToolError`` when it cannot be determined."""


class FilesystemProbe(ABC):
    """Detects file systems on devices."""

    @abstractmethod
    def detect(self, path: str) -> FileSystem:
        """Filesystem on ``path``, or ``FileSystem.NONE`` when unknown."""

    @abstractmethod
    def uuid(self, path: str) -> str | None:
        """Filesystem UUID on ``path``, or ``None`` when it has none."""


class FilesystemChecker(ABC):
    """Read-only file system consistency checks."""

    @abstractmethod
    def check(self, path: str, filesystem: FileSystem) -> CommandResult | None:
        """Run the checker for ``filesystem``. ``None`` means no checker exists."""


class PartitionTableReader(ABC):
    """Reads existing partition tables."""

    @abstractmethod
    def read(self, device_path: str) -> TableSnapshot:
        """Snapshot of the table on ``device_path``."""


class ImageProbe(ABC):
    """Reads image file metadata."""

    @abstractmethod
    def info(self, image_path: Path) -> tuple[ImageFormat, int]:
        """Image format and virtual size in bytes."""
