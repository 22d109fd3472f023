"""
Diskwright data models.

Defines the core data structures for partition requests, layouts, disk
images and clone runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Any, Union


class FileSystem(Enum):
    """File system types."""

    EXT2 = "ext2"
    EXT3 = "ext3"
    EXT4 = "ext4"
    XFS = "xfs"
    BTRFS = "btrfs"
    ZFS = "zfs"
    FAT32 = "vfat"
    FAT16 = "fat16"
    NTFS = "ntfs"
    EXFAT = "exfat"
    SWAP = "swap"
    MSR = "msr"
    NONE = "none"

    @classmethod
    def from_string(cls, value: str | None) -> FileSystem:
        """Create FileSystem from a manifest or blkid value.

        Unknown values raise ``ValueError``; empty values map to NONE.
        """
        value_lower = (value or "").lower().strip()
        if not value_lower:
            return cls.NONE
        for fs in cls:
            if fs.value == value_lower or fs.name.lower() == value_lower:
                return fs
        aliases = {
            "fat": cls.FAT32,
            "fat32": cls.FAT32,
            "linux-swap": cls.SWAP,
            "linux-swap(v1)": cls.SWAP,
            "zfs_member": cls.ZFS,
            "unformatted": cls.NONE,
        }
        if value_lower in aliases:
            return aliases[value_lower]
        raise ValueError(f"Unknown filesystem: {value}")

    @property
    def parted_type(self) -> str | None:
        """File system type hint passed to ``parted mkpart``."""
        return {
            FileSystem.EXT2: "ext2",
            FileSystem.EXT3: "ext3",
            FileSystem.EXT4: "ext4",
            FileSystem.XFS: "xfs",
            FileSystem.BTRFS: "btrfs",
            FileSystem.FAT32: "fat32",
            FileSystem.FAT16: "fat16",
            FileSystem.NTFS: "ntfs",
            FileSystem.EXFAT: "ntfs",
            FileSystem.SWAP: "linux-swap",
        }.get(self)

    @property
    def gpt_name(self) -> str:
        """Partition name written to GPT entries."""
        if self is FileSystem.SWAP:
            return "Linux swap"
        if self is FileSystem.MSR:
            return "Microsoft reserved partition"
        if self in (FileSystem.FAT32, FileSystem.FAT16, FileSystem.NTFS, FileSystem.EXFAT):
            return "Microsoft basic data"
        if self is FileSystem.NONE:
            return "Unformatted"
        return "Linux filesystem"

    @property
    def is_formattable(self) -> bool:
        return self not in (FileSystem.NONE, FileSystem.MSR)


class TableKind(Enum):
    """Partition table style."""

    MBR = "mbr"
    GPT = "gpt"

    @property
    def parted_label(self) -> str:
        return "msdos" if self is TableKind.MBR else "gpt"

    @classmethod
    def from_string(cls, value: str) -> TableKind:
        value_lower = value.lower().strip()
        if value_lower in ("mbr", "msdos", "dos"):
            return cls.MBR
        if value_lower == "gpt":
            return cls.GPT
        raise ValueError(f"Unknown partition table type: {value}")


class MbrRole(Enum):
    """Partition role for MBR partitioning."""

    PRIMARY = "primary"
    EXTENDED = "extended"
    LOGICAL = "logical"


class ImageFormat(Enum):
    """Virtual disk image format."""

    RAW = "raw"
    QCOW2 = "qcow2"


class Preallocation(Enum):
    """Image preallocation mode."""

    OFF = "off"
    FULL = "full"


@dataclass(frozen=True)
class ExactBytes:
    """A fixed size in bytes."""

    value: int

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class Remaining:
    """Whatever space is left in the enclosing scope."""

    def __str__(self) -> str:
        return "remaining"


REMAINING = Remaining()

SizeSpec = Union[ExactBytes, Remaining]


@dataclass(frozen=True)
class PartitionRequest:
    """One entry of a partition manifest."""

    size: SizeSpec
    filesystem: FileSystem = FileSystem.NONE
    role: MbrRole = MbrRole.PRIMARY

    @property
    def is_remaining(self) -> bool:
        return isinstance(self.size, Remaining)

    @property
    def fixed_bytes(self) -> int:
        """Requested size, or 0 for a remaining-space request."""
        return self.size.value if isinstance(self.size, ExactBytes) else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "size": str(self.size),
            "filesystem": self.filesystem.value,
            "role": self.role.value,
        }


@dataclass(frozen=True)
class DiskGeometry:
    """Capacity and alignment of the disk being partitioned."""

    total_bytes: int
    table_kind: TableKind = TableKind.MBR
    sector_size: int = 512
    alignment: int = 1024 * 1024

    # GPT keeps a backup header plus 32 sectors of entries at the end of the disk
    GPT_BACKUP_SECTORS = 33

    @property
    def leading_reserved(self) -> int:
        return self.alignment

    @property
    def trailing_reserved(self) -> int:
        if self.table_kind is TableKind.MBR:
            return 0
        backup = self.GPT_BACKUP_SECTORS * self.sector_size
        return -(-backup // self.alignment) * self.alignment

    @property
    def usable_end(self) -> int:
        """First byte past the last allocatable byte."""
        return self.total_bytes - self.trailing_reserved

    @property
    def usable_bytes(self) -> int:
        return max(self.usable_end - self.leading_reserved, 0)


@dataclass(frozen=True)
class PartitionPlacement:
    """A concrete partition range. ``end_byte`` is exclusive."""

    index: int
    start_byte: int
    end_byte: int
    role: MbrRole
    filesystem: FileSystem

    @property
    def size_bytes(self) -> int:
        return self.end_byte - self.start_byte

    def contains(self, other: PartitionPlacement) -> bool:
        return self.start_byte < other.start_byte and other.end_byte <= self.end_byte

    def overlaps(self, other: PartitionPlacement) -> bool:
        return self.start_byte < other.end_byte and other.start_byte < self.end_byte

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "start_byte": self.start_byte,
            "end_byte": self.end_byte,
            "size_bytes": self.size_bytes,
            "role": self.role.value,
            "filesystem": self.filesystem.value,
        }


@dataclass(frozen=True)
class LayoutPlan:
    """Result of layout planning."""

    geometry: DiskGeometry
    requests: tuple[PartitionRequest, ...]
    placements: tuple[PartitionPlacement, ...]
    warnings: tuple[str, ...] = ()

    @property
    def extended(self) -> PartitionPlacement | None:
        for placement in self.placements:
            if placement.role is MbrRole.EXTENDED:
                return placement
        return None

    @property
    def logicals(self) -> tuple[PartitionPlacement, ...]:
        return tuple(p for p in self.placements if p.role is MbrRole.LOGICAL)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_bytes": self.geometry.total_bytes,
            "table": self.geometry.table_kind.value,
            "placements": [p.to_dict() for p in self.placements],
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class DiskImageSpec:
    """A disk image to create and partition."""

    path: Path
    size_bytes: int
    image_format: ImageFormat = ImageFormat.RAW
    table_kind: TableKind = TableKind.MBR
    partitions: tuple[PartitionRequest, ...] = ()
    preallocation: Preallocation = Preallocation.OFF


class CloneMethod(Enum):
    """Copy methods, from filesystem-aware to sector level."""

    E2IMAGE = "e2image"
    NTFSCLONE = "ntfsclone"
    BTRFS_SEND = "btrfs-send"
    ZFS_SEND = "zfs-send"
    RAW = "raw"
    RESCUE = "rescue"


class CloneState(Enum):
    """States of the clone executor."""

    IDLE = auto()
    ATTEMPTING = auto()
    DEGRADING = auto()
    RESCUE_ATTEMPTING = auto()
    SUCCEEDED = auto()
    FAILED = auto()


@dataclass
class CloneJob:
    """Work item for a single source/target pair."""

    source_path: str
    target_path: str
    filesystem: FileSystem = FileSystem.NONE
    block_size: int = 4 * 1024 * 1024
    attempt: int = 0
    max_attempts: int = 3


class CheckStatus(Enum):
    """Outcome of a single verification check."""

    PASSED = "passed"
    MISMATCH = "mismatch"
    FAILED = "failed"
    UNKNOWN = "unknown"
    SKIPPED = "skipped"


@dataclass
class VerificationReport:
    """Post-clone verification. Advisory only."""

    passed: bool
    source_bytes: int | None = None
    target_bytes: int | None = None
    size_check: CheckStatus = CheckStatus.UNKNOWN
    filesystem_check: CheckStatus = CheckStatus.SKIPPED
    filesystem: FileSystem = FileSystem.NONE
    source_uuid: str | None = None
    target_uuid: str | None = None
    uuid_check: CheckStatus = CheckStatus.SKIPPED
    messages: list[str] = field(default_factory=list)

    @property
    def size_difference(self) -> int | None:
        if self.source_bytes is None or self.target_bytes is None:
            return None
        return abs(self.source_bytes - self.target_bytes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "source_bytes": self.source_bytes,
            "target_bytes": self.target_bytes,
            "size_difference": self.size_difference,
            "size_check": self.size_check.value,
            "filesystem_check": self.filesystem_check.value,
            "filesystem": self.filesystem.value,
            "source_uuid": self.source_uuid,
            "target_uuid": self.target_uuid,
            "uuid_check": self.uuid_check.value,
            "messages": self.messages,
        }


@dataclass
class CloneResult:
    """Outcome of a clone run."""

    succeeded: bool
    method_used: CloneMethod | None = None
    attempt_count: int = 0
    diagnostics: list[str] = field(default_factory=list)
    cancelled: bool = False
    verification: VerificationReport | None = None

    @property
    def warnings(self) -> list[str]:
        if self.verification is None or self.verification.passed:
            return []
        return list(self.verification.messages)

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "method_used": self.method_used.value if self.method_used else None,
            "attempt_count": self.attempt_count,
            "diagnostics": self.diagnostics,
            "cancelled": self.cancelled,
            "verification": self.verification.to_dict() if self.verification else None,
        }


@dataclass(frozen=True)
class TableEntry:
    """A partition as read back from an existing table."""

    number: int
    start_byte: int
    end_byte: int
    filesystem: FileSystem
    role: MbrRole = MbrRole.PRIMARY
    name: str = ""

    @property
    def size_bytes(self) -> int:
        return self.end_byte - self.start_byte


@dataclass(frozen=True)
class TableSnapshot:
    """Partition table of an existing device."""

    device_path: str
    disk_bytes: int
    table_kind: TableKind | None
    sector_size: int = 512
    entries: tuple[TableEntry, ...] = ()
