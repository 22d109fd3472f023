"""
Diskwright Linux platform.

Implements the collaborators using standard Linux tools:
- qemu-img, losetup, qemu-nbd for images and device binding
- parted, partprobe, udevadm for partition tables
- mkfs.* for formatting
- dd, e2image, ntfsclone, btrfs, zfs and ddrescue for cloning
- blockdev, lsblk, blkid and fsck tools for probing and checking
"""

from diskwright.platform.linux.backend import (
    BlockdevSizeProbe,
    DdrescueTool,
    LinuxCopyTool,
    LinuxDeviceBinder,
    LinuxFilesystemChecker,
    LinuxFilesystemProbe,
    LinuxImageCreator,
    MkfsFormatter,
    PartedTableApplier,
    PartedTableReader,
    QemuImgProbe,
)
from diskwright.platform.linux.runner import CommandRunner

__all__ = [
    "BlockdevSizeProbe",
    "CommandRunner",
    "DdrescueTool",
    "LinuxCopyTool",
    "LinuxDeviceBinder",
    "LinuxFilesystemChecker",
    "LinuxFilesystemProbe",
    "LinuxImageCreator",
    "MkfsFormatter",
    "PartedTableApplier",
    "PartedTableReader",
    "QemuImgProbe",
]
