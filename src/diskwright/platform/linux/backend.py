"""
Linux platform collaborators.

Implements image creation, device binding, partitioning, formatting,
copying and checking using standard Linux tools.
"""

from __future__ import annotations

import os
import shutil
import tempfile
import time
from collections.abc import Callable
from pathlib import Path

from diskwright.core.config import DeviceConfig
from diskwright.core.errors import (
    DeviceBusyError,
    DeviceTimeoutError,
    NoFreeDeviceError,
    ToolError,
)
from diskwright.core.logging import get_logger
from diskwright.core.models import (
    CloneMethod,
    DiskGeometry,
    DiskImageSpec,
    FileSystem,
    ImageFormat,
    MbrRole,
    PartitionPlacement,
    Preallocation,
    TableEntry,
    TableKind,
    TableSnapshot,
)
from diskwright.core.sizes import to_sectors
from diskwright.platform.base import (
    CommandResult,
    CopyTool,
    DeviceBinder,
    FilesystemChecker,
    FilesystemFormatter,
    FilesystemProbe,
    ImageCreator,
    ImageProbe,
    PartitionTableApplier,
    PartitionTableReader,
    RescueTool,
    SizeProbe,
)
from diskwright.platform.linux.parsers import (
    parse_blkid_output,
    parse_fstype_output,
    parse_parted_machine,
    parse_qemu_img_info,
)
from diskwright.platform.linux.runner import CommandRunner

logger = get_logger(__name__)


class LinuxTool:
    """Shared plumbing for collaborators that shell out."""

    # Tool names
    QEMU_IMG = "qemu-img"
    QEMU_NBD = "qemu-nbd"
    LOSETUP = "losetup"
    MODPROBE = "modprobe"
    PARTED = "parted"
    PARTPROBE = "partprobe"
    UDEVADM = "udevadm"
    BLOCKDEV = "blockdev"
    LSBLK = "lsblk"
    BLKID = "blkid"
    SYNC = "sync"
    MOUNT = "mount"
    UMOUNT = "umount"

    def __init__(
        self,
        runner: CommandRunner | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self.runner = runner or CommandRunner()
        self._which = which

    def _check_tool(self, tool: str) -> bool:
        """Check if a command-line tool is available."""
        return self._which(tool) is not None

    def _require_tool(self, tool: str) -> None:
        if not self._check_tool(tool):
            raise ToolError([tool], 127, f"{tool} not found")

    def _run_checked(self, command: list[str], timeout: int | None = 300) -> CommandResult:
        """Run a command and raise ``ToolError`` on a non-zero exit."""
        result = self.runner.run(command, timeout=timeout)
        if not result.success:
            raise ToolError(command, result.returncode, result.stderr)
        return result

    def _blkid_value(self, path: str, tag: str) -> str:
        """Single blkid tag for ``path``; empty when blkid knows nothing."""
        result = self.runner.run(
            [self.BLKID, "-o", "value", "-s", tag, path], timeout=30, check=False
        )
        return result.stdout.strip() if result.success else ""


class LinuxImageCreator(LinuxTool, ImageCreator):
    """Creates raw and qcow2 images with qemu-img."""

    def create(self, spec: DiskImageSpec) -> None:
        self._require_tool(self.QEMU_IMG)
        cmd = [self.QEMU_IMG, "create", "-f", spec.image_format.value]
        if spec.preallocation is Preallocation.FULL:
            # qcow2 only preallocates metadata; raw images are written out fully
            mode = "full" if spec.image_format is ImageFormat.RAW else "metadata"
            cmd.extend(["-o", f"preallocation={mode}"])
        cmd.extend([str(spec.path), str(spec.size_bytes)])

        logger.info(
            "Creating disk image",
            path=str(spec.path),
            format=spec.image_format.value,
            size_bytes=spec.size_bytes,
            preallocation=spec.preallocation.value,
        )
        self._run_checked(cmd, timeout=None)


class LinuxDeviceBinder(LinuxTool, DeviceBinder):
    """Binds raw images to loop devices and qcow2 images to NBD devices."""

    def __init__(
        self,
        runner: CommandRunner | None = None,
        config: DeviceConfig | None = None,
        which: Callable[[str], str | None] = shutil.which,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        sys_block: Path = Path("/sys/block"),
    ) -> None:
        super().__init__(runner, which)
        self.config = config or DeviceConfig()
        self._sleep = sleep
        self._clock = clock
        self.sys_block = sys_block

    def attach(self, image_path: Path, image_format: ImageFormat) -> str:
        if image_format is ImageFormat.QCOW2:
            device = self._attach_nbd(image_path)
        else:
            device = self._attach_loop(image_path)
        logger.info("Image attached", image=str(image_path), device=device)
        return device

    def _attach_loop(self, image_path: Path) -> str:
        self._require_tool(self.LOSETUP)
        cmd = [self.LOSETUP, "-f", "--show", "-P", str(image_path)]
        result = self.runner.run(cmd, timeout=60)
        if not result.success:
            if "could not find any free loop device" in result.stderr.lower():
                raise NoFreeDeviceError("loop")
            raise ToolError(cmd, result.returncode, result.stderr)
        device = result.stdout.strip()
        if not device:
            raise ToolError(cmd, result.returncode, "losetup did not report a device")
        return device

    def _attach_nbd(self, image_path: Path) -> str:
        self._require_tool(self.QEMU_NBD)
        self._run_checked(
            [self.MODPROBE, "nbd", f"max_part={self.config.nbd_max_part}"], timeout=60
        )

        device = self.find_free_nbd()
        cmd = [self.QEMU_NBD, f"--connect={device}", "-f", "qcow2", str(image_path)]
        self._run_checked(cmd, timeout=60)

        slot = Path(device).name
        self._wait_for(
            lambda: (self.sys_block / slot / "pid").exists(),
            device,
            self.config.attach_timeout_seconds,
        )
        return device

    def find_free_nbd(self) -> str:
        """First NBD slot without a connected client."""
        for index in range(self.config.nbd_slots):
            slot = self.sys_block / f"nbd{index}"
            if slot.exists() and not (slot / "pid").exists():
                return f"/dev/nbd{index}"
        raise NoFreeDeviceError("nbd", self.config.nbd_slots)

    def detach(self, device_path: str) -> None:
        if Path(device_path).name.startswith("nbd"):
            cmd = [self.QEMU_NBD, "--disconnect", device_path]
        else:
            cmd = [self.LOSETUP, "-d", device_path]

        result = self.runner.run(cmd, timeout=60)
        if result.success:
            logger.info("Device detached", device=device_path)
            return

        stderr = result.stderr.lower()
        if "busy" in stderr:
            raise DeviceBusyError(device_path, result.stderr_tail(1))
        if "no such device" in stderr or "no such file" in stderr:
            logger.debug("Device already detached", device=device_path)
            return
        raise ToolError(cmd, result.returncode, result.stderr)

    def wait_for_device(self, device_path: str, timeout: float) -> None:
        self._wait_for(lambda: Path(device_path).exists(), device_path, timeout)

    def _wait_for(self, predicate: Callable[[], bool], device: str, timeout: float) -> None:
        deadline = self._clock() + timeout
        while not predicate():
            if self._clock() >= deadline:
                raise DeviceTimeoutError(device, timeout)
            self._sleep(self.config.poll_interval_seconds)

    def settle(self, device_path: str) -> None:
        for cmd in ([self.PARTPROBE, device_path], [self.UDEVADM, "settle"]):
            result = self.runner.run(cmd, timeout=60)
            if not result.success:
                logger.warning(
                    "Device settle step failed",
                    command=cmd,
                    returncode=result.returncode,
                )


class PartedTableApplier(LinuxTool, PartitionTableApplier):
    """Writes partition tables with parted, in sector units."""

    def create_table(self, device_path: str, table_kind: TableKind) -> None:
        self._require_tool(self.PARTED)
        logger.info("Creating partition table", device=device_path, table=table_kind.value)
        self._run_checked([self.PARTED, "-s", device_path, "mklabel", table_kind.parted_label])

    def create_partition(
        self, device_path: str, placement: PartitionPlacement, geometry: DiskGeometry
    ) -> None:
        first, last = self.sector_range(placement, geometry)

        cmd = [self.PARTED, "-s", "-a", "none", device_path, "unit", "s", "mkpart"]
        if geometry.table_kind is TableKind.MBR:
            cmd.append(placement.role.value)
        else:
            # parted re-splits its arguments, so a name with spaces must carry its own quotes
            cmd.append(f'"{placement.filesystem.gpt_name}"')
        fs_type = placement.filesystem.parted_type
        if fs_type and placement.role is not MbrRole.EXTENDED:
            cmd.append(fs_type)
        cmd.extend([f"{first}s", f"{last}s"])

        logger.info(
            "Creating partition",
            device=device_path,
            index=placement.index,
            role=placement.role.value,
            filesystem=placement.filesystem.value,
            start_sector=first,
            end_sector=last,
        )
        self._run_checked(cmd)

        if geometry.table_kind is TableKind.GPT and placement.filesystem is FileSystem.MSR:
            self._run_checked(
                [self.PARTED, "-s", device_path, "set", str(placement.index), "msftres", "on"]
            )

    @staticmethod
    def sector_range(placement: PartitionPlacement, geometry: DiskGeometry) -> tuple[int, int]:
        """First and last (inclusive) sector for a placement.

        Both the start and the length round up so the realized partition is
        never smaller than planned; the end is capped at the usable area.
        """
        sector = geometry.sector_size
        first = to_sectors(placement.start_byte, sector)
        end = first + to_sectors(placement.size_bytes, sector)
        end = min(end, geometry.usable_end // sector)
        return first, end - 1


class MkfsFormatter(LinuxTool, FilesystemFormatter):
    """Creates file systems with the mkfs family."""

    MKFS_EXT4 = "mkfs.ext4"
    MKFS_EXT3 = "mkfs.ext3"
    MKFS_EXT2 = "mkfs.ext2"
    MKFS_XFS = "mkfs.xfs"
    MKFS_BTRFS = "mkfs.btrfs"
    MKFS_VFAT = "mkfs.vfat"
    MKFS_NTFS = "mkfs.ntfs"
    MKFS_EXFAT = "mkfs.exfat"
    MKSWAP = "mkswap"

    def command_for(self, partition_path: str, filesystem: FileSystem) -> list[str]:
        mkfs_map = {
            FileSystem.EXT4: (self.MKFS_EXT4, ["-F"]),
            FileSystem.EXT3: (self.MKFS_EXT3, ["-F"]),
            FileSystem.EXT2: (self.MKFS_EXT2, ["-F"]),
            FileSystem.XFS: (self.MKFS_XFS, ["-f"]),
            FileSystem.BTRFS: (self.MKFS_BTRFS, ["-f"]),
            FileSystem.FAT32: (self.MKFS_VFAT, ["-F", "32"]),
            FileSystem.FAT16: (self.MKFS_VFAT, ["-F", "16"]),
            FileSystem.NTFS: (self.MKFS_NTFS, ["-f", "-F"]),
            FileSystem.EXFAT: (self.MKFS_EXFAT, []),
            FileSystem.SWAP: (self.MKSWAP, ["-f"]),
        }
        if filesystem not in mkfs_map:
            raise ValueError(f"Unsupported filesystem: {filesystem.value}")
        tool, args = mkfs_map[filesystem]
        return [tool, *args, partition_path]

    def format(self, partition_path: str, filesystem: FileSystem) -> None:
        cmd = self.command_for(partition_path, filesystem)
        self._require_tool(cmd[0])
        logger.info("Formatting partition", partition=partition_path, filesystem=filesystem.value)
        self._run_checked(cmd, timeout=600)


class LinuxCopyTool(LinuxTool, CopyTool):
    """dd for raw copies, filesystem-aware tools where available."""

    DD = "dd"
    E2IMAGE = "e2image"
    NTFSCLONE = "ntfsclone"
    BTRFS = "btrfs"
    BTRFSTUNE = "btrfstune"
    MKFS_BTRFS = "mkfs.btrfs"
    ZFS = "zfs"
    ZPOOL = "zpool"

    SNAPSHOT_NAME = "diskwright-clone"

    def _tools_for(self, method: CloneMethod) -> tuple[str, ...]:
        return {
            CloneMethod.RAW: (self.DD,),
            CloneMethod.E2IMAGE: (self.E2IMAGE,),
            CloneMethod.NTFSCLONE: (self.NTFSCLONE,),
            CloneMethod.BTRFS_SEND: (self.BTRFS, self.MKFS_BTRFS, self.BTRFSTUNE),
            CloneMethod.ZFS_SEND: (self.ZFS, self.ZPOOL),
        }.get(method, ())

    def is_available(self, method: CloneMethod) -> bool:
        tools = self._tools_for(method)
        return bool(tools) and all(self._check_tool(tool) for tool in tools)

    def prepare(self, source: str, target: str) -> None:
        self.runner.run([self.SYNC], timeout=120)
        for path in (source, target):
            if Path(path).is_block_device():
                self.runner.run([self.BLOCKDEV, "--flushbufs", path], timeout=120)

    def copy(
        self, method: CloneMethod, source: str, target: str, block_size: int
    ) -> CommandResult:
        if method is CloneMethod.RAW:
            return self.runner.run(
                [
                    self.DD,
                    f"if={source}",
                    f"of={target}",
                    f"bs={block_size}",
                    "conv=notrunc,noerror,fsync",
                    "status=progress",
                ],
                timeout=None,
            )
        if method is CloneMethod.E2IMAGE:
            return self.runner.run([self.E2IMAGE, "-ra", "-p", source, target], timeout=None)
        if method is CloneMethod.NTFSCLONE:
            return self.runner.run(
                [self.NTFSCLONE, "-f", "--overwrite", target, source], timeout=None
            )
        if method is CloneMethod.BTRFS_SEND:
            return self._btrfs_send(source, target)
        if method is CloneMethod.ZFS_SEND:
            return self._zfs_send(source, target)
        raise ValueError(f"Unsupported copy method: {method.value}")

    def _btrfs_send(self, source: str, target: str) -> CommandResult:
        """Replay ``source`` into a fresh btrfs on ``target``, then give it the source UUID.

        mkfs assigns a new filesystem UUID, so the source UUID is written back
        with btrfstune once the target is unmounted.
        """
        source_uuid = self._blkid_value(source, "UUID")
        result = self._btrfs_replay(source, target)
        if result.success and source_uuid:
            self._restore_btrfs_uuid(target, source_uuid)
        return result

    def _restore_btrfs_uuid(self, target: str, uuid: str) -> None:
        result = self.runner.run([self.BTRFSTUNE, "-f", "-U", uuid, target], timeout=600)
        if result.success:
            logger.info("Restored filesystem UUID", target=target, uuid=uuid)
        else:
            logger.warning(
                "Could not restore filesystem UUID",
                target=target,
                uuid=uuid,
                stderr=result.stderr,
            )

    def _btrfs_replay(self, source: str, target: str) -> CommandResult:
        """Recreate the filesystem on ``target`` and replay a read-only snapshot into it."""
        source_mount = Path(tempfile.mkdtemp(prefix="diskwright-src-"))
        target_mount = Path(tempfile.mkdtemp(prefix="diskwright-dst-"))
        snapshot = source_mount / self.SNAPSHOT_NAME
        mounted: list[Path] = []
        try:
            for cmd in (
                [self.MKFS_BTRFS, "-f", target],
                [self.MOUNT, "-t", "btrfs", source, str(source_mount)],
            ):
                result = self.runner.run(cmd, timeout=600)
                if not result.success:
                    return result
            mounted.append(source_mount)

            result = self.runner.run([self.MOUNT, "-t", "btrfs", target, str(target_mount)])
            if not result.success:
                return result
            mounted.append(target_mount)

            result = self.runner.run(
                [self.BTRFS, "subvolume", "snapshot", "-r", str(source_mount), str(snapshot)]
            )
            if not result.success:
                return result

            result = self.runner.run_pipeline(
                [
                    [self.BTRFS, "send", str(snapshot)],
                    [self.BTRFS, "receive", str(target_mount)],
                ]
            )
            self.runner.run([self.BTRFS, "subvolume", "delete", str(snapshot)])
            return result
        finally:
            for mount_point in reversed(mounted):
                self.runner.run([self.UMOUNT, str(mount_point)])
            for directory in (source_mount, target_mount):
                shutil.rmtree(directory, ignore_errors=True)

    def _zfs_send(self, source: str, target: str) -> CommandResult:
        """Replicate the pool on ``source`` into a new pool created on ``target``."""
        pool = self._blkid_value(source, "LABEL")
        if not pool:
            return CommandResult(
                returncode=1,
                stdout="",
                stderr=f"{source} is not a ZFS pool member",
                command=[self.BLKID, source],
            )

        clone_pool = f"{pool}_clone"
        snapshot = f"{pool}@{self.SNAPSHOT_NAME}"
        result = self.runner.run([self.ZFS, "snapshot", "-r", snapshot])
        if not result.success:
            return result
        try:
            result = self.runner.run([self.ZPOOL, "create", "-f", clone_pool, target])
            if not result.success:
                return result
            result = self.runner.run_pipeline(
                [
                    [self.ZFS, "send", "-R", snapshot],
                    [self.ZFS, "receive", "-F", clone_pool],
                ]
            )
            self.runner.run([self.ZPOOL, "export", clone_pool])
            return result
        finally:
            self.runner.run([self.ZFS, "destroy", "-r", snapshot])


class DdrescueTool(LinuxTool, RescueTool):
    """GNU ddrescue."""

    DDRESCUE = "ddrescue"

    def is_available(self) -> bool:
        return self._check_tool(self.DDRESCUE)

    def copy(self, source: str, target: str, log_path: Path, retries: int) -> CommandResult:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        return self.runner.run(
            [self.DDRESCUE, "-d", "-f", f"-r{retries}", source, target, str(log_path)],
            timeout=None,
        )


class BlockdevSizeProbe(LinuxTool, SizeProbe):
    """Sizes via blockdev, falling back to stat for regular files."""

    def size_bytes(self, path: str) -> int:
        if Path(path).is_file():
            return os.stat(path).st_size

        cmd = [self.BLOCKDEV, "--getsize64", path]
        result = self.runner.run(cmd, timeout=30)
        if result.success and result.stdout.strip().isdigit():
            return int(result.stdout.strip())

        try:
            return os.stat(path).st_size
        except OSError as e:
            raise ToolError(cmd, result.returncode, result.stderr or str(e)) from e


class LinuxFilesystemProbe(LinuxTool, FilesystemProbe):
    """Detects file systems with lsblk, then blkid."""

    def detect(self, path: str) -> FileSystem:
        result = self.runner.run([self.LSBLK, "-no", "FSTYPE", path], timeout=30, check=False)
        if result.success:
            fs = parse_fstype_output(result.stdout)
            if fs is not FileSystem.NONE:
                return fs

        result = self.runner.run(
            [self.BLKID, "-o", "value", "-s", "TYPE", path], timeout=30, check=False
        )
        if result.success:
            return parse_fstype_output(result.stdout)
        return FileSystem.NONE

    def uuid(self, path: str) -> str | None:
        return self._blkid_value(path, "UUID") or None


class LinuxFilesystemChecker(LinuxTool, FilesystemChecker):
    """Read-only consistency checks."""

    def command_for(self, path: str, filesystem: FileSystem) -> list[str] | None:
        checks = {
            FileSystem.EXT2: ["e2fsck", "-f", "-n"],
            FileSystem.EXT3: ["e2fsck", "-f", "-n"],
            FileSystem.EXT4: ["e2fsck", "-f", "-n"],
            FileSystem.NTFS: ["ntfsfix", "--no-action"],
            FileSystem.BTRFS: ["btrfs", "check", "--readonly"],
            FileSystem.XFS: ["xfs_repair", "-n"],
            FileSystem.FAT32: ["fsck.vfat", "-n"],
            FileSystem.FAT16: ["fsck.vfat", "-n"],
        }
        if filesystem not in checks:
            return None
        return [*checks[filesystem], path]

    def check(self, path: str, filesystem: FileSystem) -> CommandResult | None:
        cmd = self.command_for(path, filesystem)
        if cmd is None:
            return None
        if not self._check_tool(cmd[0]):
            logger.info("Filesystem checker not installed", tool=cmd[0], filesystem=filesystem.value)
            return None
        return self.runner.run(cmd, timeout=None, check=False)


class PartedTableReader(LinuxTool, PartitionTableReader):
    """Reads tables with parted and refines filesystem types with blkid."""

    def read(self, device_path: str) -> TableSnapshot:
        self._require_tool(self.PARTED)
        result = self._run_checked([self.PARTED, "-m", "-s", device_path, "unit", "B", "print"])
        snapshot = parse_parted_machine(result.stdout, device_path)
        if not snapshot.entries:
            return snapshot

        paths = [DeviceBinder.partition_path(device_path, e.number) for e in snapshot.entries]
        blkid = self.runner.run([self.BLKID, *paths], timeout=30, check=False)
        detected = parse_blkid_output(blkid.stdout) if blkid.stdout else {}

        entries = []
        for entry, path in zip(snapshot.entries, paths):
            fs = parse_fstype_output(detected.get(path, {}).get("TYPE", ""))
            if fs is not FileSystem.NONE and entry.role is not MbrRole.EXTENDED:
                entry = TableEntry(
                    number=entry.number,
                    start_byte=entry.start_byte,
                    end_byte=entry.end_byte,
                    filesystem=fs,
                    role=entry.role,
                    name=entry.name,
                )
            entries.append(entry)

        return TableSnapshot(
            device_path=snapshot.device_path,
            disk_bytes=snapshot.disk_bytes,
            table_kind=snapshot.table_kind,
            sector_size=snapshot.sector_size,
            entries=tuple(entries),
        )


class QemuImgProbe(LinuxTool, ImageProbe):
    """Reads image metadata with qemu-img."""

    def info(self, image_path: Path) -> tuple[ImageFormat, int]:
        self._require_tool(self.QEMU_IMG)
        result = self._run_checked(
            [self.QEMU_IMG, "info", "--output=json", str(image_path)], timeout=60
        )
        return parse_qemu_img_info(result.stdout)
