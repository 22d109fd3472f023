"""
Diskwright platform abstraction layer.

Bundles one implementation of every collaborator interface into a
:class:`Toolchain`, either the Linux tools or their dry-run stand-ins.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from diskwright.core.config import Configuration
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
from diskwright.platform.dryrun import DryRunRecorder


@dataclass
class Toolchain:
    """One implementation of each collaborator."""

    image_creator: ImageCreator
    binder: DeviceBinder
    table_applier: PartitionTableApplier
    formatter: FilesystemFormatter
    copy_tool: CopyTool
    rescue_tool: RescueTool
    size_probe: SizeProbe
    fs_probe: FilesystemProbe
    fs_checker: FilesystemChecker
    table_reader: PartitionTableReader
    image_probe: ImageProbe
    dry_run: DryRunRecorder | None = field(default=None)


def build_toolchain(config: Configuration) -> Toolchain:
    """Linux toolchain, or its dry-run counterpart when ``config.dry_run`` is set."""
    from diskwright.platform.linux import (
        BlockdevSizeProbe,
        CommandRunner,
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

    runner = CommandRunner()
    size_probe = BlockdevSizeProbe(runner)
    fs_probe = LinuxFilesystemProbe(runner)
    table_reader = PartedTableReader(runner)
    image_probe = QemuImgProbe(runner)

    if not config.dry_run:
        return Toolchain(
            image_creator=LinuxImageCreator(runner),
            binder=LinuxDeviceBinder(runner, config.device),
            table_applier=PartedTableApplier(runner),
            formatter=MkfsFormatter(runner),
            copy_tool=LinuxCopyTool(runner),
            rescue_tool=DdrescueTool(runner),
            size_probe=size_probe,
            fs_probe=fs_probe,
            fs_checker=LinuxFilesystemChecker(runner),
            table_reader=table_reader,
            image_probe=image_probe,
        )

    from diskwright.platform.dryrun import (
        DryRunCopyTool,
        DryRunDeviceBinder,
        DryRunFilesystemChecker,
        DryRunFilesystemProbe,
        DryRunFormatter,
        DryRunImageCreator,
        DryRunRescueTool,
        DryRunSizeProbe,
        DryRunTableApplier,
    )

    recorder = DryRunRecorder()
    return Toolchain(
        image_creator=DryRunImageCreator(recorder),
        binder=DryRunDeviceBinder(recorder),
        table_applier=DryRunTableApplier(recorder),
        formatter=DryRunFormatter(recorder),
        copy_tool=DryRunCopyTool(recorder, LinuxCopyTool(runner)),
        rescue_tool=DryRunRescueTool(recorder),
        size_probe=DryRunSizeProbe(size_probe),
        fs_probe=DryRunFilesystemProbe(fs_probe),
        fs_checker=DryRunFilesystemChecker(),
        table_reader=table_reader,
        image_probe=image_probe,
        dry_run=recorder,
    )


def is_admin() -> bool:
    """Check if running with root privileges."""
    return hasattr(os, "geteuid") and os.geteuid() == 0


__all__ = [
    "CommandResult",
    "Toolchain",
    "build_toolchain",
    "is_admin",
]
