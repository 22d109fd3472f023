"""
Diskwright disk image provisioning.

Creates a virtual disk image, binds it to a block device, writes the
partition table computed by the layout planner and formats each partition.
The layout is planned in full before the first destructive call, so every
validation error surfaces while the filesystem is still untouched.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from diskwright.core.config import Configuration, DeviceConfig
from diskwright.core.errors import (
    DeviceBusyError,
    DiskwrightError,
    ManifestError,
    PartialOperationError,
)
from diskwright.core.job import Job, JobContext
from diskwright.core.logging import OperationLogger, get_logger
from diskwright.core.manifest import format_partition_entry
from diskwright.core.models import (
    DiskImageSpec,
    FileSystem,
    LayoutPlan,
    MbrRole,
    PartitionPlacement,
)
from diskwright.core.sizes import format_size
from diskwright.layout import LayoutPlanner
from diskwright.platform import Toolchain
from diskwright.platform.base import DeviceBinder

if TYPE_CHECKING:
    from diskwright.core.session import Session

logger = get_logger(__name__)

# no mkfs-style formatter exists for these; pools are created by zpool
UNFORMATTABLE = frozenset({FileSystem.ZFS})


def detach_with_retry(
    binder: DeviceBinder,
    device_path: str,
    config: DeviceConfig,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Detach ``device_path``, retrying while the kernel reports it busy."""
    for attempt in range(1, config.detach_attempts + 1):
        try:
            binder.detach(device_path)
        except DeviceBusyError as e:
            if attempt >= config.detach_attempts:
                raise
            logger.warning(
                "Device busy, retrying detach",
                device=device_path,
                attempt=attempt,
                max_attempts=config.detach_attempts,
                error=str(e),
            )
            sleep(config.detach_delay_seconds)
        else:
            logger.info("Device detached", device=device_path, attempt=attempt)
            return


def formattable(placement: PartitionPlacement) -> bool:
    return placement.role is not MbrRole.EXTENDED and placement.filesystem.is_formattable


@dataclass
class ProvisionResult:
    """Outcome of a successful provisioning run."""

    spec: DiskImageSpec
    plan: LayoutPlan
    device_path: str | None = None
    formatted: list[str] = field(default_factory=list)
    steps: list[str] = field(default_factory=list)

    @property
    def warnings(self) -> list[str]:
        return list(self.plan.warnings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "image": str(self.spec.path),
            "format": self.spec.image_format.value,
            "size_bytes": self.spec.size_bytes,
            "device": self.device_path,
            "layout": self.plan.to_dict(),
            "formatted": self.formatted,
            "steps": self.steps,
        }


class DiskImageProvisioner:
    """Builds a partitioned, formatted disk image from a :class:`DiskImageSpec`."""

    def __init__(
        self,
        toolchain: Toolchain,
        config: Configuration | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.toolchain = toolchain
        self.config = config or Configuration()
        self.planner = LayoutPlanner(self.config.layout)
        self._sleep = sleep

    def validate(self, spec: DiskImageSpec, overwrite: bool = False) -> None:
        """Reject a spec before anything is written."""
        if spec.size_bytes <= 0:
            raise ManifestError("Image size must be greater than zero", str(spec.size_bytes))
        if spec.path.exists() and not overwrite:
            raise ManifestError("Image already exists, pass overwrite to replace it", str(spec.path))
        if spec.path.exists() and not spec.path.is_file():
            raise ManifestError("Image path is not a regular file", str(spec.path))
        for request in spec.partitions:
            if request.filesystem in UNFORMATTABLE:
                raise ManifestError(
                    f"Cannot format {request.filesystem.value} partitions",
                    format_partition_entry(request, spec.table_kind),
                )

    def plan(self, spec: DiskImageSpec) -> LayoutPlan:
        geometry = self.planner.geometry(spec.size_bytes, spec.table_kind)
        return self.planner.plan(spec.partitions, geometry)

    def provision(
        self,
        spec: DiskImageSpec,
        overwrite: bool = False,
        context: JobContext | None = None,
    ) -> ProvisionResult:
        """Create, partition and format the image described by ``spec``."""
        self.validate(spec, overwrite)
        plan = self.plan(spec)
        result = ProvisionResult(spec=spec, plan=plan)
        total = 4 + len(plan.placements)

        tools = self.toolchain
        device_config = self.config.device
        failure: BaseException | None = None

        def step(name: str) -> None:
            result.steps.append(name)
            operation.step(name)
            if context:
                context.update_progress(current=len(result.steps), total=total, message=name)

        with OperationLogger(
            "provision image",
            logger,
            path=str(spec.path),
            format=spec.image_format.value,
            table=spec.table_kind.value,
        ) as operation:
            try:
                tools.image_creator.create(spec)
                step(f"created image {spec.path}")

                result.device_path = tools.binder.attach(spec.path, spec.image_format)
                tools.binder.wait_for_device(
                    result.device_path, device_config.attach_timeout_seconds
                )
                step(f"attached {result.device_path}")

                tools.table_applier.create_table(result.device_path, spec.table_kind)
                step(f"wrote {spec.table_kind.value} partition table")

                for placement in plan.placements:
                    tools.table_applier.create_partition(
                        result.device_path, placement, plan.geometry
                    )
                    step(f"created partition {placement.index}")

                tools.binder.settle(result.device_path)
                step("re-read partition table")

                for placement in plan.placements:
                    if not formattable(placement):
                        continue
                    partition = DeviceBinder.partition_path(result.device_path, placement.index)
                    tools.binder.wait_for_device(
                        partition, device_config.attach_timeout_seconds
                    )
                    tools.formatter.format(partition, placement.filesystem)
                    result.formatted.append(partition)
                    logger.info(
                        "Partition formatted",
                        device=partition,
                        filesystem=placement.filesystem.value,
                    )
            except (DiskwrightError, OSError) as e:
                failure = e
                if result.steps:
                    raise PartialOperationError(str(spec.path), result.steps, e) from e
                raise
            finally:
                if result.device_path is not None:
                    self._release(result.device_path, failure)

        return result

    def _release(self, device_path: str, failure: BaseException | None) -> None:
        try:
            detach_with_retry(
                self.toolchain.binder, device_path, self.config.device, self._sleep
            )
        except DiskwrightError as e:
            if failure is None:
                raise
            logger.error(
                "Device left attached after failure",
                device=device_path,
                error=str(e),
                original_error=str(failure),
            )


class CreateDiskImageJob(Job[ProvisionResult]):
    """Job to create a partitioned disk image."""

    def __init__(self, spec: DiskImageSpec, overwrite: bool = False) -> None:
        super().__init__(
            name="create_disk_image",
            description=f"Create {spec.image_format.value} image {spec.path}",
        )
        self.spec = spec
        self.overwrite = overwrite
        self._session: Session | None = None

    def set_session(self, session: Session) -> None:
        self._session = session

    def execute(self, context: JobContext) -> ProvisionResult:
        if self._session is None:
            raise RuntimeError("Session not set")

        provisioner = DiskImageProvisioner(self._session.toolchain, self._session.config)
        result = provisioner.provision(self.spec, overwrite=self.overwrite, context=context)
        for warning in result.warnings:
            context.add_warning(warning)
        return result

    def get_plan(self) -> str:
        entries = "\n".join(
            f"  {i}. {format_partition_entry(r, self.spec.table_kind)}"
            for i, r in enumerate(self.spec.partitions, start=1)
        )
        return f"""Create Disk Image
=================
Image: {self.spec.path}
Size: {format_size(self.spec.size_bytes)}
Format: {self.spec.image_format.value}
Partition table: {self.spec.table_kind.value}
Preallocation: {self.spec.preallocation.value}
Partitions:
{entries or "  (none)"}

Steps:
1. Plan partition layout
2. Create image file
3. Attach image to a block device
4. Write partition table and partitions
5. Format partitions
6. Detach device

{"⚠️ WARNING: An existing image at this path will be replaced!" if self.overwrite else ""}"""

    def validate(self) -> list[str]:
        errors = []
        if self.spec.path.exists() and not self.overwrite:
            errors.append(f"Image already exists: {self.spec.path}")
        return errors
