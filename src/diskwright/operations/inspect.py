"""
Diskwright image inspection.

Reads the partition table of an existing image back into a manifest that
``create`` can replay. The last partition becomes ``remaining`` when it ends
within one alignment unit of the space available to it.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from diskwright.core.config import Configuration
from diskwright.core.errors import DiskwrightError
from diskwright.core.logging import OperationLogger, get_logger
from diskwright.core.manifest import ManifestFile
from diskwright.core.models import (
    REMAINING,
    DiskGeometry,
    DiskImageSpec,
    ExactBytes,
    FileSystem,
    MbrRole,
    PartitionRequest,
    SizeSpec,
    TableEntry,
    TableKind,
    TableSnapshot,
)
from diskwright.operations.provision import detach_with_retry
from diskwright.platform import Toolchain

logger = get_logger(__name__)


@dataclass
class InspectionResult:
    """Table read from an image and the manifest derived from it."""

    spec: DiskImageSpec
    snapshot: TableSnapshot

    def to_dict(self) -> dict[str, Any]:
        return ManifestFile.from_image_spec(self.spec).to_compact_dict()


class ImageInspector:
    """Derives a manifest from an existing disk image."""

    def __init__(
        self,
        toolchain: Toolchain,
        config: Configuration | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.toolchain = toolchain
        self.config = config or Configuration()
        self._sleep = sleep

    def inspect(self, image_path: Path) -> InspectionResult:
        tools = self.toolchain
        image_format, virtual_bytes = tools.image_probe.info(image_path)

        with OperationLogger("inspect image", logger, path=str(image_path)):
            device = tools.binder.attach(image_path, image_format)
            failure: BaseException | None = None
            try:
                tools.binder.wait_for_device(device, self.config.device.attach_timeout_seconds)
                snapshot = tools.table_reader.read(device)
            except DiskwrightError as e:
                failure = e
                raise
            finally:
                try:
                    detach_with_retry(tools.binder, device, self.config.device, self._sleep)
                except DiskwrightError as e:
                    if failure is None:
                        raise
                    logger.error("Device left attached after failure", device=device, error=str(e))

        table_kind = snapshot.table_kind
        if table_kind is None:
            logger.warning("Image has no partition table", path=str(image_path))
            table_kind = TableKind.from_string(self.config.layout.default_table)

        geometry = DiskGeometry(
            total_bytes=virtual_bytes,
            table_kind=table_kind,
            sector_size=snapshot.sector_size,
            alignment=self.config.layout.alignment_bytes,
        )
        spec = DiskImageSpec(
            path=image_path,
            size_bytes=virtual_bytes,
            image_format=image_format,
            table_kind=table_kind,
            partitions=self.requests_from_entries(snapshot.entries, geometry),
        )
        logger.info(
            "Image inspected",
            path=str(image_path),
            format=image_format.value,
            table=table_kind.value,
            partitions=len(spec.partitions),
        )
        return InspectionResult(spec=spec, snapshot=snapshot)

    @staticmethod
    def requests_from_entries(
        entries: tuple[TableEntry, ...], geometry: DiskGeometry
    ) -> tuple[PartitionRequest, ...]:
        """Turn table entries back into partition requests."""
        alignment = geometry.alignment
        mbr = geometry.table_kind is TableKind.MBR
        ordered = sorted(entries, key=lambda e: e.start_byte)
        top = [e for e in ordered if not (mbr and e.role is MbrRole.LOGICAL)]
        logicals = [e for e in ordered if mbr and e.role is MbrRole.LOGICAL]
        extended = next((e for e in top if mbr and e.role is MbrRole.EXTENDED), None)

        def near_end(entry: TableEntry, end: int) -> bool:
            return end - entry.end_byte <= alignment

        remaining_entry: TableEntry | None = None
        drop_extended = False
        last_top = top[-1] if top else None
        if (
            extended is not None
            and logicals
            and last_top is extended
            and near_end(extended, geometry.usable_end)
            and near_end(logicals[-1], extended.end_byte)
        ):
            # the planner synthesizes a remaining extended around a remaining logical
            remaining_entry = logicals[-1]
            drop_extended = True
        elif last_top is not None and near_end(last_top, geometry.usable_end):
            remaining_entry = last_top

        def request(entry: TableEntry) -> PartitionRequest:
            size: SizeSpec = REMAINING if entry is remaining_entry else ExactBytes(entry.size_bytes)
            role = entry.role if mbr else MbrRole.PRIMARY
            filesystem = FileSystem.NONE if role is MbrRole.EXTENDED else entry.filesystem
            return PartitionRequest(size=size, filesystem=filesystem, role=role)

        requests: list[PartitionRequest] = []
        for entry in top:
            if entry is extended:
                if not drop_extended:
                    requests.append(request(entry))
                requests.extend(request(logical) for logical in logicals)
            else:
                requests.append(request(entry))
        if extended is None:
            requests.extend(request(logical) for logical in logicals)
        return tuple(requests)
