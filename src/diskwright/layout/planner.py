"""
Diskwright layout planner.

Turns an ordered partition manifest and a disk geometry into concrete,
byte-exact partition placements. MBR tables are limited to four
primary/extended entries; logical partitions live inside a single extended
container and each one is preceded by its own boot record. A missing
extended container is synthesized instead of being reported as an error.
"""

from __future__ import annotations

from collections.abc import Sequence

from diskwright.core.config import LayoutConfig
from diskwright.core.errors import (
    AmbiguousRemainingError,
    ExtendedTooSmallError,
    InsufficientDiskSpaceError,
    ManifestError,
    MbrConstraintViolation,
)
from diskwright.core.logging import get_logger
from diskwright.core.models import (
    REMAINING,
    DiskGeometry,
    ExactBytes,
    FileSystem,
    LayoutPlan,
    MbrRole,
    PartitionPlacement,
    PartitionRequest,
    TableKind,
)
from diskwright.core.sizes import align_down, align_up, format_size

logger = get_logger(__name__)

MBR_MAX_PRIMARY = 4
FIRST_LOGICAL_NUMBER = 5


class LayoutPlanner:
    """Plans partition placements for a disk."""

    def __init__(self, config: LayoutConfig | None = None) -> None:
        self.config = config or LayoutConfig()

    def geometry(self, total_bytes: int, table_kind: TableKind) -> DiskGeometry:
        """Build a geometry using the configured sector size and alignment."""
        return DiskGeometry(
            total_bytes=total_bytes,
            table_kind=table_kind,
            sector_size=self.config.sector_size,
            alignment=self.config.alignment_bytes,
        )

    def plan(
        self, requests: Sequence[PartitionRequest], geometry: DiskGeometry
    ) -> LayoutPlan:
        """Compute placements. Never mutates ``requests``; same input, same plan."""
        requests = tuple(requests)
        self._check_remaining(requests)
        for request in requests:
            if not request.is_remaining and request.fixed_bytes <= 0:
                raise ManifestError("Partition size must be greater than zero", str(request.size))

        if geometry.table_kind is TableKind.MBR:
            requests = self.heal_mbr(requests, geometry.alignment, geometry.sector_size)
            self.check_mbr_constraints(requests)

        self._check_capacity(requests, geometry)

        warnings: list[str] = []
        placements = self._place_top_level(requests, geometry, warnings)
        extended = next((p for p in placements if p.role is MbrRole.EXTENDED), None)
        if extended is not None:
            placements.extend(self._place_logicals(requests, extended, geometry, warnings))
        placements.sort(key=lambda p: p.start_byte)

        logger.debug(
            "Layout planned",
            table=geometry.table_kind.value,
            total_bytes=geometry.total_bytes,
            partitions=len(placements),
            warnings=len(warnings),
        )
        return LayoutPlan(
            geometry=geometry,
            requests=requests,
            placements=tuple(placements),
            warnings=tuple(warnings),
        )

    def heal_mbr(
        self,
        requests: tuple[PartitionRequest, ...],
        alignment: int,
        sector_size: int = 512,
    ) -> tuple[PartitionRequest, ...]:
        """Insert an extended container before the first logical if none exists."""
        logicals = [r for r in requests if r.role is MbrRole.LOGICAL]
        if not logicals or any(r.role is MbrRole.EXTENDED for r in requests):
            return requests

        if any(r.is_remaining for r in logicals):
            size = REMAINING
        else:
            needed = sum(align_up(r.fixed_bytes, sector_size) for r in logicals)
            needed += alignment * len(logicals)
            size = ExactBytes(
                align_up(needed, alignment) + self.config.extended_safety_margin_bytes
            )

        first = next(i for i, r in enumerate(requests) if r.role is MbrRole.LOGICAL)
        container = PartitionRequest(size=size, filesystem=FileSystem.NONE, role=MbrRole.EXTENDED)
        logger.info(
            "Synthesized extended partition for logical partitions",
            logicals=len(logicals),
            size=str(size),
            position=first,
        )
        healed = requests[:first] + (container,) + requests[first:]
        self._check_remaining(healed, top_level_only=True)
        return healed

    @staticmethod
    def check_mbr_constraints(requests: Sequence[PartitionRequest]) -> None:
        primary = sum(1 for r in requests if r.role is MbrRole.PRIMARY)
        extended = sum(1 for r in requests if r.role is MbrRole.EXTENDED)
        if extended > 1 or primary + extended > MBR_MAX_PRIMARY:
            raise MbrConstraintViolation(primary=primary, extended=extended)

    @staticmethod
    def _check_remaining(
        requests: Sequence[PartitionRequest], top_level_only: bool = False
    ) -> None:
        candidates = [
            r
            for r in requests
            if r.is_remaining and not (top_level_only and r.role is MbrRole.LOGICAL)
        ]
        if len(candidates) > 1:
            raise AmbiguousRemainingError(len(candidates))

    def _check_capacity(
        self, requests: Sequence[PartitionRequest], geometry: DiskGeometry
    ) -> None:
        mbr = geometry.table_kind is TableKind.MBR
        alignment = geometry.alignment
        top = [r for r in requests if not (mbr and r.role is MbrRole.LOGICAL)]
        logicals = [r for r in requests if mbr and r.role is MbrRole.LOGICAL]
        extended = next((r for r in top if mbr and r.role is MbrRole.EXTENDED), None)

        # logicals are realized in whole sectors, so they are counted that way
        sector = geometry.sector_size
        logical_required = sum(align_up(r.fixed_bytes, sector) for r in logicals)
        logical_required += alignment * len(logicals)
        if any(r.is_remaining for r in logicals):
            logical_required += alignment

        if extended is not None and not extended.is_remaining:
            available = align_down(extended.fixed_bytes, sector)
            if available < logical_required:
                raise ExtendedTooSmallError(required=logical_required, available=available)

        required = sum(r.fixed_bytes for r in top)
        if extended is not None and extended.is_remaining:
            required += logical_required
        available = geometry.usable_bytes
        if required > available or (requests and available <= 0):
            raise InsufficientDiskSpaceError(required=required, available=available)

    def _place_top_level(
        self,
        requests: Sequence[PartitionRequest],
        geometry: DiskGeometry,
        warnings: list[str],
    ) -> list[PartitionPlacement]:
        mbr = geometry.table_kind is TableKind.MBR
        alignment = geometry.alignment
        limit = geometry.usable_end
        top = [r for r in requests if not (mbr and r.role is MbrRole.LOGICAL)]

        placements: list[PartitionPlacement] = []
        cursor = geometry.leading_reserved
        for position, request in enumerate(top):
            number = position + 1
            start = align_up(cursor, alignment)
            if request.is_remaining:
                reserve = sum(align_up(r.fixed_bytes, alignment) for r in top[position + 1 :])
                end = limit - reserve
            else:
                end = start + request.fixed_bytes
                if end > limit:
                    end = limit
                    self._warn_clamped(warnings, number, request, end - start, "disk")

            if end <= start:
                raise InsufficientDiskSpaceError(
                    required=request.fixed_bytes or alignment,
                    available=max(limit - start, 0),
                    index=number,
                )

            placements.append(
                PartitionPlacement(
                    index=number,
                    start_byte=start,
                    end_byte=end,
                    role=request.role if mbr else MbrRole.PRIMARY,
                    filesystem=request.filesystem,
                )
            )
            cursor = end
        return placements

    def _place_logicals(
        self,
        requests: Sequence[PartitionRequest],
        extended: PartitionPlacement,
        geometry: DiskGeometry,
        warnings: list[str],
    ) -> list[PartitionPlacement]:
        alignment = geometry.alignment
        sector = geometry.sector_size
        logicals = [r for r in requests if r.role is MbrRole.LOGICAL]
        # the container's last sector, as parted will realize it
        limit = align_down(extended.end_byte, sector)

        placements: list[PartitionPlacement] = []
        cursor = extended.start_byte
        for position, request in enumerate(logicals):
            number = FIRST_LOGICAL_NUMBER + position
            # one alignment unit for this entry's extended boot record
            start = align_up(cursor + alignment, sector)
            if request.is_remaining:
                following = logicals[position + 1 :]
                reserve = sum(alignment + align_up(r.fixed_bytes, sector) for r in following)
                end = align_down(limit - alignment - reserve, sector)
            else:
                end = start + align_up(request.fixed_bytes, sector)
                if end > limit:
                    end = limit
                    self._warn_clamped(
                        warnings, number, request, end - start, "extended partition"
                    )

            if end <= start:
                raise InsufficientDiskSpaceError(
                    required=request.fixed_bytes or alignment,
                    available=max(limit - start, 0),
                    index=number,
                )

            placements.append(
                PartitionPlacement(
                    index=number,
                    start_byte=start,
                    end_byte=end,
                    role=MbrRole.LOGICAL,
                    filesystem=request.filesystem,
                )
            )
            cursor = end
        return placements

    @staticmethod
    def _warn_clamped(
        warnings: list[str],
        number: int,
        request: PartitionRequest,
        actual: int,
        scope: str,
    ) -> None:
        message = (
            f"Partition {number} ({format_size(request.fixed_bytes)}) exceeds remaining "
            f"{scope} space, adjusting to fit ({format_size(max(actual, 0))})"
        )
        warnings.append(message)
        logger.warning(
            "Partition clamped to available space",
            partition=number,
            requested=request.fixed_bytes,
            actual=actual,
            scope=scope,
        )


def plan_layout(
    requests: Sequence[PartitionRequest],
    geometry: DiskGeometry,
    config: LayoutConfig | None = None,
) -> LayoutPlan:
    """Convenience wrapper around :meth:`LayoutPlanner.plan`."""
    return LayoutPlanner(config).plan(requests, geometry)
