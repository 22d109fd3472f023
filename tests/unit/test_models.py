"""
Tests for diskwright.core.models module.
"""

import pytest

from diskwright.core.models import (
    REMAINING,
    CheckStatus,
    CloneMethod,
    CloneResult,
    DiskGeometry,
    ExactBytes,
    FileSystem,
    MbrRole,
    PartitionPlacement,
    PartitionRequest,
    TableKind,
    VerificationReport,
)
from diskwright.core.sizes import GIB, MIB


class TestFileSystem:
    """Tests for FileSystem enum."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("ext4", FileSystem.EXT4),
            ("EXT4", FileSystem.EXT4),
            ("vfat", FileSystem.FAT32),
            ("fat32", FileSystem.FAT32),
            ("swap", FileSystem.SWAP),
            ("linux-swap(v1)", FileSystem.SWAP),
            ("zfs_member", FileSystem.ZFS),
            ("", FileSystem.NONE),
            (None, FileSystem.NONE),
            ("none", FileSystem.NONE),
        ],
    )
    def test_from_string(self, value: str | None, expected: FileSystem) -> None:
        assert FileSystem.from_string(value) is expected

    def test_from_string_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unknown filesystem"):
            FileSystem.from_string("reiserfs")

    def test_gpt_names(self) -> None:
        assert FileSystem.EXT4.gpt_name == "Linux filesystem"
        assert FileSystem.SWAP.gpt_name == "Linux swap"
        assert FileSystem.NTFS.gpt_name == "Microsoft basic data"
        assert FileSystem.FAT32.gpt_name == "Microsoft basic data"
        assert FileSystem.MSR.gpt_name == "Microsoft reserved partition"

    def test_parted_type(self) -> None:
        assert FileSystem.SWAP.parted_type == "linux-swap"
        assert FileSystem.FAT32.parted_type == "fat32"
        assert FileSystem.NONE.parted_type is None
        assert FileSystem.MSR.parted_type is None

    def test_formattable(self) -> None:
        assert FileSystem.EXT4.is_formattable
        assert not FileSystem.NONE.is_formattable
        assert not FileSystem.MSR.is_formattable


class TestTableKind:
    def test_from_string_aliases(self) -> None:
        assert TableKind.from_string("msdos") is TableKind.MBR
        assert TableKind.from_string("dos") is TableKind.MBR
        assert TableKind.from_string("GPT") is TableKind.GPT

    def test_from_string_unknown(self) -> None:
        with pytest.raises(ValueError):
            TableKind.from_string("apm")

    def test_parted_label(self) -> None:
        assert TableKind.MBR.parted_label == "msdos"
        assert TableKind.GPT.parted_label == "gpt"


class TestPartitionRequest:
    def test_fixed(self) -> None:
        request = PartitionRequest(ExactBytes(2 * GIB), FileSystem.EXT4)
        assert not request.is_remaining
        assert request.fixed_bytes == 2 * GIB
        assert request.to_dict() == {
            "size": str(2 * GIB),
            "filesystem": "ext4",
            "role": "primary",
        }

    def test_remaining(self) -> None:
        request = PartitionRequest(REMAINING, role=MbrRole.LOGICAL)
        assert request.is_remaining
        assert request.fixed_bytes == 0
        assert request.to_dict()["size"] == "remaining"


class TestDiskGeometry:
    def test_mbr_reserves_only_first_unit(self) -> None:
        geometry = DiskGeometry(total_bytes=10 * GIB)
        assert geometry.leading_reserved == MIB
        assert geometry.trailing_reserved == 0
        assert geometry.usable_end == 10 * GIB
        assert geometry.usable_bytes == 10 * GIB - MIB

    def test_gpt_reserves_backup_header(self) -> None:
        geometry = DiskGeometry(total_bytes=10 * GIB, table_kind=TableKind.GPT)
        assert geometry.trailing_reserved == MIB
        assert geometry.usable_end == 10 * GIB - MIB

    def test_tiny_disk_has_no_usable_bytes(self) -> None:
        assert DiskGeometry(total_bytes=MIB // 2).usable_bytes == 0


class TestPartitionPlacement:
    def _placement(self, start: int, end: int, role: MbrRole = MbrRole.PRIMARY) -> PartitionPlacement:
        return PartitionPlacement(1, start, end, role, FileSystem.NONE)

    def test_size(self) -> None:
        assert self._placement(MIB, 3 * MIB).size_bytes == 2 * MIB

    def test_overlaps(self) -> None:
        a = self._placement(0, 10)
        assert a.overlaps(self._placement(5, 15))
        assert not a.overlaps(self._placement(10, 20))

    def test_contains_is_strict_at_start(self) -> None:
        extended = self._placement(MIB, 10 * MIB, MbrRole.EXTENDED)
        assert extended.contains(self._placement(2 * MIB, 10 * MIB))
        assert not extended.contains(self._placement(MIB, 5 * MIB))
        assert not extended.contains(self._placement(2 * MIB, 11 * MIB))


class TestReports:
    def test_verification_size_difference(self) -> None:
        report = VerificationReport(passed=True, source_bytes=10, target_bytes=7)
        assert report.size_difference == 3
        assert VerificationReport(passed=True).size_difference is None

    def test_clone_result_warnings_come_from_failed_verification(self) -> None:
        report = VerificationReport(
            passed=False, size_check=CheckStatus.MISMATCH, messages=["size mismatch"]
        )
        result = CloneResult(
            succeeded=True, method_used=CloneMethod.RAW, attempt_count=1, verification=report
        )
        assert result.warnings == ["size mismatch"]
        data = result.to_dict()
        assert data["method_used"] == "raw"
        assert data["verification"]["size_check"] == "mismatch"

    def test_clone_result_no_warnings_when_passed(self) -> None:
        result = CloneResult(succeeded=True, verification=VerificationReport(passed=True))
        assert result.warnings == []
