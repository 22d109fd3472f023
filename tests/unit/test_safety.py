"""
Tests for diskwright.core.safety module.
"""

from collections import namedtuple
from pathlib import Path

import pytest

from diskwright.core.safety import (
    PreflightCheck,
    PreflightChecker,
    PreflightReport,
    check_distinct_paths,
    check_not_mounted,
    check_power_status,
    check_target_size,
    create_clone_preflight_checker,
    generate_confirmation_string,
)

Battery = namedtuple("Battery", ["percent", "secsleft", "power_plugged"])


class TestPreflightCheck:
    """Tests for PreflightCheck."""

    def test_passed_check(self) -> None:
        check = PreflightCheck(name="Test Check", passed=True, message="OK")
        assert check.passed is True
        assert check.severity == "info"

    def test_failed_check(self) -> None:
        check = PreflightCheck(
            name="Test Check",
            passed=False,
            message="Failed",
            severity="error",
        )
        assert check.passed is False
        assert check.severity == "error"


class TestPreflightReport:
    """Tests for PreflightReport."""

    def test_all_passed(self) -> None:
        report = PreflightReport(
            checks=[
                PreflightCheck(name="Check 1", passed=True, message="OK"),
                PreflightCheck(name="Check 2", passed=True, message="OK"),
            ]
        )
        assert report.all_passed is True
        assert report.has_errors is False
        assert report.has_warnings is False

    def test_has_errors(self) -> None:
        report = PreflightReport(
            checks=[
                PreflightCheck(name="Check 1", passed=True, message="OK"),
                PreflightCheck(
                    name="Check 2", passed=False, message="Error", severity="error"
                ),
            ]
        )
        assert report.all_passed is False
        assert report.has_errors is True

    def test_has_warnings(self) -> None:
        report = PreflightReport(
            checks=[
                PreflightCheck(name="Check 1", passed=True, message="OK"),
                PreflightCheck(
                    name="Check 2", passed=False, message="Warning", severity="warning"
                ),
            ]
        )
        assert report.has_warnings is True

    def test_get_summary(self) -> None:
        report = PreflightReport(
            checks=[
                PreflightCheck(name="Check 1", passed=True, message="OK"),
                PreflightCheck(name="Check 2", passed=False, message="Failed"),
            ]
        )
        summary = report.get_summary()
        assert "1/2 checks passed" in summary
        assert "Check 1" in summary
        assert "Check 2" in summary


class TestPreflightChecker:
    """Tests for PreflightChecker."""

    def test_add_and_run_checks(self) -> None:
        checker = PreflightChecker()

        checker.add_check("Always Pass", lambda ctx: True)
        checker.add_check("Always Fail", lambda ctx: False)

        report = checker.run_checks({})

        assert len(report.checks) == 2
        assert report.checks[0].passed is True
        assert report.checks[1].passed is False

    def test_check_returns_preflight_check(self) -> None:
        checker = PreflightChecker()

        checker.add_check(
            "Custom Check",
            lambda ctx: PreflightCheck(
                name="Custom",
                passed=True,
                message="Custom OK",
            ),
        )

        report = checker.run_checks({})

        assert report.checks[0].message == "Custom OK"

    def test_check_exception_handling(self) -> None:
        checker = PreflightChecker()

        def failing_check(ctx: dict) -> bool:
            raise ValueError("Check error")

        checker.add_check("Failing Check", failing_check)

        report = checker.run_checks({})

        assert report.checks[0].passed is False
        assert "error" in report.checks[0].message.lower()


class TestPreflightFunctions:
    """Tests for preflight check functions."""

    def test_check_target_size_sufficient(self) -> None:
        context = {"source_size": 1000, "target_size": 2000}
        result = check_target_size(context)
        assert result.passed is True

    def test_check_target_size_insufficient(self) -> None:
        context = {"source_size": 2000, "target_size": 1000}
        result = check_target_size(context)
        assert result.passed is False
        assert result.details["shortfall_mib"] == 1
        assert "by 1 MiB" in result.message

    def test_check_target_size_zero(self) -> None:
        context = {"source_size": 1000, "target_size": 0}
        result = check_target_size(context)
        assert result.passed is False

    def test_check_not_mounted_clean(self) -> None:
        context = {"target_path": "/dev/sda1", "mounted_paths": ["/dev/sdb1"]}
        result = check_not_mounted(context)
        assert result.passed is True

    def test_check_not_mounted_is_mounted(self) -> None:
        context = {"target_path": "/dev/sda1", "mounted_paths": ["/dev/sda1"]}
        result = check_not_mounted(context)
        assert result.passed is False

    @pytest.mark.parametrize(
        ("target", "mounted"),
        [
            ("/dev/sdb", "/dev/sdb1"),
            ("/dev/nvme0n1", "/dev/nvme0n1p2"),
            ("/dev/loop3", "/dev/loop3p1"),
            ("/dev/mmcblk0", "/dev/mmcblk0p1"),
        ],
    )
    def test_check_not_mounted_whole_disk_with_mounted_partition(
        self, target: str, mounted: str
    ) -> None:
        result = check_not_mounted({"target_path": target, "mounted_paths": [mounted]})
        assert result.passed is False
        assert result.details["mounted_device"] == mounted
        assert f"(as {mounted})" in result.message

    @pytest.mark.parametrize(
        ("target", "mounted"),
        [
            ("/dev/sdb", "/dev/sdbc1"),
            ("/dev/sda1", "/dev/sda10"),
            ("/dev/nvme0n1", "/dev/nvme0n10"),
            ("/dev/sdb1", "/dev/sdb"),
        ],
    )
    def test_check_not_mounted_ignores_similar_names(self, target: str, mounted: str) -> None:
        result = check_not_mounted({"target_path": target, "mounted_paths": [mounted]})
        assert result.passed is True

    def test_check_not_mounted_resolves_symlinks(self, temp_dir: Path) -> None:
        device = temp_dir / "sdc2"
        device.write_bytes(b"")
        by_id = temp_dir / "by-id"
        by_id.mkdir()
        link = by_id / "usb-Flash_Disk-part2"
        link.symlink_to(device)

        result = check_not_mounted({"target_path": str(link), "mounted_paths": [str(device)]})

        assert result.passed is False
        assert result.severity == "error"

    def test_check_not_mounted_uses_psutil_by_default(self, mocker) -> None:
        partition = namedtuple("Partition", ["device", "mountpoint"])
        mocker.patch(
            "diskwright.core.safety.psutil.disk_partitions",
            return_value=[partition("/dev/sdc2", "/mnt"), partition("tmpfs", "/tmp")],
        )
        assert check_not_mounted({"target_path": "/dev/sdc2"}).passed is False
        assert check_not_mounted({"target_path": "/dev/sdc3"}).passed is True

    def test_check_distinct_paths(self, temp_dir: Path) -> None:
        image = temp_dir / "a.img"
        image.write_bytes(b"")
        link = temp_dir / "link.img"
        link.symlink_to(image)

        same = check_distinct_paths({"source_path": str(image), "target_path": str(link)})
        assert same.passed is False
        assert same.severity == "error"

        other = check_distinct_paths(
            {"source_path": str(image), "target_path": str(temp_dir / "b.img")}
        )
        assert other.passed is True

    @pytest.mark.parametrize(
        ("battery", "passed", "severity"),
        [
            (None, True, "info"),
            (Battery(20, 600, True), True, "info"),
            (Battery(80, 3600, False), True, "warning"),
            (Battery(20, 600, False), False, "warning"),
        ],
    )
    def test_check_power_status(self, mocker, battery, passed: bool, severity: str) -> None:
        mocker.patch("diskwright.core.safety.psutil.sensors_battery", return_value=battery)
        result = check_power_status({})
        assert result.passed is passed
        assert result.severity == severity


class TestClonePreflight:
    def test_standard_checks(self, mocker) -> None:
        mocker.patch("diskwright.core.safety.psutil.sensors_battery", return_value=None)
        checker = create_clone_preflight_checker()

        report = checker.run_checks(
            {
                "source_path": "/dev/sda1",
                "target_path": "/dev/sdb1",
                "source_size": 100,
                "target_size": 50,
                "mounted_paths": [],
            }
        )

        assert [c.name for c in report.checks] == [
            "Distinct Paths",
            "Target Size",
            "Mount Status",
            "Power Status",
        ]
        assert report.has_errors
        assert [c.name for c in report.failures] == ["Target Size"]


class TestConfirmationString:
    def test_device_path(self) -> None:
        assert generate_confirmation_string("/dev/sdb1") == "DESTROY-/DEV/SDB1"

    def test_strips_unsafe_characters(self) -> None:
        assert generate_confirmation_string("my disk.img") == "DESTROY-MYDISKIMG"

    def test_batch(self) -> None:
        assert generate_confirmation_string("batch") == "DESTROY-BATCH"
