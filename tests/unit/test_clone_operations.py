"""
Tests for diskwright.operations.clone module.
"""

import pytest

from diskwright.core.config import Configuration
from diskwright.core.errors import PreflightFailedError
from diskwright.core.job import JobStatus
from diskwright.core.models import CloneMethod, FileSystem
from diskwright.core.session import Session
from diskwright.core.sizes import GIB, MIB
from diskwright.operations import (
    BatchCloneJob,
    ClonePartitionJob,
    PartitionCloner,
)
from diskwright.platform import Toolchain

SOURCE = "/dev/sda1"
TARGET = "/dev/sdb1"


@pytest.fixture(autouse=True)
def no_host_state(mocker) -> None:
    """Keep preflight checks away from the host's mounts and battery."""
    mocker.patch("diskwright.core.safety.get_mounted_devices", return_value=[])
    mocker.patch("diskwright.core.safety.psutil.sensors_battery", return_value=None)


@pytest.fixture
def devices(toolchain: Toolchain) -> Toolchain:
    toolchain.size_probe.sizes.update({SOURCE: GIB, TARGET: GIB, "/dev/sda2": GIB, "/dev/sdb2": 2 * GIB})
    toolchain.fs_probe.filesystems.update({SOURCE: FileSystem.EXT4, TARGET: FileSystem.EXT4})
    return toolchain


@pytest.fixture
def cloner(devices: Toolchain, config: Configuration) -> PartitionCloner:
    return PartitionCloner(devices, config, sleep=lambda seconds: None)


class TestClone:
    def test_native_method_first(self, cloner: PartitionCloner, devices: Toolchain) -> None:
        result = cloner.clone(SOURCE, TARGET)

        assert result.succeeded is True
        assert result.method_used is CloneMethod.E2IMAGE
        assert result.attempt_count == 1
        assert result.verification is not None
        assert result.verification.passed is True
        assert devices.fs_checker.calls == [(TARGET, FileSystem.EXT4)]

    def test_fallback_to_raw(self, cloner: PartitionCloner, devices: Toolchain) -> None:
        devices.copy_tool.outcomes[CloneMethod.E2IMAGE] = [1]

        result = cloner.clone(SOURCE, TARGET)

        assert result.method_used is CloneMethod.RAW
        assert result.attempt_count == 1

    def test_unavailable_native_tool(self, cloner: PartitionCloner, devices: Toolchain) -> None:
        devices.copy_tool.unavailable.add(CloneMethod.E2IMAGE)
        cloner = PartitionCloner(devices, cloner.config, sleep=lambda seconds: None)

        result = cloner.clone(SOURCE, TARGET)

        assert [method for method, _ in devices.copy_tool.calls] == [CloneMethod.RAW]
        assert result.method_used is CloneMethod.RAW

    def test_explicit_options(self, cloner: PartitionCloner, devices: Toolchain) -> None:
        devices.copy_tool.outcomes[CloneMethod.NTFSCLONE] = [1]
        devices.copy_tool.outcomes[CloneMethod.RAW] = [1]

        result = cloner.clone(
            SOURCE,
            TARGET,
            filesystem=FileSystem.NTFS,
            block_size=MIB,
            max_attempts=2,
            verify=False,
        )

        assert result.succeeded is False
        assert result.attempt_count == 2
        assert result.verification is None
        assert devices.copy_tool.calls[0] == (CloneMethod.NTFSCLONE, MIB)

    def test_verification_failure_is_a_warning(
        self, cloner: PartitionCloner, devices: Toolchain
    ) -> None:
        devices.size_probe.sizes[TARGET] = GIB + 8 * MIB

        result = cloner.clone(SOURCE, TARGET)

        assert result.succeeded is True
        assert result.verification.passed is False
        assert any("Size mismatch" in w for w in result.warnings)


class TestPreflight:
    def test_smaller_target_is_refused(self, cloner: PartitionCloner, devices: Toolchain) -> None:
        devices.size_probe.sizes[TARGET] = GIB // 2

        with pytest.raises(PreflightFailedError) as exc_info:
            cloner.check_preflight(SOURCE, TARGET)

        assert any(f.startswith("Target Size") for f in exc_info.value.failures)

    def test_same_path_is_refused(self, cloner: PartitionCloner) -> None:
        with pytest.raises(PreflightFailedError, match="Distinct Paths"):
            cloner.check_preflight(SOURCE, SOURCE)

    def test_mounted_target_is_refused(self, cloner: PartitionCloner, mocker) -> None:
        mocker.patch("diskwright.core.safety.get_mounted_devices", return_value=[TARGET])
        with pytest.raises(PreflightFailedError, match="Mount Status"):
            cloner.check_preflight(SOURCE, TARGET)

    def test_unknown_target_size_is_refused(self, cloner: PartitionCloner) -> None:
        with pytest.raises(PreflightFailedError, match="Could not determine target size"):
            cloner.check_preflight(SOURCE, "/dev/missing")

    def test_dry_run_reports_warnings(self, devices: Toolchain, config: Configuration) -> None:
        from diskwright.core.job import JobContext

        cloner = PartitionCloner(devices, config.with_overrides(dry_run=True))
        context = JobContext()

        cloner.check_preflight(SOURCE, "/dev/missing", context)

        assert context.get_warnings() == ["Target Size: Could not determine target size"]


class TestCloneBatch:
    def test_failure_does_not_stop_batch(
        self, cloner: PartitionCloner, devices: Toolchain
    ) -> None:
        summary = cloner.clone_batch(
            [(SOURCE, "/dev/missing"), ("/dev/sda2", "/dev/sdb2")]
        )

        assert summary.succeeded == 1
        assert summary.failed == 1
        assert summary.cancelled is False
        first, second = summary.entries
        assert "Preflight checks failed" in first.error
        assert second.succeeded is True
        assert second.result.method_used is CloneMethod.RAW

    def test_failed_copy_is_recorded(self, cloner: PartitionCloner, devices: Toolchain) -> None:
        devices.copy_tool.outcomes = {CloneMethod.E2IMAGE: [1], CloneMethod.RAW: [1]}

        summary = cloner.clone_batch([(SOURCE, TARGET)], max_attempts=1)

        entry = summary.entries[0]
        assert entry.succeeded is False
        assert "raw" in entry.error
        assert summary.to_dict()["failed"] == 1

    def test_cancelled_batch_stops(self, cloner: PartitionCloner, devices: Toolchain) -> None:
        from diskwright.core.job import JobContext

        context = JobContext()
        devices.copy_tool.on_copy = lambda method: context.cancel()

        summary = cloner.clone_batch(
            [(SOURCE, TARGET), ("/dev/sda2", "/dev/sdb2")], context=context
        )

        assert summary.cancelled is True
        assert len(summary.entries) == 1


class TestCloneJobs:
    def test_clone_partition_job(
        self, devices: Toolchain, config: Configuration
    ) -> None:
        session = Session(config, toolchain=devices)
        job = ClonePartitionJob(SOURCE, TARGET)

        result = session.run_job(job)

        assert result.success is True
        assert result.data.method_used is CloneMethod.E2IMAGE
        assert job.status is JobStatus.COMPLETED

    def test_clone_partition_job_preflight_failure(
        self, devices: Toolchain, config: Configuration
    ) -> None:
        devices.size_probe.sizes[TARGET] = MIB
        session = Session(config, toolchain=devices)

        result = session.run_job(ClonePartitionJob(SOURCE, TARGET))

        assert result.success is False
        assert isinstance(result.exception, PreflightFailedError)
        assert session.get_report().errors[0]["error_type"] == "PreflightFailedError"

    def test_clone_partition_plan(self) -> None:
        plan = ClonePartitionJob(SOURCE, TARGET, verify=False).get_plan()

        assert "DESTROY all data on /dev/sdb1" in plan
        assert "Verify: No" in plan
        assert "4. Verify" not in plan

    def test_batch_job_warnings(self, devices: Toolchain, config: Configuration) -> None:
        session = Session(config, toolchain=devices)

        result = session.run_job(
            BatchCloneJob([(SOURCE, "/dev/missing"), ("/dev/sda2", "/dev/sdb2")])
        )

        assert result.success is True
        assert result.data.succeeded == 1
        assert any(w.startswith(f"{SOURCE} -> /dev/missing") for w in result.warnings)

    def test_batch_job_rejects_duplicate_targets(
        self, devices: Toolchain, config: Configuration
    ) -> None:
        session = Session(config, toolchain=devices)

        result = session.run_job(BatchCloneJob([(SOURCE, TARGET), ("/dev/sda2", TARGET)]))

        assert result.success is False
        assert "only once" in result.error

    def test_batch_job_requires_pairs(self) -> None:
        assert BatchCloneJob([]).validate() == ["At least one source/target pair is required"]
