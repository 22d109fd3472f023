"""
Diskwright preflight checks.

Checks run before a destructive clone: the target must be large enough,
must not be mounted and must differ from the source. Destructive CLI
commands additionally ask for a typed confirmation string.
"""

from __future__ import annotations

import os
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import psutil

from diskwright.core.logging import get_logger
from diskwright.core.sizes import to_mib

logger = get_logger(__name__)

CheckFunction = Callable[[dict[str, Any]], "PreflightCheck | bool"]


@dataclass
class PreflightCheck:
    """Result of a single preflight check."""

    name: str
    passed: bool
    message: str
    severity: str = "info"  # info, warning, error
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class PreflightReport:
    """Complete preflight check report."""

    checks: list[PreflightCheck] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def all_passed(self) -> bool:
        return all(c.passed for c in self.checks)

    @property
    def has_errors(self) -> bool:
        return any(c.severity == "error" and not c.passed for c in self.checks)

    @property
    def has_warnings(self) -> bool:
        return any(c.severity == "warning" and not c.passed for c in self.checks)

    @property
    def failures(self) -> list[PreflightCheck]:
        return [c for c in self.checks if not c.passed]

    def get_summary(self) -> str:
        """Get human-readable summary."""
        lines = [f"Preflight Check Report ({self.timestamp.isoformat()})"]
        lines.append("=" * 60)

        passed = sum(1 for c in self.checks if c.passed)
        lines.append(f"Results: {passed}/{len(self.checks)} checks passed")
        lines.append("")

        for check in self.checks:
            status = "✓" if check.passed else "✗"
            lines.append(f"[{status}] {check.name}: {check.message}")
            for key, value in check.details.items():
                lines.append(f"    {key}: {value}")

        return "\n".join(lines)


class PreflightChecker:
    """Performs preflight checks before operations."""

    def __init__(self) -> None:
        self._checks: list[tuple[str, CheckFunction]] = []

    def add_check(self, name: str, check_func: CheckFunction) -> None:
        """Add a preflight check function."""
        self._checks.append((name, check_func))

    def run_checks(self, context: dict[str, Any]) -> PreflightReport:
        """Run all preflight checks and return report."""
        report = PreflightReport()

        for name, check_func in self._checks:
            try:
                result = check_func(context)
            except (OSError, ValueError, KeyError) as e:
                report.checks.append(
                    PreflightCheck(
                        name=name,
                        passed=False,
                        message=f"Check failed with error: {e}",
                        severity="error",
                    )
                )
                continue

            if isinstance(result, PreflightCheck):
                report.checks.append(result)
            else:
                report.checks.append(
                    PreflightCheck(
                        name=name,
                        passed=bool(result),
                        message="Passed" if result else "Failed",
                        severity="info" if result else "error",
                    )
                )

        logger.info(
            "Preflight checks finished",
            total=len(report.checks),
            failed=len(report.failures),
        )
        return report


def get_mounted_devices() -> list[str]:
    """Devices that currently back a mount point."""
    return [p.device for p in psutil.disk_partitions(all=True) if p.device.startswith("/")]


def is_same_or_partition_of(device: str, disk: str) -> bool:
    """True when ``device`` is ``disk`` itself or one of its partitions.

    Partitions of loop, nbd, nvme and mmcblk devices, and of any device whose
    name ends in a digit, take a ``p`` before the number.
    """
    if device == disk:
        return True
    if not device.startswith(disk):
        return False
    suffix = device[len(disk) :]
    name = os.path.basename(disk)
    if name[-1:].isdigit() or name.startswith(("loop", "nbd", "nvme", "mmcblk")):
        return suffix[:1] == "p" and suffix[1:].isdigit()
    return suffix.isdigit()


def check_distinct_paths(context: dict[str, Any]) -> PreflightCheck:
    """Source and target must not be the same device."""
    source = context.get("source_path", "")
    target = context.get("target_path", "")
    if source and target and os.path.realpath(source) == os.path.realpath(target):
        return PreflightCheck(
            name="Distinct Paths",
            passed=False,
            message=f"Source and target are the same: {source}",
            severity="error",
        )
    return PreflightCheck(
        name="Distinct Paths",
        passed=True,
        message="Source and target differ",
    )


def check_target_size(context: dict[str, Any]) -> PreflightCheck:
    """Check if target has sufficient size."""
    source_size = context.get("source_size", 0)
    target_size = context.get("target_size", 0)

    if target_size == 0:
        return PreflightCheck(
            name="Target Size",
            passed=False,
            message="Could not determine target size",
            severity="error",
        )

    if target_size < source_size:
        return PreflightCheck(
            name="Target Size",
            passed=False,
            message=(
                f"Target ({target_size} bytes) is smaller than source ({source_size} bytes) "
                f"by {to_mib(source_size - target_size)} MiB"
            ),
            severity="error",
            details={
                "source_size": source_size,
                "target_size": target_size,
                "shortfall_mib": to_mib(source_size - target_size),
            },
        )

    return PreflightCheck(
        name="Target Size",
        passed=True,
        message="Target has sufficient size",
        details={"source_size": source_size, "target_size": target_size},
    )


def check_not_mounted(context: dict[str, Any]) -> PreflightCheck:
    """Check if target is not mounted."""
    target_path = context.get("target_path", "")
    mounted_paths = context.get("mounted_paths")
    if mounted_paths is None:
        mounted_paths = get_mounted_devices()

    target = os.path.realpath(target_path) if target_path else ""
    for mounted in mounted_paths:
        if target and is_same_or_partition_of(os.path.realpath(mounted), target):
            message = f"Target {target_path} is currently mounted"
            if mounted != target_path:
                message += f" (as {mounted})"
            return PreflightCheck(
                name="Mount Status",
                passed=False,
                message=message,
                severity="error",
                details={"mounted_device": mounted},
            )

    return PreflightCheck(
        name="Mount Status",
        passed=True,
        message="Target is not mounted",
    )


def check_power_status(context: dict[str, Any]) -> PreflightCheck:
    """Warn when running on a low battery."""
    battery = psutil.sensors_battery() if hasattr(psutil, "sensors_battery") else None
    if battery is None:
        return PreflightCheck(
            name="Power Status",
            passed=True,
            message="No battery detected (desktop/server)",
        )

    if battery.power_plugged:
        return PreflightCheck(
            name="Power Status",
            passed=True,
            message="System is on AC power",
            details={"battery_percent": battery.percent},
        )
    return PreflightCheck(
        name="Power Status",
        passed=battery.percent > 50,
        message=f"System on battery ({battery.percent}%)",
        severity="warning",
        details={"battery_percent": battery.percent},
    )


def create_clone_preflight_checker() -> PreflightChecker:
    """Preflight checker with the standard clone checks."""
    checker = PreflightChecker()
    checker.add_check("Distinct Paths", check_distinct_paths)
    checker.add_check("Target Size", check_target_size)
    checker.add_check("Mount Status", check_not_mounted)
    checker.add_check("Power Status", check_power_status)
    return checker


def generate_confirmation_string(target_identifier: str) -> str:
    """Generate a confirmation string that includes the target identifier."""
    safe_target = re.sub(r"[^a-zA-Z0-9/_-]", "", target_identifier)
    return f"DESTROY-{safe_target.upper()}"
