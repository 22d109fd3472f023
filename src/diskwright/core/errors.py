"""
Diskwright exception hierarchy.

Exception Hierarchy:
    DiskwrightError (base)
        ├── ValidationError
        │   ├── InvalidSizeError
        │   ├── ManifestError
        │   ├── PreflightFailedError
        │   └── LayoutError
        │       ├── AmbiguousRemainingError
        │       ├── MbrConstraintViolation
        │       ├── ExtendedTooSmallError
        │       └── InsufficientDiskSpaceError
        ├── ResourceError
        │   ├── NoFreeDeviceError
        │   ├── DeviceBusyError
        │   └── DeviceTimeoutError
        ├── ToolError
        └── PartialOperationError

Validation errors are raised before any device is touched and are never
retried. Resource errors may be retried by the caller a bounded number of
times. Tool errors carry the failing command and its stderr.
"""

from __future__ import annotations

from collections.abc import Sequence


class DiskwrightError(Exception):
    """Base exception for all Diskwright operations."""


class ValidationError(DiskwrightError):
    """Input was rejected before any destructive call."""


class InvalidSizeError(ValidationError):
    """A size string could not be parsed."""

    def __init__(self, value: str, reason: str = ""):
        self.value = value
        self.reason = reason
        msg = f"Invalid size: {value!r}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class ManifestError(ValidationError):
    """A partition manifest entry or file is malformed."""

    def __init__(self, message: str, entry: str | None = None):
        self.entry = entry
        if entry is not None:
            message = f"{message}: {entry!r}"
        super().__init__(message)


class PreflightFailedError(ValidationError):
    """A destructive operation was refused by its preflight checks."""

    def __init__(self, failures: Sequence[str]):
        self.failures = list(failures)
        super().__init__("Preflight checks failed: " + "; ".join(self.failures))


class LayoutError(ValidationError):
    """Base exception for partition layout planning."""


class AmbiguousRemainingError(LayoutError):
    """More than one request asked for the remaining space."""

    def __init__(self, count: int):
        self.count = count
        super().__init__(
            f"Only one partition may use 'remaining' space, found {count}"
        )


class MbrConstraintViolation(LayoutError):
    """MBR allows four primary/extended entries and a single extended."""

    def __init__(self, primary: int, extended: int):
        self.primary = primary
        self.extended = extended
        if extended > 1:
            detail = f"only one extended partition allowed, found {extended}"
        else:
            detail = (
                f"at most 4 primary/extended partitions allowed, "
                f"found {primary} primary and {extended} extended"
            )
        super().__init__(f"MBR constraint violated: {detail}")


class ExtendedTooSmallError(LayoutError):
    """An explicitly sized extended partition cannot hold its logicals."""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            f"Extended partition too small: requires {required} bytes "
            f"for logical partitions, has {available}"
        )


class InsufficientDiskSpaceError(LayoutError):
    """The manifest does not fit on the disk."""

    def __init__(self, required: int, available: int, index: int | None = None):
        self.required = required
        self.available = available
        self.index = index
        msg = f"Insufficient disk space: requires {required} bytes, {available} available"
        if index is not None:
            msg = f"Partition {index}: {msg}"
        super().__init__(msg)


class ResourceError(DiskwrightError):
    """A finite system resource could not be acquired or released."""


class NoFreeDeviceError(ResourceError):
    """No free loop or NBD slot is available."""

    def __init__(self, kind: str, scanned: int = 0):
        self.kind = kind
        self.scanned = scanned
        msg = f"No free {kind} device available"
        if scanned:
            msg += f" (scanned {scanned} slots)"
        super().__init__(msg)


class DeviceBusyError(ResourceError):
    """Device is currently in use."""

    def __init__(self, device: str, reason: str = ""):
        self.device = device
        self.reason = reason
        msg = f"Device {device} is busy"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class DeviceTimeoutError(ResourceError):
    """Device node did not appear within the timeout."""

    def __init__(self, device: str, timeout: float):
        self.device = device
        self.timeout = timeout
        super().__init__(f"Device {device} did not appear within {timeout:g}s")


class ToolError(DiskwrightError):
    """An external tool exited with a non-zero status."""

    def __init__(self, command: Sequence[str], returncode: int, stderr: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        msg = f"{self.command[0] if self.command else 'command'} failed with exit code {returncode}"
        tail = stderr.strip().splitlines()[-1:] if stderr else []
        if tail:
            msg += f": {tail[0]}"
        super().__init__(msg)


class PartialOperationError(DiskwrightError):
    """A multi-step operation failed after its first destructive call.

    The target is left in an undefined state; ``completed_steps`` lists what
    was done before ``cause`` was raised.
    """

    def __init__(self, target: str, completed_steps: Sequence[str], cause: BaseException):
        self.target = target
        self.completed_steps = list(completed_steps)
        self.cause = cause
        steps = ", ".join(self.completed_steps) or "none"
        super().__init__(
            f"Operation on {target} failed after partial completion "
            f"(completed: {steps}); device state is undefined: {cause}"
        )
