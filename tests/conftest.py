"""
Pytest configuration and fixtures for Diskwright tests.

No test touches a real device: Linux collaborators run against a recording
command runner, and operations run against the in-memory fakes below.
"""

import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from diskwright.core.config import (  # noqa: E402
    CloneConfig,
    Configuration,
    DeviceConfig,
    LoggingConfig,
)
from diskwright.core.errors import DeviceBusyError  # noqa: E402
from diskwright.core.logging import setup_logging  # noqa: E402
from diskwright.core.models import (  # noqa: E402
    CloneMethod,
    DiskGeometry,
    DiskImageSpec,
    FileSystem,
    ImageFormat,
    PartitionPlacement,
    TableKind,
    TableSnapshot,
)
from diskwright.platform import Toolchain  # noqa: E402
from diskwright.platform.base import (  # noqa: E402
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


def ok(stdout: str = "", command: Any = None) -> CommandResult:
    return CommandResult(returncode=0, stdout=stdout, stderr="", command=command or [])


def failed(returncode: int = 1, stderr: str = "error", command: Any = None) -> CommandResult:
    return CommandResult(returncode=returncode, stdout="", stderr=stderr, command=command or [])


class RecordingRunner:
    """Stands in for ``CommandRunner``; answers by longest matching command prefix."""

    def __init__(self) -> None:
        self.commands: list[list[str]] = []
        self.pipelines: list[list[list[str]]] = []
        self._responses: list[tuple[list[str], CommandResult]] = []

    def respond(
        self, prefix: list[str], returncode: int = 0, stdout: str = "", stderr: str = ""
    ) -> None:
        self._responses.append(
            (prefix, CommandResult(returncode=returncode, stdout=stdout, stderr=stderr, command=prefix))
        )

    def _lookup(self, command: list[str]) -> CommandResult:
        best: tuple[list[str], CommandResult] | None = None
        for prefix, result in self._responses:
            if command[: len(prefix)] == prefix and (best is None or len(prefix) > len(best[0])):
                best = (prefix, result)
        if best is None:
            return ok(command=command)
        return CommandResult(
            returncode=best[1].returncode,
            stdout=best[1].stdout,
            stderr=best[1].stderr,
            command=command,
        )

    def run(
        self,
        command: list[str],
        timeout: int | None = 300,
        check: bool = True,
        capture_output: bool = True,
    ) -> CommandResult:
        self.commands.append(list(command))
        return self._lookup(command)

    def run_pipeline(self, commands: list[list[str]], timeout: int | None = None) -> CommandResult:
        self.pipelines.append([list(c) for c in commands])
        return self._lookup(commands[0])

    def ran(self, *prefix: str) -> bool:
        return any(c[: len(prefix)] == list(prefix) for c in self.commands)


class FakeImageCreator(ImageCreator):
    def __init__(self, events: list[str]) -> None:
        self.events = events
        self.error: Exception | None = None

    def create(self, spec: DiskImageSpec) -> None:
        if self.error:
            raise self.error
        self.events.append(f"create {spec.path}")


class FakeBinder(DeviceBinder):
    def __init__(self, events: list[str], device: str = "/dev/loop7") -> None:
        self.events = events
        self.device = device
        self.busy_detaches = 0
        self.detach_calls = 0
        self.waited: list[str] = []

    def attach(self, image_path: Path, image_format: ImageFormat) -> str:
        self.events.append(f"attach {image_path} {image_format.value}")
        return self.device

    def detach(self, device_path: str) -> None:
        self.detach_calls += 1
        if self.busy_detaches > 0:
            self.busy_detaches -= 1
            raise DeviceBusyError(device_path, "target is busy")
        self.events.append(f"detach {device_path}")

    def wait_for_device(self, device_path: str, timeout: float) -> None:
        self.waited.append(device_path)

    def settle(self, device_path: str) -> None:
        self.events.append(f"settle {device_path}")


class FakeTableApplier(PartitionTableApplier):
    def __init__(self, events: list[str]) -> None:
        self.events = events
        self.placements: list[PartitionPlacement] = []
        self.fail_on_index: int | None = None
        self.error: Exception | None = None

    def create_table(self, device_path: str, table_kind: TableKind) -> None:
        self.events.append(f"mklabel {table_kind.value}")

    def create_partition(
        self, device_path: str, placement: PartitionPlacement, geometry: DiskGeometry
    ) -> None:
        if self.error is not None and placement.index == self.fail_on_index:
            raise self.error
        self.placements.append(placement)
        self.events.append(f"mkpart {placement.index} {placement.role.value}")


class FakeFormatter(FilesystemFormatter):
    def __init__(self, events: list[str]) -> None:
        self.events = events
        self.formatted: list[tuple[str, FileSystem]] = []

    def format(self, partition_path: str, filesystem: FileSystem) -> None:
        self.formatted.append((partition_path, filesystem))
        self.events.append(f"mkfs {partition_path} {filesystem.value}")


class FakeCopyTool(CopyTool):
    """Return codes per method are consumed in order; the last one repeats."""

    def __init__(self) -> None:
        self.outcomes: dict[CloneMethod, list[int]] = {}
        self.unavailable: set[CloneMethod] = set()
        self.calls: list[tuple[CloneMethod, int]] = []
        self.prepared: list[tuple[str, str]] = []
        self.on_copy: Callable[[CloneMethod], None] | None = None

    def prepare(self, source: str, target: str) -> None:
        self.prepared.append((source, target))

    def is_available(self, method: CloneMethod) -> bool:
        return method not in self.unavailable

    def copy(self, method: CloneMethod, source: str, target: str, block_size: int) -> CommandResult:
        self.calls.append((method, block_size))
        if self.on_copy:
            self.on_copy(method)
        codes = self.outcomes.get(method, [0])
        code = codes.pop(0) if len(codes) > 1 else codes[0]
        if code == 0:
            return ok(command=[method.value])
        return failed(code, f"{method.value} failed", command=[method.value])


class FakeRescueTool(RescueTool):
    def __init__(self, available: bool = True, returncode: int = 0) -> None:
        self.available = available
        self.returncode = returncode
        self.calls: list[tuple[str, str, Path, int]] = []

    def is_available(self) -> bool:
        return self.available

    def copy(self, source: str, target: str, log_path: Path, retries: int) -> CommandResult:
        self.calls.append((source, target, log_path, retries))
        if self.returncode == 0:
            return ok(command=["ddrescue"])
        return failed(self.returncode, "read error", command=["ddrescue"])


class FakeSizeProbe(SizeProbe):
    def __init__(self) -> None:
        self.sizes: dict[str, int] = {}

    def size_bytes(self, path: str) -> int:
        from diskwright.core.errors import ToolError

        if path not in self.sizes:
            raise ToolError(["blockdev", "--getsize64", path], 1, "No such device")
        return self.sizes[path]


class FakeFilesystemProbe(FilesystemProbe):
    def __init__(self) -> None:
        self.filesystems: dict[str, FileSystem] = {}
        self.uuids: dict[str, str] = {}

    def detect(self, path: str) -> FileSystem:
        return self.filesystems.get(path, FileSystem.NONE)

    def uuid(self, path: str) -> str | None:
        return self.uuids.get(path)


class FakeFilesystemChecker(FilesystemChecker):
    def __init__(self) -> None:
        self.result: CommandResult | None = ok()
        self.calls: list[tuple[str, FileSystem]] = []

    def check(self, path: str, filesystem: FileSystem) -> CommandResult | None:
        self.calls.append((path, filesystem))
        return self.result


class FakeTableReader(PartitionTableReader):
    def __init__(self) -> None:
        self.snapshot = TableSnapshot(device_path="", disk_bytes=0, table_kind=None)

    def read(self, device_path: str) -> TableSnapshot:
        return self.snapshot


class FakeImageProbe(ImageProbe):
    def __init__(self) -> None:
        self.image_format = ImageFormat.RAW
        self.virtual_bytes = 0

    def info(self, image_path: Path) -> tuple[ImageFormat, int]:
        return self.image_format, self.virtual_bytes


@pytest.fixture(autouse=True, scope="session")
def quiet_logging() -> None:
    """Route structlog through stdlib logging without console or file output."""
    setup_logging(LoggingConfig(console_enabled=False, file_enabled=False))


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Temporary directory for tests."""
    return tmp_path


@pytest.fixture
def config(tmp_path: Path) -> Configuration:
    """Configuration with no delays and all paths under ``tmp_path``."""
    return Configuration(
        logging=LoggingConfig(
            console_enabled=False,
            file_enabled=False,
            log_directory=tmp_path / "logs",
        ),
        clone=CloneConfig(retry_delay_seconds=0, work_directory=tmp_path / "work"),
        device=DeviceConfig(detach_delay_seconds=0, poll_interval_seconds=0.01),
    )


@pytest.fixture
def config_file(tmp_path: Path, config: Configuration) -> Path:
    """The ``config`` fixture saved as JSON, for ``--config``."""
    path = tmp_path / "config.json"
    config.save(path)
    return path


@pytest.fixture
def events() -> list[str]:
    """Ordered log of mutating calls made on the fake toolchain."""
    return []


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def toolchain(events: list[str]) -> Toolchain:
    """Toolchain made entirely of in-memory fakes."""
    return Toolchain(
        image_creator=FakeImageCreator(events),
        binder=FakeBinder(events),
        table_applier=FakeTableApplier(events),
        formatter=FakeFormatter(events),
        copy_tool=FakeCopyTool(),
        rescue_tool=FakeRescueTool(available=False),
        size_probe=FakeSizeProbe(),
        fs_probe=FakeFilesystemProbe(),
        fs_checker=FakeFilesystemChecker(),
        table_reader=FakeTableReader(),
        image_probe=FakeImageProbe(),
    )


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow running tests")
