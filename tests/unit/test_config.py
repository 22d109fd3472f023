"""
Tests for diskwright.core.config module.
"""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from diskwright.core.config import (
    CloneConfig,
    Configuration,
    DeviceConfig,
    LayoutConfig,
    LoggingConfig,
)
from diskwright.core.sizes import KIB, MIB


class TestLoggingConfig:
    """Tests for LoggingConfig."""

    def test_default_values(self) -> None:
        config = LoggingConfig()
        assert config.level == "INFO"
        assert config.file_enabled is True
        assert config.console_enabled is True
        assert config.json_format is False

    def test_path_expansion(self) -> None:
        config = LoggingConfig(log_directory="~/logs")
        assert "~" not in str(config.log_directory)
        assert config.log_directory.is_absolute()

    def test_rejects_unknown_level(self) -> None:
        with pytest.raises(ValidationError):
            LoggingConfig(level="LOUD")


class TestLayoutConfig:
    """Tests for LayoutConfig."""

    def test_default_values(self) -> None:
        config = LayoutConfig()
        assert config.alignment_bytes == MIB
        assert config.sector_size == 512
        assert config.extended_safety_margin_bytes == MIB
        assert config.default_table == "mbr"

    def test_alignment_must_be_sector_multiple(self) -> None:
        with pytest.raises(ValidationError):
            LayoutConfig(alignment_bytes=1000, sector_size=512)

    def test_4k_sectors(self) -> None:
        config = LayoutConfig(sector_size=4096)
        assert config.alignment_bytes % config.sector_size == 0


class TestCloneConfig:
    """Tests for CloneConfig."""

    def test_default_values(self) -> None:
        config = CloneConfig()
        assert config.block_size_bytes == 4 * MIB
        assert config.block_size_schedule == (4 * MIB, MIB, 512 * KIB)
        assert config.max_attempts == 3
        assert config.retry_delay_seconds == 2.0
        assert config.size_tolerance_bytes == MIB
        assert config.rescue_enabled is True

    def test_max_attempts_bounds(self) -> None:
        with pytest.raises(ValidationError):
            CloneConfig(max_attempts=0)
        with pytest.raises(ValidationError):
            CloneConfig(max_attempts=11)

    def test_schedule_must_not_be_empty(self) -> None:
        with pytest.raises(ValidationError):
            CloneConfig(block_size_schedule=())

    def test_schedule_rejects_non_positive(self) -> None:
        with pytest.raises(ValidationError):
            CloneConfig(block_size_schedule=(MIB, 0))


class TestDeviceConfig:
    def test_default_values(self) -> None:
        config = DeviceConfig()
        assert config.nbd_slots == 16
        assert config.detach_attempts == 3
        assert config.detach_delay_seconds == 2.0
        assert config.attach_timeout_seconds == 10.0


class TestConfiguration:
    """Tests for the main Configuration."""

    def test_default_config(self) -> None:
        config = Configuration()
        assert isinstance(config.logging, LoggingConfig)
        assert isinstance(config.layout, LayoutConfig)
        assert config.dry_run is False

    def test_frozen(self) -> None:
        config = Configuration()
        with pytest.raises(ValidationError):
            config.dry_run = True  # type: ignore[misc]

    def test_with_overrides_returns_new_instance(self) -> None:
        config = Configuration()
        dry = config.with_overrides(dry_run=True)

        assert dry.dry_run is True
        assert config.dry_run is False
        assert dry.layout == config.layout

    def test_save_and_load(self, tmp_path: Path) -> None:
        config_path = tmp_path / "config.json"
        config = Configuration(
            clone=CloneConfig(max_attempts=5, work_directory=tmp_path / "work"),
            verbose=True,
        )
        config.save(config_path)

        assert config_path.exists()
        with open(config_path) as f:
            data = json.load(f)
        assert data["clone"]["max_attempts"] == 5

        loaded = Configuration.load(config_path)
        assert loaded.clone.max_attempts == 5
        assert loaded.clone.block_size_schedule == config.clone.block_size_schedule
        assert loaded.verbose is True

    def test_load_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        config = Configuration.load(tmp_path / "missing.json")
        assert config == Configuration()

    def test_ensure_directories(self, tmp_path: Path) -> None:
        config = Configuration(
            logging=LoggingConfig(log_directory=tmp_path / "logs"),
            clone=CloneConfig(work_directory=tmp_path / "work"),
        )
        config.ensure_directories()

        assert (tmp_path / "logs").is_dir()
        assert (tmp_path / "work").is_dir()
