"""
Diskwright configuration management.

Provides centralized, immutable configuration with validation using Pydantic.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from diskwright.core.sizes import KIB, MIB

DEFAULT_CONFIG_PATH = Path.home() / ".diskwright" / "config.json"


class LoggingConfig(BaseModel):
    """Configuration for structured logging."""

    model_config = ConfigDict(frozen=True)

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    file_enabled: bool = True
    console_enabled: bool = True
    json_format: bool = False
    log_directory: Path = Field(default_factory=lambda: Path.home() / ".diskwright" / "logs")

    @field_validator("log_directory", mode="before")
    @classmethod
    def expand_path(cls, v: str | Path) -> Path:
        return Path(v).expanduser().resolve()


class LayoutConfig(BaseModel):
    """Configuration for partition layout planning."""

    model_config = ConfigDict(frozen=True)

    alignment_bytes: int = Field(default=MIB, gt=0)
    sector_size: int = Field(default=512, gt=0)
    extended_safety_margin_bytes: int = Field(default=MIB, ge=0)
    default_table: Literal["mbr", "gpt"] = "mbr"

    @model_validator(mode="after")
    def check_alignment(self) -> LayoutConfig:
        if self.alignment_bytes % self.sector_size != 0:
            raise ValueError("alignment_bytes must be a multiple of sector_size")
        return self


class CloneConfig(BaseModel):
    """Configuration for the clone engine."""

    model_config = ConfigDict(frozen=True)

    block_size_bytes: int = Field(default=4 * MIB, gt=0)
    block_size_schedule: tuple[int, ...] = (4 * MIB, MIB, 512 * KIB)
    max_attempts: int = Field(default=3, ge=1, le=10)
    retry_delay_seconds: float = Field(default=2.0, ge=0)
    rescue_enabled: bool = True
    rescue_retries: int = Field(default=3, ge=0, le=20)
    size_tolerance_bytes: int = Field(default=MIB, ge=0)
    verify_after_clone: bool = True
    work_directory: Path = Field(default_factory=lambda: Path.home() / ".diskwright" / "work")

    @field_validator("block_size_schedule")
    @classmethod
    def check_schedule(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        if not v:
            raise ValueError("block_size_schedule must not be empty")
        if any(size <= 0 for size in v):
            raise ValueError("block sizes must be positive")
        return v

    @field_validator("work_directory", mode="before")
    @classmethod
    def expand_work_path(cls, v: str | Path) -> Path:
        return Path(v).expanduser().resolve()


class DeviceConfig(BaseModel):
    """Configuration for image-to-device binding."""

    model_config = ConfigDict(frozen=True)

    nbd_slots: int = Field(default=16, ge=1, le=128)
    nbd_max_part: int = Field(default=16, ge=1, le=64)
    attach_timeout_seconds: float = Field(default=10.0, gt=0)
    poll_interval_seconds: float = Field(default=0.5, gt=0)
    detach_attempts: int = Field(default=3, ge=1, le=10)
    detach_delay_seconds: float = Field(default=2.0, ge=0)


class Configuration(BaseModel):
    """Main Diskwright configuration."""

    model_config = ConfigDict(frozen=True)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    layout: LayoutConfig = Field(default_factory=LayoutConfig)
    clone: CloneConfig = Field(default_factory=CloneConfig)
    device: DeviceConfig = Field(default_factory=DeviceConfig)
    dry_run: bool = False
    verbose: bool = False

    @classmethod
    def load(cls, config_path: Path | None = None) -> Configuration:
        """Load configuration from file or create default."""
        if config_path is None:
            config_path = DEFAULT_CONFIG_PATH

        if config_path.exists():
            with open(config_path) as f:
                data = json.load(f)
            return cls.model_validate(data)

        return cls()

    def save(self, config_path: Path | None = None) -> None:
        """Save configuration to file."""
        if config_path is None:
            config_path = DEFAULT_CONFIG_PATH

        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, default=str)

    def with_overrides(self, **overrides: Any) -> Configuration:
        """Return a copy with top-level fields replaced."""
        return self.model_copy(update=overrides)

    def ensure_directories(self) -> None:
        """Create all required directories."""
        if self.logging.file_enabled:
            self.logging.log_directory.mkdir(parents=True, exist_ok=True)
        self.clone.work_directory.mkdir(parents=True, exist_ok=True)


def load_config(config_path: Path | None = None) -> Configuration:
    """Load or create configuration."""
    config = Configuration.load(config_path)
    config.ensure_directories()
    return config
