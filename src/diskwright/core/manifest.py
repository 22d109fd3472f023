"""
Diskwright partition manifests.

A manifest describes a disk image: its file, size, format, table type and
an ordered list of partitions. Partitions are written either as compact
``size:filesystem:role`` strings (``2G:ext4:primary``, ``remaining:vfat``)
or as objects. Everything is parsed once here into typed requests.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from diskwright.core.errors import InvalidSizeError, ManifestError
from diskwright.core.models import (
    DiskImageSpec,
    FileSystem,
    ImageFormat,
    MbrRole,
    PartitionRequest,
    Preallocation,
    TableKind,
)
from diskwright.core.sizes import format_size_exact, parse_bytes, parse_size


def parse_partition_entry(entry: str) -> PartitionRequest:
    """Parse a ``size[:filesystem[:role]]`` string."""
    parts = entry.strip().split(":")
    if len(parts) > 3 or not parts[0].strip():
        raise ManifestError("Invalid partition entry", entry)

    size_text = parts[0]
    fs_text = parts[1] if len(parts) > 1 else ""
    role_text = parts[2] if len(parts) > 2 else "primary"
    return build_request(size_text, fs_text, role_text, entry)


def build_request(
    size: str, filesystem: str, role: str, entry: str | None = None
) -> PartitionRequest:
    """Build a request from its three textual fields."""
    source = entry if entry is not None else f"{size}:{filesystem}:{role}"
    try:
        size_spec = parse_size(size)
    except InvalidSizeError as e:
        raise ManifestError(f"Invalid partition size ({e})", source) from e

    try:
        fs = FileSystem.from_string(filesystem)
    except ValueError as e:
        raise ManifestError(str(e), source) from e

    try:
        mbr_role = MbrRole(role.strip().lower() or "primary")
    except ValueError as e:
        raise ManifestError(f"Unknown partition role {role!r}", source) from e

    return PartitionRequest(size=size_spec, filesystem=fs, role=mbr_role)


def parse_partition_entries(entries: list[str]) -> tuple[PartitionRequest, ...]:
    return tuple(parse_partition_entry(entry) for entry in entries)


def format_partition_entry(request: PartitionRequest, table_kind: TableKind) -> str:
    """Render a request in compact form. GPT entries omit the role."""
    if request.is_remaining:
        size = "remaining"
    else:
        size = format_size_exact(request.fixed_bytes)
    text = f"{size}:{request.filesystem.value}"
    if table_kind is TableKind.MBR:
        text += f":{request.role.value}"
    return text


class PartitionEntry(BaseModel):
    """Object form of a manifest partition."""

    size: str
    filesystem: str = "none"
    role: str = "primary"


class ManifestFile(BaseModel):
    """On-disk JSON manifest."""

    name: str
    size: str
    format: Literal["raw", "qcow2"] = "raw"
    table: Literal["mbr", "gpt"] = "mbr"
    preallocation: Literal["off", "full"] = "off"
    partitions: list[PartitionEntry] = Field(default_factory=list)

    @field_validator("partitions", mode="before")
    @classmethod
    def expand_compact_entries(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return v
        expanded = []
        for item in v:
            if isinstance(item, str):
                fields = item.split(":")
                if len(fields) > 3 or not fields[0].strip():
                    raise ValueError(f"invalid partition entry {item!r}")
                keys = ("size", "filesystem", "role")
                expanded.append(dict(zip(keys, fields)))
            else:
                expanded.append(item)
        return expanded

    def to_image_spec(self, base_directory: Path | None = None) -> DiskImageSpec:
        """Convert to a typed spec, resolving the image path."""
        path = Path(self.name).expanduser()
        if not path.is_absolute() and base_directory is not None:
            path = base_directory / path
        try:
            size_bytes = parse_bytes(self.size)
        except InvalidSizeError as e:
            raise ManifestError(f"Invalid disk size ({e})", self.size) from e

        requests = tuple(
            build_request(p.size, p.filesystem, p.role) for p in self.partitions
        )
        return DiskImageSpec(
            path=path,
            size_bytes=size_bytes,
            image_format=ImageFormat(self.format),
            table_kind=TableKind.from_string(self.table),
            partitions=requests,
            preallocation=Preallocation(self.preallocation),
        )

    @classmethod
    def from_image_spec(cls, spec: DiskImageSpec) -> ManifestFile:
        return cls(
            name=str(spec.path),
            size=format_size_exact(spec.size_bytes),
            format=spec.image_format.value,
            table=spec.table_kind.value,
            preallocation=spec.preallocation.value,
            partitions=[
                PartitionEntry(**request.to_dict()) for request in spec.partitions
            ],
        )

    def to_compact_dict(self) -> dict[str, Any]:
        """JSON-ready dict with partitions in ``size:fs:role`` form."""
        data = self.model_dump(mode="json")
        table_kind = TableKind.from_string(self.table)
        data["partitions"] = [
            format_partition_entry(build_request(p.size, p.filesystem, p.role), table_kind)
            for p in self.partitions
        ]
        return data


def load_manifest(path: Path) -> DiskImageSpec:
    """Load a JSON manifest. Relative image names resolve next to the file."""
    try:
        with open(path) as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ManifestError("Manifest not found", str(path)) from e
    except json.JSONDecodeError as e:
        raise ManifestError(f"Manifest is not valid JSON ({e.msg})", str(path)) from e

    try:
        manifest = ManifestFile.model_validate(data)
    except PydanticValidationError as e:
        raise ManifestError(f"Invalid manifest ({e.error_count()} errors)", str(path)) from e

    return manifest.to_image_spec(path.parent)


def save_manifest(spec: DiskImageSpec, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(ManifestFile.from_image_spec(spec).to_compact_dict(), f, indent=2)
