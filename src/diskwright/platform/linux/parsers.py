"""
Linux output parsers.

Parsers for qemu-img, parted, lsblk and blkid output. Tool output is only
ever scraped here.
"""

from __future__ import annotations

import json
import re
from typing import Any

from diskwright.core.errors import ToolError
from diskwright.core.models import (
    FileSystem,
    ImageFormat,
    MbrRole,
    TableEntry,
    TableKind,
    TableSnapshot,
)


def parse_qemu_img_info(output: str) -> tuple[ImageFormat, int]:
    """
    Parse ``qemu-img info --output=json``.

    Example input:
    {"virtual-size": 10737418240, "filename": "disk.img", "format": "raw", ...}
    """
    try:
        data = json.loads(output)
    except json.JSONDecodeError as e:
        raise ToolError(["qemu-img", "info"], 0, f"unparseable output: {e.msg}") from e

    fmt = str(data.get("format", "")).lower()
    try:
        image_format = ImageFormat(fmt)
    except ValueError as e:
        raise ToolError(["qemu-img", "info"], 0, f"unsupported image format: {fmt}") from e

    return image_format, int(data.get("virtual-size", 0))


def parse_bytes_field(value: str) -> int:
    """Parse a parted byte field such as ``1048576B``."""
    return int(value.strip().rstrip("B"))


def normalize_filesystem(value: str | None) -> FileSystem:
    """Map tool-reported filesystem names onto :class:`FileSystem`."""
    value_lower = (value or "").strip().lower()
    if value_lower.startswith("linux-swap"):
        return FileSystem.SWAP
    if value_lower in ("fat32", "vfat", "msdos"):
        return FileSystem.FAT32
    try:
        return FileSystem.from_string(value_lower)
    except ValueError:
        return FileSystem.NONE


def parse_parted_machine(output: str, device_path: str = "") -> TableSnapshot:
    """
    Parse ``parted -m -s <dev> unit B print``.

    Example input:
    BYT;
    /dev/loop0:10737418240B:loopback:512:512:msdos:Loopback device:;
    1:1048576B:2148532223B:2147483648B:ext4::;
    2:2148532224B:10737418239B:8588886016B:::lba;

    Parted reports inclusive end offsets; entries are returned with exclusive
    ends. MBR roles are inferred from numbering: 5 and above are logical, and
    a low-numbered entry enclosing logicals is the extended container.
    """
    lines = [line.strip().rstrip(";") for line in output.strip().splitlines() if line.strip()]
    disk_bytes = 0
    sector_size = 512
    table_kind: TableKind | None = None
    raw_entries: list[dict[str, Any]] = []

    for line in lines:
        if line == "BYT" or line == "CHS" or line == "CYL":
            continue
        fields = line.split(":")
        if fields[0].startswith("/"):
            device_path = device_path or fields[0]
            disk_bytes = parse_bytes_field(fields[1])
            if len(fields) > 3 and fields[3].isdigit():
                sector_size = int(fields[3])
            if len(fields) > 5 and fields[5]:
                try:
                    table_kind = TableKind.from_string(fields[5])
                except ValueError:
                    table_kind = None
            continue
        if not fields[0].isdigit() or len(fields) < 4:
            continue
        raw_entries.append(
            {
                "number": int(fields[0]),
                "start": parse_bytes_field(fields[1]),
                "end": parse_bytes_field(fields[2]) + 1,
                "filesystem": fields[4] if len(fields) > 4 else "",
                "name": fields[5] if len(fields) > 5 else "",
            }
        )

    entries = []
    logicals = [e for e in raw_entries if e["number"] >= 5]
    for entry in raw_entries:
        role = MbrRole.PRIMARY
        if table_kind is TableKind.MBR:
            if entry["number"] >= 5:
                role = MbrRole.LOGICAL
            elif any(
                entry["start"] < logical["start"] and logical["end"] <= entry["end"]
                for logical in logicals
            ):
                role = MbrRole.EXTENDED
        entries.append(
            TableEntry(
                number=entry["number"],
                start_byte=entry["start"],
                end_byte=entry["end"],
                filesystem=normalize_filesystem(entry["filesystem"]),
                role=role,
                name=entry["name"],
            )
        )

    return TableSnapshot(
        device_path=device_path,
        disk_bytes=disk_bytes,
        table_kind=table_kind,
        sector_size=sector_size,
        entries=tuple(sorted(entries, key=lambda e: e.start_byte)),
    )


def parse_fstype_output(output: str) -> FileSystem:
    """Parse ``lsblk -no FSTYPE`` or ``blkid -o value -s TYPE`` output."""
    for line in output.splitlines():
        if line.strip():
            return normalize_filesystem(line)
    return FileSystem.NONE


def parse_blkid_output(output: str) -> dict[str, dict[str, str]]:
    """
    Parse blkid output.

    Example input:
    /dev/loop0p1: UUID="xxxx" TYPE="ext4" PARTUUID="xxxx"
    """
    result: dict[str, dict[str, str]] = {}

    for line in output.strip().split("\n"):
        if not line or ":" not in line:
            continue

        device, rest = line.split(":", 1)
        attrs: dict[str, str] = {}
        for match in re.finditer(r'(\w+)="([^"]*)"', rest):
            key, value = match.groups()
            attrs[key.upper()] = value

        result[device.strip()] = attrs

    return result
