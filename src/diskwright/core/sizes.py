"""
Diskwright size parsing and unit conversion.

All layout arithmetic is done in integer bytes. Conversions to sectors or
MiB for external tools always round up, so a partition is never created
smaller than requested.
"""

from __future__ import annotations

import re

import humanize

from diskwright.core.errors import InvalidSizeError
from diskwright.core.models import REMAINING, ExactBytes, SizeSpec

KIB = 1024
MIB = 1024 * KIB
GIB = 1024 * MIB
TIB = 1024 * GIB

MB = 1000 * 1000

U64_MAX = 2**64 - 1

_MULTIPLIERS = {
    "": 1,
    "B": 1,
    "K": KIB,
    "M": MIB,
    "G": GIB,
    "T": TIB,
}

_SIZE_PATTERN = re.compile(r"^([0-9]+)([KMGTB]?)$", re.IGNORECASE)


def parse_size(value: str) -> SizeSpec:
    """Parse a human size string such as ``512M`` or ``remaining``.

    Suffixes are binary multiples (``1K`` is 1024 bytes). Fractions, signs and
    unknown suffixes are rejected.
    """
    if value is None:
        raise InvalidSizeError("", "empty size")
    text = str(value).strip()
    if not text:
        raise InvalidSizeError(value, "empty size")
    if text.lower() == "remaining":
        return REMAINING

    match = _SIZE_PATTERN.match(text)
    if not match:
        raise InvalidSizeError(value, "expected digits with optional K, M, G or T suffix")

    number, suffix = match.groups()
    result = int(number) * _MULTIPLIERS[suffix.upper()]
    if result > U64_MAX:
        raise InvalidSizeError(value, "size exceeds 64-bit range")
    return ExactBytes(result)


def parse_bytes(value: str) -> int:
    """Parse a size that must be exact."""
    size = parse_size(value)
    if not isinstance(size, ExactBytes):
        raise InvalidSizeError(value, "'remaining' is not allowed here")
    return size.value


def format_size(size_bytes: int) -> str:
    """Format bytes using the largest whole unit, truncating the remainder.

    Display only. ``format_size(1536 * MIB)`` gives ``1G``.
    """
    for suffix, unit in (("T", TIB), ("G", GIB), ("M", MIB), ("K", KIB)):
        if size_bytes >= unit:
            return f"{size_bytes // unit}{suffix}"
    return f"{size_bytes}B"


def human_size(size_bytes: int | None) -> str:
    """Human-readable size for tables and reports."""
    if size_bytes is None:
        return "-"
    return humanize.naturalsize(size_bytes, binary=True)


def ceil_div(value: int, divisor: int) -> int:
    return -(-value // divisor)


def align_up(value: int, alignment: int) -> int:
    """Round ``value`` up to the next multiple of ``alignment``."""
    return ceil_div(value, alignment) * alignment


def align_down(value: int, alignment: int) -> int:
    return value - value % alignment


def to_sectors(size_bytes: int, sector_size: int = 512) -> int:
    return ceil_div(size_bytes, sector_size)


def to_mib(size_bytes: int) -> int:
    return ceil_div(size_bytes, MIB)


def to_mb(size_bytes: int) -> int:
    """Decimal megabytes, as reported by disk vendors and some partitioning tools."""
    return ceil_div(size_bytes, MB)


def format_size_exact(size_bytes: int) -> str:
    """Format bytes with the largest unit that divides them exactly.

    Unlike :func:`format_size` the result parses back to the same value.
    """
    for suffix, unit in (("T", TIB), ("G", GIB), ("M", MIB), ("K", KIB)):
        if size_bytes >= unit and size_bytes % unit == 0:
            return f"{size_bytes // unit}{suffix}"
    return str(size_bytes)
