"""
Diskwright clone strategy selection.

Orders copy methods for a filesystem: the filesystem's own imaging tool
first, then a send/receive method for copy-on-write filesystems, then a raw
block copy, which is always present.
"""

from __future__ import annotations

from collections.abc import Callable

from diskwright.core.logging import get_logger
from diskwright.core.models import CloneMethod, FileSystem

logger = get_logger(__name__)

NATIVE_METHODS: dict[FileSystem, CloneMethod] = {
    FileSystem.EXT2: CloneMethod.E2IMAGE,
    FileSystem.EXT3: CloneMethod.E2IMAGE,
    FileSystem.EXT4: CloneMethod.E2IMAGE,
    FileSystem.NTFS: CloneMethod.NTFSCLONE,
}

SEND_METHODS: dict[FileSystem, CloneMethod] = {
    FileSystem.BTRFS: CloneMethod.BTRFS_SEND,
    FileSystem.ZFS: CloneMethod.ZFS_SEND,
}


class CloneStrategySelector:
    """Chooses ordered fallback copy methods per filesystem."""

    def __init__(self, is_available: Callable[[CloneMethod], bool] | None = None) -> None:
        self._is_available = is_available or (lambda method: True)

    def select(self, filesystem: FileSystem) -> tuple[CloneMethod, ...]:
        candidates = [
            method
            for method in (NATIVE_METHODS.get(filesystem), SEND_METHODS.get(filesystem))
            if method is not None
        ]
        available = [method for method in candidates if self._is_available(method)]
        for method in candidates:
            if method not in available:
                logger.info(
                    "Clone method unavailable",
                    method=method.value,
                    filesystem=filesystem.value,
                )

        methods = (*available, CloneMethod.RAW)
        logger.debug(
            "Clone methods selected",
            filesystem=filesystem.value,
            methods=[m.value for m in methods],
        )
        return methods
