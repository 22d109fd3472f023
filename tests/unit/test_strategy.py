"""
Tests for clone method selection.
"""

import pytest

from diskwright.clone import CloneStrategySelector
from diskwright.core.models import CloneMethod, FileSystem


class TestCloneStrategySelector:
    @pytest.mark.parametrize(
        ("filesystem", "expected"),
        [
            (FileSystem.EXT4, (CloneMethod.E2IMAGE, CloneMethod.RAW)),
            (FileSystem.EXT2, (CloneMethod.E2IMAGE, CloneMethod.RAW)),
            (FileSystem.NTFS, (CloneMethod.NTFSCLONE, CloneMethod.RAW)),
            (FileSystem.BTRFS, (CloneMethod.BTRFS_SEND, CloneMethod.RAW)),
            (FileSystem.ZFS, (CloneMethod.ZFS_SEND, CloneMethod.RAW)),
            (FileSystem.XFS, (CloneMethod.RAW,)),
            (FileSystem.FAT32, (CloneMethod.RAW,)),
            (FileSystem.NONE, (CloneMethod.RAW,)),
        ],
    )
    def test_method_order(self, filesystem: FileSystem, expected: tuple) -> None:
        assert CloneStrategySelector().select(filesystem) == expected

    def test_unavailable_tools_are_skipped(self) -> None:
        selector = CloneStrategySelector(lambda method: method is not CloneMethod.E2IMAGE)
        assert selector.select(FileSystem.EXT4) == (CloneMethod.RAW,)

    def test_raw_is_always_last(self) -> None:
        selector = CloneStrategySelector(lambda method: False)
        for filesystem in FileSystem:
            assert selector.select(filesystem)[-1] is CloneMethod.RAW
