"""
Diskwright operations.

End-to-end flows built on the layout planner, the clone engine and the
platform toolchain, each with a job wrapper for the session.
"""

from diskwright.operations.clone import (
    BatchCloneJob,
    BatchCloneSummary,
    ClonePartitionJob,
    PartitionCloner,
)
from diskwright.operations.inspect import ImageInspector, InspectionResult
from diskwright.operations.provision import (
    CreateDiskImageJob,
    DiskImageProvisioner,
    ProvisionResult,
    detach_with_retry,
)

__all__ = [
    "BatchCloneJob",
    "BatchCloneSummary",
    "ClonePartitionJob",
    "CreateDiskImageJob",
    "DiskImageProvisioner",
    "ImageInspector",
    "InspectionResult",
    "PartitionCloner",
    "ProvisionResult",
    "detach_with_retry",
]
