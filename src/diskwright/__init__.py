"""
Diskwright - Virtual disk image provisioning and partition cloning.

Plans MBR/GPT partition layouts, builds partitioned and formatted raw or
qcow2 images, and clones partitions with filesystem-aware tools, falling
back through smaller block sizes to a rescue copy.
"""

__version__ = "1.0.0"
__author__ = "Diskwright Team"

from diskwright.core.config import Configuration
from diskwright.core.session import Session

__all__ = ["Configuration", "Session", "__version__"]
