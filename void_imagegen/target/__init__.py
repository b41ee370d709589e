"""Target root management.

This module handles:
- Detecting and unmounting kernel filesystems left under a target root
- Destructively resetting the target root before a build
- Mounting proc/sys around in-root reconfiguration hooks
"""

from void_imagegen.target.mounts import (
    MountRecord,
    UnmountError,
    kernel_mounts,
    mount_records,
    unmount_kernel_filesystems,
)
from void_imagegen.target.reset import TargetBusyError, TargetResetError, reset_target

__all__ = [
    "MountRecord",
    "TargetBusyError",
    "TargetResetError",
    "UnmountError",
    "kernel_mounts",
    "mount_records",
    "reset_target",
    "unmount_kernel_filesystems",
]
