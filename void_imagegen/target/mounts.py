"""Kernel filesystem mount handling for the target root.

This module handles:
- Reading the host mount table
- Detecting proc/sys mounts left under a target root by an earlier run
- Unmounting them before the target is deleted
- Mounting proc/sys for the duration of in-root reconfiguration hooks

Mount state is always recomputed from the mount table; nothing is cached.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from void_imagegen.builds.runner import run_command
from void_imagegen.errors import CommandError, ImageGenError

logger = logging.getLogger(__name__)

PROC_MOUNTS = Path("/proc/mounts")

# Well-known kernel filesystems under a target root: (fstype, subpath)
KERNEL_FILESYSTEMS: tuple[tuple[str, str], ...] = (
    ("proc", "proc"),
    ("sysfs", "sys"),
)
KERNEL_MOUNT_SUBPATHS: tuple[str, ...] = tuple(sub for _, sub in KERNEL_FILESYSTEMS)

_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")


class UnmountError(ImageGenError):
    """Raised when a kernel filesystem under the target cannot be unmounted."""

    def __init__(self, path: Path, detail: str) -> None:
        super().__init__(f"Failed to unmount {path}: {detail}", code="unmount_failed")
        self.path = path


@dataclass(frozen=True)
class MountRecord:
    """Whether a kernel subpath under the target root is currently mounted."""

    path: Path
    mounted: bool


def _unescape(field: str) -> str:
    """Decode octal escapes (e.g. \\040 for space) used in the mount table."""
    return _OCTAL_ESCAPE.sub(lambda m: chr(int(m.group(1), 8)), field)


def canonical_path(path: Path) -> Path:
    """Resolve symlinks so a path compares equal to its mount table entry."""
    return Path(os.path.realpath(path))


def read_mount_points(mounts_file: Path = PROC_MOUNTS) -> list[Path]:
    """Read all mount points from the mount table.

    Args:
        mounts_file: Mount table in /proc/mounts format.

    Returns:
        List of mount point paths (empty if the table cannot be read).
    """
    mount_points: list[Path] = []
    try:
        with open(mounts_file) as f:
            for line in f:
                parts = line.split()
                if len(parts) >= 2:
                    mount_points.append(Path(_unescape(parts[1])))
    except OSError:
        logger.warning("Could not read %s, falling back to ismount checks", mounts_file)
    return mount_points


def is_mounted(path: Path, mount_points: list[Path] | None = None) -> bool:
    """Check whether a path is an active mount point.

    Args:
        path: Path to check.
        mount_points: Mount table snapshot; read fresh when not given.

    Returns:
        True if the path appears in the mount table or is a mount point.
    """
    if mount_points is None:
        mount_points = read_mount_points()
    return path in mount_points or os.path.ismount(path)


def mount_records(
    target_root: Path,
    mounts_file: Path = PROC_MOUNTS,
) -> list[MountRecord]:
    """Compute the mount state of each kernel subpath under a target root."""
    target_root = canonical_path(target_root)
    mount_points = read_mount_points(mounts_file)
    records: list[MountRecord] = []
    for sub in KERNEL_MOUNT_SUBPATHS:
        path = target_root / sub
        records.append(MountRecord(path=path, mounted=is_mounted(path, mount_points)))
    return records


def mounts_below(target_root: Path, mounts_file: Path = PROC_MOUNTS) -> list[Path]:
    """List mount points strictly below a target root."""
    target_root = canonical_path(target_root)
    return [
        mp
        for mp in read_mount_points(mounts_file)
        if mp != target_root and mp.is_relative_to(target_root)
    ]


def unmount(path: Path, log_path: Path | None = None) -> None:
    """Recursively unmount a path.

    Raises:
        UnmountError: If umount fails.
    """
    logger.info("Unmounting %s", path)
    try:
        run_command(["umount", "-R", str(path)], stage="reset", log_path=log_path)
    except CommandError as e:
        detail = e.output.strip() or e.message
        raise UnmountError(path, detail) from e


def unmount_kernel_filesystems(
    target_root: Path,
    mounts_file: Path = PROC_MOUNTS,
    log_path: Path | None = None,
) -> list[Path]:
    """Unmount any proc/sys mounts left under a target root.

    Args:
        target_root: Target root directory.
        mounts_file: Mount table in /proc/mounts format.
        log_path: Optional build log.

    Returns:
        Paths that were unmounted.

    Raises:
        UnmountError: If an unmount fails or a mount survives it.
    """
    unmounted: list[Path] = []
    for record in mount_records(target_root, mounts_file):
        if not record.mounted:
            continue
        unmount(record.path, log_path=log_path)
        if is_mounted(record.path, read_mount_points(mounts_file)):
            raise UnmountError(record.path, "still mounted after umount")
        unmounted.append(record.path)
    return unmounted


def _release(mount_points: list[Path], log_path: Path | None) -> list[UnmountError]:
    failures: list[UnmountError] = []
    for mount_point in reversed(mount_points):
        try:
            unmount(mount_point, log_path=log_path)
        except UnmountError as e:
            logger.error("%s", e.message)
            failures.append(e)
    return failures


@contextmanager
def kernel_mounts(
    target_root: Path,
    log_path: Path | None = None,
    mounts_file: Path = PROC_MOUNTS,
) -> Iterator[None]:
    """Mount proc and sysfs into the target root for the enclosed block.

    Filesystems already mounted are left alone and not unmounted on exit.
    Every filesystem mounted here is unmounted even if another unmount
    fails. An exception raised inside the block takes precedence over
    unmount failures, which are then only logged.
    """
    target_root = canonical_path(target_root)
    mounted: list[Path] = []
    try:
        for fstype, sub in KERNEL_FILESYSTEMS:
            mount_point = target_root / sub
            mount_point.mkdir(parents=True, exist_ok=True)
            if is_mounted(mount_point, read_mount_points(mounts_file)):
                logger.debug("%s already mounted", mount_point)
                continue
            run_command(
                ["mount", "-t", fstype, fstype, str(mount_point)],
                stage="mount",
                log_path=log_path,
            )
            mounted.append(mount_point)
        yield
    except BaseException:
        _release(mounted, log_path)
        raise
    failures = _release(mounted, log_path)
    if failures:
        raise failures[0]


__all__ = [
    "KERNEL_FILESYSTEMS",
    "KERNEL_MOUNT_SUBPATHS",
    "PROC_MOUNTS",
    "MountRecord",
    "UnmountError",
    "canonical_path",
    "is_mounted",
    "kernel_mounts",
    "mount_records",
    "mounts_below",
    "read_mount_points",
    "unmount",
    "unmount_kernel_filesystems",
]
