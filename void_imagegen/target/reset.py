"""Destructive reset of the target root.

The target root from a previous run is untrusted: it may hold a partial
install or live kernel mounts. Resetting unmounts those first, refuses to
delete while anything else is still mounted below the root, then removes
the tree and recreates it empty.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from void_imagegen.errors import ImageGenError
from void_imagegen.target.mounts import (
    PROC_MOUNTS,
    canonical_path,
    is_mounted,
    mounts_below,
    read_mount_points,
    unmount_kernel_filesystems,
)

logger = logging.getLogger(__name__)


class TargetBusyError(ImageGenError):
    """Raised when non-kernel mounts remain below the target root."""

    def __init__(self, target_root: Path, mount_points: list[Path]) -> None:
        mounts_str = ", ".join(str(mp) for mp in mount_points)
        super().__init__(
            f"Refusing to delete {target_root}: still mounted below it: {mounts_str}",
            code="target_busy",
        )
        self.target_root = target_root
        self.mount_points = mount_points


class TargetResetError(ImageGenError):
    """Raised when the target root cannot be deleted or recreated."""

    def __init__(self, path: Path, detail: str) -> None:
        super().__init__(f"Failed to reset {path}: {detail}", code="reset_failed")
        self.path = path


def _clear_contents(directory: Path) -> None:
    for child in directory.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


def reset_target(
    install_dir: Path,
    mounts_file: Path = PROC_MOUNTS,
    log_path: Path | None = None,
) -> Path:
    """Unmount, delete and recreate the target root.

    Args:
        install_dir: Absolute path of the target root.
        mounts_file: Mount table in /proc/mounts format.
        log_path: Optional build log.

    Returns:
        The (now empty) target root.

    Raises:
        UnmountError: If a kernel filesystem cannot be unmounted.
        TargetBusyError: If other mounts remain below the target.
        TargetResetError: If deletion or creation fails.
    """
    if not install_dir.is_absolute():
        raise TargetResetError(install_dir, "install directory must be absolute")
    if install_dir == Path(install_dir.anchor):
        raise TargetResetError(install_dir, "refusing to delete the filesystem root")

    if install_dir.is_symlink():
        # Only the link is removed; nothing below it is touched
        logger.info("Removing symlink at target root %s", install_dir)
        try:
            install_dir.unlink()
        except OSError as e:
            raise TargetResetError(install_dir, str(e)) from e
    elif install_dir.exists():
        # The mount table holds resolved paths
        real_root = canonical_path(install_dir)
        unmounted = unmount_kernel_filesystems(real_root, mounts_file, log_path)
        if unmounted:
            logger.info("Unmounted stale mounts: %s", [str(p) for p in unmounted])

        remaining = mounts_below(real_root, mounts_file)
        if remaining:
            raise TargetBusyError(install_dir, remaining)

        logger.info("Removing previous target root %s", install_dir)
        try:
            if is_mounted(real_root, read_mount_points(mounts_file)):
                # The root itself is a mount point; it can only be emptied
                _clear_contents(install_dir)
            elif install_dir.is_dir():
                shutil.rmtree(install_dir)
            else:
                install_dir.unlink()
        except OSError as e:
            raise TargetResetError(Path(e.filename or install_dir), str(e)) from e

    try:
        install_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise TargetResetError(install_dir, str(e)) from e

    logger.info("Target root ready: %s", install_dir)
    return install_dir


__all__ = ["TargetBusyError", "TargetResetError", "reset_target"]
