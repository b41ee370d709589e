"""Base system installation with the static xbps toolchain.

This module handles:
- Copying repository trust keys into the target root
- Composing and running the xbps-install command for the base package set
- Running xbps-reconfigure inside the target root after installation

The target architecture is always handed to xbps explicitly through the
child environment, never through the caller's process environment.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from void_imagegen.bootstrap.fetch import XBPS_KEYS_DIR, BootstrapToolchain
from void_imagegen.builds.runner import CommandResult, run_command
from void_imagegen.errors import ImageGenError
from void_imagegen.target.mounts import kernel_mounts
from void_imagegen.types import Architecture

logger = logging.getLogger(__name__)

BASE_PACKAGES: tuple[str, ...] = (
    "base-minimal",
    "bash",
    "ncurses-base",
    "shadow",
    "util-linux",
    "procps-ng",
    "iproute2",
    "iputils",
    "tzdata",
    "openssh",
    "findutils",
    "file",
    "less",
    "nvi",
)

# Only glibc builds carry locale data
GLIBC_PACKAGES: tuple[str, ...] = ("glibc-locales",)


class KeyInstallError(ImageGenError):
    """Raised when repository trust keys cannot be copied."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="key_install_error")


def base_packages(architecture: Architecture) -> list[str]:
    """Return the ordered base package set for an architecture."""
    packages = list(BASE_PACKAGES)
    if not architecture.is_musl:
        packages.extend(GLIBC_PACKAGES)
    return packages


def install_keys(toolchain: BootstrapToolchain, target_root: Path) -> list[Path]:
    """Copy the toolchain's repository trust keys into the target root.

    Returns:
        Paths of the installed key files.

    Raises:
        KeyInstallError: If the keys are missing or cannot be copied.
    """
    if not toolchain.keys_dir.is_dir():
        raise KeyInstallError(f"No trust keys found in {toolchain.keys_dir}")

    dest_dir = target_root / XBPS_KEYS_DIR
    installed: list[Path] = []
    try:
        dest_dir.mkdir(parents=True, exist_ok=True)
        for key in sorted(toolchain.keys_dir.iterdir()):
            if key.is_file():
                installed.append(Path(shutil.copy2(key, dest_dir / key.name)))
    except OSError as e:
        raise KeyInstallError(f"Failed to copy trust keys to {dest_dir}: {e}") from e

    logger.info("Installed %d trust key(s) into %s", len(installed), dest_dir)
    return installed


def compose_install_command(
    toolchain: BootstrapToolchain,
    repository_url: str,
    target_root: Path,
    packages: list[str],
) -> list[str]:
    """Compose the xbps-install command (sync, update, assume yes).

    Args:
        toolchain: Extracted static toolchain.
        repository_url: Repository to install from.
        target_root: Root directory to install into.
        packages: Ordered package list.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    return [
        str(toolchain.xbps_install),
        "-S",
        "-u",
        "-y",
        "-R",
        repository_url,
        "-r",
        str(target_root),
        *packages,
    ]


def xbps_environment(architecture: Architecture) -> dict[str, str]:
    """Environment variables selecting the target architecture for xbps."""
    return {"XBPS_ARCH": architecture.value}


def install_base(
    toolchain: BootstrapToolchain,
    architecture: Architecture,
    repository_url: str,
    target_root: Path,
    packages: list[str] | None = None,
    log_path: Path | None = None,
) -> CommandResult:
    """Install the base package set into the target root.

    Raises:
        CommandError: If xbps-install fails.
    """
    if packages is None:
        packages = base_packages(architecture)

    cmd = compose_install_command(toolchain, repository_url, target_root, packages)
    logger.info(
        "Installing %d packages for %s from %s",
        len(packages),
        architecture.value,
        repository_url,
    )
    return run_command(
        cmd,
        stage="install",
        env_override=xbps_environment(architecture),
        log_path=log_path,
    )


def compose_reconfigure_command(
    toolchain: BootstrapToolchain,
    target_root: Path,
    packages: list[str] | None = None,
) -> list[str]:
    """Compose a forced xbps-reconfigure for named packages or all of them."""
    cmd = [str(toolchain.xbps_reconfigure), "-r", str(target_root), "-f"]
    if packages:
        cmd.extend(packages)
    else:
        cmd.append("-a")
    return cmd


def reconfigure_packages(
    toolchain: BootstrapToolchain,
    architecture: Architecture,
    target_root: Path,
    packages: list[str] | None = None,
    log_path: Path | None = None,
) -> CommandResult:
    """Run package configuration hooks inside the target root.

    proc and sysfs are mounted into the target for the duration of the run.

    Args:
        toolchain: Extracted static toolchain.
        architecture: Target architecture.
        target_root: Installed target root.
        packages: Packages to reconfigure; all installed packages when None.
        log_path: Optional build log.

    Raises:
        CommandError: If xbps-reconfigure or a mount fails.
    """
    cmd = compose_reconfigure_command(toolchain, target_root, packages)
    with kernel_mounts(target_root, log_path=log_path):
        return run_command(
            cmd,
            stage="reconfigure",
            env_override=xbps_environment(architecture),
            log_path=log_path,
        )


def reconfigure_all(
    toolchain: BootstrapToolchain,
    architecture: Architecture,
    target_root: Path,
    log_path: Path | None = None,
) -> CommandResult:
    """Reconfigure every installed package (post-install hooks)."""
    logger.info("Reconfiguring all packages in %s", target_root)
    return reconfigure_packages(
        toolchain, architecture, target_root, packages=None, log_path=log_path
    )


__all__ = [
    "BASE_PACKAGES",
    "GLIBC_PACKAGES",
    "KeyInstallError",
    "base_packages",
    "compose_install_command",
    "compose_reconfigure_command",
    "install_base",
    "install_keys",
    "reconfigure_all",
    "reconfigure_packages",
    "xbps_environment",
]
