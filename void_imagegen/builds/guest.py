"""Guest-tooling installer invocation.

The installer is an external program; it is run from its own directory with
the target root as its only argument, and its exit status decides success.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from void_imagegen.builds.runner import CommandResult, run_command
from void_imagegen.errors import ImageGenError

logger = logging.getLogger(__name__)


class GuestToolingError(ImageGenError):
    """Raised when the guest-tooling installer is missing or unusable."""

    def __init__(self, message: str, code: str = "guest_tooling_error") -> None:
        super().__init__(message, code=code)


def check_guest_installer(installer: Path) -> Path:
    """Verify the installer exists and is executable.

    Returns:
        Absolute path of the installer.

    Raises:
        GuestToolingError: If the installer cannot be run.
    """
    installer = Path(os.path.abspath(installer))
    if not installer.is_file():
        raise GuestToolingError(
            f"Guest-tooling installer not found: {installer}",
            code="installer_not_found",
        )
    if not os.access(installer, os.X_OK):
        raise GuestToolingError(
            f"Guest-tooling installer is not executable: {installer}",
            code="installer_not_executable",
        )
    return installer


def invoke_guest_tooling(
    installer: Path,
    target_root: Path,
    log_path: Path | None = None,
) -> CommandResult:
    """Run the guest-tooling installer against the target root.

    Raises:
        GuestToolingError: If the installer cannot be run.
        CommandError: If the installer exits non-zero.
    """
    installer = check_guest_installer(installer)
    logger.info("Running guest-tooling installer %s", installer)
    return run_command(
        [str(installer), str(target_root)],
        stage="guest-tooling",
        cwd=installer.parent,
        log_path=log_path,
    )


__all__ = ["GuestToolingError", "check_guest_installer", "invoke_guest_tooling"]
