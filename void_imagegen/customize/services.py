"""Service enablement inside the target root.

Void Linux uses runit. A supervised service lives in /etc/sv/<name> and is
active when /etc/runit/runsvdir/default/<name> links to it; a `down` file
keeps it from starting. Early-boot work is done by scripts sourced from
/etc/runit/core-services, which are masked by replacing them with a no-op.

set_service_state() is the single entry point for all transitions:

    RUNIT + ENABLED   link into runsvdir, remove `down`
    RUNIT + DISABLED  create `down`, remove the runsvdir link
    CORE  + MASKED    overwrite the script with NOOP_MARKER
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from void_imagegen.errors import ImageGenError
from void_imagegen.types import ServiceKind, ServiceRef, ServiceState

logger = logging.getLogger(__name__)

SV_DIR = Path("etc/sv")
RUNSVDIR_DEFAULT = Path("etc/runit/runsvdir/default")
CORE_SERVICES_DIR = Path("etc/runit/core-services")

# Core services are sourced by /bin/sh, so a comment-only file does nothing
NOOP_MARKER = "# masked by void-imagegen\n"


class ServiceStateError(ImageGenError):
    """Raised for a state transition a service kind does not support."""

    def __init__(self, service: ServiceRef, state: ServiceState) -> None:
        super().__init__(
            f"Cannot set {service.kind.value} service '{service.name}' to {state.value}",
            code="unsupported_service_state",
        )
        self.service = service
        self.state = state


def _sv_link_target(name: str) -> str:
    return f"/{SV_DIR / name}"


def service_state(target_root: Path, service: ServiceRef) -> ServiceState:
    """Inspect the current state of a service in the target root."""
    if service.kind is ServiceKind.CORE:
        script = target_root / CORE_SERVICES_DIR / service.name
        if script.is_file() and script.read_text() == NOOP_MARKER:
            return ServiceState.MASKED
        return ServiceState.ENABLED

    link = target_root / RUNSVDIR_DEFAULT / service.name
    down = target_root / SV_DIR / service.name / "down"
    if os.path.lexists(link) and not down.exists():
        return ServiceState.ENABLED
    return ServiceState.DISABLED


def _enable_runit(target_root: Path, name: str) -> bool:
    changed = False
    sv_dir = target_root / SV_DIR / name
    if not sv_dir.is_dir():
        logger.warning("Service directory %s does not exist", sv_dir)

    down = sv_dir / "down"
    if down.exists():
        down.unlink()
        changed = True

    link = target_root / RUNSVDIR_DEFAULT / name
    target = _sv_link_target(name)
    if link.is_symlink() and os.readlink(link) == target:
        return changed
    if os.path.lexists(link):
        link.unlink()
    link.parent.mkdir(parents=True, exist_ok=True)
    link.symlink_to(target)
    return True


def _disable_runit(target_root: Path, name: str) -> bool:
    changed = False
    down = target_root / SV_DIR / name / "down"
    if not down.exists():
        down.parent.mkdir(parents=True, exist_ok=True)
        down.touch()
        changed = True

    link = target_root / RUNSVDIR_DEFAULT / name
    if os.path.lexists(link):
        link.unlink()
        changed = True
    return changed


def _mask_core(target_root: Path, name: str) -> bool:
    script = target_root / CORE_SERVICES_DIR / name
    if script.is_symlink():
        script.unlink()
    elif script.is_file() and script.read_text() == NOOP_MARKER:
        return False
    script.parent.mkdir(parents=True, exist_ok=True)
    script.write_text(NOOP_MARKER)
    return True


def set_service_state(
    target_root: Path,
    service: ServiceRef,
    state: ServiceState,
) -> bool:
    """Apply a service state transition in the target root.

    Args:
        target_root: Target root directory.
        service: Service to change.
        state: Desired state.

    Returns:
        True if anything on disk changed.

    Raises:
        ServiceStateError: If the kind does not support the state.
        OSError: If a file or link operation fails.
    """
    if service.kind is ServiceKind.RUNIT and state is ServiceState.ENABLED:
        changed = _enable_runit(target_root, service.name)
    elif service.kind is ServiceKind.RUNIT and state is ServiceState.DISABLED:
        changed = _disable_runit(target_root, service.name)
    elif service.kind is ServiceKind.CORE and state is ServiceState.MASKED:
        changed = _mask_core(target_root, service.name)
    else:
        raise ServiceStateError(service, state)

    logger.debug(
        "Service %s -> %s (%s)",
        service.name,
        state.value,
        "changed" if changed else "unchanged",
    )
    return changed


__all__ = [
    "CORE_SERVICES_DIR",
    "NOOP_MARKER",
    "RUNSVDIR_DEFAULT",
    "SV_DIR",
    "ServiceStateError",
    "service_state",
    "set_service_state",
]
