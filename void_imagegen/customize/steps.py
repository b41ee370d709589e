"""Image customization steps.

Each step is a named function `apply(target_root, ctx) -> StepResult` that
mutates the target root and can be re-run safely. CUSTOMIZATION_STEPS holds
them in the order they are applied; only the identity step depends on an
earlier result (the release file is built from the motd and product files
it writes itself).
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from void_imagegen.customize.identity import write_identity_files
from void_imagegen.customize.services import set_service_state
from void_imagegen.errors import ImageGenError
from void_imagegen.types import Architecture, ServiceKind, ServiceRef, ServiceState

logger = logging.getLogger(__name__)

LOCALE_CONF = Path("etc/default/libc-locales")
LOCALE_LINE = "en_US.UTF-8 UTF-8"
LOCALE_PACKAGE = "glibc-locales"

# Hardware and filesystem detection that has no place in a guest image
MASKED_CORE_SERVICES: tuple[str, ...] = (
    "02-kmods.sh",
    "02-udev.sh",
    "03-filesystems.sh",
    "04-swap.sh",
)
ENABLED_SERVICES: tuple[str, ...] = ("sshd",)
CONSOLE_TTYS: tuple[int, ...] = (1, 2, 3, 4, 5, 6)

SHADOW_PATH = Path("etc/shadow")
LOCALTIME_PATH = Path("etc/localtime")
ZONEINFO_UTC = "/usr/share/zoneinfo/UTC"
SSHD_CONFIG_PATH = Path("etc/ssh/sshd_config")

PASSWORD_AUTH_DIRECTIVE = "PasswordAuthentication no"

_PASSWORD_AUTH_LINE = re.compile(
    r"^\s*#?\s*PasswordAuthentication\s+(?:yes|no)\s*$", re.IGNORECASE
)
_MATCH_BLOCK_LINE = re.compile(r"^\s*Match\s", re.IGNORECASE)


class CustomizationError(ImageGenError):
    """Raised when a customization step fails."""

    def __init__(self, step: str, detail: str) -> None:
        super().__init__(
            f"Customization step '{step}' failed: {detail}", code="customize_error"
        )
        self.step = step


@dataclass
class CustomizationContext:
    """Inputs shared by all customization steps.

    Attributes:
        architecture: Target architecture.
        display_name: Human-readable image name.
        description: Image description.
        docs_url: Documentation URL.
        build_date: Build date (YYYYMMDD), fixed for the whole run.
        reconfigure: Runs package configuration hooks for the given
            packages inside the target root. None skips hook execution.
    """

    architecture: Architecture
    display_name: str
    description: str
    docs_url: str
    build_date: str
    reconfigure: Callable[[list[str]], object] | None = None


@dataclass
class StepResult:
    """Outcome of one customization step."""

    name: str
    changed: list[Path] = field(default_factory=list)
    skipped: bool = False


@dataclass(frozen=True)
class CustomizationStep:
    """A named, independently runnable customization."""

    name: str
    apply: Callable[[Path, CustomizationContext], StepResult]


def configure_locale(target_root: Path, ctx: CustomizationContext) -> StepResult:
    """Enable the UTF-8 locale and regenerate locale data."""
    if ctx.architecture.is_musl:
        logger.info("Skipping locale generation on musl")
        return StepResult("locale", skipped=True)

    conf = target_root / LOCALE_CONF
    existing = conf.read_text() if conf.exists() else ""
    changed: list[Path] = []
    if LOCALE_LINE not in (line.strip() for line in existing.splitlines()):
        conf.parent.mkdir(parents=True, exist_ok=True)
        with conf.open("a") as f:
            if existing and not existing.endswith("\n"):
                f.write("\n")
            f.write(f"{LOCALE_LINE}\n")
        changed.append(conf)

    if ctx.reconfigure is not None:
        ctx.reconfigure([LOCALE_PACKAGE])
    return StepResult("locale", changed=changed)


def prune_core_services(target_root: Path, ctx: CustomizationContext) -> StepResult:
    """Mask early-boot hardware and filesystem detection scripts."""
    result = StepResult("prune-core-services")
    for name in MASKED_CORE_SERVICES:
        service = ServiceRef(name, ServiceKind.CORE)
        if set_service_state(target_root, service, ServiceState.MASKED):
            result.changed.append(Path(name))
    return result


def enable_services(target_root: Path, ctx: CustomizationContext) -> StepResult:
    """Enable the remote access service."""
    result = StepResult("enable-services")
    for name in ENABLED_SERVICES:
        if set_service_state(target_root, ServiceRef(name), ServiceState.ENABLED):
            result.changed.append(Path(name))
    return result


def disable_consoles(target_root: Path, ctx: CustomizationContext) -> StepResult:
    """Take the virtual console logins down."""
    result = StepResult("disable-consoles")
    for tty in CONSOLE_TTYS:
        name = f"agetty-tty{tty}"
        if set_service_state(target_root, ServiceRef(name), ServiceState.DISABLED):
            result.changed.append(Path(name))
    return result


def clear_root_password(target_root: Path, ctx: CustomizationContext) -> StepResult:
    """Empty the root password hash in the shadow file."""
    shadow = target_root / SHADOW_PATH
    if not shadow.exists():
        raise CustomizationError("clear-root-password", f"{shadow} does not exist")

    lines = shadow.read_text().splitlines(keepends=True)
    found = False
    for i, line in enumerate(lines):
        fields = line.rstrip("\n").split(":")
        if fields[0] == "root" and len(fields) > 1:
            found = True
            if fields[1] != "":
                fields[1] = ""
                lines[i] = ":".join(fields) + ("\n" if line.endswith("\n") else "")
            break

    if not found:
        raise CustomizationError("clear-root-password", f"no root entry in {shadow}")

    new_content = "".join(lines)
    if new_content == shadow.read_text():
        return StepResult("clear-root-password")
    shadow.write_text(new_content)
    return StepResult("clear-root-password", changed=[shadow])


def set_timezone(target_root: Path, ctx: CustomizationContext) -> StepResult:
    """Point the local time link at UTC."""
    link = target_root / LOCALTIME_PATH
    if link.is_symlink() and os.readlink(link) == ZONEINFO_UTC:
        return StepResult("timezone")
    if os.path.lexists(link):
        link.unlink()
    link.parent.mkdir(parents=True, exist_ok=True)
    link.symlink_to(ZONEINFO_UTC)
    return StepResult("timezone", changed=[link])


def harden_sshd_config(text: str) -> str:
    """Force password authentication off in sshd_config content.

    Every PasswordAuthentication yes/no line, commented or active, is
    removed and a single active `PasswordAuthentication no` takes the place
    of the first one. It never lands inside a Match block.
    """
    kept: list[str] = []
    insert_at: int | None = None
    for line in text.splitlines():
        if _PASSWORD_AUTH_LINE.match(line):
            if insert_at is None:
                insert_at = len(kept)
            continue
        kept.append(line)

    match_at = next(
        (i for i, line in enumerate(kept) if _MATCH_BLOCK_LINE.match(line)), None
    )
    if insert_at is None or (match_at is not None and insert_at > match_at):
        insert_at = match_at if match_at is not None else len(kept)

    kept.insert(insert_at, PASSWORD_AUTH_DIRECTIVE)
    return "\n".join(kept) + "\n"


def harden_sshd(target_root: Path, ctx: CustomizationContext) -> StepResult:
    """Disable password authentication for the SSH daemon."""
    config = target_root / SSHD_CONFIG_PATH
    if not config.exists():
        raise CustomizationError("harden-sshd", f"{config} does not exist")

    original = config.read_text()
    hardened = harden_sshd_config(original)
    if hardened == original:
        return StepResult("harden-sshd")
    config.write_text(hardened)
    return StepResult("harden-sshd", changed=[config])


def write_identity(target_root: Path, ctx: CustomizationContext) -> StepResult:
    """Write motd, product and release descriptors."""
    written = write_identity_files(
        target_root,
        display_name=ctx.display_name,
        build_date=ctx.build_date,
        description=ctx.description,
        docs_url=ctx.docs_url,
    )
    return StepResult("identity", changed=written)


CUSTOMIZATION_STEPS: tuple[CustomizationStep, ...] = (
    CustomizationStep("locale", configure_locale),
    CustomizationStep("prune-core-services", prune_core_services),
    CustomizationStep("enable-services", enable_services),
    CustomizationStep("disable-consoles", disable_consoles),
    CustomizationStep("clear-root-password", clear_root_password),
    CustomizationStep("timezone", set_timezone),
    CustomizationStep("harden-sshd", harden_sshd),
    CustomizationStep("identity", write_identity),
)


def apply_customizations(
    target_root: Path,
    ctx: CustomizationContext,
    steps: Sequence[CustomizationStep] = CUSTOMIZATION_STEPS,
) -> list[StepResult]:
    """Apply customization steps in order, stopping at the first failure.

    Args:
        target_root: Installed target root.
        ctx: Shared step inputs.
        steps: Steps to run (defaults to CUSTOMIZATION_STEPS).

    Returns:
        One StepResult per step.

    Raises:
        CustomizationError: If any step fails.
    """
    results: list[StepResult] = []
    for step in steps:
        logger.info("Customizing: %s", step.name)
        try:
            result = step.apply(target_root, ctx)
        except OSError as e:
            raise CustomizationError(step.name, str(e)) from e
        logger.debug("%s: %d path(s) changed", step.name, len(result.changed))
        results.append(result)
    return results


__all__ = [
    "CONSOLE_TTYS",
    "CUSTOMIZATION_STEPS",
    "ENABLED_SERVICES",
    "MASKED_CORE_SERVICES",
    "CustomizationContext",
    "CustomizationError",
    "CustomizationStep",
    "StepResult",
    "apply_customizations",
    "clear_root_password",
    "configure_locale",
    "disable_consoles",
    "enable_services",
    "harden_sshd",
    "harden_sshd_config",
    "prune_core_services",
    "set_timezone",
    "write_identity",
]
