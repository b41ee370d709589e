"""Shared type definitions for void_imagegen.

This module contains enums and dataclasses shared across subpackages to
avoid circular imports.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class Architecture(str, Enum):
    """Target architecture of the image (libc variant included)."""

    X86_64 = "x86_64"
    X86_64_MUSL = "x86_64-musl"

    @property
    def is_musl(self) -> bool:
        """Whether this architecture uses the musl C library."""
        return self.value.endswith("-musl")

    @property
    def repository_path(self) -> str:
        """Repository path below the mirror root for this architecture."""
        return "current/musl" if self.is_musl else "current"


class ServiceState(str, Enum):
    """Enablement state of a service in the image."""

    ENABLED = "enabled"
    DISABLED = "disabled"
    MASKED = "masked"


class ServiceKind(str, Enum):
    """Kind of service definition."""

    # Supervised service under /etc/sv, activated via runsvdir links
    RUNIT = "runit"
    # Early-boot script under /etc/runit/core-services
    CORE = "core"


@dataclass(frozen=True)
class ServiceRef:
    """Reference to a service inside the target root."""

    name: str
    kind: ServiceKind = ServiceKind.RUNIT


@dataclass
class BuildArtifact:
    """The archive produced by a successful build."""

    name: str
    path: Path
    size_bytes: int
    sha256: str


__all__ = [
    "Architecture",
    "BuildArtifact",
    "ServiceKind",
    "ServiceRef",
    "ServiceState",
]
