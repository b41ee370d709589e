"""Package manager bootstrap module.

This module handles:
- Downloading and extracting the static xbps toolchain from a mirror
- Installing repository trust keys into the target root
- Installing the base package set and running reconfiguration hooks
"""

from void_imagegen.bootstrap.fetch import (
    BootstrapToolchain,
    DownloadError,
    ExtractionError,
    VerificationError,
    fetch_bootstrap,
    host_architecture,
)
from void_imagegen.bootstrap.installer import (
    KeyInstallError,
    base_packages,
    install_base,
    install_keys,
    reconfigure_all,
    reconfigure_packages,
)

__all__ = [
    "BootstrapToolchain",
    "DownloadError",
    "ExtractionError",
    "KeyInstallError",
    "VerificationError",
    "base_packages",
    "fetch_bootstrap",
    "host_architecture",
    "install_base",
    "install_keys",
    "reconfigure_all",
    "reconfigure_packages",
]
