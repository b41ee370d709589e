"""Void Linux Image Generator - reproducible root filesystem images.

This package bootstraps the static xbps toolchain, installs a base system
into a target directory, applies image customizations, and archives the
result into a versioned tarball.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
