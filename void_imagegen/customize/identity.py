"""Identity files rendered into the image.

The release descriptor is the message of the day followed by the product
descriptor, with nothing else in it.
"""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

MOTD_PATH = Path("etc/motd")
PRODUCT_PATH = Path("etc/product")
RELEASE_PATH = Path("etc/release")


def render_motd(
    display_name: str,
    build_date: str,
    description: str,
    docs_url: str,
) -> str:
    """Render the message-of-the-day banner."""
    title = f"Welcome to {display_name} ({build_date})"
    rule = "=" * len(title)
    return (
        f"{rule}\n"
        f"{title}\n"
        f"{rule}\n"
        "\n"
        f"{description}\n"
        "\n"
        f"Documentation: {docs_url}\n"
        "\n"
    )


def render_product(
    display_name: str,
    build_date: str,
    description: str,
    docs_url: str,
) -> str:
    """Render the product descriptor."""
    return (
        f"Image: {display_name} {build_date}\n"
        f"Description: {description}\n"
        f"Documentation: {docs_url}\n"
    )


def render_release(motd: str, product: str) -> str:
    """Render the release descriptor from the motd and product descriptor."""
    return motd + product


def write_identity_files(
    target_root: Path,
    display_name: str,
    build_date: str,
    description: str,
    docs_url: str,
) -> list[Path]:
    """Write motd, product and release descriptors into the target root.

    Returns:
        Paths of the written files.

    Raises:
        OSError: If a file cannot be written.
    """
    motd = render_motd(display_name, build_date, description, docs_url)
    product = render_product(display_name, build_date, description, docs_url)

    written: list[Path] = []
    for rel_path, content in (
        (MOTD_PATH, motd),
        (PRODUCT_PATH, product),
        (RELEASE_PATH, render_release(motd, product)),
    ):
        path = target_root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        written.append(path)

    logger.debug("Wrote identity files: %s", [str(p) for p in written])
    return written


__all__ = [
    "MOTD_PATH",
    "PRODUCT_PATH",
    "RELEASE_PATH",
    "render_motd",
    "render_product",
    "render_release",
    "write_identity_files",
]
