"""Archiving of the target root.

This module handles:
- Naming the artifact as <image_id>-<build_date>.tar.gz
- Walking the target root in a stable order, honoring exclusions
- Writing a reproducible gzip-compressed tar archive
"""

from __future__ import annotations

import fnmatch
import gzip
import logging
import os
import tarfile
import tempfile
from collections.abc import Iterable, Iterator
from pathlib import Path

from void_imagegen.builds.artifacts import compute_file_hash
from void_imagegen.errors import ImageGenError
from void_imagegen.types import BuildArtifact

logger = logging.getLogger(__name__)

ARTIFACT_SUFFIX = ".tar.gz"

# Root-relative glob patterns; the directories themselves are kept
DEFAULT_EXCLUDES: tuple[str, ...] = (
    "proc/*",
    "sys/*",
    "dev/*",
    "run/*",
    "tmp/*",
    "var/tmp/*",
    "var/cache/xbps/*",
)


class ArchiveError(ImageGenError):
    """Raised when the target root cannot be archived."""

    def __init__(self, message: str, code: str = "archive_error") -> None:
        super().__init__(message, code=code)


def artifact_name(image_id: str, build_date: str) -> str:
    """Return the artifact filename for an image and build date.

    >>> artifact_name("void", "20240101")
    'void-20240101.tar.gz'
    """
    return f"{image_id}-{build_date}{ARTIFACT_SUFFIX}"


def is_excluded(rel_path: str, excludes: Iterable[str]) -> bool:
    """Check a root-relative POSIX path against exclusion patterns."""
    return any(fnmatch.fnmatchcase(rel_path, pattern) for pattern in excludes)


def iter_archive_paths(
    target_root: Path,
    excludes: Iterable[str] = DEFAULT_EXCLUDES,
    skip_paths: Iterable[Path] = (),
) -> Iterator[tuple[Path, str]]:
    """Yield (path, root-relative name) pairs in sorted depth-first order.

    Symlinks are never followed. Excluded entries and anything listed in
    skip_paths are left out together with their contents.
    """
    target_root = Path(os.path.abspath(target_root))
    excludes = tuple(excludes)
    skip = {Path(os.path.abspath(p)) for p in skip_paths}

    def walk(directory: Path) -> Iterator[tuple[Path, str]]:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
        for entry in entries:
            path = Path(entry.path)
            rel = path.relative_to(target_root).as_posix()
            if path in skip or is_excluded(rel, excludes):
                logger.debug("Excluding %s", rel)
                continue
            yield path, rel
            if entry.is_dir(follow_symlinks=False):
                yield from walk(path)

    yield from walk(target_root)


def _normalize_entry(tarinfo: tarfile.TarInfo) -> tarfile.TarInfo:
    # Host user names mean nothing inside the image
    tarinfo.uname = ""
    tarinfo.gname = ""
    # Whole seconds only, so no sub-second PAX mtime records are emitted
    tarinfo.mtime = int(tarinfo.mtime)
    return tarinfo


def create_archive(
    target_root: Path,
    output_path: Path,
    excludes: Iterable[str] = DEFAULT_EXCLUDES,
    skip_paths: Iterable[Path] = (),
) -> int:
    """Write a gzip-compressed tar of the target root.

    The archive is reproducible for identical trees: entries are sorted,
    owner names are dropped in favor of numeric ids, and the gzip header
    carries no timestamp or filename. The output is written to a temporary
    file and renamed into place.

    Args:
        target_root: Directory to archive (becomes './').
        output_path: Final archive path.
        excludes: Root-relative glob patterns to leave out.
        skip_paths: Absolute paths to leave out (e.g., scratch workspace).

    Returns:
        Number of archived entries.

    Raises:
        ArchiveError: If archiving fails.
    """
    output_path = Path(os.path.abspath(output_path))
    skip = [*skip_paths, output_path]
    count = 0

    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=output_path.parent, prefix=f".{output_path.name}.", suffix=".tmp"
        )
        skip.append(Path(tmp_name))
        try:
            with (
                os.fdopen(fd, "wb") as raw,
                gzip.GzipFile(filename="", mode="wb", fileobj=raw, mtime=0) as gz,
                tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar,
            ):
                tar.add(
                    target_root, arcname=".", recursive=False, filter=_normalize_entry
                )
                count += 1
                for path, rel in iter_archive_paths(target_root, excludes, skip):
                    tar.add(
                        path,
                        arcname=f"./{rel}",
                        recursive=False,
                        filter=_normalize_entry,
                    )
                    count += 1
            os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, output_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except (OSError, tarfile.TarError) as e:
        raise ArchiveError(
            f"Failed to archive {target_root} to {output_path}: {e}"
        ) from e

    logger.info("Archived %d entries from %s to %s", count, target_root, output_path)
    return count


def archive_target(
    target_root: Path,
    output_dir: Path,
    image_id: str,
    build_date: str,
    excludes: Iterable[str] = DEFAULT_EXCLUDES,
    skip_paths: Iterable[Path] = (),
) -> BuildArtifact:
    """Archive the target root into <output_dir>/<image_id>-<build_date>.tar.gz.

    Returns:
        BuildArtifact describing the written archive.

    Raises:
        ArchiveError: If archiving fails.
    """
    name = artifact_name(image_id, build_date)
    output_path = Path(os.path.abspath(output_dir)) / name
    create_archive(target_root, output_path, excludes=excludes, skip_paths=skip_paths)
    return BuildArtifact(
        name=name,
        path=output_path,
        size_bytes=output_path.stat().st_size,
        sha256=compute_file_hash(output_path),
    )


__all__ = [
    "ARTIFACT_SUFFIX",
    "DEFAULT_EXCLUDES",
    "ArchiveError",
    "archive_target",
    "artifact_name",
    "create_archive",
    "is_excluded",
    "iter_archive_paths",
]
