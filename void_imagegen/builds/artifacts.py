"""Artifact checksums and manifest generation.

This module handles:
- Computing checksums of the built archive
- Generating and writing a JSON manifest beside it
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from void_imagegen.types import BuildArtifact

logger = logging.getLogger(__name__)

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def manifest_path_for(artifact: BuildArtifact) -> Path:
    """Return the manifest path that accompanies an artifact."""
    return artifact.path.with_name(f"{artifact.name}.json")


def generate_manifest(
    artifact: BuildArtifact,
    build_date: str,
    build_inputs: dict[str, Any] | None = None,
    extra_metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Generate a build manifest.

    Args:
        artifact: The built archive.
        build_date: Build date used in the artifact name.
        build_inputs: Optional build request fields.
        extra_metadata: Optional additional metadata.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    manifest: dict[str, Any] = {
        "version": "1.0",
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "build_date": build_date,
        "artifact": {
            "filename": artifact.name,
            "size_bytes": artifact.size_bytes,
            "sha256": artifact.sha256,
        },
    }
    if build_inputs:
        manifest["build_inputs"] = build_inputs
    if extra_metadata:
        manifest["metadata"] = extra_metadata
    return manifest


def write_manifest(manifest: dict[str, Any], output_path: Path) -> Path:
    """Write manifest to a JSON file."""
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with output_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True)

    logger.info("Wrote manifest to %s", output_path)
    return output_path


__all__ = [
    "HASH_CHUNK_SIZE",
    "compute_file_hash",
    "generate_manifest",
    "manifest_path_for",
    "write_manifest",
]
