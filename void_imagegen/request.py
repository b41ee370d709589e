"""Build request model and loading.

This module defines the validated, immutable BuildRequest and helpers for
assembling it from CLI flags and optional YAML/JSON request files.

Validation happens once, before any side effect. Every missing or invalid
field is reported with its own diagnostic.
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from void_imagegen.errors import ImageGenError
from void_imagegen.types import Architecture

DEFAULT_DOCS_URL = "https://docs.voidlinux.org"

IMAGE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_.\-]+$")

# Operator-facing names used in diagnostics
FIELD_LABELS: dict[str, str] = {
    "architecture": "architecture (--arch)",
    "install_dir": "install directory (--install-dir)",
    "mirror_url": "mirror (--mirror)",
    "image_id": "image name (--image-id)",
    "display_name": "display name (--display-name)",
    "description": "description (--description)",
    "docs_url": "documentation URL (--docs-url)",
}


class RequestValidationError(ImageGenError):
    """Raised when a build request is incomplete or invalid."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__(
            "Invalid build request: " + "; ".join(errors),
            code="invalid_request",
        )
        self.errors = errors


class BuildRequest(BaseModel):
    """Validated parameters for one image build.

    Attributes:
        architecture: Target architecture (glibc or musl variant).
        install_dir: Absolute path of the target root.
        mirror_url: Package mirror base URL, without trailing slash.
        image_id: Identifier used in the artifact filename.
        display_name: Human-readable image name.
        description: Longer description rendered into identity files.
        docs_url: Documentation URL rendered into identity files.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    architecture: Architecture
    install_dir: Path
    mirror_url: str
    image_id: str
    display_name: str
    description: str
    docs_url: str = Field(default=DEFAULT_DOCS_URL)

    @model_validator(mode="before")
    @classmethod
    def drop_blank_values(cls, data: Any) -> Any:
        """Treat None and whitespace-only strings as missing."""
        if not isinstance(data, dict):
            return data
        return {
            key: value.strip() if isinstance(value, str) else value
            for key, value in data.items()
            if value is not None and not (isinstance(value, str) and not value.strip())
        }

    @field_validator("install_dir")
    @classmethod
    def normalize_install_dir(cls, v: Path) -> Path:
        """Normalize to an absolute path and refuse the filesystem root."""
        normalized = Path(os.path.abspath(os.path.expanduser(v)))
        if normalized == Path(normalized.anchor):
            raise ValueError("must not be the filesystem root")
        return normalized

    @field_validator("mirror_url")
    @classmethod
    def validate_mirror_url(cls, v: str) -> str:
        """Require an http(s) URL and strip trailing slashes."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"must be an http(s) URL, got '{v}'")
        return v.rstrip("/")

    @field_validator("image_id")
    @classmethod
    def validate_image_id(cls, v: str) -> str:
        """Validate image_id is safe to use in a filename."""
        if not IMAGE_ID_PATTERN.match(v):
            raise ValueError(
                f"must match pattern {IMAGE_ID_PATTERN.pattern}, got '{v}'"
            )
        return v

    @property
    def repository_url(self) -> str:
        """Package repository URL for the requested architecture."""
        return f"{self.mirror_url}/{self.architecture.repository_path}"


def _describe_errors(exc: ValidationError) -> list[str]:
    """Turn pydantic errors into one operator-facing message per field."""
    messages: list[str] = []
    for error in exc.errors():
        field = str(error["loc"][0]) if error["loc"] else "request"
        label = FIELD_LABELS.get(field, field)
        if error["type"] == "missing":
            messages.append(f"missing required parameter: {label}")
        elif error["type"] == "extra_forbidden":
            messages.append(f"unknown parameter: {field}")
        elif error["type"] == "enum":
            allowed = ", ".join(a.value for a in Architecture)
            messages.append(f"invalid {label}: expected one of {allowed}")
        else:
            msg = error["msg"].removeprefix("Value error, ")
            messages.append(f"invalid {label}: {msg}")
    return messages


def build_request(data: dict[str, Any]) -> BuildRequest:
    """Validate raw inputs into a BuildRequest.

    Args:
        data: Mapping of request fields.

    Returns:
        Validated BuildRequest.

    Raises:
        RequestValidationError: Listing every missing or invalid field.
    """
    try:
        return BuildRequest.model_validate(data)
    except ValidationError as e:
        raise RequestValidationError(_describe_errors(e)) from None


def load_request_file(path: Path) -> dict[str, Any]:
    """Load request fields from a YAML or JSON file.

    Args:
        path: Path to a .yaml/.yml or .json file.

    Returns:
        Raw request mapping (not yet validated).

    Raises:
        RequestValidationError: If the file is unreadable or not a mapping.
    """
    try:
        with open(path, encoding="utf-8") as f:
            if path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise RequestValidationError([f"cannot read request file {path}: {e}"]) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise RequestValidationError(
            [f"request file {path} must contain a mapping, got {type(data).__name__}"]
        )
    return data


def merge_request_inputs(
    file_data: dict[str, Any] | None,
    overrides: dict[str, Any],
) -> dict[str, Any]:
    """Merge request file contents with explicit overrides.

    Overrides that are None are ignored so that flags left unset do not
    clobber values from the file.
    """
    merged: dict[str, Any] = dict(file_data or {})
    merged.update({k: v for k, v in overrides.items() if v is not None})
    return merged


__all__ = [
    "DEFAULT_DOCS_URL",
    "BuildRequest",
    "RequestValidationError",
    "build_request",
    "load_request_file",
    "merge_request_inputs",
]
