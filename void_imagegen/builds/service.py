"""Build service module.

This module provides the high-level build API:
- run_pipeline(): run every stage in order against one BuildContext
- Stage attribution of failures
- Optional manifest generation

Stages run strictly in sequence and the first failure aborts the build.
The target root is left as it is for inspection; the next run's reset
stage reclaims it.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import httpx

from void_imagegen.bootstrap.fetch import BootstrapToolchain, fetch_bootstrap
from void_imagegen.bootstrap.installer import (
    install_base,
    install_keys,
    reconfigure_all,
    reconfigure_packages,
)
from void_imagegen.builds.archive import (
    DEFAULT_EXCLUDES,
    ArchiveError,
    archive_target,
    artifact_name,
)
from void_imagegen.builds.artifacts import (
    generate_manifest,
    manifest_path_for,
    write_manifest,
)
from void_imagegen.builds.guest import check_guest_installer, invoke_guest_tooling
from void_imagegen.config import Settings, get_settings
from void_imagegen.customize.steps import (
    CustomizationContext,
    StepResult,
    apply_customizations,
)
from void_imagegen.errors import ImageGenError
from void_imagegen.request import BuildRequest
from void_imagegen.target.reset import reset_target
from void_imagegen.types import BuildArtifact

logger = logging.getLogger(__name__)

BUILD_DATE_FORMAT = "%Y%m%d"

PIPELINE_STAGES: tuple[str, ...] = (
    "preflight",
    "reset",
    "bootstrap",
    "keys",
    "install",
    "reconfigure",
    "customize",
    "guest-tooling",
    "archive",
)


class StageFailedError(ImageGenError):
    """Raised when a pipeline stage fails; wraps the underlying error."""

    def __init__(self, stage: str, cause: ImageGenError) -> None:
        super().__init__(f"Stage '{stage}' failed: {cause.message}", code=cause.code)
        self.stage = stage
        self.cause = cause
        self.output: str = getattr(cause, "output", "") or ""
        self.log_path: str | None = getattr(cause, "log_path", None)


def current_build_date(now: datetime | None = None) -> str:
    """Return the build date string (YYYYMMDD, UTC)."""
    now = now or datetime.now(timezone.utc)
    return now.strftime(BUILD_DATE_FORMAT)


@dataclass
class BuildContext:
    """Everything one build needs, fixed before the first stage runs.

    Attributes:
        request: Validated build request.
        settings: Effective settings.
        build_date: Build date, evaluated once at process start.
        output_dir: Directory the artifact is written to.
    """

    request: BuildRequest
    settings: Settings = field(default_factory=get_settings)
    build_date: str = field(default_factory=current_build_date)
    output_dir: Path = field(default_factory=Path.cwd)

    @property
    def target_root(self) -> Path:
        """Target root directory."""
        return self.request.install_dir

    @property
    def workspace(self) -> Path:
        """Scratch workspace for the bootstrap toolchain."""
        return self.settings.work_dir.expanduser().absolute()

    @property
    def artifact_name(self) -> str:
        """Artifact filename for this build."""
        return artifact_name(self.request.image_id, self.build_date)

    @property
    def log_path(self) -> Path:
        """Build log receiving external command output."""
        log_dir = self.settings.log_dir.expanduser().absolute()
        return log_dir / f"{self.request.image_id}-{self.build_date}.log"

    @property
    def excludes(self) -> list[str]:
        """Archive exclusion patterns."""
        return [*DEFAULT_EXCLUDES, *self.settings.extra_excludes]


@dataclass
class PipelineResult:
    """Result of a successful build."""

    artifact: BuildArtifact
    build_date: str
    steps: list[StepResult]
    log_path: Path
    manifest_path: Path | None = None


@contextmanager
def stage(name: str) -> Iterator[None]:
    """Attribute any pipeline or filesystem error raised in the block to a stage."""
    logger.info("==> %s", name)
    try:
        yield
    except StageFailedError:
        raise
    except ImageGenError as e:
        logger.error("Stage %s failed: %s", name, e.message)
        raise StageFailedError(name, e) from e
    except OSError as e:
        logger.error("Stage %s failed: %s", name, e)
        raise StageFailedError(name, ImageGenError(str(e), code="os_error")) from e


@contextmanager
def _http_client(client: httpx.Client | None) -> Iterator[httpx.Client]:
    if client is not None:
        yield client
        return
    with httpx.Client(follow_redirects=True) as own_client:
        yield own_client


def preflight(ctx: BuildContext) -> None:
    """Check everything that can be checked before any side effect.

    Raises:
        ImageGenError: If the reset would wipe the workspace or the output
            directory, or the guest-tooling installer is unusable.
    """
    if ctx.workspace.is_relative_to(ctx.target_root):
        raise ImageGenError(
            f"Scratch workspace {ctx.workspace} is inside the install directory",
            code="workspace_in_target",
        )
    if ctx.target_root.is_relative_to(ctx.workspace):
        raise ImageGenError(
            f"Install directory {ctx.target_root} is inside the scratch workspace",
            code="target_in_workspace",
        )
    output_dir = Path(os.path.abspath(ctx.output_dir))
    if output_dir.is_relative_to(ctx.target_root):
        raise ImageGenError(
            f"Output directory {output_dir} is inside the install directory",
            code="output_in_target",
        )
    check_guest_installer(ctx.settings.guest_installer)


def run_pipeline(
    ctx: BuildContext,
    client: httpx.Client | None = None,
    manifest: bool = False,
) -> PipelineResult:
    """Build an image from start to finish.

    Args:
        ctx: Build context.
        client: Optional HTTPX client (one is created when not given).
        manifest: Whether to write a JSON manifest beside the artifact.

    Returns:
        PipelineResult with the artifact.

    Raises:
        StageFailedError: On the first failing stage.
    """
    request = ctx.request
    target_root = ctx.target_root
    log_path = ctx.log_path

    logger.info(
        "Building %s (%s) for %s into %s",
        ctx.artifact_name,
        request.display_name,
        request.architecture.value,
        target_root,
    )

    with stage("preflight"):
        preflight(ctx)

    with stage("reset"):
        reset_target(target_root, log_path=log_path)

    toolchain: BootstrapToolchain
    with stage("bootstrap"), _http_client(client) as http:
        toolchain = fetch_bootstrap(
            http,
            request.mirror_url,
            ctx.workspace,
            verify_checksum=ctx.settings.verify_checksum,
            timeout=ctx.settings.download_timeout,
        )

    with stage("keys"):
        install_keys(toolchain, target_root)

    with stage("install"):
        install_base(
            toolchain,
            request.architecture,
            request.repository_url,
            target_root,
            log_path=log_path,
        )

    with stage("reconfigure"):
        reconfigure_all(toolchain, request.architecture, target_root, log_path=log_path)

    def reconfigure(packages: list[str]) -> object:
        return reconfigure_packages(
            toolchain, request.architecture, target_root, packages, log_path=log_path
        )

    customization = CustomizationContext(
        architecture=request.architecture,
        display_name=request.display_name,
        description=request.description,
        docs_url=request.docs_url,
        build_date=ctx.build_date,
        reconfigure=reconfigure,
    )
    with stage("customize"):
        steps = apply_customizations(target_root, customization)

    with stage("guest-tooling"):
        invoke_guest_tooling(
            ctx.settings.guest_installer, target_root, log_path=log_path
        )

    with stage("archive"):
        artifact = archive_target(
            target_root,
            ctx.output_dir,
            request.image_id,
            ctx.build_date,
            excludes=ctx.excludes,
            skip_paths=[ctx.workspace],
        )

        manifest_path: Path | None = None
        if manifest:
            data = generate_manifest(
                artifact,
                ctx.build_date,
                build_inputs=request.model_dump(mode="json"),
                extra_metadata={"toolchain_sha256": toolchain.checksum},
            )
            try:
                manifest_path = write_manifest(data, manifest_path_for(artifact))
            except OSError as e:
                raise ArchiveError(f"Failed to write manifest: {e}") from e

    logger.info("Built %s (%d bytes)", artifact.path, artifact.size_bytes)
    return PipelineResult(
        artifact=artifact,
        build_date=ctx.build_date,
        steps=steps,
        log_path=log_path,
        manifest_path=manifest_path,
    )


__all__ = [
    "PIPELINE_STAGES",
    "BuildContext",
    "PipelineResult",
    "StageFailedError",
    "current_build_date",
    "preflight",
    "run_pipeline",
    "stage",
]
