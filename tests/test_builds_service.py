"""Tests for builds/service.py module.

The pipeline runs end to end against tmp_path with the network, the package
manager and in-root hooks mocked. Reset, key installation, customization,
guest tooling and archiving run for real.
"""

import json
import tarfile
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from void_imagegen.builds.service import (
    PIPELINE_STAGES,
    BuildContext,
    StageFailedError,
    current_build_date,
    run_pipeline,
    stage,
)
from void_imagegen.config import Settings
from void_imagegen.errors import CommandError, ImageGenError
from void_imagegen.request import build_request


@pytest.fixture
def guest_installer(tmp_path: Path) -> Path:
    """Installer that drops a marker file into the target root."""
    script = tmp_path / "guest" / "install"
    script.parent.mkdir()
    script.write_text('#!/bin/sh\necho "guest tools" > "$1/etc/guest-tooling"\n')
    script.chmod(0o755)
    return script


@pytest.fixture
def ctx(tmp_path: Path, toolchain, guest_installer) -> BuildContext:
    """Build context for a glibc image into tmp_path/rootfs."""
    request = build_request(
        {
            "architecture": "x86_64",
            "install_dir": str(tmp_path / "rootfs"),
            "mirror_url": "https://mirror.example.com",
            "image_id": "void",
            "display_name": "Void Linux",
            "description": "A minimal Void Linux image",
            "docs_url": "https://example.com/docs",
        }
    )
    settings = Settings(
        work_dir=toolchain.root,
        log_dir=tmp_path / "logs",
        guest_installer=guest_installer,
    )
    return BuildContext(
        request=request,
        settings=settings,
        build_date="20240101",
        output_dir=tmp_path / "out",
    )


@pytest.fixture
def mocked_tools(toolchain, rootfs_factory):
    """Patch the download, package install and in-root hooks."""

    def fake_install(toolchain, architecture, repository_url, target_root, **kwargs):
        rootfs_factory(target_root)

    with (
        patch(
            "void_imagegen.builds.service.fetch_bootstrap", return_value=toolchain
        ) as fetch,
        patch(
            "void_imagegen.builds.service.install_base", side_effect=fake_install
        ) as install,
        patch("void_imagegen.builds.service.reconfigure_all") as reconfigure_all,
        patch(
            "void_imagegen.builds.service.reconfigure_packages"
        ) as reconfigure_packages,
    ):
        yield {
            "fetch": fetch,
            "install": install,
            "reconfigure_all": reconfigure_all,
            "reconfigure_packages": reconfigure_packages,
        }


def archive_members(path: Path) -> list[str]:
    with tarfile.open(path, "r:gz") as tar:
        return tar.getnames()


class TestCurrentBuildDate:
    """Tests for current_build_date function."""

    def test_format(self):
        """Dates should be rendered as YYYYMMDD."""
        now = datetime(2024, 1, 1, 23, 59, tzinfo=timezone.utc)
        assert current_build_date(now) == "20240101"


class TestStage:
    """Tests for the stage context manager."""

    def test_wraps_pipeline_errors(self):
        """Pipeline errors should be attributed to the stage."""
        with pytest.raises(StageFailedError) as exc_info:
            with stage("install"):
                raise CommandError(
                    "xbps-install.static exited with code 19",
                    stage="install",
                    exit_code=19,
                    output="unresolvable shlib\n",
                )
        assert exc_info.value.stage == "install"
        assert exc_info.value.output == "unresolvable shlib\n"
        assert exc_info.value.code == "command_failed"

    def test_wraps_filesystem_errors(self, tmp_path):
        """Filesystem errors should be attributed to the stage as well."""
        with pytest.raises(StageFailedError) as exc_info:
            with stage("customize"):
                (tmp_path / "missing" / "motd").read_text()
        assert exc_info.value.stage == "customize"
        assert exc_info.value.code == "os_error"

    def test_other_errors_pass_through(self):
        """Programming errors should not be disguised."""
        with pytest.raises(KeyError):
            with stage("install"):
                raise KeyError("x")


class TestBuildContext:
    """Tests for BuildContext properties."""

    def test_derived_paths(self, ctx, tmp_path):
        """Names and paths should derive from request, settings and date."""
        assert ctx.artifact_name == "void-20240101.tar.gz"
        assert ctx.target_root == tmp_path / "rootfs"
        assert ctx.log_path == tmp_path / "logs" / "void-20240101.log"
        assert "proc/*" in ctx.excludes


class TestRunPipeline:
    """Tests for run_pipeline function."""

    def test_successful_build(self, ctx, mocked_tools, tmp_path):
        """A build should produce the named archive of the customized root."""
        result = run_pipeline(ctx)

        assert result.artifact.path == tmp_path / "out" / "void-20240101.tar.gz"
        assert result.build_date == "20240101"
        members = archive_members(result.artifact.path)
        assert "./etc/product" in members
        assert "./etc/guest-tooling" in members
        assert "./var/db/xbps/keys/void.plist" in members
        assert "./proc" in members
        product = (ctx.target_root / "etc/product").read_text()
        assert "Image: Void Linux 20240101" in product
        mocked_tools["reconfigure_packages"].assert_called_once()

    def test_install_uses_request(self, ctx, mocked_tools):
        """The installer should get the architecture and repository."""
        run_pipeline(ctx)
        args = mocked_tools["install"].call_args.args
        assert args[1].value == "x86_64"
        assert args[2] == "https://mirror.example.com/current"
        assert args[3] == ctx.target_root

    def test_two_runs_succeed(self, ctx, mocked_tools):
        """Re-running against the same directory should give the same tree."""
        first = run_pipeline(ctx)
        first_members = archive_members(first.artifact.path)
        (ctx.target_root / "stale-file").write_text("from a broken run")

        second = run_pipeline(ctx)

        assert archive_members(second.artifact.path) == first_members
        assert not (ctx.target_root / "stale-file").exists()

    def test_manifest(self, ctx, mocked_tools):
        """A manifest should be written beside the archive on request."""
        result = run_pipeline(ctx, manifest=True)
        assert result.manifest_path == result.artifact.path.with_name(
            "void-20240101.tar.gz.json"
        )
        data = json.loads(result.manifest_path.read_text())
        assert data["artifact"]["sha256"] == result.artifact.sha256
        assert data["metadata"]["toolchain_sha256"] == "0" * 64
        assert data["build_inputs"]["image_id"] == "void"

    def test_install_failure_is_attributed(self, ctx, mocked_tools):
        """A failing install should stop the build at the install stage."""
        mocked_tools["install"].side_effect = CommandError(
            "xbps-install.static exited with code 19",
            stage="install",
            exit_code=19,
            output="ERROR: bash-5.2_1: unresolvable shlib\n",
        )

        with pytest.raises(StageFailedError) as exc_info:
            run_pipeline(ctx)

        assert exc_info.value.stage == "install"
        assert "unresolvable shlib" in exc_info.value.output
        mocked_tools["reconfigure_all"].assert_not_called()
        assert not (ctx.output_dir / "void-20240101.tar.gz").exists()

    def test_guest_tooling_failure(self, ctx, mocked_tools, guest_installer):
        """A failing guest installer should fail its own stage."""
        guest_installer.write_text("#!/bin/sh\necho 'no agent'\nexit 2\n")

        with pytest.raises(StageFailedError) as exc_info:
            run_pipeline(ctx)

        assert exc_info.value.stage == "guest-tooling"
        assert exc_info.value.output == "no agent\n"
        assert exc_info.value.log_path == str(ctx.log_path)

    def test_missing_installer_fails_before_reset(self, ctx, mocked_tools, tmp_path):
        """Preflight problems should be caught before the target is touched."""
        ctx.target_root.mkdir()
        (ctx.target_root / "keep").write_text("x")
        ctx.settings = ctx.settings.model_copy(
            update={"guest_installer": tmp_path / "missing"}
        )

        with pytest.raises(StageFailedError) as exc_info:
            run_pipeline(ctx)

        assert exc_info.value.stage == "preflight"
        assert (ctx.target_root / "keep").exists()
        mocked_tools["fetch"].assert_not_called()

    def test_workspace_inside_target_rejected(self, ctx, mocked_tools):
        """The scratch workspace must survive the reset."""
        ctx.settings = ctx.settings.model_copy(
            update={"work_dir": ctx.target_root / "ws"}
        )
        with pytest.raises(StageFailedError) as exc_info:
            run_pipeline(ctx)
        assert exc_info.value.stage == "preflight"
        assert exc_info.value.code == "workspace_in_target"

    def test_output_dir_inside_target_rejected(self, ctx, mocked_tools):
        """The archive must not be written into the root being reset."""
        ctx.target_root.mkdir()
        (ctx.target_root / "keep").write_text("x")
        ctx.output_dir = ctx.target_root / "out"

        with pytest.raises(StageFailedError) as exc_info:
            run_pipeline(ctx)

        assert exc_info.value.stage == "preflight"
        assert exc_info.value.code == "output_in_target"
        assert (ctx.target_root / "keep").exists()

    def test_unwritable_log_reports_stage(self, ctx, mocked_tools, tmp_path):
        """A build log that cannot be written should fail with its stage."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        ctx.settings = ctx.settings.model_copy(update={"log_dir": blocker / "logs"})

        with pytest.raises(StageFailedError) as exc_info:
            run_pipeline(ctx)

        assert exc_info.value.stage == "guest-tooling"
        assert exc_info.value.code == "log_error"

    def test_stages_are_ordered(self):
        """Stages should run from preflight to archive."""
        assert PIPELINE_STAGES[0] == "preflight"
        assert PIPELINE_STAGES[-1] == "archive"
        assert PIPELINE_STAGES.index("install") < PIPELINE_STAGES.index("customize")

    def test_stage_failed_is_imagegen_error(self):
        """Callers can catch every failure through the base class."""
        assert issubclass(StageFailedError, ImageGenError)
