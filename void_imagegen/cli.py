"""Thin CLI wrapper for void_imagegen.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from void_imagegen import __version__
from void_imagegen.builds.archive import artifact_name
from void_imagegen.builds.service import (
    BUILD_DATE_FORMAT,
    BuildContext,
    StageFailedError,
    current_build_date,
    run_pipeline,
)
from void_imagegen.config import get_settings, print_settings_json
from void_imagegen.errors import ImageGenError
from void_imagegen.request import (
    RequestValidationError,
    build_request,
    load_request_file,
    merge_request_inputs,
)
from void_imagegen.target.reset import reset_target

app = typer.Typer(
    name="void-imagegen",
    help="Void Linux Image Generator - build minimal root filesystem archives",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"void-imagegen version {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    level = "DEBUG" if verbose else get_settings().log_level
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _report_error(error: ImageGenError) -> None:
    """Print a pipeline error to stderr, tool output included."""
    if isinstance(error, RequestValidationError):
        err_console.print("[red]Invalid build request:[/red]")
        for message in error.errors:
            err_console.print(f"  - {message}", markup=False)
        return

    stage = getattr(error, "stage", None)
    prefix = f"[{stage}] " if stage else ""
    err_console.print(f"[red]{escape(prefix + error.message)}[/red]")
    output = getattr(error, "output", "")
    if output:
        err_console.print(output.rstrip("\n"), markup=False, highlight=False)
    log_path = getattr(error, "log_path", None)
    if log_path:
        err_console.print(f"See build log: {log_path}", markup=False)


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Void Linux Image Generator - build minimal root filesystem archives."""
    _configure_logging(verbose)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True)
    else:
        excludes = ", ".join(settings.extra_excludes) or "(none)"
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  Work directory:      {settings.work_dir}")
        console.print(f"  Log directory:       {settings.log_dir}")
        console.print(f"  Guest installer:     {settings.guest_installer}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Verify checksum:     {settings.verify_checksum}")
        console.print(f"  Log level:           {settings.log_level}")
        console.print(f"  Extra excludes:      {excludes}")
        console.print()
        console.print("[bold]Timeouts (seconds):[/bold]")
        console.print(f"  Download timeout:    {settings.download_timeout}")


@app.command()
def name(
    image_id: Annotated[str, typer.Argument(help="Image identifier")],
    date: Annotated[
        str | None,
        typer.Option("--date", "-d", help="Build date (YYYYMMDD); defaults to today"),
    ] = None,
) -> None:
    """Print the artifact filename for an image."""
    if date is None:
        date = current_build_date()
    else:
        try:
            datetime.strptime(date, BUILD_DATE_FORMAT)
        except ValueError:
            err_console.print(
                f"[red]Invalid date {escape(repr(date))}: expected YYYYMMDD[/red]"
            )
            raise typer.Exit(code=1) from None
    console.print(artifact_name(image_id, date), markup=False, soft_wrap=True)


@app.command()
def reset(
    directory: Annotated[Path, typer.Argument(help="Target root to reset")],
) -> None:
    """Unmount, delete and recreate a target root."""
    target = Path(os.path.abspath(os.path.expanduser(directory)))
    try:
        reset_target(target)
    except ImageGenError as e:
        _report_error(e)
        raise typer.Exit(code=1) from None
    console.print(f"[green]✓ Target root reset: {target}[/green]")


@app.command()
def build(
    arch: Annotated[
        str | None,
        typer.Option("--arch", "-a", help="Target architecture (x86_64, x86_64-musl)"),
    ] = None,
    install_dir: Annotated[
        Path | None,
        typer.Option("--install-dir", "-i", help="Target root directory"),
    ] = None,
    mirror: Annotated[
        str | None,
        typer.Option("--mirror", "-m", help="Package mirror base URL"),
    ] = None,
    image_id: Annotated[
        str | None,
        typer.Option("--image-id", help="Image identifier used in the artifact name"),
    ] = None,
    display_name: Annotated[
        str | None,
        typer.Option("--display-name", help="Human-readable image name"),
    ] = None,
    description: Annotated[
        str | None,
        typer.Option("--description", help="Image description"),
    ] = None,
    docs_url: Annotated[
        str | None,
        typer.Option("--docs-url", help="Documentation URL"),
    ] = None,
    request_file: Annotated[
        Path | None,
        typer.Option("--request", "-r", help="YAML/JSON file with request fields"),
    ] = None,
    guest_installer: Annotated[
        Path | None,
        typer.Option("--guest-installer", help="Guest-tooling installer program"),
    ] = None,
    manifest: Annotated[
        bool,
        typer.Option("--manifest", help="Write a JSON manifest beside the archive"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build a root filesystem archive.

    Every field may come from --request; explicit flags take precedence.
    The archive is written to the current directory.
    """
    overrides: dict[str, Any] = {
        "architecture": arch,
        "install_dir": install_dir,
        "mirror_url": mirror,
        "image_id": image_id,
        "display_name": display_name,
        "description": description,
        "docs_url": docs_url,
    }

    try:
        file_data = load_request_file(request_file) if request_file else None
        request = build_request(merge_request_inputs(file_data, overrides))
    except RequestValidationError as e:
        _report_error(e)
        raise typer.Exit(code=1) from None

    settings = get_settings()
    if guest_installer is not None:
        settings = settings.model_copy(update={"guest_installer": guest_installer})

    ctx = BuildContext(request=request, settings=settings)
    if not json_output:
        console.print(f"[blue]Building {ctx.artifact_name}...[/blue]")

    try:
        result = run_pipeline(ctx, manifest=manifest)
    except StageFailedError as e:
        _report_error(e)
        raise typer.Exit(code=1) from None

    if json_output:
        output = {
            "artifact": result.artifact.name,
            "path": str(result.artifact.path),
            "size_bytes": result.artifact.size_bytes,
            "sha256": result.artifact.sha256,
            "build_date": result.build_date,
            "log_path": str(result.log_path),
            "manifest_path": (
                str(result.manifest_path) if result.manifest_path else None
            ),
        }
        console.print_json(json.dumps(output), indent=2, highlight=False)
    else:
        console.print(f"[green]✓ Built {result.artifact.name}[/green]")
        console.print(f"  Path: {result.artifact.path}")
        console.print(f"  Size: {result.artifact.size_bytes} bytes")
        console.print(f"  SHA-256: {result.artifact.sha256}")
        if result.manifest_path:
            console.print(f"  Manifest: {result.manifest_path}")


if __name__ == "__main__":
    app()
