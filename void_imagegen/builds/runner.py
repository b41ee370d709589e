"""Execution of external programs for pipeline stages.

This module handles:
- Running package manager, mount and installer commands
- Capturing combined stdout/stderr and appending it to a build log
- Turning non-zero exits into CommandError with the tool output verbatim
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from void_imagegen.errors import CommandError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result of an external command.

    Attributes:
        command: The command that was executed (shell-quoted).
        exit_code: Process exit code.
        output: Combined stdout and stderr.
        started_at: Start time.
        finished_at: Finish time.
    """

    command: str
    exit_code: int
    output: str
    started_at: datetime
    finished_at: datetime


def _append_log(
    log_path: Path,
    cmd_str: str,
    cwd: Path | None,
    started_at: datetime,
    output: str,
    exit_code: int | None,
    stage: str,
) -> None:
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open("a", encoding="utf-8") as log_file:
            log_file.write(f"# Command: {cmd_str}\n")
            log_file.write(f"# Started: {started_at.isoformat()}\n")
            if cwd is not None:
                log_file.write(f"# CWD: {cwd}\n")
            log_file.write("# " + "=" * 70 + "\n")
            log_file.write(output)
            if output and not output.endswith("\n"):
                log_file.write("\n")
            log_file.write(f"# Exit code: {exit_code}\n\n")
    except OSError as e:
        raise CommandError(
            f"Failed to write build log {log_path}: {e}",
            stage=stage,
            exit_code=exit_code,
            output=output,
            code="log_error",
        ) from e


def run_command(
    cmd: list[str],
    *,
    stage: str,
    cwd: Path | None = None,
    env_override: dict[str, str] | None = None,
    log_path: Path | None = None,
) -> CommandResult:
    """Run an external command for a pipeline stage.

    Args:
        cmd: Command as list of strings.
        stage: Stage name used in diagnostics.
        cwd: Working directory for the child process.
        env_override: Variables added to the inherited environment.
        log_path: Optional build log to append the command output to.

    Returns:
        CommandResult for a successful (zero exit) command.

    Raises:
        CommandError: If the command cannot be started, exits non-zero or
            its output cannot be written to the build log.
    """
    cmd_str = shlex.join(cmd)
    logger.debug("[%s] Executing: %s", stage, cmd_str)

    env: dict[str, str] | None = None
    if env_override:
        env = dict(os.environ)
        env.update(env_override)

    started_at = datetime.now(timezone.utc)

    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            check=False,
        )
    except OSError as e:
        if log_path is not None:
            _append_log(log_path, cmd_str, cwd, started_at, str(e), None, stage)
        raise CommandError(
            f"Failed to execute {cmd[0]}: {e}",
            stage=stage,
            log_path=str(log_path) if log_path else None,
            code="execution_error",
        ) from e

    finished_at = datetime.now(timezone.utc)
    output = result.stdout or ""

    if log_path is not None:
        _append_log(
            log_path, cmd_str, cwd, started_at, output, result.returncode, stage
        )

    if result.returncode != 0:
        logger.error(
            "[%s] %s exited with code %d", stage, cmd[0], result.returncode
        )
        raise CommandError(
            f"{Path(cmd[0]).name} exited with code {result.returncode}",
            stage=stage,
            exit_code=result.returncode,
            output=output,
            log_path=str(log_path) if log_path else None,
        )

    return CommandResult(
        command=cmd_str,
        exit_code=result.returncode,
        output=output,
        started_at=started_at,
        finished_at=finished_at,
    )


__all__ = ["CommandResult", "run_command"]
