"""Tests for builds/runner.py module.

Runs real but trivial commands through the shell utilities every POSIX
system ships.
"""

import sys

import pytest

from void_imagegen.builds.runner import CommandResult, run_command
from void_imagegen.errors import CommandError


class TestRunCommand:
    """Tests for run_command function."""

    def test_success(self):
        """A zero exit should return the combined output."""
        result = run_command(
            [sys.executable, "-c", "print('hello')"], stage="test"
        )
        assert isinstance(result, CommandResult)
        assert result.exit_code == 0
        assert result.output == "hello\n"
        assert result.finished_at >= result.started_at

    def test_stderr_is_captured(self):
        """stderr should be merged into the output."""
        result = run_command(
            [sys.executable, "-c", "import sys; sys.stderr.write('warn\\n')"],
            stage="test",
        )
        assert "warn" in result.output

    def test_failure_carries_output(self, tmp_path):
        """A non-zero exit should raise with the tool output verbatim."""
        script = "import sys; print('E: package not found'); sys.exit(19)"
        with pytest.raises(CommandError) as exc_info:
            run_command([sys.executable, "-c", script], stage="install")

        error = exc_info.value
        assert error.stage == "install"
        assert error.exit_code == 19
        assert error.output == "E: package not found\n"
        assert error.code == "command_failed"

    def test_missing_executable(self, tmp_path):
        """An unstartable program should raise execution_error."""
        with pytest.raises(CommandError) as exc_info:
            run_command([str(tmp_path / "no-such-tool")], stage="install")
        assert exc_info.value.code == "execution_error"

    def test_env_override(self):
        """Override variables should reach the child only."""
        result = run_command(
            [sys.executable, "-c", "import os; print(os.environ['XBPS_ARCH'])"],
            stage="install",
            env_override={"XBPS_ARCH": "x86_64-musl"},
        )
        assert result.output.strip() == "x86_64-musl"

    def test_cwd(self, tmp_path):
        """The child should run in the given directory."""
        result = run_command(
            [sys.executable, "-c", "import os; print(os.getcwd())"],
            stage="test",
            cwd=tmp_path,
        )
        assert result.output.strip() == str(tmp_path)

    def test_log_is_appended(self, tmp_path):
        """Every command should append a section to the build log."""
        log = tmp_path / "logs" / "build.log"
        run_command([sys.executable, "-c", "print('one')"], stage="a", log_path=log)
        with pytest.raises(CommandError) as exc_info:
            run_command(
                [sys.executable, "-c", "print('two'); raise SystemExit(3)"],
                stage="b",
                log_path=log,
            )

        content = log.read_text()
        assert content.count("# Command:") == 2
        assert "one\n" in content
        assert "two\n" in content
        assert "# Exit code: 0" in content
        assert "# Exit code: 3" in content
        assert exc_info.value.log_path == str(log)

    def test_undecodable_output(self):
        """Bytes that are not UTF-8 should not prevent reporting the failure."""
        script = "import sys; sys.stdout.buffer.write(b'\\xff\\xfe bad'); sys.exit(1)"
        with pytest.raises(CommandError) as exc_info:
            run_command([sys.executable, "-c", script], stage="install")

        assert exc_info.value.code == "command_failed"
        assert exc_info.value.output.endswith(" bad")
        assert "�" in exc_info.value.output

    def test_unwritable_log(self, tmp_path):
        """A log that cannot be written should raise with the stage name."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        with pytest.raises(CommandError) as exc_info:
            run_command(
                [sys.executable, "-c", "print('done')"],
                stage="install",
                log_path=blocker / "logs" / "build.log",
            )

        assert exc_info.value.code == "log_error"
        assert exc_info.value.stage == "install"
        assert exc_info.value.output == "done\n"
