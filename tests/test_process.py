"""Tests for process.py module.

Uses mocked subprocess for tool execution.
"""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from riscv_bringup.errors import ExternalToolError
from riscv_bringup.process import ToolRunner


@pytest.fixture
def runner(tmp_path: Path) -> ToolRunner:
    return ToolRunner("kernel", tmp_path / "logs" / "kernel.log", timeout=120)


class TestToolRunner:
    """Tests for ToolRunner.run."""

    def test_success(self, runner: ToolRunner) -> None:
        """Should return a successful result and log the command."""
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0)
            result = runner.run(["make", "-j4", "Image"])

        assert result.success
        assert result.command == "make -j4 Image"
        log = runner.log_path.read_text()
        assert "# Command: make -j4 Image" in log
        assert "# Exit code: 0" in log

    def test_env_merged_over_process_env(self, runner: ToolRunner) -> None:
        """Overrides are merged into a copy of the process environment."""
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0)
            runner.run(["make"], env={"ARCH": "riscv"})

        env = mock_run.call_args.kwargs["env"]
        assert env["ARCH"] == "riscv"
        assert "PATH" in env

    def test_timeout_passed(self, runner: ToolRunner) -> None:
        """The runner timeout is passed to subprocess."""
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0)
            runner.run(["true"])
        assert mock_run.call_args.kwargs["timeout"] == 120

    def test_stdin_is_devnull(self, runner: ToolRunner) -> None:
        """Prompting tools such as ``make oldconfig`` read EOF and take defaults."""
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0)
            runner.run(["make", "oldconfig"])
        assert mock_run.call_args.kwargs["stdin"] is subprocess.DEVNULL

    def test_failure_raises(self, runner: ToolRunner) -> None:
        """Non-zero exit with check raises ExternalToolError."""
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=2)
            with pytest.raises(ExternalToolError) as exc_info:
                runner.run(["make", "Image"])

        assert exc_info.value.tool_exit_code == 2
        assert exc_info.value.stage == "kernel"
        assert exc_info.value.log_path == runner.log_path

    def test_failure_unchecked(self, runner: ToolRunner) -> None:
        """Non-zero exit without check is reported in the result."""
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=1)
            result = runner.run(["make", "clean"], check=False)
        assert not result.success
        assert result.exit_code == 1

    def test_capture_output(self, runner: ToolRunner) -> None:
        """Captured output is returned and logged."""
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout=" M Makefile\n")
            result = runner.run(["git", "status", "--porcelain"], capture=True)
        assert result.output == " M Makefile\n"
        assert "M Makefile" in runner.log_path.read_text()

    def test_timeout(self, runner: ToolRunner) -> None:
        """Timeouts raise with the tool_timeout code."""
        with patch("subprocess.run") as mock_run:
            mock_run.side_effect = subprocess.TimeoutExpired(cmd="make", timeout=120)
            with pytest.raises(ExternalToolError) as exc_info:
                runner.run(["make"])
        assert exc_info.value.code == "tool_timeout"
        assert "TIMEOUT" in runner.log_path.read_text()

    def test_missing_tool(self, runner: ToolRunner) -> None:
        """A tool that cannot start raises with execution_error."""
        with patch("subprocess.run") as mock_run:
            mock_run.side_effect = FileNotFoundError("no such file")
            with pytest.raises(ExternalToolError) as exc_info:
                runner.run(["riscv64-unknown-elf-gcc"])
        assert exc_info.value.code == "execution_error"

    def test_log_appends(self, runner: ToolRunner) -> None:
        """Successive commands append to the same stage log."""
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0)
            runner.run(["git", "clone", "url"])
            runner.run(["make"])
        log = runner.log_path.read_text()
        assert log.index("git clone") < log.index("# Command: make")
