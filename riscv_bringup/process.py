"""External process execution for build stages.

This module handles:
- Running external tools (git, make, configure scripts, archivers)
- Routing their stdout/stderr into the per-stage log file
- Enforcing optional timeouts
- Keeping tools non-interactive: stdin is always /dev/null
- Converting failures into ExternalToolError

No tool output is dropped: every invocation appends a header, the tool's
combined output and a footer to the stage log.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from riscv_bringup.errors import ExternalToolError

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    """Result of one external tool invocation.

    Attributes:
        command: The command that was executed (shell-quoted).
        exit_code: Process exit code (-1 on timeout).
        output: Captured output, when capture was requested.
        log_path: Log file the output was written to.
    """

    command: str
    exit_code: int
    log_path: Path
    output: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class ToolRunner:
    """Runs external tools on behalf of one stage, logging to its BuildLog."""

    def __init__(
        self,
        stage: str,
        log_path: Path,
        timeout: int | None = None,
    ) -> None:
        self.stage = stage
        self.log_path = log_path
        self.timeout = timeout

    def run(
        self,
        cmd: Sequence[str],
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        capture: bool = False,
    ) -> ProcessResult:
        """Execute *cmd*, appending its output to the stage log.

        Args:
            cmd: Command and arguments.
            cwd: Working directory.
            env: Environment overrides merged over the process environment.
            check: Raise ExternalToolError on a non-zero exit code.
            capture: Also return the tool output as a string.

        Returns:
            ProcessResult with execution details.

        Raises:
            ExternalToolError: If the tool cannot start, times out, or
                (with check) exits non-zero.
        """
        argv = [str(part) for part in cmd]
        cmd_str = shlex.join(argv)
        logger.debug("[%s] $ %s", self.stage, cmd_str)

        full_env: dict[str, str] | None = None
        if env:
            full_env = dict(os.environ)
            full_env.update(env)

        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        started_at = datetime.now(timezone.utc)
        output = ""

        try:
            with self.log_path.open("a") as log_file:
                log_file.write(f"# Command: {cmd_str}\n")
                log_file.write(f"# Started: {started_at.isoformat()}\n")
                log_file.write(f"# CWD: {cwd or Path.cwd()}\n")
                log_file.write("# " + "=" * 70 + "\n")
                log_file.flush()

                if capture:
                    completed = subprocess.run(
                        argv,
                        cwd=cwd,
                        env=full_env,
                        stdin=subprocess.DEVNULL,
                        stdout=subprocess.PIPE,
                        stderr=subprocess.STDOUT,
                        text=True,
                        timeout=self.timeout,
                        check=False,
                    )
                    output = completed.stdout or ""
                    log_file.write(output)
                else:
                    completed = subprocess.run(
                        argv,
                        cwd=cwd,
                        env=full_env,
                        stdin=subprocess.DEVNULL,
                        stdout=log_file,
                        stderr=subprocess.STDOUT,
                        timeout=self.timeout,
                        check=False,
                    )
                exit_code = completed.returncode

        except subprocess.TimeoutExpired as e:
            with self.log_path.open("a") as log_file:
                log_file.write(f"\n# TIMEOUT after {self.timeout} seconds\n")
            raise ExternalToolError(
                f"{argv[0]} timed out after {self.timeout} seconds",
                stage=self.stage,
                exit_code=-1,
                log_path=self.log_path,
                code="tool_timeout",
            ) from e

        except OSError as e:
            raise ExternalToolError(
                f"Failed to execute {argv[0]}: {e}",
                stage=self.stage,
                log_path=self.log_path,
                code="execution_error",
            ) from e

        finished_at = datetime.now(timezone.utc)
        with self.log_path.open("a") as log_file:
            duration = (finished_at - started_at).total_seconds()
            log_file.write(f"\n# Exit code: {exit_code}\n")
            log_file.write(f"# Duration: {duration:.1f}s\n\n")

        if check and exit_code != 0:
            logger.error(
                "[%s] %s failed with exit code %d. See log: %s",
                self.stage,
                argv[0],
                exit_code,
                self.log_path,
            )
            raise ExternalToolError(
                f"{cmd_str} failed with exit code {exit_code}",
                stage=self.stage,
                exit_code=exit_code,
                log_path=self.log_path,
            )

        return ProcessResult(
            command=cmd_str,
            exit_code=exit_code,
            log_path=self.log_path,
            output=output,
        )


__all__ = ["ProcessResult", "ToolRunner"]
