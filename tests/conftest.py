"""Shared fixtures for riscv_bringup tests.

External tools are never executed: stages receive a FakeRunner that records
every command and runs registered side effects (creating the files a real
build would produce) or simulated failures.
"""

import shlex
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from riscv_bringup.context import BuildContext
from riscv_bringup.errors import ExternalToolError
from riscv_bringup.process import ProcessResult, ToolRunner
from riscv_bringup.targets.base import Target
from riscv_bringup.types import Isa, ToolchainType
from riscv_bringup.workspace import WorkspaceManager

Predicate = Callable[[list[str]], bool]


@dataclass
class RecordedCall:
    """One command a stage asked to run."""

    stage: str
    cmd: list[str]
    cwd: Path | None
    env: dict[str, str] = field(default_factory=dict)

    def arg(self, prefix: str) -> str | None:
        """Return the value of the first ``PREFIX=value`` style argument."""
        for part in self.cmd:
            if part.startswith(prefix):
                return part[len(prefix) :]
        return None


class FakeRunner(ToolRunner):
    """ToolRunner that delegates to a CommandRecorder instead of subprocess."""

    def __init__(
        self,
        stage: str,
        log_path: Path,
        timeout: int | None,
        recorder: "CommandRecorder",
    ) -> None:
        super().__init__(stage, log_path, timeout)
        self.recorder = recorder

    def run(
        self,
        cmd: Sequence[str],
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        capture: bool = False,
    ) -> ProcessResult:
        return self.recorder.handle(self, cmd, cwd, env, check)


class CommandRecorder:
    """Records commands and simulates their effects."""

    def __init__(self) -> None:
        self.calls: list[RecordedCall] = []
        self._effects: list[tuple[Predicate, Callable[[RecordedCall], None]]] = []
        self._failures: list[tuple[Predicate, int]] = []

    def factory(self, stage: str, log_path: Path, timeout: int | None = None) -> FakeRunner:
        return FakeRunner(stage, log_path, timeout, self)

    def on(self, predicate: Predicate, effect: Callable[[RecordedCall], None]) -> None:
        self._effects.append((predicate, effect))

    def fail_on(self, predicate: Predicate, exit_code: int = 2) -> None:
        self._failures.append((predicate, exit_code))

    def handle(
        self,
        runner: FakeRunner,
        cmd: Sequence[str],
        cwd: Path | None,
        env: Mapping[str, str] | None,
        check: bool,
    ) -> ProcessResult:
        argv = [str(part) for part in cmd]
        call = RecordedCall(runner.stage, argv, cwd, dict(env or {}))
        self.calls.append(call)
        for predicate, effect in self._effects:
            if predicate(argv):
                effect(call)
        for predicate, exit_code in self._failures:
            if predicate(argv):
                if check:
                    raise ExternalToolError(
                        f"{argv[0]} failed with exit code {exit_code}",
                        stage=runner.stage,
                        exit_code=exit_code,
                        log_path=runner.log_path,
                    )
                return ProcessResult(shlex.join(argv), exit_code, runner.log_path)
        return ProcessResult(shlex.join(argv), 0, runner.log_path)

    def commands(self, stage: str | None = None) -> list[list[str]]:
        return [c.cmd for c in self.calls if stage is None or c.stage == stage]

    def calls_for(self, predicate: Predicate) -> list[RecordedCall]:
        return [c for c in self.calls if predicate(c.cmd)]


def starts_with(*prefix: str) -> Predicate:
    """Predicate matching commands that begin with *prefix*."""
    return lambda cmd: cmd[: len(prefix)] == list(prefix)


def make_with(*targets: str) -> Predicate:
    """Predicate matching ``make`` invocations naming all of *targets*."""
    return lambda cmd: bool(cmd) and cmd[0] == "make" and all(t in cmd for t in targets)


def touch(path: Path, content: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


def _simulate_clone(call: RecordedCall) -> None:
    (Path(call.cmd[-1]) / ".git").mkdir(parents=True, exist_ok=True)


@pytest.fixture
def recorder() -> CommandRecorder:
    """Recorder with git clone simulated."""
    rec = CommandRecorder()
    rec.on(starts_with("git", "clone"), _simulate_clone)
    return rec


@pytest.fixture
def workspace(tmp_path: Path, recorder: CommandRecorder) -> WorkspaceManager:
    """Workspace under tmp_path whose stages use the recorder."""
    return WorkspaceManager(
        tmp_path / "workspace",
        tmp_path / "sources",
        runner_factory=recorder.factory,
        run_id="test-run",
    )


@pytest.fixture
def board(tmp_path: Path) -> Target:
    """A plain target with its own patch and config directories."""
    target_dir = tmp_path / "targets" / "board"
    return Target(
        name="board",
        description="Test board",
        firmware_platform="generic",
        patch_dir=target_dir / "patches",
        config_dir=target_dir / "configs",
    )


@pytest.fixture
def context(tmp_path: Path, board: Target) -> BuildContext:
    """rv64 context bound to the test board."""
    ctx = BuildContext(isa=Isa.RV64, workspace_root=tmp_path / "workspace", jobs=4)
    board.prepare_environment(ctx)
    return ctx


@pytest.fixture
def installed_toolchains(workspace: WorkspaceManager) -> WorkspaceManager:
    """Workspace with every toolchain install directory present."""
    for toolchain in ToolchainType:
        (workspace.toolchain_dir(toolchain) / "bin").mkdir(parents=True)
    return workspace
