"""Tests for stages/toolchain.py module."""

from pathlib import Path

import pytest
from conftest import CommandRecorder, RecordedCall, make_with, starts_with, touch

from riscv_bringup.context import BuildContext
from riscv_bringup.errors import ExternalToolError, PreconditionError
from riscv_bringup.stages.toolchain import (
    ToolchainBuilder,
    compose_configure_options,
    parse_toolchain_type,
)
from riscv_bringup.templating import TOOLCHAIN_MAKE_TARGETS, toolchain_triple
from riscv_bringup.types import ToolchainType
from riscv_bringup.workspace import WorkspaceManager


def _install_gcc(recorder: CommandRecorder, workspace: WorkspaceManager) -> None:
    """Simulate riscv-gnu-toolchain installing into --prefix while building."""

    def effect(call: RecordedCall) -> None:
        for toolchain, make_target in TOOLCHAIN_MAKE_TARGETS.items():
            if call.cmd[-1] == make_target:
                gcc = f"{toolchain_triple(toolchain)}-gcc"
                touch(workspace.toolchain_dir(toolchain) / "bin" / gcc)

    recorder.on(make_with("-j4"), effect)


class TestParseToolchainType:
    """Tests for parse_toolchain_type."""

    def test_valid(self) -> None:
        assert parse_toolchain_type("musl64") is ToolchainType.MUSL64
        assert parse_toolchain_type(ToolchainType.GLIBC) is ToolchainType.GLIBC

    def test_invalid(self) -> None:
        with pytest.raises(PreconditionError) as exc_info:
            parse_toolchain_type("badtype")
        assert exc_info.value.code == "invalid_toolchain_type"


class TestComposeConfigureOptions:
    """Tests for compose_configure_options."""

    def test_newlib_multilib(self, tmp_path: Path) -> None:
        options = compose_configure_options(ToolchainType.NEWLIB, tmp_path)
        assert options == [f"--prefix={tmp_path}", "--enable-multilib"]

    def test_glibc_multilib(self, tmp_path: Path) -> None:
        assert "--enable-multilib" in compose_configure_options(ToolchainType.GLIBC, tmp_path)

    def test_musl32(self, tmp_path: Path) -> None:
        options = compose_configure_options(
            ToolchainType.MUSL32, tmp_path, tmp_path / "musl"
        )
        assert "--with-arch=rv32imac" in options
        assert "--with-abi=ilp32" in options
        assert f"--with-musl-src={tmp_path / 'musl'}" in options
        assert "--enable-multilib" not in options

    def test_musl64(self, tmp_path: Path) -> None:
        options = compose_configure_options(ToolchainType.MUSL64, tmp_path)
        assert "--with-arch=rv64imac" in options
        assert "--with-abi=lp64" in options


class TestToolchainBuilder:
    """Tests for ToolchainBuilder."""

    def test_unknown_type_before_any_io(
        self, context: BuildContext, workspace: WorkspaceManager, recorder: CommandRecorder
    ) -> None:
        """An unknown type is rejected before anything is created or run."""
        with pytest.raises(PreconditionError):
            ToolchainBuilder(context, workspace, "badtype")
        assert recorder.calls == []
        assert not workspace.root.exists()
        assert not workspace.sources_root.exists()

    def test_glibc_build(
        self, context: BuildContext, workspace: WorkspaceManager, recorder: CommandRecorder
    ) -> None:
        _install_gcc(recorder, workspace)
        stale = touch(workspace.toolchain_dir(ToolchainType.GLIBC) / "stale")

        install = ToolchainBuilder(context, workspace, "glibc").build()

        assert install == workspace.toolchain_dir(ToolchainType.GLIBC)
        assert (install / "bin" / "riscv64-unknown-linux-gnu-gcc").exists()
        assert not stale.exists()
        commands = recorder.commands("toolchain-glibc")
        assert commands[0][:2] == ["git", "clone"]
        assert ["./configure", f"--prefix={install}", "--enable-multilib"] in commands
        assert commands[-1] == ["make", "-j4", "linux"]
        assert not (install / "manifest.json").exists()

    def test_musl_fetches_libc_source(
        self, context: BuildContext, workspace: WorkspaceManager, recorder: CommandRecorder
    ) -> None:
        _install_gcc(recorder, workspace)
        ToolchainBuilder(context, workspace, "musl32").build()

        clones = [c for c in recorder.commands() if c[:2] == ["git", "clone"]]
        assert [c[-1] for c in clones] == [
            str(workspace.source_dir("riscv-gnu-toolchain")),
            str(workspace.source_dir("musl")),
        ]
        configure = next(c for c in recorder.commands() if c[0] == "./configure")
        assert f"--with-musl-src={workspace.source_dir('musl')}" in configure

    def test_make_clean_when_previously_configured(
        self, context: BuildContext, workspace: WorkspaceManager, recorder: CommandRecorder
    ) -> None:
        _install_gcc(recorder, workspace)
        source = workspace.source_dir("riscv-gnu-toolchain")
        (source / ".git").mkdir(parents=True)
        recorder.on(starts_with("git", "clean"), lambda call: touch(source / "Makefile"))

        ToolchainBuilder(context, workspace, ToolchainType.NEWLIB).build()

        commands = recorder.commands()
        assert commands.index(["make", "clean"]) < commands.index(
            next(c for c in commands if c[0] == "./configure")
        )

    def test_failed_build_removes_install(
        self, context: BuildContext, workspace: WorkspaceManager, recorder: CommandRecorder
    ) -> None:
        def partial(call: RecordedCall) -> None:
            touch(workspace.toolchain_dir(ToolchainType.NEWLIB) / "bin" / "partial")

        recorder.on(make_with("newlib"), partial)
        recorder.fail_on(make_with("newlib"))

        with pytest.raises(ExternalToolError):
            ToolchainBuilder(context, workspace, "newlib").build()
        assert not workspace.toolchain_dir(ToolchainType.NEWLIB).exists()

    def test_missing_compiler_is_error(
        self, context: BuildContext, workspace: WorkspaceManager, recorder: CommandRecorder
    ) -> None:
        with pytest.raises(ExternalToolError) as exc_info:
            ToolchainBuilder(context, workspace, "newlib").build()
        assert exc_info.value.code == "missing_output"
