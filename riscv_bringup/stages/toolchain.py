"""Cross-compilation toolchain stage.

Builds one riscv-gnu-toolchain variant into
``<workspace>/riscv-<type>-toolchain``. This is the root of the pipeline:
it depends on no other stage, and every other stage depends on one of its
install directories.
"""

from __future__ import annotations

import logging
from pathlib import Path

from riscv_bringup.context import BuildContext
from riscv_bringup.errors import ExternalToolError, PreconditionError
from riscv_bringup.sources import DEFAULT_SOURCES, SourceRepository, fetch
from riscv_bringup.stages.base import ComponentBuilder
from riscv_bringup.templating import (
    TOOLCHAIN_ISA,
    TOOLCHAIN_MAKE_TARGETS,
    arch_flags,
    toolchain_triple,
)
from riscv_bringup.types import ToolchainType
from riscv_bringup.workspace import WorkspaceManager

logger = logging.getLogger(__name__)

VALID_TOOLCHAINS = tuple(t.value for t in ToolchainType)


def parse_toolchain_type(value: str | ToolchainType) -> ToolchainType:
    """Return the ToolchainType named *value*.

    Raises:
        PreconditionError: If *value* is not a known variant.
    """
    if isinstance(value, ToolchainType):
        return value
    try:
        return ToolchainType(value)
    except ValueError:
        raise PreconditionError(
            f"Unknown toolchain type '{value}' (expected one of: "
            f"{', '.join(VALID_TOOLCHAINS)})",
            stage="toolchain",
            code="invalid_toolchain_type",
        ) from None


def compose_configure_options(
    toolchain: ToolchainType,
    install_dir: Path,
    musl_source: Path | None = None,
) -> list[str]:
    """Compose riscv-gnu-toolchain ``configure`` arguments for *toolchain*.

    Multilib is enabled for newlib/glibc; musl variants get an explicit
    march/mabi matching their width and the nested musl source tree.
    """
    options = [f"--prefix={install_dir}"]
    if toolchain.is_musl:
        flags = arch_flags(TOOLCHAIN_ISA[toolchain])
        options.append(f"--with-arch={flags.march}")
        options.append(f"--with-abi={flags.mabi}")
        if musl_source is not None:
            options.append(f"--with-musl-src={musl_source}")
    else:
        options.append("--enable-multilib")
    return options


class ToolchainBuilder(ComponentBuilder):
    """Builds a cross toolchain variant (newlib, glibc, musl32, musl64)."""

    component = "riscv-gnu-toolchain"
    record_manifest = False

    def __init__(
        self,
        context: BuildContext,
        workspace: WorkspaceManager,
        toolchain: str | ToolchainType,
    ) -> None:
        # Validated before any I/O happens.
        self.toolchain_type = parse_toolchain_type(toolchain)
        super().__init__(context, workspace)

    @property
    def stage_name(self) -> str:
        return f"toolchain-{self.toolchain_type.value}"

    def install_dir(self) -> Path:
        return self.workspace.toolchain_dir(self.toolchain_type)

    @property
    def musl_source_dir(self) -> Path:
        return self.workspace.source_dir("musl")

    def musl_repository(self) -> SourceRepository:
        if self.context.target is not None:
            return self.context.target.source("musl")
        return DEFAULT_SOURCES["musl"]

    def acquire(self) -> Path:
        source = super().acquire()
        if self.toolchain_type.is_musl:
            fetch(
                self.musl_repository(),
                self.musl_source_dir,
                self.runner,
                clear_existing=self.context.force_refetch,
            )
        return source

    def configure(self, source: Path, env: dict[str, str]) -> None:
        if (source / "Makefile").exists():
            self.runner.run(["make", "clean"], cwd=source, check=False)
        options = compose_configure_options(
            self.toolchain_type,
            self.install_dir(),
            self.musl_source_dir if self.toolchain_type.is_musl else None,
        )
        self.runner.run(["./configure", *options], cwd=source)

    def compile(self, source: Path, env: dict[str, str]) -> None:
        # riscv-gnu-toolchain installs into --prefix while it builds.
        self.workspace.remove(self.install_dir())
        try:
            self.make(source, TOOLCHAIN_MAKE_TARGETS[self.toolchain_type])
        except ExternalToolError:
            self.workspace.remove(self.install_dir())
            raise

    def install(self, source: Path, env: dict[str, str]) -> Path:
        install_dir = self.install_dir()
        gcc = install_dir / "bin" / f"{toolchain_triple(self.toolchain_type)}-gcc"
        self.require_output(gcc)
        return install_dir

    def finish_install(self, source: Path, env: dict[str, str]) -> Path:
        install_dir = super().finish_install(source, env)
        logger.info(
            "Toolchain %s ready: %s-*",
            self.toolchain_type.value,
            toolchain_triple(self.toolchain_type),
        )
        return install_dir


__all__ = [
    "VALID_TOOLCHAINS",
    "ToolchainBuilder",
    "compose_configure_options",
    "parse_toolchain_type",
]
