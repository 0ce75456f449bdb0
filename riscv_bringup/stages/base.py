"""Shared stage template for component builds.

Every component stage runs the same sequence:

1. precondition checks (no network or build action before they pass)
2. source acquisition at the stage's pinned ref
3. patch application, for stages that support patches
4. configuration
5. external build invocation
6. install: remove the previous install path, then repopulate it

Subclasses fill in configure/compile/install; the order is fixed here.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from riscv_bringup.artifacts import write_manifest
from riscv_bringup.context import BuildContext
from riscv_bringup.errors import ExternalToolError, PreconditionError
from riscv_bringup.patches import apply_patch_set, collect_patch_set
from riscv_bringup.process import ProcessResult, ToolRunner
from riscv_bringup.sources import DEFAULT_SOURCES, SourceRepository, fetch
from riscv_bringup.templating import (
    arch_flags,
    cross_prefix,
    resolve_config,
    toolchain_triple,
)
from riscv_bringup.types import ToolchainType
from riscv_bringup.workspace import WorkspaceManager

logger = logging.getLogger(__name__)


class ComponentBuilder:
    """Generic acquire → patch → configure → build → install stage.

    Class attributes:
        component: Source catalog key; also names the artifact directory.
        stage: Stage name for logs and patch selection (defaults to component).
        supports_patches: Whether target patches apply to this stage.
        record_manifest: Whether to write manifest.json into the install path.
    """

    component: str = ""
    stage: str = ""
    supports_patches: bool = False
    record_manifest: bool = True

    def __init__(self, context: BuildContext, workspace: WorkspaceManager) -> None:
        self.context = context
        self.workspace = workspace
        self._runner: ToolRunner | None = None

    # Identity and paths

    @property
    def stage_name(self) -> str:
        return self.stage or self.component

    @property
    def runner(self) -> ToolRunner:
        if self._runner is None:
            self._runner = self.workspace.open_stage(self.stage_name)
        return self._runner

    @property
    def toolchain(self) -> ToolchainType | None:
        """Toolchain this stage compiles with; None for host builds."""
        return None

    def repository(self) -> SourceRepository:
        if self.context.target is not None:
            return self.context.target.source(self.component)
        return DEFAULT_SOURCES[self.component]

    @property
    def source_dir(self) -> Path:
        return self.workspace.source_dir(self.component)

    def install_dir(self) -> Path:
        target = self.context.target_name
        if target is None:
            raise PreconditionError(
                f"Stage {self.stage_name} needs a target", stage=self.stage_name
            )
        return self.workspace.artifact_dir(target, self.context.isa, self.component)

    def toolchain_dir(self) -> Path | None:
        if self.toolchain is None:
            return None
        return self.workspace.toolchain_dir(self.toolchain)

    def cross_prefix(self) -> str:
        toolchain_dir = self.toolchain_dir()
        if toolchain_dir is None or self.toolchain is None:
            return ""
        return cross_prefix(toolchain_dir, self.toolchain)

    # Steps

    def check_preconditions(self) -> None:
        """Fail fast when the required toolchain is not installed."""
        toolchain = self.toolchain
        if toolchain is None:
            return
        toolchain_dir = self.workspace.toolchain_dir(toolchain)
        if not toolchain_dir.is_dir():
            raise PreconditionError(
                f"Toolchain not installed at {toolchain_dir}; "
                f"run build_toolchain {toolchain.value} first",
                stage=self.stage_name,
            )

    def acquire(self) -> Path:
        fetch(
            self.repository(),
            self.source_dir,
            self.runner,
            clear_existing=self.context.force_refetch,
        )
        return self.source_dir

    def apply_patches(self, source: Path) -> int:
        if not self.supports_patches or self.context.target is None:
            return 0
        patch_set = collect_patch_set(self.context.target.patch_dir, self.stage_name)
        if not patch_set:
            return 0
        logger.info("Applying %d patch(es) to %s", len(patch_set), self.stage_name)
        return apply_patch_set(patch_set, source, self.context, self.runner)

    def environment(self) -> dict[str, str]:
        """Environment for external build invocations."""
        env: dict[str, str] = {}
        toolchain_dir = self.toolchain_dir()
        if toolchain_dir is not None and self.toolchain is not None:
            env["CROSS_COMPILE"] = self.cross_prefix()
            env["TARGET_TRIPLE"] = toolchain_triple(self.toolchain)
            env["PATH"] = f"{toolchain_dir / 'bin'}{os.pathsep}{os.environ.get('PATH', '')}"
        return env

    def template_values(self) -> dict[str, str]:
        """Values substituted into target-provided config templates."""
        flags = arch_flags(self.context.isa)
        values = {
            "MARCH": flags.march,
            "MABI": flags.mabi,
            "ISA": self.context.isa.label,
            "XLEN": str(self.context.isa.xlen),
            "CROSS_COMPILE": self.cross_prefix(),
            "TARGET": self.context.target_name or "",
        }
        if self.context.target is not None:
            values["PREFIX"] = str(self.install_dir())
        return values

    def target_config(self) -> Path | None:
        """The target-provided config file for this stage, if any."""
        if self.context.target is None:
            return None
        return resolve_config(self.context.target.config_dir, self.stage_name)

    def configure(self, source: Path, env: dict[str, str]) -> None:
        """Generate the build configuration; nothing by default."""

    def compile(self, source: Path, env: dict[str, str]) -> None:
        raise NotImplementedError

    def install(self, source: Path, env: dict[str, str]) -> Path:
        raise NotImplementedError

    # Helpers

    def make(
        self,
        cwd: Path,
        *args: str,
        env: dict[str, str] | None = None,
        parallel: bool = True,
    ) -> ProcessResult:
        cmd = ["make"]
        if parallel:
            cmd.append(f"-j{self.context.jobs}")
        cmd.extend(args)
        return self.runner.run(cmd, cwd=cwd, env=env)

    def require_output(self, path: Path) -> Path:
        """Check a declared output path exists after a successful build."""
        if not path.exists():
            raise ExternalToolError(
                f"{self.stage_name} build did not produce {path}",
                stage=self.stage_name,
                log_path=self.runner.log_path,
                code="missing_output",
            )
        return path

    def manifest_details(self) -> dict[str, object]:
        repo = self.repository()
        return {
            "stage": self.stage_name,
            "isa": self.context.isa.label,
            "target": self.context.target_name,
            "source": repo.url,
            "ref": repo.ref,
        }

    def finish_install(self, source: Path, env: dict[str, str]) -> Path:
        """Run install; never leave a partially written install path behind."""
        try:
            install_dir = self.install(source, env)
        except Exception:
            self.workspace.remove(self.install_dir())
            raise
        if self.record_manifest:
            write_manifest(install_dir, self.component, self.manifest_details())
        logger.info("Installed %s to %s", self.stage_name, install_dir)
        return install_dir

    def build(self) -> Path:
        """Run the full stage sequence and return the install path."""
        self.check_preconditions()
        logger.info("Building %s (%s)", self.stage_name, self.context.isa.label)
        source = self.acquire()
        self.apply_patches(source)
        env = self.environment()
        self.configure(source, env)
        self.compile(source, env)
        return self.finish_install(source, env)


__all__ = ["ComponentBuilder"]
