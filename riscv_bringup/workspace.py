"""Workspace layout, per-stage build logs and log retention.

Layout (all paths deterministic):

    <workspace>/riscv-<type>-toolchain      installed toolchains
    <workspace>/riscv-qemu                  installed emulator
    <workspace>/<target>/<rvXX>/<component> per-target artifacts
    <workspace>/.run/<pid>/logs/<stage>.log per-run stage logs
    <sources>/<component>                   shared source caches

Artifacts are replaced, never merged: every install first removes the
destination, then repopulates it.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable
from pathlib import Path

from riscv_bringup.process import ToolRunner
from riscv_bringup.types import Isa, RunOutcome, ToolchainType

logger = logging.getLogger(__name__)

RUN_DIR_NAME = ".run"
EMULATOR_DIR_NAME = "riscv-qemu"

RunnerFactory = Callable[[str, Path, "int | None"], ToolRunner]


class WorkspaceManager:
    """Owns the workspace directory layout and the per-run log area."""

    def __init__(
        self,
        root: Path,
        sources_root: Path,
        timeout: int | None = None,
        runner_factory: RunnerFactory = ToolRunner,
        run_id: str | None = None,
    ) -> None:
        self.root = root
        self.sources_root = sources_root
        self.timeout = timeout
        self.runner_factory = runner_factory
        self.run_id = run_id or str(os.getpid())
        self.stage_logs: dict[str, Path] = {}

    # Layout

    def toolchain_dir(self, toolchain: ToolchainType) -> Path:
        return self.root / f"riscv-{toolchain.value}-toolchain"

    def emulator_dir(self) -> Path:
        return self.root / EMULATOR_DIR_NAME

    def artifact_dir(self, target: str, isa: Isa, component: str) -> Path:
        return self.root / target / isa.label / component

    def source_dir(self, component: str) -> Path:
        """Cache path for *component*, shared by every target and ISA."""
        return self.sources_root / component

    @property
    def run_dir(self) -> Path:
        return self.root / RUN_DIR_NAME / self.run_id

    @property
    def logs_dir(self) -> Path:
        return self.run_dir / "logs"

    # Stage logs

    def open_stage(self, stage: str) -> ToolRunner:
        """Create the BuildLog for *stage* and return a runner writing to it."""
        log_path = self.logs_dir / f"{stage}.log"
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_path.touch()
        self.stage_logs[stage] = log_path
        logger.debug("Stage %s logging to %s", stage, log_path)
        return self.runner_factory(stage, log_path, self.timeout)

    def finalize(self, outcome: RunOutcome, verbose: bool = False) -> Path | None:
        """Apply the retention policy at run end.

        Logs are kept when the run failed or verbose mode is on; usage errors
        and quiet successful runs leave nothing behind.

        Returns:
            The retained log directory, or None if it was discarded.
        """
        keep = outcome is RunOutcome.FAILED or (
            verbose and outcome is RunOutcome.SUCCEEDED
        )
        if keep and self.logs_dir.exists():
            logger.info("Build logs retained in %s", self.logs_dir)
            return self.logs_dir
        if self.run_dir.exists():
            shutil.rmtree(self.run_dir)
        run_parent = self.run_dir.parent
        if run_parent.exists() and not any(run_parent.iterdir()):
            run_parent.rmdir()
        return None

    # Artifacts

    def replace_directory(self, path: Path) -> Path:
        """Remove *path* if present and recreate it empty."""
        if path.exists() or path.is_symlink():
            logger.info("Removing existing directory: %s", path)
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()
        path.mkdir(parents=True, exist_ok=True)
        return path

    def remove(self, path: Path) -> None:
        """Remove an install path without recreating it."""
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink()

    def install_files(self, sources: dict[str, Path], destination: Path) -> Path:
        """Replace *destination* with the given files.

        Args:
            sources: Mapping of relative destination name to source path.
                Directories are copied recursively, preserving symlinks.
            destination: Install directory.

        Returns:
            The destination directory.
        """
        self.replace_directory(destination)
        for name, source in sources.items():
            target = destination / name
            target.parent.mkdir(parents=True, exist_ok=True)
            if source.is_dir():
                shutil.copytree(source, target, symlinks=True)
            else:
                shutil.copy2(source, target)
            logger.debug("Installed %s -> %s", source, target)
        return destination

    def cleanup(self, sources: bool = False, artifacts: bool = False) -> list[Path]:
        """Remove retained run logs and, optionally, caches and artifacts.

        Returns:
            Paths that were removed.
        """
        removed: list[Path] = []
        run_root = self.root / RUN_DIR_NAME
        if run_root.exists():
            shutil.rmtree(run_root)
            removed.append(run_root)
        if sources and self.sources_root.exists():
            shutil.rmtree(self.sources_root)
            removed.append(self.sources_root)
        if artifacts and self.root.exists():
            for child in sorted(self.root.iterdir()):
                self.remove(child)
                removed.append(child)
        for path in removed:
            logger.info("Removed %s", path)
        return removed


__all__ = ["EMULATOR_DIR_NAME", "RUN_DIR_NAME", "RunnerFactory", "WorkspaceManager"]
