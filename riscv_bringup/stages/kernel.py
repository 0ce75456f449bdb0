"""Linux kernel stage.

A plain build configures, compiles and installs ``Image``, ``vmlinux``,
``System.map``, the effective ``.config`` and the module tree. When the
embed-initramfs flag is armed, the stage continues through a second pass:

    PLAIN_BUILD -> EMBED_PREPARE -> REBUILD -> DONE

EMBED_PREPARE asks the rootfs stage for a directory tree (no image), points
``CONFIG_INITRAMFS_SOURCE`` at it and removes the first pass's images;
REBUILD compiles and installs again so the installed kernel carries the
rootfs built in.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from riscv_bringup.context import BuildContext, OneShotFlag
from riscv_bringup.stages.base import ComponentBuilder
from riscv_bringup.stages.rootfs import RootfsBuilder
from riscv_bringup.templating import (
    point_initramfs_at,
    read_kconfig,
    render_config,
    select_kernel_isa,
)
from riscv_bringup.types import KernelBuildPhase, KernelBuildReport, ToolchainType
from riscv_bringup.workspace import WorkspaceManager

logger = logging.getLogger(__name__)

KERNEL_IMAGE = "arch/riscv/boot/Image"
KERNEL_IMAGE_OUTPUTS = (
    "arch/riscv/boot/Image",
    "arch/riscv/boot/Image.gz",
    "vmlinux",
)
MODULES_DIR_NAME = "modules"

RootfsFactory = Callable[[], RootfsBuilder]


class KernelBuilder(ComponentBuilder):
    """Builds the kernel, optionally embedding the rootfs as initramfs."""

    component = "linux"
    supports_patches = True

    def __init__(
        self,
        context: BuildContext,
        workspace: WorkspaceManager,
        rootfs_factory: RootfsFactory,
    ) -> None:
        super().__init__(context, workspace)
        self.rootfs_factory = rootfs_factory
        self.phase = KernelBuildPhase.PLAIN_BUILD

    @property
    def toolchain(self) -> ToolchainType:
        return ToolchainType.GLIBC

    def environment(self) -> dict[str, str]:
        env = super().environment()
        env["ARCH"] = "riscv"
        return env

    def configure(self, source: Path, env: dict[str, str]) -> None:
        config = source / ".config"
        template = self.target_config()
        if template is not None:
            render_config(template, config, self.template_values())
        else:
            self.make(source, "defconfig", env=env, parallel=False)
        if select_kernel_isa(config, self.context.isa):
            logger.info("Switched kernel config to %s", self.context.isa.label)
        self.make(source, "olddefconfig", env=env, parallel=False)

    def modules_enabled(self, source: Path) -> bool:
        return read_kconfig(source / ".config", "CONFIG_MODULES") == "y"

    def compile(self, source: Path, env: dict[str, str]) -> None:
        targets = ["Image", "vmlinux"]
        if self.modules_enabled(source):
            targets.append("modules")
        self.make(source, *targets, env=env)

    def install(self, source: Path, env: dict[str, str]) -> Path:
        files = {
            "Image": self.require_output(source / KERNEL_IMAGE),
            "vmlinux": self.require_output(source / "vmlinux"),
            "System.map": self.require_output(source / "System.map"),
            "config": source / ".config",
        }
        install_dir = self.workspace.install_files(files, self.install_dir())
        if self.modules_enabled(source):
            self.make(
                source,
                "modules_install",
                f"INSTALL_MOD_PATH={install_dir / MODULES_DIR_NAME}",
                env=env,
                parallel=False,
            )
        return install_dir

    def prepare_embed(self, source: Path, env: dict[str, str]) -> Path:
        """Produce the rootfs tree and reconfigure the kernel around it."""
        self.context.arm(OneShotFlag.SKIP_ROOTFS_IMAGE)
        tree = self.rootfs_factory().build()
        point_initramfs_at(source / ".config", tree)
        self.make(source, "olddefconfig", env=env, parallel=False)
        for output in KERNEL_IMAGE_OUTPUTS:
            (source / output).unlink(missing_ok=True)
        return tree

    def build(self) -> Path:
        """Run the kernel stage; see :meth:`build_report` for the phase trace."""
        return self.build_report().install_dir

    def build_report(self) -> KernelBuildReport:
        """Run the kernel stage state machine.

        Returns:
            KernelBuildReport with the install path and the phases passed.
        """
        embed = self.context.consume(OneShotFlag.EMBED_INITRAMFS)
        self.phase = KernelBuildPhase.PLAIN_BUILD
        report = KernelBuildReport(install_dir=super().build(), phases=[self.phase])

        if embed:
            source = self.source_dir
            env = self.environment()

            self.phase = KernelBuildPhase.EMBED_PREPARE
            report.phases.append(self.phase)
            report.initramfs_source = self.prepare_embed(source, env)

            self.phase = KernelBuildPhase.REBUILD
            report.phases.append(self.phase)
            logger.info("Rebuilding kernel with initramfs %s", report.initramfs_source)
            self.compile(source, env)
            report.install_dir = self.finish_install(source, env)

        self.phase = KernelBuildPhase.DONE
        report.phases.append(self.phase)
        return report

    def manifest_details(self) -> dict[str, object]:
        details = super().manifest_details()
        details["phase"] = self.phase.value
        return details


__all__ = ["KERNEL_IMAGE", "KERNEL_IMAGE_OUTPUTS", "KernelBuilder", "RootfsFactory"]
