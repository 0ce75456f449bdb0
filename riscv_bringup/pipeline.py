"""Stage orchestration.

The Pipeline owns the run's BuildContext and WorkspaceManager and runs one
stage at a time in the fixed order a command asks for. It never retries:
every stage failure propagates to the caller exactly once.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from pathlib import Path

from riscv_bringup.config import Settings
from riscv_bringup.context import BuildContext, OneShotFlag
from riscv_bringup.errors import PreconditionError, UsageError
from riscv_bringup.stages.boot import BootloaderBuilder, FirmwareBuilder
from riscv_bringup.stages.emulator import EmulatorBuilder, boot, compose_boot_command
from riscv_bringup.stages.kernel import KernelBuilder
from riscv_bringup.stages.rootfs import IMAGE_NAME, RootfsBuilder
from riscv_bringup.stages.toolchain import ToolchainBuilder
from riscv_bringup.targets.base import Target
from riscv_bringup.types import Isa, KernelBuildReport, ToolchainType
from riscv_bringup.workspace import WorkspaceManager

logger = logging.getLogger(__name__)


def context_from_settings(settings: Settings) -> BuildContext:
    """Create the run's BuildContext from effective settings."""
    return BuildContext(
        isa=Isa(settings.isa),
        workspace_root=settings.workspace_dir,
        firmware_platform=settings.firmware_platform,
        jobs=settings.jobs or os.cpu_count() or 1,
        force_refetch=settings.force_refetch,
    )


class Pipeline:
    """Runs build stages against one BuildContext."""

    def __init__(
        self,
        settings: Settings,
        workspace: WorkspaceManager | None = None,
        context: BuildContext | None = None,
    ) -> None:
        self.settings = settings
        self.workspace = workspace or WorkspaceManager(
            settings.workspace_dir,
            settings.sources_dir,
            timeout=settings.build_timeout,
        )
        self.context = context or context_from_settings(settings)

    @property
    def target(self) -> Target | None:
        return self.context.target

    def select_target(self, target: Target, command: str) -> None:
        """Validate *command* for *target* and bind it into the context.

        Raises:
            UsageError: If the target rejects the command or ISA.
        """
        target.validate_arguments(command, self.context.isa)
        target.prepare_environment(self.context)

    # Shared stages

    def build_toolchain(self, toolchain: str | ToolchainType) -> Path:
        return ToolchainBuilder(self.context, self.workspace, toolchain).build()

    def build_qemu(self) -> Path:
        return EmulatorBuilder(self.context, self.workspace).build()

    def bootstrap_generic(self) -> None:
        """Build the toolchains every target stage needs, then the emulator."""
        for toolchain in (
            ToolchainType.NEWLIB,
            ToolchainType.GLIBC,
            ToolchainType.musl_for(self.context.isa),
        ):
            self.build_toolchain(toolchain)
        self.build_qemu()

    def bootstrap(self) -> None:
        """Run the active target's bootstrap, or the generic one without a target."""
        if self.target is None:
            self.bootstrap_generic()
        else:
            logger.info("Bootstrapping target %s", self.target.name)
            self.target.bootstrap(self)

    # Target stages

    def rootfs_builder(self) -> RootfsBuilder:
        return RootfsBuilder(self.context, self.workspace, self.settings.templates_dir)

    def build_kernel(self, initramfs: bool = False) -> KernelBuildReport:
        if initramfs:
            self.context.arm(OneShotFlag.EMBED_INITRAMFS)
        builder = KernelBuilder(self.context, self.workspace, self.rootfs_builder)
        return builder.build_report()

    def build_bootloader(self, payload: bool = False) -> Path:
        if payload:
            self.context.arm(OneShotFlag.EMBED_BOOTLOADER_PAYLOAD)
        return BootloaderBuilder(self.context, self.workspace).build()

    def build_firmware(self, payload: bool = False, platform: str | None = None) -> Path:
        if platform:
            self.context.firmware_platform = platform
        if payload:
            self.context.arm(OneShotFlag.EMBED_FIRMWARE_PAYLOAD)
        return FirmwareBuilder(self.context, self.workspace).build()

    def build_rootfs(self, skip_image: bool = False) -> Path:
        if skip_image:
            self.context.arm(OneShotFlag.SKIP_ROOTFS_IMAGE)
        return self.rootfs_builder().build()

    def bootstrap_steps(self) -> dict[str, Callable[[], object]]:
        """Named steps a target manifest may list in its bootstrap sequence."""
        return {
            "toolchains": self.bootstrap_generic,
            "qemu": self.build_qemu,
            "kernel": self.build_kernel,
            "kernel+initramfs": lambda: self.build_kernel(initramfs=True),
            "bootloader": self.build_bootloader,
            "bootloader+payload": lambda: self.build_bootloader(payload=True),
            "firmware": self.build_firmware,
            "firmware+payload": lambda: self.build_firmware(payload=True),
            "rootfs": self.build_rootfs,
        }

    def run_bootstrap_step(self, step: str) -> None:
        steps = self.bootstrap_steps()
        if step not in steps:
            raise UsageError(f"Unknown bootstrap step '{step}'")
        logger.info("Bootstrap step: %s", step)
        steps[step]()

    # Emulator boot

    def boot_command(self) -> list[str]:
        """Compose the emulator command for the active target's artifacts.

        Raises:
            PreconditionError: If no firmware has been built.
        """
        target = self.context.target_name
        if target is None:
            raise PreconditionError("Booting needs a target", stage="run_qemu")
        isa = self.context.isa
        firmware_dir = self.workspace.artifact_dir(target, isa, "opensbi")
        kernel = self.workspace.artifact_dir(target, isa, "linux") / "Image"
        rootfs = self.workspace.artifact_dir(target, isa, "rootfs") / IMAGE_NAME

        if (firmware_dir / "fw_payload.bin").is_file():
            return compose_boot_command(
                self.workspace.emulator_dir(), isa, firmware_dir / "fw_payload.bin"
            )
        firmware = firmware_dir / "fw_jump.bin"
        if not firmware.is_file():
            raise PreconditionError(
                f"Firmware not found in {firmware_dir}; run build_firmware first",
                stage="run_qemu",
            )
        if not kernel.is_file():
            raise PreconditionError(
                f"Kernel image not found at {kernel}; run build_kernel first",
                stage="run_qemu",
            )
        return compose_boot_command(
            self.workspace.emulator_dir(),
            isa,
            firmware,
            kernel=kernel,
            initrd=rootfs if rootfs.is_file() else None,
        )

    def boot_in_emulator(self) -> int:
        return boot(self.boot_command())

    def cleanup(self, sources: bool = False, artifacts: bool = False) -> list[Path]:
        return self.workspace.cleanup(sources=sources, artifacts=artifacts)


__all__ = ["Pipeline", "context_from_settings"]
