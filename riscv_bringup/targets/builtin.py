"""Statically registered targets and the default registry."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from riscv_bringup.targets.base import Target, TargetCommand, TargetRegistry
from riscv_bringup.types import Isa

if TYPE_CHECKING:
    from riscv_bringup.config import Settings
    from riscv_bringup.pipeline import Pipeline

logger = logging.getLogger(__name__)


class QemuVirtTarget(Target):
    """The QEMU ``virt`` machine: OpenSBI generic platform, kernel with initramfs."""

    def __init__(self, settings: Settings) -> None:
        target_dir = settings.targets_dir / "qemu"
        super().__init__(
            name="qemu",
            description="QEMU virt machine (OpenSBI generic platform)",
            isas=(Isa.RV64, Isa.RV32),
            firmware_platform="generic",
            patch_dir=target_dir / "patches",
            config_dir=target_dir / "configs",
        )

    def extra_commands(self) -> list[TargetCommand]:
        return [
            TargetCommand(
                name="run_qemu",
                help="Boot the built firmware, kernel and rootfs in QEMU",
                handler=lambda pipeline: pipeline.boot_in_emulator(),
            )
        ]

    def bootstrap(self, pipeline: Pipeline) -> None:
        super().bootstrap(pipeline)
        pipeline.build_kernel(initramfs=True)
        pipeline.build_firmware(payload=True)


def default_registry(settings: Settings) -> TargetRegistry:
    """Return a registry holding built-in targets and manifest targets."""
    registry = TargetRegistry()
    registry.register(QemuVirtTarget(settings))
    loaded = registry.load_manifests(settings.targets_dir)
    if loaded:
        logger.debug("Registered %d manifest target(s)", loaded)
    return registry


__all__ = ["QemuVirtTarget", "default_registry"]
