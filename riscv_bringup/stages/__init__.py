"""Build stages.

This module handles:
- The shared acquire → patch → configure → build → install template
- Toolchain and emulator builds (shared across targets)
- Kernel, bootloader, firmware and rootfs builds (target/ISA scoped)
"""

from riscv_bringup.stages.base import ComponentBuilder

__all__ = ["ComponentBuilder"]

# Stage implementations live in submodules:
# riscv_bringup.stages.toolchain, .emulator, .kernel, .boot, .rootfs
