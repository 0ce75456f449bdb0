"""Emulator stage and emulator boot helpers.

QEMU is built with the host compiler into ``<workspace>/riscv-qemu`` and is
shared by every target.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from riscv_bringup.errors import ExternalToolError, PreconditionError
from riscv_bringup.stages.base import ComponentBuilder
from riscv_bringup.types import Isa

logger = logging.getLogger(__name__)

QEMU_TARGET_LIST = (
    "riscv64-softmmu",
    "riscv32-softmmu",
    "riscv64-linux-user",
    "riscv32-linux-user",
)

DEFAULT_MEMORY = "512M"
DEFAULT_APPEND = "console=ttyS0 rdinit=/init"


class EmulatorBuilder(ComponentBuilder):
    """Builds QEMU with the RISC-V system and user-mode targets."""

    component = "qemu"
    stage = "emulator"
    record_manifest = False

    def install_dir(self) -> Path:
        return self.workspace.emulator_dir()

    @property
    def build_dir(self) -> Path:
        return self.source_dir / "build"

    def configure(self, source: Path, env: dict[str, str]) -> None:
        self.workspace.replace_directory(self.build_dir)
        self.runner.run(
            [
                str(source / "configure"),
                f"--prefix={self.install_dir()}",
                f"--target-list={','.join(QEMU_TARGET_LIST)}",
            ],
            cwd=self.build_dir,
        )

    def compile(self, source: Path, env: dict[str, str]) -> None:
        self.make(self.build_dir)

    def install(self, source: Path, env: dict[str, str]) -> Path:
        install_dir = self.workspace.replace_directory(self.install_dir())
        self.make(self.build_dir, "install", parallel=False)
        self.require_output(install_dir / "bin" / "qemu-system-riscv64")
        return install_dir


def compose_boot_command(
    emulator_dir: Path,
    isa: Isa,
    firmware: Path,
    kernel: Path | None = None,
    initrd: Path | None = None,
    memory: str = DEFAULT_MEMORY,
    append: str = DEFAULT_APPEND,
) -> list[str]:
    """Compose the QEMU ``virt`` machine command line.

    Args:
        emulator_dir: Installed emulator root.
        isa: ISA width selecting qemu-system-riscv32/64.
        firmware: Firmware passed as ``-bios``.
        kernel: Kernel image (omitted when embedded in the firmware).
        initrd: Optional compressed rootfs image.
        memory: Guest memory size.
        append: Kernel command line.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [
        str(emulator_dir / "bin" / f"qemu-system-riscv{isa.xlen}"),
        "-machine",
        "virt",
        "-nographic",
        "-m",
        memory,
        "-bios",
        str(firmware),
    ]
    if kernel is not None:
        cmd.extend(["-kernel", str(kernel), "-append", append])
    if initrd is not None:
        cmd.extend(["-initrd", str(initrd)])
    return cmd


def boot(cmd: list[str]) -> int:
    """Run the emulator attached to the terminal.

    Raises:
        PreconditionError: If the emulator binary is missing.
        ExternalToolError: If the emulator exits non-zero.
    """
    if not Path(cmd[0]).exists():
        raise PreconditionError(
            f"Emulator not installed at {cmd[0]}; run build_qemu first",
            stage="run_qemu",
        )
    logger.info("Booting: %s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, check=False)
    except OSError as e:
        raise ExternalToolError(
            f"Failed to start emulator: {e}", stage="run_qemu", code="execution_error"
        ) from e
    if result.returncode != 0:
        raise ExternalToolError(
            f"Emulator exited with code {result.returncode}",
            stage="run_qemu",
            exit_code=result.returncode,
        )
    return result.returncode


__all__ = ["EmulatorBuilder", "QEMU_TARGET_LIST", "boot", "compose_boot_command"]
