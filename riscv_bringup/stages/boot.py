"""Bootloader (riscv-pk/bbl) and firmware (OpenSBI) stages.

Both can link a prebuilt kernel artifact in as a payload. Embedding is
requested through a one-shot flag on the BuildContext which the stage
consumes when it starts; the kernel artifact must already be installed.
"""

from __future__ import annotations

import logging
from pathlib import Path

from riscv_bringup.context import BuildContext, OneShotFlag
from riscv_bringup.errors import PreconditionError
from riscv_bringup.stages.base import ComponentBuilder
from riscv_bringup.templating import arch_flags, toolchain_triple
from riscv_bringup.types import ToolchainType
from riscv_bringup.workspace import WorkspaceManager

logger = logging.getLogger(__name__)

# OpenSBI firmware flavours copied out of build/platform/<platform>/firmware
OPENSBI_FIRMWARES = ("fw_jump", "fw_dynamic", "fw_payload")


class PayloadBuilder(ComponentBuilder):
    """Newlib-built stage that can embed a kernel artifact as payload.

    Class attributes:
        payload_flag: One-shot flag requesting the embedding.
        payload_name: File name of the kernel artifact to embed.
    """

    payload_flag: OneShotFlag
    payload_name: str = "Image"
    supports_patches = True

    def __init__(self, context: BuildContext, workspace: WorkspaceManager) -> None:
        super().__init__(context, workspace)
        self.embed_payload = False

    @property
    def toolchain(self) -> ToolchainType:
        return ToolchainType.NEWLIB

    def payload_path(self) -> Path:
        return self.install_dir().parent / "linux" / self.payload_name

    def check_preconditions(self) -> None:
        super().check_preconditions()
        if not self.embed_payload:
            return
        payload = self.payload_path()
        if not payload.is_file():
            raise PreconditionError(
                f"Payload {payload} not found; run build_kernel first",
                stage=self.stage_name,
            )

    def manifest_details(self) -> dict[str, object]:
        details = super().manifest_details()
        details["payload"] = str(self.payload_path()) if self.embed_payload else None
        return details

    def build(self) -> Path:
        self.embed_payload = self.context.consume(self.payload_flag)
        return super().build()


class BootloaderBuilder(PayloadBuilder):
    """Berkeley boot loader from riscv-pk, optionally wrapping the kernel."""

    component = "riscv-pk"
    payload_flag = OneShotFlag.EMBED_BOOTLOADER_PAYLOAD
    payload_name = "vmlinux"

    @property
    def build_dir(self) -> Path:
        return self.source_dir / "build"

    def configure(self, source: Path, env: dict[str, str]) -> None:
        self.workspace.replace_directory(self.build_dir)
        flags = arch_flags(self.context.isa)
        cmd = [
            str(source / "configure"),
            f"--host={toolchain_triple(ToolchainType.NEWLIB)}",
            f"--with-arch={flags.march}_zicsr_zifencei",
            f"--with-abi={flags.mabi}",
        ]
        if self.embed_payload:
            cmd.append(f"--with-payload={self.payload_path()}")
        self.runner.run(cmd, cwd=self.build_dir, env=env)

    def compile(self, source: Path, env: dict[str, str]) -> None:
        self.make(self.build_dir, "bbl", env=env)

    def install(self, source: Path, env: dict[str, str]) -> Path:
        files = {"bbl": self.require_output(self.build_dir / "bbl")}
        return self.workspace.install_files(files, self.install_dir())


class FirmwareBuilder(PayloadBuilder):
    """OpenSBI firmware for one platform."""

    component = "opensbi"
    payload_flag = OneShotFlag.EMBED_FIRMWARE_PAYLOAD
    payload_name = "Image"

    @property
    def platform(self) -> str | None:
        return self.context.firmware_platform

    def check_preconditions(self) -> None:
        if not self.platform:
            raise PreconditionError(
                "Firmware build needs a platform (--platform or target default)",
                stage=self.stage_name,
                code="missing_platform",
            )
        super().check_preconditions()

    def make_arguments(self) -> list[str]:
        flags = arch_flags(self.context.isa)
        args = [
            f"PLATFORM={self.platform}",
            f"CROSS_COMPILE={self.cross_prefix()}",
            f"PLATFORM_RISCV_XLEN={self.context.isa.xlen}",
            f"PLATFORM_RISCV_ABI={flags.mabi}",
            f"PLATFORM_RISCV_ISA={flags.march}_zicsr_zifencei",
        ]
        if self.embed_payload:
            args.append(f"FW_PAYLOAD_PATH={self.payload_path()}")
        return args

    def compile(self, source: Path, env: dict[str, str]) -> None:
        self.make(source, *self.make_arguments(), env=env)

    def install(self, source: Path, env: dict[str, str]) -> Path:
        firmware_dir = source / "build" / "platform" / str(self.platform) / "firmware"
        files: dict[str, Path] = {}
        for name in OPENSBI_FIRMWARES:
            # Without an embedded kernel fw_payload only carries the test payload.
            if name == "fw_payload" and not self.embed_payload:
                continue
            for suffix in (".bin", ".elf"):
                path = firmware_dir / f"{name}{suffix}"
                if path.is_file():
                    files[path.name] = path
        if self.embed_payload:
            self.require_output(firmware_dir / "fw_payload.bin")
        else:
            self.require_output(firmware_dir / "fw_jump.bin")
        return self.workspace.install_files(files, self.install_dir())

    def manifest_details(self) -> dict[str, object]:
        details = super().manifest_details()
        details["platform"] = self.platform
        return details


__all__ = ["BootloaderBuilder", "FirmwareBuilder", "OPENSBI_FIRMWARES", "PayloadBuilder"]
