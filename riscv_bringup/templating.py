"""Configuration templating for build stages.

This module handles:
- Deriving architecture flags (march/mabi) and cross prefixes per stage
- Selecting a target-provided config file over generated defaults
- Substituting ``@NAME@`` placeholders in config templates
- Editing Kconfig-style ``.config`` files symbol by symbol

ABI is derived here from the ISA width for each stage independently.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from riscv_bringup.types import Isa, ToolchainType

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"@([A-Z][A-Z0-9_]*)@")

# Build-system target names inside riscv-gnu-toolchain
TOOLCHAIN_MAKE_TARGETS: dict[ToolchainType, str] = {
    ToolchainType.NEWLIB: "newlib",
    ToolchainType.GLIBC: "linux",
    ToolchainType.MUSL32: "musl",
    ToolchainType.MUSL64: "musl",
}

TOOLCHAIN_ISA: dict[ToolchainType, Isa] = {
    ToolchainType.MUSL32: Isa.RV32,
    ToolchainType.MUSL64: Isa.RV64,
}


@dataclass(frozen=True)
class ArchFlags:
    """Architecture string and integer ABI for one ISA width."""

    march: str
    mabi: str


def arch_flags(isa: Isa) -> ArchFlags:
    """Return march/mabi for *isa* (soft-float integer ABI)."""
    if isa is Isa.RV32:
        return ArchFlags(march="rv32imac", mabi="ilp32")
    return ArchFlags(march="rv64imac", mabi="lp64")


def toolchain_triple(toolchain: ToolchainType) -> str:
    """Return the target triple a toolchain variant installs its tools under.

    Multilib toolchains (newlib, glibc) are configured with the default rv64
    architecture and serve both widths; musl variants are single-width.
    """
    xlen = TOOLCHAIN_ISA.get(toolchain, Isa.RV64).xlen
    if toolchain is ToolchainType.NEWLIB:
        return f"riscv{xlen}-unknown-elf"
    if toolchain is ToolchainType.GLIBC:
        return f"riscv{xlen}-unknown-linux-gnu"
    return f"riscv{xlen}-unknown-linux-musl"


def cross_prefix(toolchain_dir: Path, toolchain: ToolchainType) -> str:
    """Return the absolute cross-compile prefix, e.g. ``.../bin/riscv64-unknown-elf-``."""
    return str(toolchain_dir / "bin" / f"{toolchain_triple(toolchain)}-")


def substitute(text: str, values: Mapping[str, str]) -> str:
    """Replace ``@NAME@`` placeholders in *text*.

    Unknown placeholders are left untouched and logged.
    """

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key in values:
            return values[key]
        logger.warning("No value for config placeholder @%s@", key)
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(_replace, text)


def resolve_config(config_dir: Path | None, component: str) -> Path | None:
    """Return the target-provided config for *component*, if any.

    Looks for ``<config_dir>/<component>.config``.
    """
    if config_dir is None:
        return None
    candidate = config_dir / f"{component}.config"
    return candidate if candidate.is_file() else None


def render_config(
    template: Path,
    destination: Path,
    values: Mapping[str, str],
) -> Path:
    """Render *template* into *destination* with placeholder substitution."""
    text = template.read_text(encoding="utf-8")
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_text(substitute(text, values), encoding="utf-8")
    logger.info("Rendered %s from %s", destination.name, template)
    return destination


def _format_kconfig(symbol: str, value: str | bool | None) -> str:
    if value is None or value is False:
        return f"# {symbol} is not set"
    if value is True:
        return f"{symbol}=y"
    if value in ("y", "m", "n") or re.fullmatch(r"-?\d+|0x[0-9a-fA-F]+", value):
        return f"{symbol}={value}"
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'{symbol}="{escaped}"'


def set_kconfig(config_path: Path, symbol: str, value: str | bool | None) -> None:
    """Set *symbol* in a Kconfig ``.config`` file by textual replacement.

    Args:
        config_path: The .config file.
        symbol: Full symbol name including the ``CONFIG_`` prefix.
        value: True/"y" to enable, None/False to unset, otherwise a value
            (strings are quoted).
    """
    line = _format_kconfig(symbol, value)
    pattern = re.compile(
        rf"^(?:{re.escape(symbol)}=.*|# {re.escape(symbol)} is not set)$",
        re.MULTILINE,
    )
    text = config_path.read_text(encoding="utf-8") if config_path.exists() else ""
    if pattern.search(text):
        text = pattern.sub(lambda _: line, text)
    else:
        if text and not text.endswith("\n"):
            text += "\n"
        text += line + "\n"
    config_path.write_text(text, encoding="utf-8")


def read_kconfig(config_path: Path, symbol: str) -> str | None:
    """Return the raw value of *symbol*, or None if unset or absent."""
    if not config_path.exists():
        return None
    match = re.search(
        rf"^{re.escape(symbol)}=(.*)$",
        config_path.read_text(encoding="utf-8"),
        re.MULTILINE,
    )
    if match is None:
        return None
    return match.group(1).strip().strip('"')


def select_kernel_isa(config_path: Path, isa: Isa) -> bool:
    """Switch a generated kernel config to *isa*.

    The riscv defconfig selects the 64-bit base; for rv32 the 64-bit symbol
    is replaced with the 32-bit one. Dependent defaults must be regenerated
    afterwards (``make olddefconfig``).

    Returns:
        True if the config was changed.
    """
    if isa is Isa.RV64:
        return False
    set_kconfig(config_path, "CONFIG_ARCH_RV64I", None)
    set_kconfig(config_path, "CONFIG_ARCH_RV32I", True)
    return True


def point_initramfs_at(config_path: Path, source: Path) -> None:
    """Point the kernel's built-in initramfs at *source*, gzip-compressed."""
    set_kconfig(config_path, "CONFIG_BLK_DEV_INITRD", True)
    set_kconfig(config_path, "CONFIG_INITRAMFS_SOURCE", str(source))
    set_kconfig(config_path, "CONFIG_RD_GZIP", True)
    set_kconfig(config_path, "CONFIG_INITRAMFS_COMPRESSION_GZIP", True)


__all__ = [
    "TOOLCHAIN_ISA",
    "TOOLCHAIN_MAKE_TARGETS",
    "ArchFlags",
    "arch_flags",
    "cross_prefix",
    "point_initramfs_at",
    "read_kconfig",
    "render_config",
    "resolve_config",
    "select_kernel_isa",
    "set_kconfig",
    "substitute",
    "toolchain_triple",
]
