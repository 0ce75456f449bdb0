"""Tests for templating.py module.

Tests arch flags, triples, placeholder substitution and Kconfig editing.
"""

from pathlib import Path

import pytest

from riscv_bringup.templating import (
    TOOLCHAIN_MAKE_TARGETS,
    arch_flags,
    cross_prefix,
    point_initramfs_at,
    read_kconfig,
    render_config,
    resolve_config,
    select_kernel_isa,
    set_kconfig,
    substitute,
    toolchain_triple,
)
from riscv_bringup.types import Isa, ToolchainType


class TestArchFlags:
    """Tests for arch_flags and triples."""

    def test_rv64(self) -> None:
        flags = arch_flags(Isa.RV64)
        assert flags.march == "rv64imac"
        assert flags.mabi == "lp64"

    def test_rv32(self) -> None:
        flags = arch_flags(Isa.RV32)
        assert flags.march == "rv32imac"
        assert flags.mabi == "ilp32"

    @pytest.mark.parametrize(
        ("toolchain", "triple"),
        [
            (ToolchainType.NEWLIB, "riscv64-unknown-elf"),
            (ToolchainType.GLIBC, "riscv64-unknown-linux-gnu"),
            (ToolchainType.MUSL32, "riscv32-unknown-linux-musl"),
            (ToolchainType.MUSL64, "riscv64-unknown-linux-musl"),
        ],
    )
    def test_triples(self, toolchain: ToolchainType, triple: str) -> None:
        assert toolchain_triple(toolchain) == triple

    def test_glibc_uses_linux_make_target(self) -> None:
        assert TOOLCHAIN_MAKE_TARGETS[ToolchainType.GLIBC] == "linux"
        assert TOOLCHAIN_MAKE_TARGETS[ToolchainType.NEWLIB] == "newlib"
        assert TOOLCHAIN_MAKE_TARGETS[ToolchainType.MUSL32] == "musl"

    def test_cross_prefix(self, tmp_path: Path) -> None:
        prefix = cross_prefix(tmp_path, ToolchainType.NEWLIB)
        assert prefix == f"{tmp_path}/bin/riscv64-unknown-elf-"


class TestSubstitute:
    """Tests for placeholder substitution."""

    def test_known_placeholders(self) -> None:
        text = "CONFIG_X=@MARCH@ # @MABI@"
        assert substitute(text, {"MARCH": "rv64imac", "MABI": "lp64"}) == (
            "CONFIG_X=rv64imac # lp64"
        )

    def test_unknown_placeholder_kept(self) -> None:
        assert substitute("@UNKNOWN@ @A@", {"A": "1"}) == "@UNKNOWN@ 1"

    def test_lowercase_not_a_placeholder(self) -> None:
        assert substitute("user@host@", {"HOST": "x"}) == "user@host@"


class TestConfigFiles:
    """Tests for resolve_config and render_config."""

    def test_resolve_missing(self, tmp_path: Path) -> None:
        assert resolve_config(tmp_path, "linux") is None
        assert resolve_config(None, "linux") is None

    def test_resolve_present(self, tmp_path: Path) -> None:
        config = tmp_path / "linux.config"
        config.write_text("CONFIG_X=y\n")
        assert resolve_config(tmp_path, "linux") == config

    def test_render(self, tmp_path: Path) -> None:
        template = tmp_path / "busybox.config"
        template.write_text('CONFIG_PREFIX="@PREFIX@"\n')
        dest = render_config(template, tmp_path / "src" / ".config", {"PREFIX": "/out"})
        assert dest.read_text() == 'CONFIG_PREFIX="/out"\n'


class TestKconfig:
    """Tests for Kconfig editing."""

    @pytest.fixture
    def config(self, tmp_path: Path) -> Path:
        path = tmp_path / ".config"
        path.write_text(
            "CONFIG_ARCH_RV64I=y\n"
            "# CONFIG_ARCH_RV32I is not set\n"
            "CONFIG_MODULES=y\n"
            'CONFIG_INITRAMFS_SOURCE=""\n'
        )
        return path

    def test_enable(self, config: Path) -> None:
        set_kconfig(config, "CONFIG_ARCH_RV32I", True)
        assert "CONFIG_ARCH_RV32I=y" in config.read_text()
        assert "CONFIG_ARCH_RV32I is not set" not in config.read_text()

    def test_disable(self, config: Path) -> None:
        set_kconfig(config, "CONFIG_MODULES", None)
        assert "# CONFIG_MODULES is not set" in config.read_text()
        assert read_kconfig(config, "CONFIG_MODULES") is None

    def test_string_value(self, config: Path) -> None:
        set_kconfig(config, "CONFIG_INITRAMFS_SOURCE", "/tmp/root")
        assert 'CONFIG_INITRAMFS_SOURCE="/tmp/root"' in config.read_text()
        assert read_kconfig(config, "CONFIG_INITRAMFS_SOURCE") == "/tmp/root"

    def test_numeric_value_unquoted(self, config: Path) -> None:
        set_kconfig(config, "CONFIG_NR_CPUS", "8")
        assert "CONFIG_NR_CPUS=8" in config.read_text()

    def test_append_new_symbol(self, config: Path) -> None:
        set_kconfig(config, "CONFIG_STATIC", True)
        assert config.read_text().endswith("CONFIG_STATIC=y\n")

    def test_replaced_once(self, config: Path) -> None:
        set_kconfig(config, "CONFIG_MODULES", True)
        assert config.read_text().count("CONFIG_MODULES") == 1

    def test_select_rv32(self, config: Path) -> None:
        """rv32 swaps the 64-bit base symbol for the 32-bit one."""
        assert select_kernel_isa(config, Isa.RV32) is True
        text = config.read_text()
        assert "# CONFIG_ARCH_RV64I is not set" in text
        assert "CONFIG_ARCH_RV32I=y" in text

    def test_select_rv64_unchanged(self, config: Path) -> None:
        before = config.read_text()
        assert select_kernel_isa(config, Isa.RV64) is False
        assert config.read_text() == before

    def test_point_initramfs(self, config: Path, tmp_path: Path) -> None:
        point_initramfs_at(config, tmp_path / "root")
        assert read_kconfig(config, "CONFIG_INITRAMFS_SOURCE") == str(tmp_path / "root")
        assert read_kconfig(config, "CONFIG_BLK_DEV_INITRD") == "y"
        assert read_kconfig(config, "CONFIG_RD_GZIP") == "y"
        assert read_kconfig(config, "CONFIG_INITRAMFS_COMPRESSION_GZIP") == "y"
