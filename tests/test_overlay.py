"""Tests for stages/overlay.py module.

Tests template staging, placeholder substitution and file modes.
"""

import stat

import pytest

from riscv_bringup.errors import PreconditionError
from riscv_bringup.stages.overlay import (
    DEFAULT_FILE_MODE,
    stage_file,
    stage_template_tree,
)


class TestStageFile:
    """Tests for stage_file function."""

    def test_stage_simple_file(self, tmp_path):
        """Should copy file to destination."""
        source = tmp_path / "source" / "fstab"
        source.parent.mkdir(parents=True)
        source.write_text("proc /proc proc defaults 0 0\n")

        dest = tmp_path / "root" / "etc" / "fstab"
        stage_file(source, dest)

        assert dest.read_text() == "proc /proc proc defaults 0 0\n"
        assert stat.S_IMODE(dest.stat().st_mode) == DEFAULT_FILE_MODE

    def test_stage_with_mode(self, tmp_path):
        source = tmp_path / "init"
        source.write_text("#!/bin/sh\n")
        dest = tmp_path / "root" / "init"
        stage_file(source, dest, mode=0o755)
        assert stat.S_IMODE(dest.stat().st_mode) == 0o755

    def test_substitution(self, tmp_path):
        source = tmp_path / "hostname"
        source.write_text("@TARGET@\n")
        dest = tmp_path / "root" / "etc" / "hostname"
        stage_file(source, dest, values={"TARGET": "visionfive"})
        assert dest.read_text() == "visionfive\n"

    def test_binary_copied_verbatim(self, tmp_path):
        """Non-UTF-8 files are copied even when values are given."""
        source = tmp_path / "blob"
        source.write_bytes(b"\xff\xfe@TARGET@")
        dest = tmp_path / "root" / "blob"
        stage_file(source, dest, values={"TARGET": "x"})
        assert dest.read_bytes() == b"\xff\xfe@TARGET@"


class TestStageTemplateTree:
    """Tests for stage_template_tree function."""

    @pytest.fixture
    def templates(self, tmp_path):
        template_dir = tmp_path / "templates"
        (template_dir / "etc").mkdir(parents=True)
        (template_dir / "etc" / "motd").write_text("RISC-V @ISA@\n")
        (template_dir / "init").write_text("#!/bin/sh\n# @TARGET@\n")
        return template_dir

    def test_stage_tree(self, tmp_path, templates):
        root = tmp_path / "root"
        staged = stage_template_tree(templates, root, {"ISA": "rv32", "TARGET": "board"})

        assert sorted(p.as_posix() for p in staged) == ["etc/motd", "init"]
        assert (root / "etc" / "motd").read_text() == "RISC-V rv32\n"
        assert stat.S_IMODE((root / "init").stat().st_mode) == 0o755
        assert stat.S_IMODE((root / "etc" / "motd").stat().st_mode) == DEFAULT_FILE_MODE

    def test_overwrites_existing(self, tmp_path, templates):
        root = tmp_path / "root"
        (root / "etc").mkdir(parents=True)
        (root / "etc" / "motd").write_text("old\n")
        stage_template_tree(templates, root, {"ISA": "rv64"})
        assert (root / "etc" / "motd").read_text() == "RISC-V rv64\n"

    def test_missing_template_dir(self, tmp_path):
        with pytest.raises(PreconditionError):
            stage_template_tree(tmp_path / "missing", tmp_path / "root")

    def test_symlink_within_tree_allowed(self, tmp_path, templates):
        (templates / "etc" / "issue").symlink_to(templates / "etc" / "motd")
        root = tmp_path / "root"
        stage_template_tree(templates, root, {"ISA": "rv64"})
        assert (root / "etc" / "issue").read_text() == "RISC-V rv64\n"

    def test_symlink_escape_blocked(self, tmp_path, templates):
        """Should block symlinks pointing outside the template tree."""
        external = tmp_path / "secret"
        external.write_text("secret")
        (templates / "etc" / "shadow").symlink_to(external)

        with pytest.raises(PreconditionError) as exc_info:
            stage_template_tree(templates, tmp_path / "root")
        assert "outside template tree" in str(exc_info.value)
