"""Shared type definitions for riscv_bringup.

This module contains enums and small dataclasses shared across
subpackages to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class Isa(int, Enum):
    """Base instruction-set width."""

    RV32 = 32
    RV64 = 64

    @property
    def xlen(self) -> int:
        return int(self.value)

    @property
    def label(self) -> str:
        """Directory label used in artifact paths (``rv32``/``rv64``)."""
        return f"rv{self.value}"


class ToolchainType(str, Enum):
    """Cross-compilation toolchain variant."""

    NEWLIB = "newlib"
    GLIBC = "glibc"
    MUSL32 = "musl32"
    MUSL64 = "musl64"

    @property
    def is_musl(self) -> bool:
        return self in (ToolchainType.MUSL32, ToolchainType.MUSL64)

    @classmethod
    def musl_for(cls, isa: Isa) -> "ToolchainType":
        """Return the musl variant matching *isa*."""
        return cls.MUSL32 if isa is Isa.RV32 else cls.MUSL64


class RepositoryState(str, Enum):
    """State of a cached source repository."""

    ABSENT = "absent"
    CLONED = "cloned"
    STALE = "stale"
    UP_TO_DATE = "up-to-date"


class KernelBuildPhase(str, Enum):
    """Phases of the kernel build state machine."""

    PLAIN_BUILD = "plain-build"
    EMBED_PREPARE = "embed-prepare"
    REBUILD = "rebuild"
    DONE = "done"


class RunOutcome(str, Enum):
    """How a run ended, for log retention."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    USAGE = "usage"


@dataclass
class ArtifactInfo:
    """Information about an installed artifact file."""

    relative_path: str
    size_bytes: int
    sha256: str


@dataclass
class KernelBuildReport:
    """What a kernel build did, phase by phase."""

    install_dir: Path
    phases: list[KernelBuildPhase] = field(default_factory=list)
    initramfs_source: Path | None = None


__all__ = [
    "ArtifactInfo",
    "Isa",
    "KernelBuildPhase",
    "KernelBuildReport",
    "RepositoryState",
    "RunOutcome",
    "ToolchainType",
]
