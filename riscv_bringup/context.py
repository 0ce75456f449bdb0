"""Build context threaded through every stage call.

Exactly one :class:`BuildContext` exists per run. It is passed explicitly to
each builder; nothing reads it from module state. One-shot flags are armed by
the caller and consumed (read and cleared in one step) by the single stage
that acts on them, so a later invocation never sees a stale request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from riscv_bringup.types import Isa

if TYPE_CHECKING:
    from riscv_bringup.targets.base import Target

logger = logging.getLogger(__name__)


class OneShotFlag(str, Enum):
    """Requests that apply to exactly one stage invocation."""

    EMBED_INITRAMFS = "embed-initramfs"
    EMBED_BOOTLOADER_PAYLOAD = "embed-bootloader-payload"
    EMBED_FIRMWARE_PAYLOAD = "embed-firmware-payload"
    SKIP_ROOTFS_IMAGE = "skip-rootfs-image"


def abi_for(isa: Isa) -> str:
    """Return the integer ABI matching *isa* (``ilp32`` or ``lp64``)."""
    return "ilp32" if isa is Isa.RV32 else "lp64"


@dataclass
class BuildContext:
    """Mutable per-run build state.

    Attributes:
        isa: Base ISA width selector.
        workspace_root: Root of the deterministic workspace layout.
        target: Active target, if the command is target-scoped.
        firmware_platform: Platform identifier for the firmware stage.
        jobs: Parallelism passed to external build systems.
        force_refetch: Re-clone sources instead of refreshing caches.
        extra: Target-specific context fields (script patches may mutate).
    """

    isa: Isa
    workspace_root: Path
    target: Target | None = None
    firmware_platform: str | None = None
    jobs: int = 1
    force_refetch: bool = False
    extra: dict[str, str] = field(default_factory=dict)
    _armed: set[OneShotFlag] = field(default_factory=set, repr=False)

    @property
    def abi(self) -> str:
        """ABI derived from the ISA width (informational; stages derive their own)."""
        return abi_for(self.isa)

    @property
    def target_name(self) -> str | None:
        return self.target.name if self.target is not None else None

    def arm(self, flag: OneShotFlag) -> None:
        """Request *flag* for the next stage that consumes it."""
        logger.debug("Arming one-shot flag %s", flag.value)
        self._armed.add(flag)

    def is_armed(self, flag: OneShotFlag) -> bool:
        return flag in self._armed

    def consume(self, flag: OneShotFlag) -> bool:
        """Return whether *flag* was armed, clearing it in the same step."""
        if flag in self._armed:
            self._armed.discard(flag)
            logger.debug("Consumed one-shot flag %s", flag.value)
            return True
        return False

    def as_environment(self) -> dict[str, str]:
        """Export the context as environment variables for script patches."""
        env = {
            "RVB_ISA": str(self.isa.xlen),
            "RVB_ABI": self.abi,
            "RVB_WORKSPACE": str(self.workspace_root),
            "RVB_JOBS": str(self.jobs),
        }
        if self.target is not None:
            env["RVB_TARGET"] = self.target.name
        if self.firmware_platform:
            env["RVB_FIRMWARE_PLATFORM"] = self.firmware_platform
        for key, value in self.extra.items():
            env[f"RVB_EXTRA_{key.upper()}"] = value
        return env


__all__ = ["BuildContext", "OneShotFlag", "abi_for"]
