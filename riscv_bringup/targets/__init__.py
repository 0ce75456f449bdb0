"""Target management module.

This module handles:
- Target manifest schema and loading
- The Target abstraction (validate / prepare / bootstrap hooks)
- Target registration and resolution
"""

from riscv_bringup.targets.base import (
    ManifestTarget,
    Target,
    TargetCommand,
    TargetRegistry,
)

__all__ = ["ManifestTarget", "Target", "TargetCommand", "TargetRegistry"]
