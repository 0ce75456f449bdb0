"""Target abstraction and registry.

A target bundles three hooks (argument validation, environment preparation,
bootstrap) with an optional patch directory, an optional config directory and
any target-specific commands. Targets are registered statically in code or
declared by manifest; no target-supplied code is loaded at resolve time.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from riscv_bringup.errors import UsageError
from riscv_bringup.sources import DEFAULT_SOURCES, SourceRepository
from riscv_bringup.targets.io import discover_manifests
from riscv_bringup.targets.schema import (
    RESERVED_NAMES,
    STANDARD_COMMANDS,
    TargetManifest,
)
from riscv_bringup.types import Isa

if TYPE_CHECKING:
    from riscv_bringup.context import BuildContext
    from riscv_bringup.pipeline import Pipeline

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TargetCommand:
    """A target-specific command beyond the standard set."""

    name: str
    help: str
    handler: Callable[[Pipeline], None]


class Target:
    """Base target: generic hooks, overridable per target.

    Attributes are fixed at construction; a resolved target does not change
    for the rest of the run.
    """

    def __init__(
        self,
        name: str,
        description: str = "",
        isas: Iterable[Isa] = (Isa.RV64, Isa.RV32),
        firmware_platform: str | None = None,
        patch_dir: Path | None = None,
        config_dir: Path | None = None,
        commands: Iterable[str] = STANDARD_COMMANDS,
        sources: dict[str, SourceRepository] | None = None,
        extra: dict[str, str] | None = None,
    ) -> None:
        self._name = name
        self._description = description
        self._isas = tuple(isas)
        self._firmware_platform = firmware_platform
        self._patch_dir = patch_dir
        self._config_dir = config_dir
        self._commands = tuple(commands)
        self._sources = dict(sources or {})
        self._extra = dict(extra or {})

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def isas(self) -> tuple[Isa, ...]:
        return self._isas

    @property
    def firmware_platform(self) -> str | None:
        return self._firmware_platform

    @property
    def patch_dir(self) -> Path | None:
        return self._patch_dir

    @property
    def config_dir(self) -> Path | None:
        return self._config_dir

    @property
    def command_names(self) -> tuple[str, ...]:
        return self._commands + tuple(c.name for c in self.extra_commands())

    def source(self, component: str) -> SourceRepository:
        """Return the source repository this target builds *component* from."""
        return self._sources.get(component, DEFAULT_SOURCES[component])

    def extra_commands(self) -> list[TargetCommand]:
        """Target-specific commands; none by default."""
        return []

    # Hooks

    def validate_arguments(self, command: str, isa: Isa) -> None:
        """Reject commands or ISA selections this target does not support.

        Raises:
            UsageError: If the invocation is invalid for this target.
        """
        if command not in self.command_names:
            raise UsageError(
                f"Target '{self.name}' does not support command '{command}'. "
                f"Available: {', '.join(self.command_names)}"
            )
        if isa not in self._isas:
            supported = ", ".join(str(i.xlen) for i in self._isas)
            raise UsageError(
                f"Target '{self.name}' does not support ISA {isa.xlen} "
                f"(supported: {supported})"
            )

    def prepare_environment(self, context: BuildContext) -> None:
        """Bind this target into *context* and fill target-specific fields."""
        context.target = self
        if context.firmware_platform is None:
            context.firmware_platform = self._firmware_platform
        for key, value in self._extra.items():
            context.extra.setdefault(key, value)
        logger.debug(
            "Prepared context for target %s (isa=%s, abi=%s)",
            self.name,
            context.isa.label,
            context.abi,
        )

    def bootstrap(self, pipeline: Pipeline) -> None:
        """Provision this target; the generic toolchain+emulator bootstrap."""
        pipeline.bootstrap_generic()


class ManifestTarget(Target):
    """Target declared by a manifest file."""

    def __init__(self, manifest: TargetManifest, target_dir: Path) -> None:
        sources = {
            component: DEFAULT_SOURCES[component].with_override(
                url=override.url, ref=override.ref
            )
            for component, override in (manifest.sources or {}).items()
        }
        super().__init__(
            name=manifest.name,
            description=manifest.description or "",
            isas=[Isa(width) for width in manifest.isa],
            firmware_platform=manifest.firmware_platform,
            patch_dir=target_dir / manifest.patch_dir,
            config_dir=target_dir / manifest.config_dir,
            commands=manifest.commands or STANDARD_COMMANDS,
            sources=sources,
            extra=manifest.extra,
        )
        self._bootstrap_steps = list(manifest.bootstrap or [])

    @property
    def bootstrap_steps(self) -> list[str]:
        return list(self._bootstrap_steps)

    def bootstrap(self, pipeline: Pipeline) -> None:
        if not self._bootstrap_steps:
            super().bootstrap(pipeline)
            return
        for step in self._bootstrap_steps:
            pipeline.run_bootstrap_step(step)


class TargetRegistry:
    """Resolves target names to Target instances."""

    def __init__(self) -> None:
        self._targets: dict[str, Target] = {}

    def register(self, target: Target) -> None:
        if target.name in RESERVED_NAMES:
            raise ValueError(f"Target name '{target.name}' is reserved")
        if target.name in self._targets:
            raise ValueError(f"Target '{target.name}' is already registered")
        self._targets[target.name] = target

    def load_manifests(self, targets_dir: Path) -> int:
        """Register every manifest target under *targets_dir*.

        Manifests named like an already registered target are skipped.

        Returns:
            Number of targets registered.
        """
        count = 0
        for manifest, target_dir in discover_manifests(targets_dir):
            if manifest.name in self._targets:
                logger.warning(
                    "Ignoring manifest for '%s': name already registered", manifest.name
                )
                continue
            self.register(ManifestTarget(manifest, target_dir))
            count += 1
        return count

    def resolve(self, name: str) -> Target:
        """Return the target called *name*.

        For programmatic callers. The CLI registers one command group per
        target, so an unknown name there is rejected by the command parser
        with the same usage exit code.

        Raises:
            UsageError: If no such target is registered.
        """
        target = self._targets.get(name)
        if target is None:
            known = ", ".join(self.names()) or "(none)"
            raise UsageError(
                f"Unknown target '{name}'. Known targets: {known}",
                code="unknown_target",
            )
        return target

    def names(self) -> list[str]:
        return sorted(self._targets)

    def __contains__(self, name: object) -> bool:
        return name in self._targets

    def __iter__(self):
        return iter(self._targets[name] for name in self.names())


__all__ = ["ManifestTarget", "Target", "TargetCommand", "TargetRegistry"]
